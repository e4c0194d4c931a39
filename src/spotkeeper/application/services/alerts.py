"""User-facing alerts for domain failures.

Hey future me - this is the ONE place that decides what a user reads when something breaks.
Every alert is a short title plus an optional longer message. Never a stack trace and never an
internal identifier. Security rejections (state mismatch, foreign redirect) get the generic
"couldn't authorize" text with NO detail, on purpose: telling an attacker which check failed
helps them. Access denied gets its own title because the user did that themselves.
"""

import logging

from spotkeeper.domain.entities import AlertItem
from spotkeeper.domain.exceptions import (
    AccessDeniedError,
    AccountNotFoundError,
    AuthenticationError,
    ConfigurationError,
    DomainException,
    InvalidRedirectError,
    NotAuthorizedError,
    PlaylistRemovalError,
    PlaylistScanError,
    StateMismatchError,
    TokenExchangeError,
    TokenRefreshException,
)

logger = logging.getLogger(__name__)

ACCESS_DENIED_TITLE = "You Denied The Authorization Request :("
AUTHORIZATION_FAILED_TITLE = "Couldn't Authorize With Your Account"


def alert_for_exception(exc: BaseException, context: str = "") -> AlertItem:
    """Map an exception to the alert shown to the user.

    Args:
        exc: The failure
        context: Name of the thing the user was working on (e.g. a playlist name)

    Returns:
        AlertItem with a title and an optional message
    """
    if isinstance(exc, AccessDeniedError):
        return AlertItem(title=ACCESS_DENIED_TITLE)

    if isinstance(exc, (StateMismatchError, InvalidRedirectError)):
        return AlertItem(title=AUTHORIZATION_FAILED_TITLE)

    if isinstance(exc, NotAuthorizedError):
        return AlertItem(
            title="Not Logged In",
            message="Log in with your Spotify account first.",
        )

    if isinstance(exc, TokenRefreshException):
        message = exc.message
        if exc.requires_reauth:
            message = "Your Spotify login expired. Please log in again."
        return AlertItem(title="Couldn't Refresh Your Spotify Login", message=message)

    if isinstance(exc, (TokenExchangeError, AuthenticationError)):
        return AlertItem(title=AUTHORIZATION_FAILED_TITLE, message=exc.message)

    if isinstance(exc, AccountNotFoundError):
        return AlertItem(title="Account Not Found", message="That account was removed.")

    if isinstance(exc, PlaylistScanError):
        return AlertItem(
            title=f"Couldn't check for duplicates for {context or 'this playlist'}",
            message=exc.message,
        )

    if isinstance(exc, PlaylistRemovalError):
        message = exc.message
        if exc.batches_applied:
            message = (
                f"{exc.removed_count} duplicates were removed before the error occurred. "
                f"{exc.message}"
            )
        return AlertItem(
            title=f"Couldn't remove duplicates from {context or 'this playlist'}",
            message=message,
        )

    if isinstance(exc, ConfigurationError):
        return AlertItem(title="Spotify Is Not Configured", message=exc.message)

    if isinstance(exc, DomainException):
        return AlertItem(title="Something Went Wrong", message=exc.message)

    logger.error("No alert mapping for %s, showing generic alert", type(exc).__name__)
    return AlertItem(title="Something Went Wrong")


__all__ = [
    "ACCESS_DENIED_TITLE",
    "AUTHORIZATION_FAILED_TITLE",
    "alert_for_exception",
]
