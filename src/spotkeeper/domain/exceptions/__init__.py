"""Domain exceptions."""

from typing import Any


class DomainException(Exception):
    """Base exception for all domain exceptions."""

    # Hey future me, we store message as an attribute so code can inspect it without parsing str(exception).
    # This is your base class - DON'T raise it directly! Always use a specific subclass so callers can
    # catch precisely (AccessDeniedError needs a different alert than StateMismatchError, for example).
    def __init__(self, message: str, *args: Any) -> None:
        super().__init__(message, *args)
        self.message = message


class EntityNotFoundException(DomainException):
    """Raised when an entity is not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(f"{entity_type} with id {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ValidationException(DomainException):
    """Raised when entity validation fails.

    Used to signal that an entity's invariants have been violated
    (e.g., a credential with an access token but no refresh token).
    """

    pass


class ConfigurationError(DomainException):
    """Application misconfiguration.

    Raised when required configuration is missing or invalid.

    Example:
        raise ConfigurationError("SPOTIFY_CLIENT_ID is not configured")
    """

    pass


class ExternalServiceError(DomainException):
    """External service (Spotify) returned an error or could not be reached."""

    pass


# =============================================================================
# Authorization
# =============================================================================


class AuthenticationError(DomainException):
    """Base class for failures of the OAuth authorization lifecycle."""

    pass


class InvalidRedirectError(AuthenticationError):
    """The redirect URL does not have the expected scheme or shape.

    Never retried. The user sees a generic "could not handle redirect" message.
    """

    pass


class StateMismatchError(AuthenticationError):
    """The `state` query parameter does not match the last value we issued.

    Hey future me - this is the anti-CSRF check! Don't put the received state into the
    message or the alert, just "couldn't authorize". A replayed redirect lands here too,
    because the state is rotated as soon as a redirect is consumed.
    """

    def __init__(self, message: str = "Authorization state does not match") -> None:
        super().__init__(message)


class AccessDeniedError(AuthenticationError):
    """The user declined the authorization request."""

    def __init__(self, message: str = "The user denied the authorization request") -> None:
        super().__init__(message)


class NotAuthorizedError(AuthenticationError):
    """An operation needing an access token ran while no token is present."""

    def __init__(self, message: str = "No authorized Spotify session") -> None:
        super().__init__(message)


class TokenExchangeError(ExternalServiceError):
    """Exchanging an authorization code for tokens failed."""

    pass


class TokenRefreshException(DomainException):
    """Raised when token refresh fails.

    Hey future me - refresh failures do NOT clear the current tokens! The old access token
    keeps working until it literally expires. requires_reauth tells the caller whether the
    refresh token itself is dead (user revoked access, invalid_grant) so the UI can prompt
    for a new login instead of just retrying later.
    """

    def __init__(
        self,
        message: str = "Token refresh failed. Please re-authenticate with Spotify.",
        error_code: str | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code  # e.g., "invalid_grant"
        self.http_status = http_status  # e.g., 400, 401

    @property
    def requires_reauth(self) -> bool:
        """Check if error requires user re-authentication."""
        return self.error_code == "invalid_grant" or self.http_status in (400, 401, 403)


class AccountNotFoundError(EntityNotFoundException):
    """No stored account has the requested user id."""

    def __init__(self, user_id: str) -> None:
        super().__init__("Account", user_id)
        self.user_id = user_id


# =============================================================================
# Playlist deduplication
# =============================================================================


class PlaylistScanError(ExternalServiceError):
    """Fetching a page of playlist items failed; nothing was removed."""

    def __init__(self, message: str, playlist_id: str) -> None:
        super().__init__(message)
        self.playlist_id = playlist_id


class PlaylistRemovalError(ExternalServiceError):
    """A removal batch failed; later batches were not sent.

    batches_applied counts the batches Spotify accepted BEFORE the failing one. Those
    items are gone from the playlist, so callers must report partial success.
    """

    def __init__(
        self,
        message: str,
        playlist_id: str,
        batches_applied: int,
        removed_count: int,
        total_batches: int,
    ) -> None:
        super().__init__(message)
        self.playlist_id = playlist_id
        self.batches_applied = batches_applied
        self.removed_count = removed_count
        self.total_batches = total_batches


__all__ = [
    # Base
    "DomainException",
    "EntityNotFoundException",
    "ValidationException",
    "ConfigurationError",
    "ExternalServiceError",
    # Authorization
    "AuthenticationError",
    "InvalidRedirectError",
    "StateMismatchError",
    "AccessDeniedError",
    "NotAuthorizedError",
    "TokenExchangeError",
    "TokenRefreshException",
    "AccountNotFoundError",
    # Deduplication
    "PlaylistScanError",
    "PlaylistRemovalError",
]
