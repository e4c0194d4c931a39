"""Spotify OAuth Authentication Service.

Hey future me - this service turns the client's raw token JSON into domain objects!
SpotifyClient speaks HTTP and dicts; AuthSessionManager speaks TokenSet and UserProfile.
Everything in between lives here:

- expires_in (seconds) -> absolute, timezone-aware expiration_date
- "scope" (space separated string) -> frozenset of scopes
- httpx errors -> TokenExchangeError / TokenRefreshException (chained, so logs keep the cause)

Token Storage:
- This service does NOT store tokens!
- AuthSessionManager commits and persists them
- Service is stateless for better testability
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from spotkeeper.config.settings import SpotifySettings
from spotkeeper.domain.entities import TokenSet, UserProfile
from spotkeeper.domain.exceptions import TokenExchangeError, TokenRefreshException
from spotkeeper.domain.ports import ISpotifyClient

logger = logging.getLogger(__name__)

# Spotify documents one hour; used when a (proxy) response omits expires_in.
DEFAULT_EXPIRES_IN_SECONDS = 3600


def _utc_now() -> datetime:
    return datetime.now(UTC)


class SpotifyAuthService:
    """Service for Spotify OAuth authentication."""

    def __init__(
        self,
        settings: SpotifySettings,
        client: ISpotifyClient,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize auth service.

        Args:
            settings: Spotify configuration with client_id, scopes, etc.
            client: Spotify client used for the HTTP calls
            clock: Returns "now" (tests freeze time with this)
        """
        self._settings = settings
        self._client = client
        self._clock = clock or _utc_now

    def _token_set(self, token_data: dict[str, Any]) -> TokenSet:
        expires_in = int(token_data.get("expires_in") or DEFAULT_EXPIRES_IN_SECONDS)
        scope = token_data.get("scope") or ""
        return TokenSet(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token"),
            expiration_date=self._clock() + timedelta(seconds=expires_in),
            scopes=frozenset(scope.split()),
        )

    async def build_authorization_url(
        self,
        state: str,
        scopes: list[str] | None = None,
        show_dialog: bool | None = None,
    ) -> str:
        """Build the authorization URL for a given state.

        Falls back to the configured scopes / show_dialog when not given.
        """
        return await self._client.get_authorization_url(
            state,
            list(scopes) if scopes is not None else list(self._settings.scopes),
            self._settings.show_dialog if show_dialog is None else show_dialog,
        )

    # Hey future me - the code is single-use! If this fails there's no retrying with the same
    # code, the user has to go through the authorization page again.
    async def exchange_code(self, code: str) -> TokenSet:
        """Exchange authorization code for tokens.

        Raises:
            TokenExchangeError: If Spotify (or the proxy) rejects the code or
                can't be reached, or the response has no tokens
        """
        try:
            token_data = await self._client.exchange_code(code)
        except httpx.HTTPStatusError as e:
            raise TokenExchangeError(
                f"Token exchange failed with HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"Token exchange failed: {e}") from e

        if not token_data.get("access_token") or not token_data.get("refresh_token"):
            raise TokenExchangeError("Token exchange response is missing tokens")

        logger.info("Successfully exchanged code for tokens")
        return self._token_set(token_data)

    # IMPORTANT: Spotify might NOT return a new refresh_token - TokenSet.refresh_token is None
    # then and Credential.apply_tokens() keeps the old one.
    async def refresh(self, refresh_token: str) -> TokenSet:
        """Refresh an access token.

        Raises:
            TokenRefreshException: If the refresh fails for any reason
        """
        try:
            token_data = await self._client.refresh_token(refresh_token)
        except TokenRefreshException:
            raise
        except httpx.HTTPStatusError as e:
            raise TokenRefreshException(
                message=f"Token refresh failed with HTTP {e.response.status_code}",
                error_code="http_error",
                http_status=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise TokenRefreshException(
                message=f"Token refresh failed: {e}", error_code="network_error"
            ) from e

        if not token_data.get("access_token"):
            raise TokenRefreshException(
                message="Token refresh response is missing access_token",
                error_code="invalid_response",
            )

        logger.debug("Successfully refreshed access token")
        return self._token_set(token_data)

    async def get_current_user(self, access_token: str) -> UserProfile:
        """Fetch the profile of the user the token belongs to.

        Raises:
            TokenExchangeError: If the profile can't be fetched
        """
        try:
            data = await self._client.get_current_user(access_token)
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"Couldn't fetch the current user: {e}") from e
        return UserProfile(
            id=data["id"],
            display_name=data.get("display_name"),
            uri=data.get("uri"),
        )
