"""Spotify HTTP client implementation for the authorization-code flow."""

import base64
import logging
from typing import Any, cast
from urllib.parse import urlencode

import httpx

from spotkeeper.config.settings import SPOTIFY_MAX_ITEMS_PER_REQUEST, SpotifySettings
from spotkeeper.domain.exceptions import ConfigurationError, TokenRefreshException
from spotkeeper.domain.ports import ISpotifyClient
from spotkeeper.infrastructure.rate_limiter import get_spotify_limiter

logger = logging.getLogger(__name__)


class SpotifyClient(ISpotifyClient):
    """HTTP client for Spotify API operations."""

    AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
    TOKEN_URL = "https://accounts.spotify.com/api/token"  # nosec B105 - public endpoint URL, not a password
    API_BASE_URL = "https://api.spotify.com/v1"

    # Hey future me, this init is deceptively simple - we DON'T create the HTTP client here
    # because we need to be async-friendly. The actual client gets lazy-loaded in _get_client().
    def __init__(
        self, settings: SpotifySettings, http_client: httpx.AsyncClient | None = None
    ) -> None:
        """
        Initialize Spotify client.

        Args:
            settings: Spotify configuration settings
            http_client: Optional pre-built httpx client (tests inject a MockTransport here)
        """
        self.settings = settings
        self._client: httpx.AsyncClient | None = http_client

    # Timeout is 30s because Spotify can be SLOW on big playlist pages.
    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # Hey future me - CENTRALIZED API REQUEST with Rate Limiting!
    # All Web API calls go through here:
    # - Token Bucket rate limiting (prevents 429s)
    # - Automatic retry on 429, respecting Retry-After
    # - Max 3 retries to prevent infinite loops
    # Token endpoint calls (exchange/refresh) do NOT go through here - they're on the
    # accounts service, which has its own limits and never returns Retry-After.
    async def _api_request(
        self,
        method: str,
        url: str,
        access_token: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        max_retries: int = 3,
    ) -> httpx.Response:
        """Make rate-limited API request with automatic retry on 429.

        Args:
            method: HTTP method (GET, DELETE, etc.)
            url: Full URL to request
            access_token: OAuth access token
            params: Query parameters
            json: JSON request body
            max_retries: Max retries on 429 (default 3)

        Returns:
            httpx.Response object

        Raises:
            httpx.HTTPStatusError: When still rate limited after max_retries
        """
        client = await self._get_client()
        rate_limiter = get_spotify_limiter()

        headers = {"Authorization": f"Bearer {access_token}"}

        for attempt in range(max_retries + 1):
            async with rate_limiter:
                response = await client.request(
                    method=method,
                    url=url,
                    params=params,
                    json=json,
                    headers=headers,
                )

            if response.status_code != 429:
                rate_limiter.record_success()
                return response

            retry_after_str = response.headers.get("Retry-After")
            retry_after = int(retry_after_str) if retry_after_str else None

            if attempt >= max_retries:
                error_msg = (
                    f"Spotify API rate limited (429) after {max_retries} retries. "
                    f"URL: {url}. Retry-After: {retry_after or 'not provided'} seconds."
                )
                logger.error(error_msg)
                raise httpx.HTTPStatusError(
                    error_msg,
                    request=response.request,
                    response=response,
                )

            wait_time = await rate_limiter.handle_rate_limit_response(retry_after)
            logger.warning(
                "Spotify 429 Rate Limit (attempt %d/%d): waited %.1fs, retrying %s",
                attempt + 1,
                max_retries,
                wait_time,
                url,
            )

        return response

    # Hey future me - with a client secret we authenticate to the accounts service with HTTP
    # Basic auth, exactly like Spotify's docs show. In the proxy variant (tokens_url set) the
    # secret lives on OUR backend, so we send nothing but the grant itself.
    def _token_request_auth(self) -> dict[str, str]:
        if self.settings.uses_token_proxy or not self.settings.client_secret:
            return {}
        raw = f"{self.settings.client_id}:{self.settings.client_secret}".encode()
        return {"Authorization": f"Basic {base64.b64encode(raw).decode('ascii')}"}

    async def _post_token_request(self, url: str, data: dict[str, str]) -> httpx.Response:
        client = await self._get_client()
        return await client.post(
            url,
            data=data,
            headers={
                "Content-Type": "application/x-www-form-urlencoded",
                **self._token_request_auth(),
            },
        )

    # Listen future me, this builds the URL to send users to Spotify for auth. The state param
    # prevents CSRF attacks - the session manager validates it when the redirect comes back.
    # show_dialog=true forces the consent screen even for already-approved users, which is
    # what "Add New Account" needs, otherwise Spotify silently reuses the logged-in user.
    async def get_authorization_url(
        self, state: str, scopes: list[str], show_dialog: bool = False
    ) -> str:
        """
        Generate Spotify OAuth authorization URL.

        Args:
            state: State parameter for CSRF protection
            scopes: Scopes to request
            show_dialog: Force the approval dialog

        Returns:
            Authorization URL

        Raises:
            ConfigurationError: If client_id or redirect_uri is not configured
        """
        if not self.settings.client_id or not self.settings.client_id.strip():
            raise ConfigurationError(
                "SPOTIFY_CLIENT_ID is not configured. "
                "Get credentials at https://developer.spotify.com/dashboard"
            )
        if not self.settings.redirect_uri or not self.settings.redirect_uri.strip():
            raise ConfigurationError(
                "SPOTIFY_REDIRECT_URI is not configured. "
                "Set it to the callback URL registered for your Spotify app."
            )

        params = {
            "client_id": self.settings.client_id,
            "response_type": "code",
            "redirect_uri": self.settings.redirect_uri,
            "state": state,
            "scope": " ".join(scopes),
            "show_dialog": "true" if show_dialog else "false",
        }

        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    # Yo future me, this is THE critical step after user auth. The code is single-use and expires
    # in 10 minutes! The redirect_uri MUST match EXACTLY what we used in get_authorization_url(),
    # or Spotify will reject it. And yeah, it HAS to be form-urlencoded, not JSON.
    async def exchange_code(self, code: str) -> dict[str, Any]:
        """
        Exchange authorization code for access and refresh tokens.

        Args:
            code: Authorization code

        Returns:
            Token response with access_token, refresh_token, expires_in

        Raises:
            httpx.HTTPError: If the request fails
        """
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.settings.redirect_uri,
        }
        if self.settings.uses_token_proxy:
            url = cast(str, self.settings.tokens_url)
        else:
            url = self.TOKEN_URL
            if not self.settings.client_secret:
                data["client_id"] = self.settings.client_id

        response = await self._post_token_request(url, data)
        response.raise_for_status()
        return cast(dict[str, Any], response.json())

    # Hey future me, access tokens expire after 1 hour. This is how you get a new one without
    # making the user re-authorize. Spotify returns 400 with error="invalid_grant" when the
    # refresh token is revoked - we raise TokenRefreshException so callers know re-auth is needed.
    async def refresh_token(self, refresh_token: str) -> dict[str, Any]:
        """
        Refresh access token using refresh token.

        Args:
            refresh_token: Refresh token from previous authentication

        Returns:
            Token response with access_token, expires_in and possibly a rotated
            refresh_token

        Raises:
            TokenRefreshException: If refresh token is invalid/revoked (requires re-auth)
            httpx.HTTPStatusError: For other HTTP errors (network, server issues)
        """
        data = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        if self.settings.uses_token_proxy:
            url = self.settings.refresh_tokens_url or cast(str, self.settings.tokens_url)
        else:
            url = self.TOKEN_URL
            if not self.settings.client_secret:
                data["client_id"] = self.settings.client_id

        response = await self._post_token_request(url, data)

        # Check for invalid_grant BEFORE raise_for_status!
        if response.status_code == 400:
            try:
                error_data = response.json()
            except ValueError:
                error_data = {}
            error_code = error_data.get("error", "")
            if error_code == "invalid_grant":
                error_description = error_data.get(
                    "error_description", "Refresh token is invalid or has been revoked"
                )
                raise TokenRefreshException(
                    message=f"Refresh token invalid: {error_description}. "
                    "Please re-authenticate with Spotify.",
                    error_code=error_code,
                    http_status=400,
                )

        if response.status_code in (401, 403):
            raise TokenRefreshException(
                message="Spotify access denied. Please re-authenticate with Spotify.",
                error_code="access_denied",
                http_status=response.status_code,
            )

        response.raise_for_status()
        return cast(dict[str, Any], response.json())

    async def get_current_user(self, access_token: str) -> dict[str, Any]:
        """Get current authenticated user's profile (raw Spotify JSON)."""
        response = await self._api_request(
            method="GET",
            url=f"{self.API_BASE_URL}/me",
            access_token=access_token,
        )
        response.raise_for_status()
        return cast(dict[str, Any], response.json())

    # Hey future me - pass fields="snapshot_id" when you only need the snapshot! A full
    # playlist object embeds the first 100 items, which is a lot of bytes for one string.
    async def get_playlist(
        self, playlist_id: str, access_token: str, fields: str | None = None
    ) -> dict[str, Any]:
        """
        Get playlist details.

        Args:
            playlist_id: Spotify playlist ID
            access_token: OAuth access token
            fields: Optional Spotify field filter

        Returns:
            Playlist information

        Raises:
            httpx.HTTPError: If the request fails
        """
        response = await self._api_request(
            method="GET",
            url=f"{self.API_BASE_URL}/playlists/{playlist_id}",
            access_token=access_token,
            params={"fields": fields} if fields else None,
        )
        response.raise_for_status()
        return cast(dict[str, Any], response.json())

    # Hey future me, additional_types=track,episode is REQUIRED - without it Spotify returns
    # podcast episodes in track shape (or null), and the episode matching rule never fires.
    async def get_playlist_items(
        self,
        playlist_id: str,
        access_token: str,
        limit: int = 100,
        offset: int = 0,
    ) -> dict[str, Any]:
        """Get a page of items for a playlist (raw JSON)."""
        limit = min(limit, SPOTIFY_MAX_ITEMS_PER_REQUEST)

        response = await self._api_request(
            method="GET",
            url=f"{self.API_BASE_URL}/playlists/{playlist_id}/tracks",
            access_token=access_token,
            params={
                "limit": limit,
                "offset": offset,
                "additional_types": "track,episode",
            },
        )
        response.raise_for_status()
        return cast(dict[str, Any], response.json())

    # The "next" URL already carries limit/offset/additional_types, so no params here.
    async def get_next_page(
        self, page: dict[str, Any], access_token: str
    ) -> dict[str, Any] | None:
        """Fetch the page after `page`, or None if it was the last one."""
        next_url = page.get("next")
        if not next_url:
            return None

        response = await self._api_request(
            method="GET",
            url=next_url,
            access_token=access_token,
        )
        response.raise_for_status()
        return cast(dict[str, Any], response.json())

    # Listen up, this removes SPECIFIC OCCURRENCES (uri + positions), not every copy of a uri!
    # With snapshot_id, Spotify validates the positions against THAT snapshot, even if the
    # playlist changed since - which is what makes sequential batches from one scan safe.
    async def remove_playlist_items(
        self,
        playlist_id: str,
        items: list[dict[str, Any]],
        access_token: str,
        snapshot_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Remove specific occurrences of items from a playlist.

        Args:
            playlist_id: Spotify playlist ID
            items: [{"uri": ..., "positions": [...]}, ...] (max 100)
            access_token: OAuth access token
            snapshot_id: Snapshot the positions refer to

        Returns:
            Response with the new snapshot_id

        Raises:
            ValueError: If more than 100 items are passed
            httpx.HTTPError: If the request fails
        """
        if len(items) > SPOTIFY_MAX_ITEMS_PER_REQUEST:
            raise ValueError(
                f"Spotify accepts at most {SPOTIFY_MAX_ITEMS_PER_REQUEST} items per "
                f"removal request, got {len(items)}"
            )

        body: dict[str, Any] = {"tracks": items}
        if snapshot_id:
            body["snapshot_id"] = snapshot_id

        response = await self._api_request(
            method="DELETE",
            url=f"{self.API_BASE_URL}/playlists/{playlist_id}/tracks",
            access_token=access_token,
            json=body,
        )
        response.raise_for_status()
        return cast(dict[str, Any], response.json())

    async def __aenter__(self) -> "SpotifyClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
