"""Shared fixtures for spotkeeper tests."""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock
from urllib.parse import urlencode

import pytest

from spotkeeper.config import SpotifySettings
from spotkeeper.domain.ports import ISpotifyClient
from spotkeeper.infrastructure.persistence import InMemorySecureStore
from spotkeeper.infrastructure.rate_limiter import reset_spotify_limiter

FROZEN_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)
REDIRECT_URI = "spotkeeper://login-callback"


# Hey future me - the limiter singleton holds an asyncio.Lock, and every test gets its own loop.
@pytest.fixture(autouse=True)
def _fresh_rate_limiter() -> Any:
    reset_spotify_limiter()
    yield
    reset_spotify_limiter()


@pytest.fixture
def now() -> datetime:
    return FROZEN_NOW


@pytest.fixture
def clock(now: datetime) -> Callable[[], datetime]:
    """Frozen clock."""
    return lambda: now


@pytest.fixture
def spotify_settings() -> SpotifySettings:
    """Spotify settings with a client secret, never read from .env."""
    return SpotifySettings(
        _env_file=None,
        client_id="test-client-id",
        client_secret="test-client-secret",
        redirect_uri=REDIRECT_URI,
        tokens_url=None,
        refresh_tokens_url=None,
        refresh_margin_seconds=120,
    )


@pytest.fixture
def store() -> InMemorySecureStore:
    return InMemorySecureStore()


@pytest.fixture
def spotify_client() -> AsyncMock:
    """Mock Spotify client returning realistic token and profile payloads."""
    client = AsyncMock(spec=ISpotifyClient)
    client.get_authorization_url.return_value = (
        "https://accounts.spotify.com/authorize?client_id=test-client-id"
    )
    client.exchange_code.return_value = {
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "expires_in": 3600,
        "token_type": "Bearer",
        "scope": "playlist-read-private playlist-modify-public",
    }
    client.refresh_token.return_value = {
        "access_token": "access-2",
        "expires_in": 3600,
        "token_type": "Bearer",
    }
    client.get_current_user.return_value = {
        "id": "user-1",
        "display_name": "User One",
        "uri": "spotify:user:user-1",
    }
    return client


@pytest.fixture
def make_redirect() -> Callable[..., str]:
    """Build a callback URL the way Spotify would send it."""

    def _make(
        state: str | None,
        code: str | None = "auth-code",
        error: str | None = None,
        base: str = REDIRECT_URI,
    ) -> str:
        params: dict[str, str] = {}
        if code is not None:
            params["code"] = code
        if error is not None:
            params["error"] = error
        if state is not None:
            params["state"] = state
        return f"{base}?{urlencode(params)}"

    return _make
