"""Tests for the spotkeeper session lifecycle."""

from unittest.mock import AsyncMock

import pytest

from spotkeeper.application.use_cases.deduplicate_playlist import PlaylistDeduplicator
from spotkeeper.config import Settings, SpotifySettings, StorageSettings
from spotkeeper.domain.exceptions import ConfigurationError
from spotkeeper.infrastructure.integrations.spotify_client import SpotifyClient
from spotkeeper.infrastructure.lifecycle import spotkeeper_session
from spotkeeper.infrastructure.persistence import AUTHORIZATION_MANAGER_KEY, InMemorySecureStore


@pytest.fixture
def settings(spotify_settings: SpotifySettings) -> Settings:
    return Settings(
        _env_file=None,
        spotify=spotify_settings,
        storage=StorageSettings(_env_file=None, backend="memory"),
    )


class TestSpotkeeperSession:
    """Test startup and shutdown."""

    async def test_session_wires_and_closes_everything(self, settings: Settings) -> None:
        client = AsyncMock(spec=SpotifyClient)
        store = InMemorySecureStore()

        async with spotkeeper_session(
            settings, store=store, client=client, configure_logs=False
        ) as ctx:
            assert ctx.store is store
            assert not ctx.auth.is_authorized()
            deduplicator = ctx.deduplicator_for("pl-1", "Road Trip", total_items=10)
            assert isinstance(deduplicator, PlaylistDeduplicator)
            assert deduplicator.total_items == 10

        client.close.assert_awaited_once()

    async def test_session_restores_persisted_credential(self, settings: Settings) -> None:
        store = InMemorySecureStore(
            {
                AUTHORIZATION_MANAGER_KEY: (
                    b'{"client_id": "test-client-id", "access_token": "a", "refresh_token": "r",'
                    b' "expiration_date": "2099-01-01T00:00:00Z", "scopes": []}'
                )
            }
        )

        async with spotkeeper_session(
            settings, store=store, client=AsyncMock(spec=SpotifyClient), configure_logs=False
        ) as ctx:
            assert ctx.auth.is_authorized()
            assert ctx.auth.refresh_timer.is_scheduled

    async def test_missing_credentials_fail_before_startup(self) -> None:
        settings = Settings(
            _env_file=None,
            spotify=SpotifySettings(_env_file=None, client_id="", client_secret=None),
        )
        client = AsyncMock(spec=SpotifyClient)

        with pytest.raises(ConfigurationError):
            async with spotkeeper_session(settings, client=client, configure_logs=False):
                pass

        client.close.assert_not_called()

    async def test_client_closed_when_body_raises(self, settings: Settings) -> None:
        client = AsyncMock(spec=SpotifyClient)

        with pytest.raises(RuntimeError):
            async with spotkeeper_session(
                settings, store=InMemorySecureStore(), client=client, configure_logs=False
            ):
                raise RuntimeError("boom")

        client.close.assert_awaited_once()
