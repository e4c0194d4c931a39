"""Tests for settings validation."""

import pytest
from pydantic import ValidationError

from spotkeeper.config import Settings, SpotifySettings, get_settings
from spotkeeper.domain.exceptions import ConfigurationError


class TestSpotifySettings:
    """Test Spotify configuration checks."""

    def test_secret_configuration_is_valid(self) -> None:
        settings = SpotifySettings(_env_file=None, client_id="id", client_secret="secret")
        settings.require_credentials()
        assert not settings.uses_token_proxy

    def test_proxy_configuration_is_valid(self) -> None:
        settings = SpotifySettings(
            _env_file=None, client_id="id", tokens_url="https://backend.example.com/token"
        )
        settings.require_credentials()
        assert settings.uses_token_proxy

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"client_id": "", "client_secret": "secret"},
            {"client_id": "   ", "client_secret": "secret"},
            {"client_id": "id", "client_secret": None},
            {"client_id": "id", "client_secret": "  "},
            {"client_id": "id", "client_secret": "secret", "redirect_uri": ""},
        ],
    )
    def test_incomplete_configuration_fails_fast(self, kwargs: dict[str, str | None]) -> None:
        settings = SpotifySettings(_env_file=None, **kwargs)
        with pytest.raises(ConfigurationError):
            settings.require_credentials()

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"removal_batch_size": 0},
            {"removal_batch_size": 101},
            {"playlist_page_size": 150},
            {"max_concurrent_page_fetches": 0},
        ],
    )
    def test_limits_are_validated(self, kwargs: dict[str, int]) -> None:
        with pytest.raises(ValidationError):
            SpotifySettings(_env_file=None, client_id="id", **kwargs)

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SPOTIFY_CLIENT_ID", "from-env")
        monkeypatch.setenv("SPOTIFY_REFRESH_MARGIN_SECONDS", "300")

        settings = SpotifySettings(_env_file=None)

        assert settings.client_id == "from-env"
        assert settings.refresh_margin_seconds == 300


class TestSettings:
    """Test the top-level settings object."""

    def test_nested_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("STORAGE_BACKEND", raising=False)
        settings = Settings(_env_file=None)
        assert settings.storage.backend == "file"
        assert settings.storage.multi_account is False
        assert settings.observability.log_json_format is False

    def test_get_settings_is_cached(self) -> None:
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
