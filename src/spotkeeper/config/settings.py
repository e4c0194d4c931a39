"""Application settings loaded from environment variables and `.env`."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from spotkeeper.domain.exceptions import ConfigurationError

# Spotify rejects playlist mutations with more than 100 items per request.
SPOTIFY_MAX_ITEMS_PER_REQUEST = 100

DEFAULT_SCOPES = [
    "playlist-read-private",
    "playlist-read-collaborative",
    "playlist-modify-private",
    "playlist-modify-public",
    "user-read-email",
    "user-read-private",
    "user-library-read",
    "user-library-modify",
    "user-read-playback-state",
    "user-modify-playback-state",
]


# Hey future me - SpotifySettings is the ONLY place client_id/secret come from! The manager takes
# these as a constructor argument instead of reading os.environ itself, so tests can build any
# combination. client_secret is optional because the proxy variant (tokens_url/refresh_tokens_url)
# keeps the secret on a backend server. require_credentials() is the fail-fast check - call it at
# startup, NOT lazily on the first request.
class SpotifySettings(BaseSettings):
    """Spotify OAuth and Web API settings."""

    model_config = SettingsConfigDict(
        env_prefix="SPOTIFY_", env_file=".env", extra="ignore"
    )

    client_id: str = ""
    client_secret: str | None = None
    redirect_uri: str = "spotkeeper://login-callback"
    tokens_url: str | None = None
    refresh_tokens_url: str | None = None
    scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_SCOPES))
    show_dialog: bool = False
    refresh_margin_seconds: int = 120
    playlist_page_size: int = 100
    removal_batch_size: int = SPOTIFY_MAX_ITEMS_PER_REQUEST
    max_concurrent_page_fetches: int = 4

    @field_validator("removal_batch_size", "playlist_page_size")
    @classmethod
    def _within_spotify_limit(cls, value: int) -> int:
        if not 1 <= value <= SPOTIFY_MAX_ITEMS_PER_REQUEST:
            raise ValueError(
                f"must be between 1 and {SPOTIFY_MAX_ITEMS_PER_REQUEST}, got {value}"
            )
        return value

    @field_validator("max_concurrent_page_fetches")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @property
    def uses_token_proxy(self) -> bool:
        """Whether code exchange and refresh go through a backend proxy."""
        return bool(self.tokens_url)

    def require_credentials(self) -> None:
        """Fail fast when the configuration cannot authorize anything.

        Raises:
            ConfigurationError: If client_id is missing, or neither a client
                secret nor a token proxy URL is configured
        """
        if not self.client_id or not self.client_id.strip():
            raise ConfigurationError(
                "SPOTIFY_CLIENT_ID is not configured. "
                "Get credentials at https://developer.spotify.com/dashboard"
            )
        has_secret = bool(self.client_secret and self.client_secret.strip())
        if not has_secret and not self.uses_token_proxy:
            raise ConfigurationError(
                "Neither SPOTIFY_CLIENT_SECRET nor SPOTIFY_TOKENS_URL is configured. "
                "Set the client secret, or point SPOTIFY_TOKENS_URL at a backend "
                "that exchanges authorization codes."
            )
        if not self.redirect_uri or not self.redirect_uri.strip():
            raise ConfigurationError("SPOTIFY_REDIRECT_URI is not configured.")


class StorageSettings(BaseSettings):
    """Where credentials and accounts are persisted."""

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_", env_file=".env", extra="ignore"
    )

    backend: Literal["memory", "file", "sqlite"] = "file"
    path: Path = Path("~/.spotkeeper/credentials.json")
    database_url: str = "sqlite:///~/.spotkeeper/credentials.db"
    multi_account: bool = False


class ObservabilitySettings(BaseSettings):
    """Logging output settings."""

    model_config = SettingsConfigDict(
        env_prefix="OBSERVABILITY_", env_file=".env", extra="ignore"
    )

    log_json_format: bool = False


class Settings(BaseSettings):
    """Top-level application settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_name: str = "spotkeeper"
    log_level: str = "INFO"
    spotify: SpotifySettings = Field(default_factory=SpotifySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)


# Yo, lru_cache makes this a process-wide singleton. Tests that tweak env vars must call
# get_settings.cache_clear() or they'll see the first instance forever!
@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
