"""Configuration module for spotkeeper."""

from .settings import (
    DEFAULT_SCOPES,
    SPOTIFY_MAX_ITEMS_PER_REQUEST,
    ObservabilitySettings,
    Settings,
    SpotifySettings,
    StorageSettings,
    get_settings,
)

__all__ = [
    "DEFAULT_SCOPES",
    "SPOTIFY_MAX_ITEMS_PER_REQUEST",
    "ObservabilitySettings",
    "Settings",
    "SpotifySettings",
    "StorageSettings",
    "get_settings",
]
