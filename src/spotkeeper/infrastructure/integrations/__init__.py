"""External service integrations."""

from spotkeeper.infrastructure.integrations.spotify_client import SpotifyClient

__all__ = ["SpotifyClient"]
