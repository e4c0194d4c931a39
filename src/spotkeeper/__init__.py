"""spotkeeper - Spotify session keeper and playlist deduplicator."""

__version__ = "0.1.0"
