"""Application services - token lifecycle and playlist deduplication."""

from spotkeeper.application.services.alerts import alert_for_exception
from spotkeeper.application.services.auth_session_manager import AuthSessionManager
from spotkeeper.application.services.duplicate_resolver import (
    DuplicateResolver,
    detect_duplicates,
)
from spotkeeper.application.services.spotify_auth_service import SpotifyAuthService

__all__ = [
    "AuthSessionManager",
    "DuplicateResolver",
    "SpotifyAuthService",
    "alert_for_exception",
    "detect_duplicates",
]
