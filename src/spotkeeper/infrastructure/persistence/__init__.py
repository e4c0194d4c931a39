"""Persistence layer: secure stores and the session repository."""

from spotkeeper.infrastructure.persistence.repositories import (
    AUTHORIZATION_MANAGER_KEY,
    SPOTIFY_ACCOUNTS_KEY,
    SessionRepository,
)
from spotkeeper.infrastructure.persistence.secure_store import (
    FileSecureStore,
    InMemorySecureStore,
    SqlAlchemySecureStore,
    create_secure_store,
)

__all__ = [
    "AUTHORIZATION_MANAGER_KEY",
    "SPOTIFY_ACCOUNTS_KEY",
    "FileSecureStore",
    "InMemorySecureStore",
    "SessionRepository",
    "SqlAlchemySecureStore",
    "create_secure_store",
]
