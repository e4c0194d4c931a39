"""Secure key-value stores for credentials and accounts.

Hey future me - these are the keychain replacements! The session manager only knows the
ISecureStore port (get/set/delete bytes by string key), so swapping backends is a settings
change (STORAGE_BACKEND=memory|file|sqlite).

- InMemorySecureStore: tests and throwaway sessions, nothing survives the process
- FileSecureStore: one JSON file, mode 0600, written atomically (temp file + os.replace)
- SqlAlchemySecureStore: one row per key in a `secure_items` table

None of these encrypt at rest. Protecting the file/database is the OS account's job; we make
sure nobody else can read it.
"""

import base64
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from sqlalchemy import create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from spotkeeper.config.settings import StorageSettings
from spotkeeper.domain.exceptions import ConfigurationError
from spotkeeper.domain.ports import ISecureStore
from spotkeeper.infrastructure.persistence.models import Base, SecureItemModel

logger = logging.getLogger(__name__)


class InMemorySecureStore(ISecureStore):
    """Dict-backed store."""

    def __init__(self, initial: dict[str, bytes] | None = None) -> None:
        self._items: dict[str, bytes] = dict(initial or {})

    def get(self, key: str) -> bytes | None:
        return self._items.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._items[key] = bytes(value)

    def delete(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        """Stored keys (for debugging and tests)."""
        return list(self._items)


# Listen up, FileSecureStore re-reads the file on EVERY get() - no in-memory cache. That keeps two
# processes sharing the file from overwriting each other with stale copies of OTHER keys. Writes
# go to a temp file in the same directory and os.replace() it over the old one, so a crash mid-write
# leaves the previous file intact instead of a truncated JSON document.
class FileSecureStore(ISecureStore):
    """JSON-file-backed store, readable only by the owning user."""

    FILE_MODE = 0o600

    def __init__(self, path: Path) -> None:
        self._path = path.expanduser()

    @property
    def path(self) -> Path:
        return self._path

    # A damaged file reads as empty so the user can log in again; the next write replaces it.
    def _read_all(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            document = json.loads(self._path.read_text(encoding="utf-8"))
        except ValueError as e:
            logger.warning("Secure store %s is corrupt, treating it as empty: %s", self._path, e)
            return {}
        if not isinstance(document, dict):
            logger.warning("Secure store %s is not a JSON object, treating it as empty", self._path)
            return {}
        return document

    def _write_all(self, document: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(
            dir=self._path.parent, prefix=".secure_", suffix=".tmp"
        )
        try:
            os.chmod(temp_path, self.FILE_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(document, f, indent=2, sort_keys=True)
            os.replace(temp_path, self._path)
        except BaseException:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    # Same rule as a damaged file: an entry that isn't valid base64 text reads as missing.
    def get(self, key: str) -> bytes | None:
        encoded = self._read_all().get(key)
        if encoded is None:
            return None
        try:
            return base64.b64decode(encoded, validate=True)
        except (TypeError, ValueError) as e:
            logger.warning(
                "Secure store %s has an undecodable entry %r, treating it as missing: %s",
                self._path,
                key,
                e,
            )
            return None

    def set(self, key: str, value: bytes) -> None:
        document = self._read_all()
        document[key] = base64.b64encode(value).decode("ascii")
        self._write_all(document)

    def delete(self, key: str) -> None:
        document = self._read_all()
        if document.pop(key, None) is not None:
            self._write_all(document)


class SqlAlchemySecureStore(ISecureStore):
    """SQL-table-backed store (SQLite by default)."""

    def __init__(self, database_url: str, engine: Engine | None = None) -> None:
        self._engine = engine or create_engine(database_url)
        Base.metadata.create_all(self._engine)
        self._session_factory = sessionmaker(self._engine, expire_on_commit=False)

    def get(self, key: str) -> bytes | None:
        with self._session_factory() as session:
            return session.scalar(
                select(SecureItemModel.value).where(SecureItemModel.key == key)
            )

    def set(self, key: str, value: bytes) -> None:
        with self._session_factory() as session, session.begin():
            session.merge(SecureItemModel(key=key, value=bytes(value)))

    def delete(self, key: str) -> None:
        with self._session_factory() as session, session.begin():
            session.execute(delete(SecureItemModel).where(SecureItemModel.key == key))

    def dispose(self) -> None:
        """Close pooled connections."""
        self._engine.dispose()


def _expand_sqlite_url(database_url: str) -> str:
    """Expand ~ in sqlite file URLs and make sure the directory exists."""
    prefix = "sqlite:///"
    if not database_url.startswith(prefix) or database_url == "sqlite:///:memory:":
        return database_url
    db_path = Path(database_url[len(prefix):]).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return f"{prefix}{db_path}"


def create_secure_store(settings: StorageSettings) -> ISecureStore:
    """Build the store selected by STORAGE_BACKEND.

    Raises:
        ConfigurationError: If the backend name is unknown
    """
    if settings.backend == "memory":
        logger.warning("Using in-memory secure store - sessions will not survive restarts")
        return InMemorySecureStore()
    if settings.backend == "file":
        return FileSecureStore(settings.path)
    if settings.backend == "sqlite":
        return SqlAlchemySecureStore(_expand_sqlite_url(settings.database_url))
    raise ConfigurationError(f"Unknown storage backend: {settings.backend}")


__all__ = [
    "FileSecureStore",
    "InMemorySecureStore",
    "SqlAlchemySecureStore",
    "create_secure_store",
]
