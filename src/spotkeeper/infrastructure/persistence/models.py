"""SQLAlchemy ORM models for spotkeeper."""

from datetime import UTC, datetime

from sqlalchemy import LargeBinary, String
from sqlalchemy import DateTime as SADateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# Hey future me, utc_now() ensures ALL timestamps are UTC! Never use datetime.now() without
# timezone - that's a "naive" datetime and breaks comparisons with token expiration dates.
def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(UTC)


# SQLite doesn't preserve timezone info - values come back naive. Attach UTC before comparing.
def ensure_utc_aware(dt: datetime) -> datetime:
    """Ensure datetime is UTC-aware, assuming naive datetimes are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Yo, SecureItemModel is a dumb key-value table - the value is the opaque JSON blob the
# SessionRepository writes ("authorizationManager" / "spotifyAccounts"). The tokens inside are
# SENSITIVE: keep the database file readable by the owning user only.
class SecureItemModel(Base):
    """One key-value entry of the secure store."""

    __tablename__ = "secure_items"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        SADateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )
