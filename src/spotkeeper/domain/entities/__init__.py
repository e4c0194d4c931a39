"""Domain entities."""

import secrets
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from spotkeeper.domain.exceptions import ValidationException


def generate_state() -> str:
    """Create a cryptographically random, URL-safe OAuth state value."""
    return secrets.token_urlsafe(32)


class AuthorizationState(str, Enum):
    """Where a credential is in the authorization-code lifecycle."""

    UNAUTHORIZED = "unauthorized"
    AUTHORIZATION_IN_FLIGHT = "authorization_in_flight"
    AUTHORIZED = "authorized"


@dataclass(frozen=True)
class TokenSet:
    """Tokens returned by a code exchange or a refresh.

    Hey future me - refresh_token is None on most refreshes! Spotify only sends a new one
    when it rotates it. Credential.apply_tokens() keeps the old one in that case.
    """

    access_token: str
    refresh_token: str | None
    expiration_date: datetime
    scopes: frozenset[str] = frozenset()


@dataclass(frozen=True)
class UserProfile:
    """The Spotify user an access token belongs to."""

    id: str
    display_name: str | None = None
    uri: str | None = None


# Hey future me, Credential is ONE authorization-code token set. The golden rule: access_token,
# refresh_token and expiration_date are ALL set or ALL None - __post_init__ and apply_tokens()
# enforce it so a half-authorized credential can never exist. state is the anti-CSRF value for the
# NEXT redirect; it gets replaced on every begin_authorization(), every consumed redirect and every
# clear_tokens(). Tokens and secrets are repr=False so a stray log line can't leak them.
@dataclass
class Credential:
    """OAuth2 authorization-code credential for one Spotify user."""

    client_id: str
    client_secret: str | None = field(default=None, repr=False)
    access_token: str | None = field(default=None, repr=False)
    refresh_token: str | None = field(default=None, repr=False)
    expiration_date: datetime | None = None
    scopes: set[str] = field(default_factory=set)
    state: str = field(default_factory=generate_state, repr=False)

    def __post_init__(self) -> None:
        """Validate token invariants."""
        self._validate_tokens(self.access_token, self.refresh_token, self.expiration_date)

    @staticmethod
    def _validate_tokens(
        access_token: str | None,
        refresh_token: str | None,
        expiration_date: datetime | None,
    ) -> None:
        present = [
            value is not None for value in (access_token, refresh_token, expiration_date)
        ]
        if any(present) and not all(present):
            raise ValidationException(
                "access_token, refresh_token and expiration_date must be set together"
            )
        if expiration_date is not None and expiration_date.tzinfo is None:
            raise ValidationException("expiration_date must be timezone-aware")

    @property
    def authorization_state(self) -> AuthorizationState:
        """Authorized or not; in-flight tracking belongs to the session manager."""
        if self.access_token is None:
            return AuthorizationState.UNAUTHORIZED
        return AuthorizationState.AUTHORIZED

    def is_authorized(self, required_scopes: Iterable[str] = ()) -> bool:
        """Check for tokens and, optionally, that all required scopes were granted."""
        if self.access_token is None:
            return False
        return set(required_scopes) <= self.scopes

    def is_expiring(
        self, margin: timedelta = timedelta(0), now: datetime | None = None
    ) -> bool:
        """Check whether the access token expires within `margin` from now."""
        if self.expiration_date is None:
            return True
        now = now or datetime.now(UTC)
        return self.expiration_date - margin <= now

    def apply_tokens(self, tokens: TokenSet) -> None:
        """Replace the token fields with a fresh token set.

        The refresh token is only replaced when the response rotated it.

        Raises:
            ValidationException: If neither the response nor the credential
                has a refresh token
        """
        refresh_token = tokens.refresh_token or self.refresh_token
        self._validate_tokens(tokens.access_token, refresh_token, tokens.expiration_date)
        self.access_token = tokens.access_token
        self.refresh_token = refresh_token
        self.expiration_date = tokens.expiration_date
        if tokens.scopes:
            self.scopes = set(tokens.scopes)

    def clear_tokens(self) -> None:
        """Drop all tokens and issue a new state value."""
        self.access_token = None
        self.refresh_token = None
        self.expiration_date = None
        self.scopes = set()
        self.rotate_state()

    def rotate_state(self) -> str:
        """Replace the state value, invalidating any in-flight redirect."""
        self.state = generate_state()
        return self.state

    def copy(self) -> "Credential":
        """Return an independent copy (scopes included)."""
        return replace(self, scopes=set(self.scopes))


# Yo, Account OWNS its credential - the constructor copies it in, so two accounts (or an account
# and the manager's active credential) never alias the same object. When the active token changes,
# the manager copies the new fields back into the matching account by user_id.
@dataclass
class Account:
    """A stored Spotify user together with its own credential."""

    user_id: str
    credential: Credential
    display_name: str | None = None

    def __post_init__(self) -> None:
        """Take ownership of an independent credential copy."""
        self.credential = self.credential.copy()
        if not self.user_id:
            raise ValidationException("Account user_id cannot be empty")

    def copy(self) -> "Account":
        """Return an independent copy."""
        return Account(
            user_id=self.user_id,
            credential=self.credential,
            display_name=self.display_name,
        )


class ItemKind(str, Enum):
    """Type of content a playlist entry points at."""

    TRACK = "track"
    EPISODE = "episode"


@dataclass(frozen=True)
class PlaylistItemRecord:
    """Lightweight view of one playlist entry used during duplicate scanning."""

    uri: str | None
    kind: ItemKind
    name: str
    primary_artist_or_show_name: str | None
    duration_ms: int | None
    position: int
    is_local: bool = False

    @property
    def is_eligible(self) -> bool:
        """Local files and URI-less entries never take part in deduplication."""
        return not self.is_local and self.uri is not None

    # Hey future me - Spotify's playlist item wraps the content in "track" even for episodes
    # (the newer API calls it "item"). The content itself can be null when a track was removed
    # from Spotify's catalog - return None then, the caller still counts the position!
    @classmethod
    def from_spotify(
        cls, raw: dict[str, Any], position: int
    ) -> "PlaylistItemRecord | None":
        """Build a record from a raw Spotify playlist item object.

        Args:
            raw: Playlist item as returned by /playlists/{id}/tracks
            position: Absolute zero-based position in the playlist

        Returns:
            The record, or None if the item has no content
        """
        content = raw.get("track") if raw.get("track") is not None else raw.get("item")
        if not content:
            return None

        try:
            kind = ItemKind(content.get("type", ItemKind.TRACK.value))
        except ValueError:
            return None

        if kind is ItemKind.TRACK:
            artists = content.get("artists") or []
            primary = artists[0].get("name") if artists else None
        else:
            show = content.get("show") or {}
            primary = show.get("name")

        return cls(
            uri=content.get("uri"),
            kind=kind,
            name=content.get("name") or "",
            primary_artist_or_show_name=primary,
            duration_ms=content.get("duration_ms"),
            position=position,
            is_local=bool(raw.get("is_local") or content.get("is_local")),
        )


@dataclass(frozen=True)
class DuplicateCandidate:
    """A playlist entry judged to duplicate an earlier one."""

    uri: str
    position: int
    name: str = ""


@dataclass(frozen=True)
class DuplicateBatch:
    """One removal request worth of duplicates (at most 100 positions)."""

    candidates: tuple[DuplicateCandidate, ...]

    def __len__(self) -> int:
        return len(self.candidates)

    def to_payload(self) -> list[dict[str, Any]]:
        """Group positions by URI in first-seen order, as Spotify expects."""
        positions_by_uri: dict[str, list[int]] = {}
        for candidate in self.candidates:
            positions_by_uri.setdefault(candidate.uri, []).append(candidate.position)
        return [
            {"uri": uri, "positions": positions}
            for uri, positions in positions_by_uri.items()
        ]


@dataclass(frozen=True)
class DuplicateScan:
    """Result of scanning one playlist for duplicates."""

    playlist_id: str
    candidates: list[DuplicateCandidate]
    total_items: int
    snapshot_id: str | None = None


@dataclass(frozen=True)
class RemovalSummary:
    """Outcome of removing duplicates from a playlist."""

    playlist_id: str
    removed_count: int
    batches_applied: int
    total_batches: int

    @property
    def found_duplicates(self) -> bool:
        return self.total_batches > 0

    @property
    def is_complete(self) -> bool:
        return self.batches_applied == self.total_batches


@dataclass(frozen=True)
class AlertItem:
    """Short title plus optional longer message shown to the user."""

    title: str
    message: str = ""


__all__ = [
    "Account",
    "AlertItem",
    "AuthorizationState",
    "Credential",
    "DuplicateBatch",
    "DuplicateCandidate",
    "DuplicateScan",
    "ItemKind",
    "PlaylistItemRecord",
    "RemovalSummary",
    "TokenSet",
    "UserProfile",
    "generate_state",
]
