"""Unit tests for domain entities.

Hey future me - the credential invariant (tokens all set or all None) is what keeps a
half-authorized session from ever existing. If one of these tests fails, don't "fix" the test.
"""

from datetime import UTC, datetime, timedelta

import pytest

from spotkeeper.domain.entities import (
    Account,
    AuthorizationState,
    Credential,
    DuplicateBatch,
    DuplicateCandidate,
    ItemKind,
    PlaylistItemRecord,
    TokenSet,
)
from spotkeeper.domain.exceptions import ValidationException

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


def tokens(refresh_token: str | None = "refresh", expires_in: int = 3600) -> TokenSet:
    return TokenSet(
        access_token="access",
        refresh_token=refresh_token,
        expiration_date=NOW + timedelta(seconds=expires_in),
        scopes=frozenset({"playlist-read-private"}),
    )


class TestCredential:
    """Tests for Credential."""

    def test_new_credential_is_unauthorized_with_state(self) -> None:
        credential = Credential(client_id="client")
        assert credential.authorization_state is AuthorizationState.UNAUTHORIZED
        assert not credential.is_authorized()
        assert len(credential.state) >= 32

    def test_partial_tokens_are_rejected(self) -> None:
        with pytest.raises(ValidationException):
            Credential(client_id="client", access_token="access")

    def test_naive_expiration_is_rejected(self) -> None:
        with pytest.raises(ValidationException):
            Credential(
                client_id="client",
                access_token="a",
                refresh_token="r",
                expiration_date=datetime(2026, 3, 1, 12, 0, 0),
            )

    def test_apply_tokens_authorizes(self) -> None:
        credential = Credential(client_id="client")
        credential.apply_tokens(tokens())
        assert credential.is_authorized()
        assert credential.is_authorized(["playlist-read-private"])
        assert not credential.is_authorized(["playlist-modify-public"])

    def test_apply_tokens_keeps_refresh_token_when_not_rotated(self) -> None:
        credential = Credential(client_id="client")
        credential.apply_tokens(tokens(refresh_token="first"))
        credential.apply_tokens(tokens(refresh_token=None))
        assert credential.refresh_token == "first"

    def test_apply_tokens_without_any_refresh_token_fails(self) -> None:
        credential = Credential(client_id="client")
        with pytest.raises(ValidationException):
            credential.apply_tokens(tokens(refresh_token=None))
        assert credential.access_token is None

    def test_is_expiring_respects_margin(self) -> None:
        credential = Credential(client_id="client")
        credential.apply_tokens(tokens(expires_in=100))
        assert credential.is_expiring(timedelta(seconds=120), NOW)
        assert not credential.is_expiring(timedelta(seconds=60), NOW)

    def test_clear_tokens_rotates_state(self) -> None:
        credential = Credential(client_id="client")
        credential.apply_tokens(tokens())
        state = credential.state

        credential.clear_tokens()

        assert credential.access_token is None
        assert credential.refresh_token is None
        assert credential.expiration_date is None
        assert credential.state != state

    def test_repr_hides_tokens(self) -> None:
        credential = Credential(client_id="client", client_secret="top-secret")
        credential.apply_tokens(tokens())
        text = repr(credential)
        assert "top-secret" not in text
        assert "'access'" not in text


class TestAccount:
    """Tests for Account."""

    def test_account_owns_its_credential(self) -> None:
        credential = Credential(client_id="client")
        credential.apply_tokens(tokens())
        account = Account(user_id="alice", credential=credential)

        credential.clear_tokens()

        assert account.credential.access_token == "access"

    def test_copy_is_independent(self) -> None:
        credential = Credential(client_id="client")
        credential.apply_tokens(tokens())
        account = Account(user_id="alice", credential=credential)

        copy = account.copy()
        copy.credential.scopes.add("user-read-email")

        assert "user-read-email" not in account.credential.scopes

    def test_empty_user_id_is_rejected(self) -> None:
        with pytest.raises(ValidationException):
            Account(user_id="", credential=Credential(client_id="client"))


class TestPlaylistItemRecord:
    """Tests for building records from Spotify playlist items."""

    def test_track(self) -> None:
        raw = {
            "is_local": False,
            "track": {
                "type": "track",
                "uri": "spotify:track:1",
                "name": "Eclipse",
                "artists": [{"name": "Pink Floyd"}, {"name": "Someone Else"}],
                "duration_ms": 123_000,
            },
        }

        record = PlaylistItemRecord.from_spotify(raw, position=7)

        assert record is not None
        assert record.kind is ItemKind.TRACK
        assert record.primary_artist_or_show_name == "Pink Floyd"
        assert record.position == 7
        assert record.is_eligible

    def test_episode_uses_show_name(self) -> None:
        raw = {
            "track": {
                "type": "episode",
                "uri": "spotify:episode:1",
                "name": "Ep 1",
                "show": {"name": "The Show"},
                "duration_ms": 1_800_000,
            }
        }

        record = PlaylistItemRecord.from_spotify(raw, position=0)

        assert record is not None
        assert record.kind is ItemKind.EPISODE
        assert record.primary_artist_or_show_name == "The Show"

    def test_null_content_returns_none(self) -> None:
        assert PlaylistItemRecord.from_spotify({"track": None}, position=3) is None

    def test_local_file_is_not_eligible(self) -> None:
        raw = {"is_local": True, "track": {"type": "track", "uri": "spotify:local:x", "name": "x"}}

        record = PlaylistItemRecord.from_spotify(raw, position=0)

        assert record is not None
        assert not record.is_eligible


class TestDuplicateBatch:
    """Tests for the removal payload."""

    def test_payload_groups_positions_by_uri(self) -> None:
        batch = DuplicateBatch(
            candidates=(
                DuplicateCandidate(uri="spotify:track:a", position=2),
                DuplicateCandidate(uri="spotify:track:b", position=5),
                DuplicateCandidate(uri="spotify:track:a", position=9),
            )
        )

        assert len(batch) == 3
        assert batch.to_payload() == [
            {"uri": "spotify:track:a", "positions": [2, 9]},
            {"uri": "spotify:track:b", "positions": [5]},
        ]
