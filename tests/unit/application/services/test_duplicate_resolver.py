"""Tests for DuplicateResolver and detect_duplicates."""

import asyncio
import logging
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from spotkeeper.application.services.duplicate_resolver import (
    DuplicateResolver,
    detect_duplicates,
)
from spotkeeper.domain.entities import DuplicateCandidate, RemovalSummary
from spotkeeper.domain.exceptions import PlaylistRemovalError, PlaylistScanError
from spotkeeper.domain.ports import ISpotifyClient


def track(
    uri: str,
    name: str = "Song",
    artist: str = "Artist",
    duration_ms: int | None = 200_000,
    is_local: bool = False,
) -> dict[str, Any]:
    return {
        "is_local": is_local,
        "track": {
            "type": "track",
            "uri": uri,
            "name": name,
            "artists": [{"name": artist}],
            "duration_ms": duration_ms,
        },
    }


def episode(uri: str, name: str, show: str, duration_ms: int = 1_800_000) -> dict[str, Any]:
    return {
        "track": {
            "type": "episode",
            "uri": uri,
            "name": name,
            "show": {"name": show},
            "duration_ms": duration_ms,
        }
    }


def page(items: list[Any], offset: int = 0, total: int | None = None) -> dict[str, Any]:
    return {"items": items, "offset": offset, "total": total, "next": None}


A = track("spotify:track:a", name="Eclipse", artist="Pink Floyd", duration_ms=123_000)
B = track("spotify:track:b", name="Money", artist="Pink Floyd", duration_ms=382_000)
C = track("spotify:track:c", name="Time", artist="Pink Floyd", duration_ms=413_000)


def candidates(count: int) -> list[DuplicateCandidate]:
    return [DuplicateCandidate(uri=f"spotify:track:{i}", position=i) for i in range(count)]


@pytest.fixture
def client() -> AsyncMock:
    client = AsyncMock(spec=ISpotifyClient)
    client.get_playlist.return_value = {"snapshot_id": "snap-1"}
    client.remove_playlist_items.return_value = {"snapshot_id": "snap-2"}
    return client


@pytest.fixture
def token_provider() -> AsyncMock:
    return AsyncMock(return_value="access-token")


class TestDetectDuplicates:
    """Test the pure detection pass."""

    def test_positions_run_across_pages(self) -> None:
        pages = [page([A, B, A]), page([C, A], offset=3)]

        found, total = detect_duplicates(pages)

        assert [(c.uri, c.position) for c in found] == [
            ("spotify:track:a", 2),
            ("spotify:track:a", 4),
        ]
        assert total == 5

    def test_different_release_of_same_song_is_a_duplicate(self) -> None:
        single = track("spotify:track:single", name="Eclipse", duration_ms=363_000)
        album = track("spotify:track:album", name="Eclipse", duration_ms=368_500)

        found, _ = detect_duplicates([page([single, album])])

        assert found == [DuplicateCandidate(uri="spotify:track:album", position=1, name="Eclipse")]

    def test_same_title_different_length_is_kept(self) -> None:
        studio = track("spotify:track:studio", name="Eclipse", duration_ms=363_000)
        live = track("spotify:track:live", name="Eclipse", duration_ms=420_000)

        found, _ = detect_duplicates([page([studio, live])])

        assert found == []

    def test_null_items_count_towards_positions(self) -> None:
        removed_from_catalog = {"track": None}

        found, total = detect_duplicates([page([A, None, removed_from_catalog, A])])

        assert [c.position for c in found] == [3]
        assert total == 4

    def test_local_files_are_never_candidates(self) -> None:
        local = track("spotify:local:x", is_local=True)

        found, total = detect_duplicates([page([local, local, A])])

        assert found == []
        assert total == 3

    def test_episode_and_track_with_same_name_do_not_match(self) -> None:
        song = track("spotify:track:x", name="Intro", artist="Show", duration_ms=1_800_000)
        ep = episode("spotify:episode:x", name="Intro", show="Show")

        found, _ = detect_duplicates([page([song, ep])])

        assert found == []

    def test_each_later_occurrence_recorded_once(self) -> None:
        found, _ = detect_duplicates([page([A, A, A])])

        assert [c.position for c in found] == [1, 2]


class TestConstruction:
    """Test argument checks."""

    @pytest.mark.parametrize(
        "kwargs",
        [{"batch_size": 0}, {"batch_size": 101}, {"page_size": 0}, {"max_concurrent_pages": 0}],
    )
    def test_rejects_out_of_range_values(
        self, client: AsyncMock, token_provider: AsyncMock, kwargs: dict[str, int]
    ) -> None:
        with pytest.raises(ValueError):
            DuplicateResolver(client, token_provider, **kwargs)


class TestScan:
    """Test fetching and scanning a playlist."""

    async def test_sequential_scan_follows_next_links(
        self, client: AsyncMock, token_provider: AsyncMock
    ) -> None:
        client.get_playlist_items.return_value = page([A, B, A], total=5)
        client.get_next_page.side_effect = [page([C, A], offset=3, total=5), None]
        resolver = DuplicateResolver(client, token_provider, page_size=3)

        scan = await resolver.scan("pl-1")

        assert [c.position for c in scan.candidates] == [2, 4]
        assert scan.total_items == 5
        assert scan.snapshot_id == "snap-1"
        client.get_playlist.assert_awaited_once_with(
            "pl-1", "access-token", fields="snapshot_id"
        )
        assert client.get_next_page.await_count == 2

    async def test_concurrent_scan_merges_pages_in_order(
        self, client: AsyncMock, token_provider: AsyncMock
    ) -> None:
        first = page([A, B], offset=0, total=5)
        second = page([A, C], offset=2, total=5)
        third = page([A], offset=4, total=5)

        async def get_items(
            playlist_id: str, access_token: str, limit: int = 100, offset: int = 0
        ) -> dict[str, Any]:
            if offset == 2:
                # finish after the third page on purpose
                await asyncio.sleep(0.01)
                return second
            return first if offset == 0 else third

        client.get_playlist_items.side_effect = get_items
        resolver = DuplicateResolver(client, token_provider, page_size=2, max_concurrent_pages=4)

        scan = await resolver.scan("pl-1")

        assert [c.position for c in scan.candidates] == [2, 4]
        assert scan.total_items == 5
        client.get_next_page.assert_not_called()
        offsets = sorted(call.kwargs["offset"] for call in client.get_playlist_items.await_args_list)
        assert offsets == [0, 2, 4]

    async def test_sequential_and_concurrent_agree(
        self, client: AsyncMock, token_provider: AsyncMock
    ) -> None:
        pages = [page([A, B], 0, 4), page([A, C], 2, 4)]
        client.get_playlist_items.side_effect = lambda pid, token, limit=100, offset=0: pages[
            offset // 2
        ]
        client.get_next_page.side_effect = [pages[1], None]

        sequential = await DuplicateResolver(client, token_provider, page_size=2).scan("pl")
        concurrent = await DuplicateResolver(
            client, token_provider, page_size=2, max_concurrent_pages=3
        ).scan("pl")

        assert sequential.candidates == concurrent.candidates

    async def test_page_failure_raises_scan_error(
        self, client: AsyncMock, token_provider: AsyncMock
    ) -> None:
        client.get_playlist_items.return_value = page([A], total=2)
        client.get_next_page.side_effect = httpx.ConnectError("offline")
        resolver = DuplicateResolver(client, token_provider)

        with pytest.raises(PlaylistScanError) as exc_info:
            await resolver.scan("pl-1")

        assert exc_info.value.playlist_id == "pl-1"
        client.remove_playlist_items.assert_not_called()

    async def test_find_duplicates_returns_candidates(
        self, client: AsyncMock, token_provider: AsyncMock
    ) -> None:
        client.get_playlist_items.return_value = page([A, A], total=2)
        client.get_next_page.return_value = None
        resolver = DuplicateResolver(client, token_provider)

        found = await resolver.find_duplicates("pl-1")

        assert [c.position for c in found] == [1]


class TestRemoveDuplicates:
    """Test batched removal."""

    async def test_no_candidates_means_no_requests(
        self, client: AsyncMock, token_provider: AsyncMock
    ) -> None:
        resolver = DuplicateResolver(client, token_provider)

        summary = await resolver.remove_duplicates("pl-1", [])

        assert summary == RemovalSummary("pl-1", 0, 0, 0)
        assert not summary.found_duplicates
        client.remove_playlist_items.assert_not_called()
        token_provider.assert_not_called()

    async def test_batches_are_capped_and_carry_snapshot(
        self, client: AsyncMock, token_provider: AsyncMock
    ) -> None:
        resolver = DuplicateResolver(client, token_provider)

        summary = await resolver.remove_duplicates("pl-1", candidates(250), snapshot_id="snap-1")

        assert summary.removed_count == 250
        assert summary.batches_applied == summary.total_batches == 3
        sizes = [
            sum(len(entry["positions"]) for entry in call.args[1])
            for call in client.remove_playlist_items.await_args_list
        ]
        assert sizes == [100, 100, 50]
        for call in client.remove_playlist_items.await_args_list:
            assert call.kwargs["snapshot_id"] == "snap-1"

    async def test_failed_batch_stops_the_rest(
        self, client: AsyncMock, token_provider: AsyncMock
    ) -> None:
        client.remove_playlist_items.side_effect = [
            {"snapshot_id": "snap-2"},
            httpx.HTTPStatusError(
                "boom",
                request=httpx.Request("DELETE", "https://api.spotify.com/v1/playlists/pl-1/tracks"),
                response=httpx.Response(500),
            ),
            {"snapshot_id": "snap-4"},
        ]
        applied: list[RemovalSummary] = []
        resolver = DuplicateResolver(client, token_provider)

        with pytest.raises(PlaylistRemovalError) as exc_info:
            await resolver.remove_duplicates(
                "pl-1", candidates(250), on_batch_applied=applied.append
            )

        error = exc_info.value
        assert error.batches_applied == 1
        assert error.removed_count == 100
        assert error.total_batches == 3
        assert client.remove_playlist_items.await_count == 2
        assert [s.batches_applied for s in applied] == [1]

    async def test_each_batch_gets_a_fresh_token(
        self, client: AsyncMock
    ) -> None:
        token_provider = AsyncMock(side_effect=["t1", "t2"])
        resolver = DuplicateResolver(client, token_provider, batch_size=2)

        await resolver.remove_duplicates("pl-1", candidates(3))

        tokens = [call.args[2] for call in client.remove_playlist_items.await_args_list]
        assert tokens == ["t1", "t2"]

    async def test_cancellation_after_a_batch_is_logged(
        self,
        client: AsyncMock,
        token_provider: AsyncMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        release = asyncio.Event()
        calls = 0

        async def remove(*args: Any, **kwargs: Any) -> dict[str, Any]:
            nonlocal calls
            calls += 1
            if calls == 2:
                await release.wait()
            return {"snapshot_id": "snap"}

        client.remove_playlist_items.side_effect = remove
        resolver = DuplicateResolver(client, token_provider, batch_size=1)

        with caplog.at_level(logging.WARNING):
            task = asyncio.create_task(resolver.remove_duplicates("pl-1", candidates(3)))
            while calls < 2:
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert "cancelled after 1 of 3 batches" in caplog.text
