"""Duplicate Resolver - finds and removes probable duplicates from one playlist.

Hey future me - two phases, and they have VERY different failure rules:

SCAN (scan / find_duplicates):
- Fetch every page of the playlist, in page order (sequential `next` following, or bounded
  concurrent offset fetches that are merged back in page order before anything else happens).
- Positions are a running counter across ALL pages. Never reset per page, the removal request
  addresses items by absolute position!
- Null items (removed from Spotify's catalog) still occupy a position, they're just not compared.
- Any page failure aborts the scan with PlaylistScanError. Nothing gets removed on a partial scan.

REMOVE (remove_duplicates):
- Candidates are cut into ordered batches of at most 100 (Spotify's per-request limit).
- Batches go out STRICTLY one after another, each carrying the snapshot_id captured by the scan.
  Spotify resolves positions against that snapshot even after earlier batches changed the playlist.
- The first failing batch stops everything. PlaylistRemovalError tells the caller how many batches
  were applied, because those items are really gone.
- No automatic retries here; the HTTP client already handles 429s.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from spotkeeper.config.settings import SPOTIFY_MAX_ITEMS_PER_REQUEST
from spotkeeper.domain.entities import (
    DuplicateBatch,
    DuplicateCandidate,
    DuplicateScan,
    PlaylistItemRecord,
    RemovalSummary,
)
from spotkeeper.domain.exceptions import (
    DomainException,
    PlaylistRemovalError,
    PlaylistScanError,
)
from spotkeeper.domain.ports import ISpotifyClient
from spotkeeper.domain.value_objects.item_matching import is_probably_same, match_key

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Awaitable[str]]


def detect_duplicates(
    pages: list[dict[str, Any]],
) -> tuple[list[DuplicateCandidate], int]:
    """Walk merged pages in order and collect every later occurrence of an item.

    Args:
        pages: Spotify paging objects, already in page order

    Returns:
        Tuple of (candidates in playlist order, number of playlist entries seen)
    """
    candidates: list[DuplicateCandidate] = []
    seen_uris: set[str] = set()
    # Fuzzy matches need an equal (kind, name, artist/show) key, so bucket by it
    seen_by_key: dict[tuple[str, str, str | None], list[PlaylistItemRecord]] = {}
    position = 0

    for page in pages:
        for raw in page.get("items") or []:
            record = PlaylistItemRecord.from_spotify(raw, position) if raw else None
            position += 1
            if record is None or not record.is_eligible:
                continue

            uri = record.uri or ""
            key = match_key(record)
            bucket = seen_by_key.setdefault(key, [])
            if uri in seen_uris or any(is_probably_same(record, seen) for seen in bucket):
                candidates.append(
                    DuplicateCandidate(uri=uri, position=record.position, name=record.name)
                )

            seen_uris.add(uri)
            bucket.append(record)

    return candidates, position


class DuplicateResolver:
    """Scans a playlist for probable duplicates and removes them in batches."""

    def __init__(
        self,
        client: ISpotifyClient,
        token_provider: TokenProvider,
        *,
        page_size: int = SPOTIFY_MAX_ITEMS_PER_REQUEST,
        batch_size: int = SPOTIFY_MAX_ITEMS_PER_REQUEST,
        max_concurrent_pages: int = 1,
    ) -> None:
        """Initialize the resolver.

        Args:
            client: Spotify client for page fetches and removals
            token_provider: Coroutine function returning a usable access token
                (usually AuthSessionManager.access_token)
            page_size: Items per page request (max 100)
            batch_size: Positions per removal request (max 100)
            max_concurrent_pages: 1 follows `next` links one by one, more
                fetches the remaining pages by offset in parallel
        """
        if not 1 <= batch_size <= SPOTIFY_MAX_ITEMS_PER_REQUEST:
            raise ValueError(f"batch_size must be between 1 and {SPOTIFY_MAX_ITEMS_PER_REQUEST}")
        if not 1 <= page_size <= SPOTIFY_MAX_ITEMS_PER_REQUEST:
            raise ValueError(f"page_size must be between 1 and {SPOTIFY_MAX_ITEMS_PER_REQUEST}")
        if max_concurrent_pages < 1:
            raise ValueError("max_concurrent_pages must be at least 1")
        self._client = client
        self._token_provider = token_provider
        self._page_size = page_size
        self._batch_size = batch_size
        self._max_concurrent_pages = max_concurrent_pages

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    async def _fetch_pages_sequentially(
        self, first_page: dict[str, Any]
    ) -> list[dict[str, Any]]:
        pages = [first_page]
        page: dict[str, Any] | None = first_page
        while page is not None:
            page = await self._client.get_next_page(page, await self._token_provider())
            if page is not None:
                pages.append(page)
        return pages

    # Hey future me - gather() returns results in ARGUMENT order, not completion order, so the
    # pages come back sorted by offset no matter which request finished first.
    async def _fetch_pages_concurrently(
        self, playlist_id: str, first_page: dict[str, Any]
    ) -> list[dict[str, Any]]:
        total = int(first_page.get("total") or 0)
        offsets = range(self._page_size, total, self._page_size)
        semaphore = asyncio.Semaphore(self._max_concurrent_pages)

        async def fetch(offset: int) -> dict[str, Any]:
            async with semaphore:
                return await self._client.get_playlist_items(
                    playlist_id,
                    await self._token_provider(),
                    limit=self._page_size,
                    offset=offset,
                )

        tasks = [asyncio.create_task(fetch(offset)) for offset in offsets]
        try:
            rest = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
        return [first_page, *rest]

    async def scan(self, playlist_id: str) -> DuplicateScan:
        """Fetch the whole playlist and find every probable duplicate.

        Raises:
            PlaylistScanError: If the snapshot or any page couldn't be fetched
            NotAuthorizedError: If there is no authorized session
            TokenRefreshException: If the access token couldn't be refreshed
        """
        try:
            playlist = await self._client.get_playlist(
                playlist_id, await self._token_provider(), fields="snapshot_id"
            )
            first_page = await self._client.get_playlist_items(
                playlist_id, await self._token_provider(), limit=self._page_size, offset=0
            )
            if self._max_concurrent_pages > 1:
                pages = await self._fetch_pages_concurrently(playlist_id, first_page)
            else:
                pages = await self._fetch_pages_sequentially(first_page)
        except httpx.HTTPError as e:
            logger.error("Scanning playlist %s failed: %s", playlist_id, e)
            raise PlaylistScanError(
                f"Couldn't fetch the items of playlist {playlist_id}: {e}", playlist_id
            ) from e

        candidates, total_items = detect_duplicates(pages)
        logger.info(
            "Scanned playlist %s: %d items in %d page(s), %d duplicate(s)",
            playlist_id,
            total_items,
            len(pages),
            len(candidates),
        )
        return DuplicateScan(
            playlist_id=playlist_id,
            candidates=candidates,
            total_items=total_items,
            snapshot_id=playlist.get("snapshot_id"),
        )

    async def find_duplicates(self, playlist_id: str) -> list[DuplicateCandidate]:
        """Return the duplicate candidates of a playlist in playlist order."""
        return (await self.scan(playlist_id)).candidates

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def make_batches(self, candidates: list[DuplicateCandidate]) -> list[DuplicateBatch]:
        """Split candidates into ordered batches of at most batch_size."""
        return [
            DuplicateBatch(candidates=tuple(candidates[i : i + self._batch_size]))
            for i in range(0, len(candidates), self._batch_size)
        ]

    async def remove_duplicates(
        self,
        playlist_id: str,
        candidates: list[DuplicateCandidate],
        snapshot_id: str | None = None,
        on_batch_applied: Callable[[RemovalSummary], None] | None = None,
    ) -> RemovalSummary:
        """Remove candidates batch by batch, stopping at the first failure.

        Args:
            playlist_id: Spotify playlist ID
            candidates: Candidates from scan(), in playlist order
            snapshot_id: Snapshot the candidate positions refer to
            on_batch_applied: Called with the running summary after each
                applied batch

        Returns:
            Summary with the number of removed items

        Raises:
            PlaylistRemovalError: If a batch failed (carries batches_applied)
        """
        if not candidates:
            logger.info("Playlist %s has no duplicates, nothing to remove", playlist_id)
            return RemovalSummary(
                playlist_id=playlist_id, removed_count=0, batches_applied=0, total_batches=0
            )

        batches = self.make_batches(candidates)
        applied = 0
        removed = 0

        try:
            for number, batch in enumerate(batches, start=1):
                try:
                    await self._client.remove_playlist_items(
                        playlist_id,
                        batch.to_payload(),
                        await self._token_provider(),
                        snapshot_id=snapshot_id,
                    )
                except (httpx.HTTPError, DomainException) as e:
                    logger.error(
                        "Removal batch %d/%d for playlist %s failed: %s",
                        number,
                        len(batches),
                        playlist_id,
                        e,
                    )
                    raise PlaylistRemovalError(
                        f"Couldn't remove duplicates from playlist {playlist_id} "
                        f"({applied} of {len(batches)} batches applied): {e}",
                        playlist_id=playlist_id,
                        batches_applied=applied,
                        removed_count=removed,
                        total_batches=len(batches),
                    ) from e
                applied += 1
                removed += len(batch)
                if on_batch_applied is not None:
                    on_batch_applied(
                        RemovalSummary(
                            playlist_id=playlist_id,
                            removed_count=removed,
                            batches_applied=applied,
                            total_batches=len(batches),
                        )
                    )
                logger.debug(
                    "Removal batch %d/%d for playlist %s applied (%d items)",
                    number,
                    len(batches),
                    playlist_id,
                    len(batch),
                )
        except asyncio.CancelledError:
            if applied:
                logger.warning(
                    "Duplicate removal for playlist %s cancelled after %d of %d batches "
                    "(%d items already removed)",
                    playlist_id,
                    applied,
                    len(batches),
                    removed,
                )
            raise

        logger.info("Removed %d duplicate(s) from playlist %s", removed, playlist_id)
        return RemovalSummary(
            playlist_id=playlist_id,
            removed_count=removed,
            batches_applied=applied,
            total_batches=len(batches),
        )
