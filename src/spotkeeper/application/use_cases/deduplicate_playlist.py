"""Use case for removing probable duplicates from one playlist.

Hey future me - this is the "Remove Duplicates" button! It glues scan + removal together and turns
the outcome into the alert the user sees:

- "<name> does not have any duplicates"
- "Removed N duplicates from <name>"
- "Couldn't check for duplicates for <name>"   (scan failed, nothing removed)
- "Couldn't remove duplicates from <name>"     (a batch failed, maybe after others succeeded)

DeduplicatePlaylistUseCase is stateless. PlaylistDeduplicator wraps it for ONE playlist and keeps the
observable bits a UI binds to: is_deduplicating (always reset, also on cancellation), total_items
(shrinks by the removed count) and last_summary (survives partial failures and cancellation).
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from spotkeeper.application.services.alerts import alert_for_exception
from spotkeeper.application.services.duplicate_resolver import DuplicateResolver
from spotkeeper.application.use_cases import UseCase
from spotkeeper.domain.entities import AlertItem, DuplicateScan, RemovalSummary
from spotkeeper.domain.exceptions import (
    DomainException,
    PlaylistRemovalError,
    PlaylistScanError,
)
from spotkeeper.infrastructure.observability.logging import set_correlation_id

logger = logging.getLogger(__name__)


@dataclass
class DeduplicatePlaylistRequest:
    """Request to deduplicate one playlist."""

    playlist_id: str
    playlist_name: str
    on_progress: Callable[[RemovalSummary], None] | None = None


@dataclass
class DeduplicatePlaylistResponse:
    """Outcome of a deduplication run.

    summary is None when the scan failed (nothing was touched).
    """

    alert: AlertItem
    scan: DuplicateScan | None = None
    summary: RemovalSummary | None = None
    error: DomainException | None = None

    @property
    def success(self) -> bool:
        return self.error is None


def _duplicates_removed_title(count: int, playlist_name: str) -> str:
    noun = "duplicate" if count == 1 else "duplicates"
    return f"Removed {count} {noun} from {playlist_name}"


class DeduplicatePlaylistUseCase(
    UseCase[DeduplicatePlaylistRequest, DeduplicatePlaylistResponse]
):
    """Scan a playlist and remove every probable duplicate."""

    def __init__(self, resolver: DuplicateResolver) -> None:
        self._resolver = resolver

    # Listen up, scan and removal failures are turned into a response with an alert instead of
    # propagating - the caller is a button handler that shows alerts. Token problems (not logged in,
    # refresh failed) ride the same path. Cancellation is NOT caught: it propagates as always.
    async def execute(self, request: DeduplicatePlaylistRequest) -> DeduplicatePlaylistResponse:
        set_correlation_id()
        name = request.playlist_name
        logger.info("Deduplicating playlist %s (%s)", name, request.playlist_id)

        try:
            scan = await self._resolver.scan(request.playlist_id)
        except DomainException as e:
            logger.warning("Couldn't check %s for duplicates: %s", request.playlist_id, e.message)
            scan_error = (
                e
                if isinstance(e, PlaylistScanError)
                else PlaylistScanError(e.message, request.playlist_id)
            )
            return DeduplicatePlaylistResponse(
                alert=alert_for_exception(scan_error, name), error=e
            )

        if not scan.candidates:
            return DeduplicatePlaylistResponse(
                alert=AlertItem(title=f"{name} does not have any duplicates"),
                scan=scan,
                summary=RemovalSummary(
                    playlist_id=request.playlist_id,
                    removed_count=0,
                    batches_applied=0,
                    total_batches=0,
                ),
            )

        try:
            summary = await self._resolver.remove_duplicates(
                request.playlist_id,
                scan.candidates,
                snapshot_id=scan.snapshot_id,
                on_batch_applied=request.on_progress,
            )
        except PlaylistRemovalError as e:
            partial = RemovalSummary(
                playlist_id=request.playlist_id,
                removed_count=e.removed_count,
                batches_applied=e.batches_applied,
                total_batches=e.total_batches,
            )
            return DeduplicatePlaylistResponse(
                alert=alert_for_exception(e, name), scan=scan, summary=partial, error=e
            )

        return DeduplicatePlaylistResponse(
            alert=AlertItem(title=_duplicates_removed_title(summary.removed_count, name)),
            scan=scan,
            summary=summary,
        )


class PlaylistDeduplicator:
    """Per-playlist deduplication state for a UI to observe."""

    def __init__(
        self,
        resolver: DuplicateResolver,
        playlist_id: str,
        playlist_name: str,
        total_items: int = 0,
    ) -> None:
        self._use_case = DeduplicatePlaylistUseCase(resolver)
        self.playlist_id = playlist_id
        self.playlist_name = playlist_name
        self.total_items = total_items
        self.is_deduplicating = False
        self.last_summary: RemovalSummary | None = None

    def _record_progress(self, summary: RemovalSummary) -> None:
        self.last_summary = summary

    async def find_and_remove_duplicates(self) -> AlertItem:
        """Run a full deduplication and return the alert to show.

        Raises:
            RuntimeError: If a run for this playlist is already in progress
        """
        if self.is_deduplicating:
            raise RuntimeError(f"Already deduplicating {self.playlist_name}")

        baseline = self.total_items
        self.is_deduplicating = True
        self.last_summary = None
        try:
            response = await self._use_case.execute(
                DeduplicatePlaylistRequest(
                    playlist_id=self.playlist_id,
                    playlist_name=self.playlist_name,
                    on_progress=self._record_progress,
                )
            )
        finally:
            # Also runs on cancellation, so a partial removal still shows up in the count
            self.is_deduplicating = False
            removed = self.last_summary.removed_count if self.last_summary else 0
            self.total_items = max(0, baseline - removed)

        if response.summary is not None:
            self.last_summary = response.summary
        if response.scan is not None:
            removed = self.last_summary.removed_count if self.last_summary else 0
            self.total_items = max(0, response.scan.total_items - removed)
        return response.alert
