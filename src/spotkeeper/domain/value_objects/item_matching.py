"""Probable-duplicate matching for playlist items.

Hey future me - this module decides whether two playlist entries are "probably the same"!
The same song often shows up twice under different URIs (single vs album release, regional
re-release, remaster uploaded as a new track). So URI equality alone misses most real
duplicates, and we fall back to comparing what a human would compare: title, artist
(or show, for podcast episodes) and roughly the same length.

Rules:
- Equal non-null URIs are always duplicates.
- Otherwise both items must be the same kind (track vs episode), with EXACTLY equal names
  and EXACTLY equal first artist / show names, AND approximately equal durations.
- Durations match if |d1 - d2| <= max(10s, 10% of the longer one).
- An unknown duration never matches. Removing a song the user wanted is much worse than
  leaving a duplicate in, so "both unknown" is NOT treated as equal.

Examples:
    >>> durations_approximately_equal(363_000, 368_500)
    True
    >>> durations_approximately_equal(363_000, 420_000)
    False
"""

from spotkeeper.domain.entities import PlaylistItemRecord

# =============================================================================
# DURATION TOLERANCE
# Absolute 10 seconds OR relative 10%, whichever is looser.
# =============================================================================

DURATION_ABSOLUTE_TOLERANCE_MS = 10_000
DURATION_RELATIVE_TOLERANCE = 0.10


def durations_approximately_equal(
    duration_1: int | None,
    duration_2: int | None,
    absolute_tolerance_ms: int = DURATION_ABSOLUTE_TOLERANCE_MS,
    relative_tolerance: float = DURATION_RELATIVE_TOLERANCE,
) -> bool:
    """Check whether two durations are close enough to be the same recording.

    Args:
        duration_1: First duration in milliseconds (None if unknown)
        duration_2: Second duration in milliseconds (None if unknown)
        absolute_tolerance_ms: Allowed difference in milliseconds
        relative_tolerance: Allowed difference as a fraction of the longer duration

    Returns:
        True if both are known and within tolerance
    """
    if duration_1 is None or duration_2 is None:
        return False
    tolerance = max(absolute_tolerance_ms, relative_tolerance * max(duration_1, duration_2))
    return abs(duration_1 - duration_2) <= tolerance


def match_key(item: PlaylistItemRecord) -> tuple[str, str, str | None]:
    """Exact-match part of the fuzzy rule: kind, name, first artist or show.

    Items with different keys can never be fuzzy duplicates, so callers can bucket
    previously seen items by this key instead of comparing against all of them.
    """
    return (item.kind.value, item.name, item.primary_artist_or_show_name)


def is_probably_same(item: PlaylistItemRecord, other: PlaylistItemRecord) -> bool:
    """Check whether two playlist items probably represent the same content."""
    if item.uri is not None and item.uri == other.uri:
        return True
    if match_key(item) != match_key(other):
        return False
    return durations_approximately_equal(item.duration_ms, other.duration_ms)


__all__ = [
    "DURATION_ABSOLUTE_TOLERANCE_MS",
    "DURATION_RELATIVE_TOLERANCE",
    "durations_approximately_equal",
    "is_probably_same",
    "match_key",
]
