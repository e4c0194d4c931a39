"""Domain value objects."""

from spotkeeper.domain.value_objects.item_matching import (
    durations_approximately_equal,
    is_probably_same,
    match_key,
)

__all__ = [
    "durations_approximately_equal",
    "is_probably_same",
    "match_key",
]
