"""Observability infrastructure for structured logging."""

from spotkeeper.infrastructure.observability.logging import (
    configure_logging,
    get_correlation_id,
    mask_secret,
    set_correlation_id,
)

__all__ = [
    "configure_logging",
    "get_correlation_id",
    "mask_secret",
    "set_correlation_id",
]
