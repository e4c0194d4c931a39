"""Structured logging configuration with JSON formatting and correlation IDs."""

import contextvars
import logging
import sys
import traceback
import uuid
from pathlib import Path
from typing import Any

from pythonjsonlogger.json import JsonFormatter

# Hey future me, the correlation ID ties together every log line of ONE logical operation - a dedup
# run or an authorization completion - even when several run concurrently. contextvars gives each
# asyncio task its own value, so concurrent dedup runs don't stomp on each other's IDs.
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)


def get_correlation_id() -> str:
    """Get the current correlation ID ("" if none is set)."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID in context.

    Args:
        correlation_id: Correlation ID to set. If None, generates a new UUID

    Returns:
        The correlation ID that was set
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    correlation_id_var.set(correlation_id)
    return correlation_id


# Yo, use this whenever a log line needs to identify a secret-ish value (OAuth state, token). It
# keeps a short prefix so two values can be told apart in logs, never the whole thing.
def mask_secret(value: str | None, visible: int = 8) -> str:
    """Return at most the first `visible` characters of a secret, followed by '...'."""
    if not value:
        return "<none>"
    return f"{value[:visible]}..."


class CorrelationIdFilter(logging.Filter):
    """Add correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id()
        return True


class CompactExceptionFormatter(logging.Formatter):
    """Formatter that prints exception chains compactly.

    Hey future me - instead of Python's "The above exception was the direct cause..." wall, each
    exception in the chain gets one ╰─► header line plus only the frames from OUR package. A failed
    removal batch then reads like:

    ERROR │ spotkeeper.application.services.duplicate_resolver:210 │ Removal batch 2/3 failed
    ╰─► HTTPStatusError: Server error '502 Bad Gateway'
        File "spotify_client.py", line 120, in _api_request
          response.raise_for_status()
    ╰─► PlaylistRemovalError: Couldn't remove duplicates (1 of 3 batches applied)
        File "duplicate_resolver.py", line 215, in remove_duplicates
          raise PlaylistRemovalError(
    """

    package_marker = "spotkeeper"

    def formatException(self, ei: Any) -> str:
        _exc_type, exc_value, _exc_tb = ei
        if exc_value is None:
            return ""

        # Root cause first
        chain: list[BaseException] = []
        current: BaseException | None = exc_value
        while current is not None and current not in chain:
            chain.append(current)
            current = current.__cause__ or current.__context__
        chain.reverse()

        lines: list[str] = []
        for exc in chain:
            lines.append(f"╰─► {exc.__class__.__name__}: {exc}")
            if exc.__traceback__ is None:
                continue
            for frame in traceback.extract_tb(exc.__traceback__):
                if "/site-packages/" in frame.filename:
                    continue
                if self.package_marker not in frame.filename:
                    continue
                lines.append(
                    f'    File "{Path(frame.filename).name}", line {frame.lineno}, in {frame.name}'
                )
                if frame.line:
                    lines.append(f"      {frame.line.strip()}")

        return "\n".join(lines)


class CustomJsonFormatter(JsonFormatter):
    """JSON formatter with location and correlation fields."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["function"] = record.funcName
        log_record["line"] = record.lineno

        correlation_id = getattr(record, "correlation_id", "")
        if correlation_id:
            log_record["correlation_id"] = correlation_id

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_record["stack_info"] = self.formatStack(record.stack_info)


# Listen future me, call this ONCE at startup (spotkeeper_session does it for you). It replaces the
# root logger's handlers, so calling it twice doesn't duplicate output. Library users embedding
# spotkeeper in their own app can skip it entirely and configure logging themselves.
def configure_logging(
    log_level: str = "INFO",
    json_format: bool = False,
    app_name: str = "spotkeeper",
) -> None:
    """Configure root logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format for logs
        app_name: Application name included in the startup log line
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.addFilter(CorrelationIdFilter())

    if json_format:
        formatter: logging.Formatter = CustomJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = CompactExceptionFormatter(
            fmt="%(asctime)s │ %(levelname)-7s │ %(name)s:%(lineno)d │ %(message)s",
            datefmt="%H:%M:%S",
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Third-party noise
    for noisy in ("httpx", "httpcore", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={"app_name": app_name, "log_level": log_level, "json_format": json_format},
    )


__all__ = [
    "CompactExceptionFormatter",
    "CorrelationIdFilter",
    "CustomJsonFormatter",
    "configure_logging",
    "get_correlation_id",
    "mask_secret",
    "set_correlation_id",
]
