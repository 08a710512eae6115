"""Process-wide logger used by the engine and the AI nodes."""

from __future__ import annotations

from typing import Any

from flowchord.logging.logger import FlowChordLogger, LogLevel

_logger: FlowChordLogger | None = None


def get_logger() -> FlowChordLogger:
    """Shared logger, created on first use at ``FLOWCHORD_LOG_LEVEL``."""
    global _logger
    if _logger is None:
        from flowchord.core.config import get_settings

        _logger = FlowChordLogger(level=LogLevel(get_settings().log_level.lower()))
    return _logger


def configure_logging(
    level: LogLevel | str = LogLevel.INFO,
    enabled: bool = True,
    show_timestamps: bool = True,
    show_level: bool = True,
    **kwargs: Any,
) -> FlowChordLogger:
    """Replace the shared logger.

    Engines created afterwards without an explicit ``logger`` use it.

    Args:
        level: Lowest level printed, as a LogLevel or its name.
        enabled: Print nothing when False.
        show_timestamps: Prefix lines with the time.
        show_level: Prefix lines with the level name.
        **kwargs: Passed to FlowChordLogger (e.g. ``console``).

    Example:
        >>> configure_logging(level="debug", show_timestamps=False)
        >>> engine = ExecutionEngine()
    """
    global _logger
    _logger = FlowChordLogger(
        level=LogLevel(level.lower()) if isinstance(level, str) else level,
        enabled=enabled,
        show_timestamps=show_timestamps,
        show_level=show_level,
        **kwargs,
    )
    return _logger


def disable_logging() -> None:
    get_logger().enabled = False


def enable_logging() -> None:
    get_logger().enabled = True
