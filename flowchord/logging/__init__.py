"""Logging module for FlowChord.

Provides structured logging with Rich console support.
"""

from flowchord.logging.logger import LogLevel, FlowChordLogger
from flowchord.logging.config import (
    configure_logging,
    disable_logging,
    enable_logging,
    get_logger,
)

__all__ = [
    "LogLevel",
    "FlowChordLogger",
    "get_logger",
    "configure_logging",
    "disable_logging",
    "enable_logging",
]
