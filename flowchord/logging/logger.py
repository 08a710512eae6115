"""Rich console logger for workflow runs."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from rich.console import Console
from rich.markup import escape


class LogLevel(str, Enum):
    """Log levels, lowest first."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _RANKS[self]


_RANKS = {LogLevel.DEBUG: 0, LogLevel.INFO: 1, LogLevel.WARNING: 2, LogLevel.ERROR: 3}

_LEVEL_STYLES = {
    LogLevel.DEBUG: "dim",
    LogLevel.INFO: "blue",
    LogLevel.WARNING: "yellow",
    LogLevel.ERROR: "red bold",
}


class FlowChordLogger:
    """Console view of what the engine is doing.

    Run logs (``LogEntry``) are the record of a run; this logger mirrors
    the interesting parts to a terminal. Run and node events have their
    own methods so their format stays consistent across the engine.

    Example:
        >>> logger = FlowChordLogger(level=LogLevel.DEBUG)
        >>> logger.node_start("fetch-1", "Fetch users")
        >>> logger.node_end("fetch-1", duration_ms=42, port="true")
    """

    def __init__(
        self,
        level: LogLevel = LogLevel.INFO,
        console: Console | None = None,
        show_timestamps: bool = True,
        show_level: bool = True,
        enabled: bool = True,
    ) -> None:
        """
        Args:
            level: Lowest level printed.
            console: Target console; a default stdout console if None.
            show_timestamps: Prefix lines with the wall-clock time.
            show_level: Prefix lines with the level name.
            enabled: Print nothing when False.
        """
        self._level = level
        self._console = console or Console()
        self._show_timestamps = show_timestamps
        self._show_level = show_level
        self._enabled = enabled

    @property
    def level(self) -> LogLevel:
        return self._level

    @level.setter
    def level(self, value: LogLevel) -> None:
        self._level = value

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value

    def _should_log(self, level: LogLevel) -> bool:
        return self._enabled and level.rank >= self._level.rank

    def _prefix(self, level: LogLevel) -> str:
        parts = []
        if self._show_timestamps:
            parts.append(f"[dim]{datetime.now():%H:%M:%S}[/]")
        if self._show_level:
            parts.append(f"[{_LEVEL_STYLES[level]}]{level.value.upper():7}[/]")
        return " ".join(parts)

    def _emit(self, level: LogLevel, body: str) -> None:
        if self._should_log(level):
            self._console.print(f"{self._prefix(level)} {body}")

    def _log(self, level: LogLevel, message: str, **context: Any) -> None:
        if context:
            fields = " ".join(f"[dim]{key}=[/]{escape(str(value))}" for key, value in context.items())
            message = f"{message} {fields}"
        self._emit(level, message)

    def debug(self, message: str, **context: Any) -> None:
        self._log(LogLevel.DEBUG, message, **context)

    def info(self, message: str, **context: Any) -> None:
        self._log(LogLevel.INFO, message, **context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(LogLevel.WARNING, message, **context)

    def error(self, message: str, **context: Any) -> None:
        self._log(LogLevel.ERROR, message, **context)

    # Run events

    def workflow_start(self, run_id: str, trigger_count: int, debug: bool = False) -> None:
        mode = " [magenta](debug)[/]" if debug else ""
        self._emit(
            LogLevel.INFO,
            f"[bold cyan]◆ Workflow[/] {escape(run_id)} starting with {trigger_count} trigger(s){mode}",
        )

    def workflow_end(self, run_id: str, state: str, duration_ms: int) -> None:
        """A failed run is logged at ERROR so it shows at any level."""
        level = LogLevel.ERROR if state == "failed" else LogLevel.INFO
        self._emit(level, f"[bold cyan]◆ Workflow[/] {escape(run_id)} {state} ({duration_ms}ms)")

    # Node events

    def node_start(self, node_id: str, label: str | None = None) -> None:
        self._emit(
            LogLevel.DEBUG,
            f"[bold blue]▶ {escape(label or node_id)}[/] [dim]({escape(node_id)})[/]",
        )

    def node_end(self, node_id: str, duration_ms: int, port: str | None = None) -> None:
        route = f" → {escape(port)}" if port else ""
        self._emit(LogLevel.INFO, f"[bold green]✓ {escape(node_id)}[/] completed ({duration_ms}ms){route}")

    def node_retry(self, node_id: str, attempt: int, delay_ms: int) -> None:
        self._emit(LogLevel.WARNING, f"  [yellow]↻ {escape(node_id)}[/] retry {attempt} in {delay_ms}ms")

    def node_error(self, node_id: str, error: str, attempts: int = 1) -> None:
        self._emit(
            LogLevel.ERROR,
            f"[bold red]✗ {escape(node_id)}[/] failed after {attempts} attempt(s): {escape(error)}",
        )

    # Calls made from inside AI nodes

    def llm_call(self, model: str, tokens: int, duration_ms: int) -> None:
        self._emit(LogLevel.DEBUG, f"  [dim]LLM:[/] {escape(model)} | {tokens:,} tokens | {duration_ms}ms")

    def tool_call(self, tool_name: str, success: bool, duration_ms: int | None = None) -> None:
        status = "[green]✓[/]" if success else "[red]✗[/]"
        duration = f" ({duration_ms}ms)" if duration_ms else ""
        self._emit(LogLevel.DEBUG, f"  [dim]Tool:[/] {escape(tool_name)} {status}{duration}")
