"""Unit tests for Logging module."""

from __future__ import annotations

from io import StringIO

from rich.console import Console

from flowchord.logging.config import (
    configure_logging,
    disable_logging,
    enable_logging,
    get_logger,
)
from flowchord.logging.logger import FlowChordLogger, LogLevel


def _capture(**kwargs: object) -> tuple[FlowChordLogger, StringIO]:
    output = StringIO()
    console = Console(file=output, color_system=None, width=200)
    return FlowChordLogger(console=console, **kwargs), output


class TestLogLevel:
    """Tests for LogLevel."""

    def test_level_ranking(self) -> None:
        """Levels should have correct rank order."""
        assert LogLevel.DEBUG.rank < LogLevel.INFO.rank
        assert LogLevel.INFO.rank < LogLevel.WARNING.rank
        assert LogLevel.WARNING.rank < LogLevel.ERROR.rank


class TestFlowChordLogger:
    """Tests for FlowChordLogger."""

    def test_default_creation(self) -> None:
        """Should create with defaults."""
        logger = FlowChordLogger()

        assert logger.level == LogLevel.INFO
        assert logger.enabled is True

    def test_level_filtering(self) -> None:
        """Should filter messages below level."""
        logger, output = _capture(level=LogLevel.WARNING)

        logger.debug("Debug message")
        logger.info("Info message")
        logger.warning("Warning message")

        result = output.getvalue()
        assert "Debug message" not in result
        assert "Info message" not in result
        assert "Warning message" in result

    def test_disabled_logging(self) -> None:
        """Should not log when disabled."""
        logger, output = _capture(enabled=False)

        logger.info("Should not appear")
        logger.node_error("n1", "boom")

        assert output.getvalue() == ""

    def test_context_fields(self) -> None:
        """Keyword context should be appended as key=value."""
        logger, output = _capture(show_timestamps=False)

        logger.info("Fetched", node="http-1")

        assert "node=http-1" in output.getvalue()

    def test_workflow_lifecycle(self) -> None:
        """Run start and end should name the run."""
        logger, output = _capture()

        logger.workflow_start("run-42", trigger_count=2, debug=True)
        logger.workflow_end("run-42", "completed", duration_ms=150)

        result = output.getvalue()
        assert "run-42 starting with 2 trigger(s)" in result
        assert "(debug)" in result
        assert "run-42 completed (150ms)" in result

    def test_failed_run_logged_as_error(self) -> None:
        """A failed run should still show when only errors are displayed."""
        logger, output = _capture(level=LogLevel.ERROR)

        logger.workflow_end("run-1", "completed", duration_ms=5)
        logger.workflow_end("run-2", "failed", duration_ms=5)

        result = output.getvalue()
        assert "run-1" not in result
        assert "run-2 failed" in result

    def test_node_events(self) -> None:
        """Node completion, retry and failure should be logged."""
        logger, output = _capture()

        logger.node_start("fetch", "Fetch users")
        logger.node_end("fetch", duration_ms=12, port="true")
        logger.node_retry("fetch", attempt=1, delay_ms=500)
        logger.node_error("fetch", "503 Service Unavailable", attempts=3)

        result = output.getvalue()
        assert "Fetch users" not in result
        assert "fetch completed (12ms) → true" in result
        assert "retry 1 in 500ms" in result
        assert "failed after 3 attempt(s): 503 Service Unavailable" in result

    def test_debug_events(self) -> None:
        """Dispatch, LLM and tool events are debug level."""
        logger, output = _capture(level=LogLevel.DEBUG)

        logger.node_start("fetch", "Fetch users")
        logger.llm_call("mock-model", tokens=1500, duration_ms=200)
        logger.tool_call("Calculator", success=False, duration_ms=50)

        result = output.getvalue()
        assert "Fetch users" in result
        assert "mock-model | 1,500 tokens | 200ms" in result
        assert "Calculator ✗ (50ms)" in result

    def test_enable_disable(self) -> None:
        """Should toggle enabled state."""
        logger = FlowChordLogger()

        logger.enabled = False
        assert logger.enabled is False

        logger.enabled = True
        assert logger.enabled is True


class TestLoggingConfig:
    """Tests for logging configuration."""

    def test_get_logger_singleton(self) -> None:
        """get_logger should return a valid logger."""
        assert isinstance(get_logger(), FlowChordLogger)

    def test_configure_logging(self) -> None:
        """Should configure global logger."""
        logger = configure_logging(level="debug", show_timestamps=False)

        assert logger.level == LogLevel.DEBUG
        assert get_logger() is logger

    def test_disable_enable_logging(self) -> None:
        """Should disable and enable logging."""
        configure_logging()

        disable_logging()
        assert get_logger().enabled is False

        enable_logging()
        assert get_logger().enabled is True
