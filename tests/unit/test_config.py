"""Unit tests for engine settings and run options."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from flowchord.core.config import EngineSettings, RunOptions, get_settings


class TestEngineSettings:
    """Tests for EngineSettings."""

    def test_defaults(self) -> None:
        """Defaults should match the documented limits."""
        settings = EngineSettings()

        assert settings.max_loop_iterations == 10000
        assert settings.default_loop_iterations == 100
        assert settings.max_subworkflow_depth == 5
        assert settings.max_tool_iterations == 10
        assert settings.max_tool_iterations_cap == 25
        assert settings.default_node_timeout == 60.0
        assert settings.ai_node_timeout == 300.0
        assert settings.approval_timeout == 0.0
        assert settings.max_log_entries == 1000

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """FLOWCHORD_* variables should override defaults."""
        monkeypatch.setenv("FLOWCHORD_MAX_LOOP_ITERATIONS", "50")
        monkeypatch.setenv("FLOWCHORD_AI_NODE_TIMEOUT", "12.5")

        settings = EngineSettings()

        assert settings.max_loop_iterations == 50
        assert settings.ai_node_timeout == 12.5

    def test_validation(self) -> None:
        """Out-of-range values should be rejected."""
        with pytest.raises(ValidationError):
            EngineSettings(max_loop_iterations=0)
        with pytest.raises(ValidationError):
            EngineSettings(temperature=3.0)

    def test_get_settings_cached(self) -> None:
        """get_settings should return the same instance."""
        get_settings.cache_clear()

        assert get_settings() is get_settings()


class TestRunOptions:
    """Tests for RunOptions."""

    def test_defaults(self) -> None:
        """A plain run is top level and not stepped."""
        options = RunOptions()

        assert options.debug is False
        assert options.depth == 0
        assert options.workflow_id is None
        assert options.parallel_branches is False

    def test_negative_depth(self) -> None:
        """Depth cannot be negative."""
        with pytest.raises(ValidationError):
            RunOptions(depth=-1)
