"""Configuration for the FlowChord engine.

Engine-wide limits come from environment variables (prefix ``FLOWCHORD_``)
through pydantic-settings. Per-run switches live on :class:`RunOptions`.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Engine settings loaded from environment variables.

    Example:
        >>> settings = EngineSettings(max_loop_iterations=500)
        >>> settings.ai_node_timeout
        300.0
    """

    model_config = SettingsConfigDict(env_prefix="FLOWCHORD_", case_sensitive=False)

    # Control flow limits
    max_loop_iterations: int = Field(default=10000, gt=0)
    default_loop_iterations: int = Field(default=100, gt=0)
    max_subworkflow_depth: int = Field(default=5, ge=0)

    # Agent
    max_tool_iterations: int = Field(default=10, gt=0)
    max_tool_iterations_cap: int = Field(default=25, gt=0)
    max_tokens: int = Field(default=2000, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    critic_max_iterations: int = Field(default=2, ge=0)
    evaluator_max_retries: int = Field(default=3, ge=0)

    # Timeouts (seconds)
    default_node_timeout: float = Field(default=60.0, gt=0)
    ai_node_timeout: float = Field(default=300.0, gt=0)
    sandbox_timeout: float = Field(default=30.0, gt=0)
    sandbox_max_sleep: float = Field(default=30.0, ge=0)
    http_timeout: float = Field(default=30.0, gt=0)
    approval_timeout: float = Field(default=0.0, ge=0)

    # Retry
    default_retry_delay_ms: int = Field(default=1000, gt=0)
    max_retry_delay_ms: int = Field(default=60000, gt=0)

    # Logging
    log_level: str = "info"
    max_log_entries: int = Field(default=1000, gt=0)
    output_preview_length: int = Field(default=100, gt=0)


@lru_cache
def get_settings() -> EngineSettings:
    """Get cached engine settings."""
    return EngineSettings()


class RunOptions(BaseModel):
    """Per-run options passed to ``ExecutionEngine.execute``.

    Example:
        >>> options = RunOptions(debug=True)
    """

    debug: bool = Field(default=False, description="Suspend before every node dispatch")
    depth: int = Field(default=0, ge=0, description="Sub-workflow nesting depth")
    workflow_id: str | None = Field(default=None, description="Id reported as $workflow.id")
    parallel_branches: bool = Field(
        default=False, description="Gather fan-out children concurrently instead of in edge order"
    )
