"""FlowChord exception hierarchy.

All exceptions inherit from FlowChordError for easy catching.
Each exception includes a `retryable` flag to indicate if the node that raised
it can be re-executed by the engine's retry policy.
"""

from __future__ import annotations


class FlowChordError(Exception):
    """Base exception for all FlowChord errors."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


# Configuration Errors
class ConfigError(FlowChordError):
    """Malformed node or engine configuration. Fatal to the node."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=False)


class InvalidConfigError(ConfigError):
    """Invalid configuration value."""

    def __init__(self, field: str, value: object, reason: str) -> None:
        super().__init__(f"Invalid config for '{field}': {value!r}. {reason}")
        self.field = field
        self.value = value


class WorkflowValidationError(ConfigError):
    """Workflow graph violates a structural invariant."""

    def __init__(self, message: str, *, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]


class UnknownNodeTypeError(ConfigError):
    """Node type tag has no registered executor."""

    def __init__(self, node_type: str) -> None:
        super().__init__(f"No executor found for node type '{node_type}'")
        self.node_type = node_type


# External Call Errors
class ExternalCallError(FlowChordError):
    """Tool, HTTP or model call failed. Can be retried with backoff."""

    def __init__(
        self,
        message: str,
        *,
        source: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, retryable=True)
        self.source = source
        self.status_code = status_code


class TimeoutError(ExternalCallError):
    """Node, tool or sandbox timed out. Retried like any external failure."""

    def __init__(
        self,
        message: str,
        *,
        timeout_seconds: float,
        source: str | None = None,
    ) -> None:
        super().__init__(message, source=source)
        self.timeout_seconds = timeout_seconds


# Bound Errors
class BoundExceededError(FlowChordError):
    """A loop, recursion or iteration cap was hit. Fatal to the branch."""

    def __init__(self, message: str, *, limit: int) -> None:
        super().__init__(message, retryable=False)
        self.limit = limit


class LoopBoundExceededError(BoundExceededError):
    """Loop requested more iterations than the hard ceiling allows."""

    def __init__(self, requested: int, limit: int) -> None:
        super().__init__(
            f"Loop requested {requested} iterations, "
            f"exceeding the maximum of {limit}",
            limit=limit,
        )
        self.requested = requested


class RecursionDepthExceededError(BoundExceededError):
    """Sub-workflow nesting went deeper than allowed."""

    def __init__(self, depth: int, limit: int, *, workflow_id: str | None = None) -> None:
        target = f" while starting '{workflow_id}'" if workflow_id else ""
        super().__init__(
            f"Sub-workflow depth {depth} exceeds maximum of {limit}{target}",
            limit=limit,
        )
        self.depth = depth
        self.workflow_id = workflow_id


# Expression Errors
class ExpressionError(FlowChordError):
    """Base class for template expression errors."""

    def __init__(self, message: str, *, expression: str | None = None) -> None:
        super().__init__(message, retryable=False)
        self.expression = expression


class UnsafeExpressionError(ExpressionError):
    """Expression matched the denylist and was never evaluated."""


class UnknownIdentifierError(ExpressionError):
    """Expression referenced a name that is not in scope."""

    def __init__(self, name: str, *, expression: str | None = None) -> None:
        super().__init__(f"Unknown identifier: {name}", expression=expression)
        self.name = name


class ExpressionSyntaxError(ExpressionError):
    """Expression could not be tokenized or parsed."""


# Sandbox Errors
class SandboxError(FlowChordError):
    """Base class for sandboxed code execution errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=False)


class UnsafePatternError(SandboxError):
    """Code matched a denylisted pattern and was never executed."""

    def __init__(self, pattern: str) -> None:
        super().__init__(f"Code contains blocked pattern: {pattern}")
        self.pattern = pattern


class SandboxViolationError(SandboxError):
    """Code touched a blocked global."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Access to '{name}' is not allowed in sandboxed code")
        self.name = name


class SandboxRuntimeError(SandboxError):
    """Code raised while running. Message is sanitized."""

    def __init__(self, message: str, *, error_type: str | None = None) -> None:
        super().__init__(message)
        self.error_type = error_type


# Workflow Errors
class WorkflowError(FlowChordError):
    """Base class for workflow run errors."""

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message, retryable=retryable)


class WorkflowAlreadyRunningError(WorkflowError):
    """execute() was called while a run is in progress."""

    def __init__(self) -> None:
        super().__init__("Workflow is already running")


class NoTriggerNodeError(WorkflowError):
    """Workflow has no trigger node to start from."""

    def __init__(self) -> None:
        super().__init__(
            "No trigger node found. Add a trigger to start the workflow."
        )


class WorkflowStoppedError(WorkflowError):
    """Run was stopped while a node was waiting."""

    def __init__(self) -> None:
        super().__init__("Workflow was stopped")


class NodeExecutionError(WorkflowError):
    """Node failed after all attempts."""

    def __init__(
        self,
        message: str,
        *,
        node_id: str,
        attempts: int = 1,
    ) -> None:
        super().__init__(message, retryable=False)
        self.node_id = node_id
        self.attempts = attempts
