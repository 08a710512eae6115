"""FlowChord errors."""

from flowchord.errors.exceptions import (
    BoundExceededError,
    ConfigError,
    ExpressionError,
    ExpressionSyntaxError,
    ExternalCallError,
    FlowChordError,
    InvalidConfigError,
    LoopBoundExceededError,
    NodeExecutionError,
    NoTriggerNodeError,
    RecursionDepthExceededError,
    SandboxError,
    SandboxRuntimeError,
    SandboxViolationError,
    TimeoutError,
    UnknownIdentifierError,
    UnknownNodeTypeError,
    UnsafeExpressionError,
    UnsafePatternError,
    WorkflowAlreadyRunningError,
    WorkflowError,
    WorkflowStoppedError,
    WorkflowValidationError,
)

__all__ = [
    "BoundExceededError",
    "ConfigError",
    "ExpressionError",
    "ExpressionSyntaxError",
    "ExternalCallError",
    "FlowChordError",
    "InvalidConfigError",
    "LoopBoundExceededError",
    "NodeExecutionError",
    "NoTriggerNodeError",
    "RecursionDepthExceededError",
    "SandboxError",
    "SandboxRuntimeError",
    "SandboxViolationError",
    "TimeoutError",
    "UnknownIdentifierError",
    "UnknownNodeTypeError",
    "UnsafeExpressionError",
    "UnsafePatternError",
    "WorkflowAlreadyRunningError",
    "WorkflowError",
    "WorkflowStoppedError",
    "WorkflowValidationError",
]
