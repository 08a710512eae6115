"""Restricted execution of user code snippets."""

from flowchord.sandbox.executor import (
    SandboxedCodeExecutor,
    check_code,
    sanitize_message,
    validate_code,
)

__all__ = [
    "SandboxedCodeExecutor",
    "check_code",
    "sanitize_message",
    "validate_code",
]
