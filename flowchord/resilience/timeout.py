"""Timeout management implementation."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from flowchord.errors.exceptions import TimeoutError as NodeTimeoutError


T = TypeVar("T")


class Deadline:
    """Resettable deadline.

    Long-running nodes call :meth:`reset` (exposed to them as
    ``context.heartbeat()``) to push the deadline forward while they are
    still making progress.

    Example:
        >>> deadline = Deadline(60.0)
        >>> deadline.reset()
    """

    def __init__(self, timeout: float) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._timeout = timeout
        self._expires_at: float | None = None
        self._resets = 0

    @property
    def timeout(self) -> float:
        """Timeout window in seconds."""
        return self._timeout

    @property
    def resets(self) -> int:
        """Number of heartbeats received."""
        return self._resets

    def start(self) -> None:
        self._expires_at = asyncio.get_running_loop().time() + self._timeout

    def reset(self) -> None:
        """Restart the timeout window. No-op before the deadline is started."""
        if self._expires_at is None:
            return
        self._resets += 1
        self._expires_at = asyncio.get_running_loop().time() + self._timeout

    def remaining(self) -> float:
        if self._expires_at is None:
            return self._timeout
        return self._expires_at - asyncio.get_running_loop().time()


class TimeoutManager:
    """Timeout management for node execution.

    Supports a default timeout with per-node-type overrides. Slow node
    types (model inference, media generation) get a longer window.

    Example:
        >>> manager = TimeoutManager(
        ...     default_timeout=60.0,
        ...     per_type_timeouts={"aiAgent": 300.0},
        ... )
        >>> result = await manager.execute(run_node, node_type="aiAgent")
    """

    def __init__(
        self,
        default_timeout: float = 60.0,
        per_type_timeouts: dict[str, float] | None = None,
    ) -> None:
        """Initialize timeout manager.

        Args:
            default_timeout: Default timeout in seconds.
            per_type_timeouts: Node-type specific timeout overrides.
        """
        if default_timeout <= 0:
            raise ValueError("default_timeout must be positive")

        self._default_timeout = default_timeout
        self._per_type_timeouts: dict[str, float] = dict(per_type_timeouts or {})

    @property
    def default_timeout(self) -> float:
        """Default timeout in seconds."""
        return self._default_timeout

    def get_timeout(self, node_type: str | None = None) -> float:
        """Get timeout for a node type (None uses default)."""
        if node_type is None:
            return self._default_timeout
        return self._per_type_timeouts.get(node_type, self._default_timeout)

    def deadline_for(self, node_type: str | None = None, timeout: float | None = None) -> Deadline:
        """Create a deadline using an explicit timeout or the type default."""
        return Deadline(timeout if timeout is not None else self.get_timeout(node_type))

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        timeout: float | None = None,
        node_type: str | None = None,
        deadline: Deadline | None = None,
        **kwargs: Any,
    ) -> T:
        """Execute function with timeout protection.

        Args:
            func: Async function to execute.
            *args: Positional arguments.
            timeout: Explicit timeout (overrides type timeout).
            node_type: Node type for timeout lookup.
            deadline: Pre-built deadline, so the callee can reset it.
            **kwargs: Keyword arguments.

        Raises:
            TimeoutError: If execution times out.
        """
        if deadline is None:
            deadline = self.deadline_for(node_type, timeout)

        deadline.start()
        task = asyncio.ensure_future(func(*args, **kwargs))
        try:
            while True:
                remaining = deadline.remaining()
                if remaining <= 0:
                    raise NodeTimeoutError(
                        f"Timeout after {deadline.timeout}s"
                        + (f" for {node_type}" if node_type else ""),
                        timeout_seconds=deadline.timeout,
                        source=node_type,
                    )
                done, _ = await asyncio.wait({task}, timeout=remaining)
                if done:
                    return task.result()
        finally:
            if not task.done():
                task.cancel()
