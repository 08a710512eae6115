"""Retry policy for node dispatch."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from flowchord.errors.exceptions import FlowChordError


T = TypeVar("T")

RetryCallback = Callable[[int, float, Exception], Awaitable[None] | None]


class RetryPolicy:
    """Retries a failing coroutine with exponential backoff.

    A :class:`FlowChordError` is retried only when its ``retryable`` flag
    is set, so misconfigured nodes fail on the first attempt while HTTP
    5xx responses and timeouts get another try. Foreign exception types
    are retried when listed in ``retryable_errors``.

    Nodes build their policy with :meth:`for_node`; the engine passes an
    ``on_retry`` callback to log each wait.

    Example:
        >>> policy = RetryPolicy.for_node({"retries": 2, "retryDelay": 500})
        >>> output = await policy.execute(call_endpoint, url)
    """

    DEFAULT_RETRYABLE: tuple[type[Exception], ...] = (
        ConnectionError,
        asyncio.TimeoutError,
    )

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        retryable_errors: tuple[type[Exception], ...] | None = None,
        on_retry: RetryCallback | None = None,
    ) -> None:
        """
        Args:
            max_retries: Attempts after the first one.
            base_delay: First wait, in seconds. Each later wait doubles.
            max_delay: Upper bound on any single wait, in seconds.
            retryable_errors: Non-FlowChord exception types worth retrying.
            on_retry: ``(attempt, delay, error)`` hook, sync or async,
                called before each wait.
        """
        if max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if max_delay < base_delay:
            raise ValueError("max_delay must be >= base_delay")

        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._retryable_errors = retryable_errors or self.DEFAULT_RETRYABLE
        self._on_retry = on_retry

    @classmethod
    def for_node(
        cls,
        data: dict[str, Any],
        *,
        default_delay_ms: int = 1000,
        max_delay_ms: int = 60000,
        on_retry: RetryCallback | None = None,
    ) -> RetryPolicy:
        """Policy for a node's ``retries`` and ``retryDelay`` (ms) settings.

        Waits start at ``retryDelay`` and double. A node without
        ``retries`` runs once.
        """
        retries = int(data.get("retries") or 0)
        delay_ms = int(data.get("retryDelay") or default_delay_ms)
        first_wait = max(delay_ms, 1) / 1000
        return cls(
            max_retries=max(retries, 0),
            base_delay=first_wait,
            max_delay=max(max_delay_ms / 1000, first_wait),
            on_retry=on_retry,
        )

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def get_delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt + 1``."""
        return min(self._base_delay * (2 ** attempt), self._max_delay)

    def is_retryable(self, error: Exception) -> bool:
        if isinstance(error, FlowChordError):
            return error.retryable
        return isinstance(error, self._retryable_errors)

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """True if ``error`` on zero-based ``attempt`` earns another try."""
        return attempt < self._max_retries and self.is_retryable(error)

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Await ``func`` until it succeeds or retries run out.

        Raises:
            Exception: The error from the final attempt, or the first
                error that is not retryable.
        """
        attempt = 0
        while True:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if not self.should_retry(e, attempt):
                    raise
                wait = self.get_delay(attempt)
                attempt += 1
                if self._on_retry is not None:
                    pending = self._on_retry(attempt, wait, e)
                    if asyncio.iscoroutine(pending):
                        await pending
                await asyncio.sleep(wait)
