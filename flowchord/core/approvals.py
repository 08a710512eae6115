"""Human approval gate for ``waitForApproval`` nodes."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from flowchord.errors.exceptions import WorkflowStoppedError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalDecision:
    """How a pending approval was settled."""

    approved: bool
    comment: str | None = None
    timed_out: bool = False


@dataclass
class PendingApproval:
    run_id: str
    node_id: str
    payload: Any
    requested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    future: asyncio.Future[ApprovalDecision] | None = field(default=None, repr=False)


class ApprovalGate:
    """Suspends branches until someone approves or rejects them.

    Requests are keyed by node id. A gate can be shared by several engines;
    ``cancel_run`` only touches one run's requests.

    Example:
        >>> gate = ApprovalGate()
        >>> task = asyncio.create_task(gate.request("run-1", "review", {"draft": "..."}))
        >>> gate.approve("review", comment="Looks good")
        True
    """

    def __init__(self) -> None:
        self._pending: dict[str, PendingApproval] = {}

    def pending(self) -> list[PendingApproval]:
        """Requests still waiting for a decision."""
        return list(self._pending.values())

    def is_pending(self, node_id: str) -> bool:
        return node_id in self._pending

    async def request(
        self,
        run_id: str,
        node_id: str,
        payload: Any = None,
        timeout: float = 0.0,
    ) -> ApprovalDecision:
        """Wait for a decision on ``node_id``.

        Args:
            run_id: Run the request belongs to.
            node_id: Node waiting for approval.
            payload: Data shown to the approver.
            timeout: Seconds before auto-rejecting; 0 waits indefinitely.

        Raises:
            WorkflowStoppedError: The run was stopped while waiting.
        """
        loop = asyncio.get_running_loop()
        pending = PendingApproval(run_id=run_id, node_id=node_id, payload=payload)
        pending.future = loop.create_future()
        self._pending[node_id] = pending

        try:
            if timeout > 0:
                return await asyncio.wait_for(asyncio.shield(pending.future), timeout)
            return await pending.future
        except asyncio.TimeoutError:
            logger.info("Approval for %s timed out after %ss", node_id, timeout)
            return ApprovalDecision(approved=False, comment="Approval timed out", timed_out=True)
        except asyncio.CancelledError:
            if pending.future.cancelled():
                raise WorkflowStoppedError() from None
            raise
        finally:
            if self._pending.get(node_id) is pending:
                del self._pending[node_id]

    def _settle(self, node_id: str, decision: ApprovalDecision) -> bool:
        pending = self._pending.get(node_id)
        if pending is None or pending.future is None or pending.future.done():
            return False
        pending.future.set_result(decision)
        return True

    def approve(self, node_id: str, comment: str | None = None) -> bool:
        """Approve a pending request. Returns False if nothing was waiting."""
        return self._settle(node_id, ApprovalDecision(approved=True, comment=comment))

    def reject(self, node_id: str, reason: str | None = None) -> bool:
        """Reject a pending request. Returns False if nothing was waiting."""
        return self._settle(node_id, ApprovalDecision(approved=False, comment=reason))

    def cancel_run(self, run_id: str) -> int:
        """Cancel every request of a stopped run."""
        cancelled = 0
        for pending in list(self._pending.values()):
            if pending.run_id == run_id and pending.future and not pending.future.done():
                pending.future.cancel()
                cancelled += 1
        return cancelled
