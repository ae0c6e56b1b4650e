"""
Approval gate for tools that need operator consent.

The executor asks the gate before running a tool whose schema has
``requires_approval``. Under the PROMPT policy the request waits until the
coordinator resolves it, the timeout elapses (counted as a rejection) or
the task is aborted.
"""

import asyncio
from enum import Enum

import structlog

from toolloop.core.domain.models import ToolInvocation


class ApprovalPolicy(str, Enum):
    """Policy for handling approval requests for sensitive operations."""

    PROMPT = "prompt"              # Ask the operator for each approval (default)
    AUTO_APPROVE = "auto_approve"  # Approve all automatically (logs warning)
    AUTO_DENY = "auto_deny"        # Deny all automatically


class ApprovalDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"


class ApprovalGate:
    """Pending approval requests keyed by invocation id."""

    def __init__(self, policy: ApprovalPolicy = ApprovalPolicy.PROMPT, timeout_seconds: float = 300.0):
        self.policy = policy
        self.timeout_seconds = timeout_seconds
        self._pending: dict[str, asyncio.Future] = {}
        self.logger = structlog.get_logger().bind(component="approval_gate")

    @property
    def pending_ids(self) -> list[str]:
        return list(self._pending)

    async def request(
        self, invocation: ToolInvocation, abort_event: asyncio.Event | None = None
    ) -> ApprovalDecision:
        """Wait for a decision on ``invocation``."""
        if self.policy == ApprovalPolicy.AUTO_APPROVE:
            self.logger.warning("approval_auto_approved", tool=invocation.name, invocation_id=invocation.id)
            return ApprovalDecision.APPROVED
        if self.policy == ApprovalPolicy.AUTO_DENY:
            self.logger.info("approval_auto_denied", tool=invocation.name, invocation_id=invocation.id)
            return ApprovalDecision.REJECTED

        future = asyncio.get_running_loop().create_future()
        self._pending[invocation.id] = future
        waiters = {future}
        abort_waiter = None
        if abort_event is not None:
            abort_waiter = asyncio.ensure_future(abort_event.wait())
            waiters.add(abort_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=self.timeout_seconds, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            self._pending.pop(invocation.id, None)
            if abort_waiter is not None:
                abort_waiter.cancel()

        if future in done:
            decision = ApprovalDecision.APPROVED if future.result() else ApprovalDecision.REJECTED
        elif abort_waiter is not None and abort_waiter in done:
            future.cancel()
            decision = ApprovalDecision.ABORTED
        else:
            future.cancel()
            decision = ApprovalDecision.TIMED_OUT

        self.logger.info(
            "approval_decided",
            tool=invocation.name,
            invocation_id=invocation.id,
            decision=decision.value,
        )
        return decision

    def resolve(self, invocation_id: str, approved: bool) -> bool:
        """Answer a pending request. Returns False if nothing was waiting."""
        future = self._pending.get(invocation_id)
        if future is None or future.done():
            return False
        future.set_result(approved)
        return True
