"""
Tenant Context

Explicit tenant identity, deadline and cancellation passed through every
public call. External calls (embedding, LLM, persistence) are awaited through
``TenantContext.guard`` so they are abandoned as soon as the deadline passes
or the token is cancelled.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, TypeVar

from mlo.errors import OperationTimeoutError, ValidationError

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation signal shared between caller and pipeline."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


@dataclass(frozen=True)
class TenantContext:
    """
    Ambient request context.

    Attributes:
        tenant_id: Owner of every item/entity touched by the call
        deadline: Absolute ``time.monotonic()`` value, or None for no deadline
        cancellation: Optional token the caller may cancel at any time
    """

    tenant_id: str
    deadline: float | None = None
    cancellation: CancellationToken | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.tenant_id, str) or not self.tenant_id.strip():
            raise ValidationError("tenant_id is required")

    @classmethod
    def with_timeout(
        cls,
        tenant_id: str,
        seconds: float | None,
        cancellation: CancellationToken | None = None,
    ) -> "TenantContext":
        deadline = time.monotonic() + seconds if seconds is not None else None
        return cls(tenant_id=tenant_id, deadline=deadline, cancellation=cancellation)

    def remaining(self) -> float | None:
        """Seconds left before the deadline (None when unbounded)."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def cancelled(self) -> bool:
        return self.cancellation is not None and self.cancellation.cancelled

    def check(self) -> None:
        """Raise if the operation must stop."""
        if self.cancelled:
            raise OperationTimeoutError(
                f"Operation cancelled for tenant {self.tenant_id}: {self.cancellation.reason}"
            )
        if self.expired:
            raise OperationTimeoutError(f"Deadline exceeded for tenant {self.tenant_id}")

    async def guard(self, awaitable: Awaitable[T]) -> T:
        """
        Await an external call while honoring deadline and cancellation.

        The in-flight call is cancelled when the context loses the race.
        """
        try:
            self.check()
        except OperationTimeoutError:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise
        task = asyncio.ensure_future(awaitable)
        waiters: set[asyncio.Future] = {task}
        cancel_waiter: asyncio.Task | None = None
        if self.cancellation is not None:
            cancel_waiter = asyncio.ensure_future(self.cancellation.wait())
            waiters.add(cancel_waiter)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if cancel_waiter is not None and not cancel_waiter.done():
                cancel_waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        self.check()
        raise OperationTimeoutError(f"Deadline exceeded for tenant {self.tenant_id}")
