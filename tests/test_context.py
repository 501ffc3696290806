"""
Tests for TenantContext deadlines and cancellation
"""

import asyncio
import time

import pytest

from mlo.context import CancellationToken, TenantContext
from mlo.errors import OperationTimeoutError, ValidationError


class TestTenantContext:
    @pytest.mark.parametrize("tenant_id", ["", "   "])
    def test_tenant_required(self, tenant_id):
        with pytest.raises(ValidationError):
            TenantContext(tenant_id=tenant_id)

    def test_unbounded_context(self):
        ctx = TenantContext(tenant_id="t1")

        assert ctx.remaining() is None
        assert not ctx.expired
        assert not ctx.cancelled
        ctx.check()

    def test_with_timeout_sets_deadline(self):
        ctx = TenantContext.with_timeout("t1", 5.0)

        assert ctx.deadline is not None
        assert 0 < ctx.remaining() <= 5.0

    def test_expired_context_fails_check(self):
        ctx = TenantContext(tenant_id="t1", deadline=time.monotonic() - 1)

        assert ctx.expired
        with pytest.raises(OperationTimeoutError):
            ctx.check()

    def test_timeout_error_is_builtin_timeout(self):
        assert issubclass(OperationTimeoutError, TimeoutError)


class TestGuard:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def work():
            return 42

        ctx = TenantContext.with_timeout("t1", 1.0)
        assert await ctx.guard(work()) == 42

    @pytest.mark.asyncio
    async def test_propagates_call_errors(self):
        async def work():
            raise KeyError("boom")

        with pytest.raises(KeyError):
            await TenantContext(tenant_id="t1").guard(work())

    @pytest.mark.asyncio
    async def test_deadline_abandons_call(self):
        finished = False

        async def slow():
            nonlocal finished
            await asyncio.sleep(1.0)
            finished = True

        ctx = TenantContext.with_timeout("t1", 0.05)
        with pytest.raises(OperationTimeoutError):
            await ctx.guard(slow())

        await asyncio.sleep(0)
        assert finished is False

    @pytest.mark.asyncio
    async def test_cancellation_abandons_call(self):
        token = CancellationToken()
        ctx = TenantContext(tenant_id="t1", cancellation=token)

        async def slow():
            await asyncio.sleep(1.0)

        async def cancel_soon():
            await asyncio.sleep(0.01)
            token.cancel("user aborted")

        canceller = asyncio.create_task(cancel_soon())
        with pytest.raises(OperationTimeoutError, match="user aborted"):
            await ctx.guard(slow())
        await canceller

    @pytest.mark.asyncio
    async def test_already_cancelled_context_rejects_call(self):
        token = CancellationToken()
        token.cancel()
        ctx = TenantContext(tenant_id="t1", cancellation=token)
        calls = 0

        async def work():
            nonlocal calls
            calls += 1

        with pytest.raises(OperationTimeoutError):
            await ctx.guard(work())
        assert calls == 0
