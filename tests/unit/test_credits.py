"""Unit tests for the idempotent credit ledger."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from services.batch.credits import (
    APPLIED_KEY_PREFIX,
    BALANCE_KEY_PREFIX,
    CREDIT_SCRIPT,
    DEFAULT_APPLIED_KEY_TTL,
    InMemoryCreditLedger,
    RedisCreditLedger,
)


class TestInMemoryCreditLedger:
    """Test deductions and refunds."""

    @pytest.mark.asyncio
    async def test_deduct_and_refund(self) -> None:
        ledger = InMemoryCreditLedger({"owner-1": 10})

        assert await ledger.deduct("owner-1", 4, "batch:job-1:reserve") is True
        await ledger.refund("owner-1", 1, "batch:job-1:refund:0")

        assert await ledger.balance("owner-1") == 7

    @pytest.mark.asyncio
    async def test_insufficient_balance(self) -> None:
        ledger = InMemoryCreditLedger({"owner-1": 2})

        assert await ledger.deduct("owner-1", 3, "batch:job-1:reserve") is False
        assert await ledger.balance("owner-1") == 2

    @pytest.mark.asyncio
    async def test_replayed_keys_apply_once(self) -> None:
        """Should treat a repeated idempotency key as a no-op."""
        ledger = InMemoryCreditLedger({"owner-1": 10})

        assert await ledger.deduct("owner-1", 5, "batch:job-1:reserve") is True
        assert await ledger.deduct("owner-1", 5, "batch:job-1:reserve") is True
        await ledger.refund("owner-1", 1, "batch:job-1:refund:2")
        await ledger.refund("owner-1", 1, "batch:job-1:refund:2")

        assert await ledger.balance("owner-1") == 6

    @pytest.mark.asyncio
    async def test_insufficient_deduct_can_be_retried(self) -> None:
        ledger = InMemoryCreditLedger({"owner-1": 1})
        assert await ledger.deduct("owner-1", 3, "batch:job-1:reserve") is False

        await ledger.top_up("owner-1", 5)

        assert await ledger.deduct("owner-1", 3, "batch:job-1:reserve") is True
        assert await ledger.balance("owner-1") == 3

    @pytest.mark.asyncio
    async def test_concurrent_deductions_never_overdraw(self) -> None:
        """Should let exactly balance // amount of N concurrent jobs through."""
        ledger = InMemoryCreditLedger({"owner-1": 10})

        results = await asyncio.gather(
            *(ledger.deduct("owner-1", 3, f"batch:job-{i}:reserve") for i in range(8))
        )

        assert sum(results) == 3
        assert await ledger.balance("owner-1") == 1

    @pytest.mark.asyncio
    async def test_concurrent_replays_apply_once(self) -> None:
        ledger = InMemoryCreditLedger({"owner-1": 10})

        results = await asyncio.gather(*(ledger.deduct("owner-1", 4, "batch:job-1:reserve") for _ in range(5)))

        assert all(results)
        assert await ledger.balance("owner-1") == 6


class TestRedisCreditLedger:
    """Test the Lua-script ledger against a mocked client."""

    @pytest.mark.asyncio
    async def test_deduct_runs_script(self) -> None:
        redis = AsyncMock()
        redis.eval.return_value = 1

        applied = await RedisCreditLedger(redis).deduct("owner-1", 3, "batch:job-1:reserve")

        assert applied is True
        redis.eval.assert_awaited_once_with(
            CREDIT_SCRIPT,
            2,
            f"{APPLIED_KEY_PREFIX}batch:job-1:reserve",
            f"{BALANCE_KEY_PREFIX}owner-1",
            3,
            "deduct",
            DEFAULT_APPLIED_KEY_TTL,
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("script_result", "expected"), [(0, False), (-1, True), (b"1", True)])
    async def test_deduct_outcomes(self, script_result: object, expected: bool) -> None:
        redis = AsyncMock()
        redis.eval.return_value = script_result

        assert await RedisCreditLedger(redis).deduct("owner-1", 3, "k") is expected

    @pytest.mark.asyncio
    async def test_refund_and_balance(self) -> None:
        redis = AsyncMock()
        redis.eval.return_value = 1
        redis.get.return_value = b"42"
        ledger = RedisCreditLedger(redis)

        await ledger.refund("owner-1", 1, "batch:job-1:refund:0")

        assert redis.eval.call_args.args[-2] == "refund"
        assert await ledger.balance("owner-1") == 42

    @pytest.mark.asyncio
    async def test_applied_keys_expire(self) -> None:
        """Should write one expiring marker per key instead of growing a shared set."""
        redis = AsyncMock()
        redis.eval.return_value = 1

        await RedisCreditLedger(redis, key_ttl_seconds=3600).refund("owner-1", 1, "batch:job-2:refund:4")

        args = redis.eval.call_args.args
        assert args[2] == "credits:applied:batch:job-2:refund:4"
        assert args[-1] == 3600
        assert "'NX', 'EX'" in CREDIT_SCRIPT
        assert "SADD" not in CREDIT_SCRIPT
