"""Idempotent credit ledger.

Every deduction and refund carries an idempotency key. Recording the key and
updating the balance happen in one atomic step, so replaying a key, including
concurrently, never changes the balance twice.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

from services.api import metrics

logger = logging.getLogger(__name__)

BALANCE_KEY_PREFIX = "credits:balance:"
APPLIED_KEY_PREFIX = "credits:applied:"
DEFAULT_APPLIED_KEY_TTL = 7 * 86400

# KEYS[1] applied marker for the idempotency key, KEYS[2] balance
# ARGV[1] amount, ARGV[2] "deduct" or "refund", ARGV[3] marker TTL in seconds
# Returns 1 applied, 0 insufficient balance, -1 key already applied
CREDIT_SCRIPT = """
if not redis.call('SET', KEYS[1], '1', 'NX', 'EX', ARGV[3]) then
  return -1
end
local amount = tonumber(ARGV[1])
if ARGV[2] == 'deduct' then
  local balance = tonumber(redis.call('GET', KEYS[2]) or '0')
  if balance < amount then
    redis.call('DEL', KEYS[1])
    return 0
  end
  redis.call('DECRBY', KEYS[2], amount)
else
  redis.call('INCRBY', KEYS[2], amount)
end
return 1
"""


class CreditLedger(ABC):
    """Abstract credit ledger."""

    @abstractmethod
    async def deduct(self, owner_id: str, amount: int, idempotency_key: str) -> bool:
        """Deduct credits once per idempotency key.

        Args:
            owner_id: Account to charge
            amount: Credits to deduct
            idempotency_key: Operation key, e.g. ``batch:{job_id}:reserve``

        Returns:
            True if the deduction is applied (now or by an earlier call with the same
            key), False if the balance is insufficient
        """
        pass

    @abstractmethod
    async def refund(self, owner_id: str, amount: int, idempotency_key: str) -> None:
        """Credit back once per idempotency key."""
        pass

    @abstractmethod
    async def balance(self, owner_id: str) -> int:
        pass


class InMemoryCreditLedger(CreditLedger):
    """Single-process ledger guarded by an asyncio.Lock."""

    def __init__(self, balances: dict[str, int] | None = None) -> None:
        self._balances: dict[str, int] = dict(balances or {})
        self._applied: set[str] = set()
        self._lock = asyncio.Lock()

    async def deduct(self, owner_id: str, amount: int, idempotency_key: str) -> bool:
        async with self._lock:
            if idempotency_key in self._applied:
                metrics.credit_operations_total.labels(operation="deduct", result="replayed").inc()
                return True
            current = self._balances.get(owner_id, 0)
            if current < amount:
                metrics.credit_operations_total.labels(operation="deduct", result="insufficient").inc()
                return False
            self._balances[owner_id] = current - amount
            self._applied.add(idempotency_key)
        metrics.credit_operations_total.labels(operation="deduct", result="applied").inc()
        return True

    async def refund(self, owner_id: str, amount: int, idempotency_key: str) -> None:
        async with self._lock:
            if idempotency_key in self._applied:
                metrics.credit_operations_total.labels(operation="refund", result="replayed").inc()
                return
            self._balances[owner_id] = self._balances.get(owner_id, 0) + amount
            self._applied.add(idempotency_key)
        metrics.credit_operations_total.labels(operation="refund", result="applied").inc()

    async def balance(self, owner_id: str) -> int:
        return self._balances.get(owner_id, 0)

    async def top_up(self, owner_id: str, amount: int) -> None:
        async with self._lock:
            self._balances[owner_id] = self._balances.get(owner_id, 0) + amount


class RedisCreditLedger(CreditLedger):
    """Shared ledger: one Lua script per operation, executed atomically by Redis.

    Each idempotency key is an expiring marker, so keys of finished jobs age out.
    The TTL must outlive every replay of a job, i.e. exceed the job retention.
    """

    def __init__(self, redis: Any, key_ttl_seconds: int = DEFAULT_APPLIED_KEY_TTL) -> None:
        self._redis = redis
        self._key_ttl_seconds = key_ttl_seconds

    async def _apply(self, operation: str, owner_id: str, amount: int, idempotency_key: str) -> int:
        result = await self._redis.eval(
            CREDIT_SCRIPT,
            2,
            f"{APPLIED_KEY_PREFIX}{idempotency_key}",
            f"{BALANCE_KEY_PREFIX}{owner_id}",
            amount,
            operation,
            self._key_ttl_seconds,
        )
        outcome = {1: "applied", 0: "insufficient", -1: "replayed"}.get(int(result), "unknown")
        metrics.credit_operations_total.labels(operation=operation, result=outcome).inc()
        return int(result)

    async def deduct(self, owner_id: str, amount: int, idempotency_key: str) -> bool:
        return await self._apply("deduct", owner_id, amount, idempotency_key) != 0

    async def refund(self, owner_id: str, amount: int, idempotency_key: str) -> None:
        await self._apply("refund", owner_id, amount, idempotency_key)

    async def balance(self, owner_id: str) -> int:
        raw = await self._redis.get(f"{BALANCE_KEY_PREFIX}{owner_id}")
        return int(raw) if raw is not None else 0
