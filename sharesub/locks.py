"""Per-plan locks serializing membership-mutating operations.

Uses a Redis lock when REDIS_URL is configured (shared by every app process
and the worker), otherwise an in-process asyncio.Lock per plan.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import LockError

from sharesub.constants import PLAN_LOCK_BLOCKING_TIMEOUT, PLAN_LOCK_TIMEOUT

logger = logging.getLogger(__name__)


class PlanLocks:
    """Lock registry keyed by plan id. Locks are not reentrant."""

    def __init__(self, redis_url: str = ""):
        self._redis_url = redis_url
        self._redis: AsyncRedis | None = None
        # In-memory fallback (used when Redis is not configured)
        self._local: dict[str, asyncio.Lock] = {}
        # Holders plus waiters per plan; an entry goes away when it drops to zero
        self._local_users: dict[str, int] = {}

    def _get_redis(self) -> AsyncRedis | None:
        if not self._redis_url:
            return None
        if self._redis is None:
            self._redis = AsyncRedis.from_url(self._redis_url)
        return self._redis

    @asynccontextmanager
    async def hold(self, plan_id: str) -> AsyncIterator[None]:
        redis = self._get_redis()
        if redis is None:
            lock = self._local.setdefault(plan_id, asyncio.Lock())
            self._local_users[plan_id] = self._local_users.get(plan_id, 0) + 1
            try:
                async with lock:
                    yield
            finally:
                self._local_users[plan_id] -= 1
                if not self._local_users[plan_id]:
                    del self._local_users[plan_id]
                    del self._local[plan_id]
            return

        lock = redis.lock(
            f"plan-lock:{plan_id}",
            timeout=PLAN_LOCK_TIMEOUT,
            blocking_timeout=PLAN_LOCK_BLOCKING_TIMEOUT,
        )
        if not await lock.acquire():
            raise TimeoutError(f"Could not acquire lock for plan {plan_id}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning("Plan lock for %s expired before release", plan_id)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
