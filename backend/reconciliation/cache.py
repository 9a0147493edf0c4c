"""
Reference-data cache-aside.

Read-through over Redis: a hit returns the cached value, a miss runs the
creator and caches what it returns once the transaction commits.
Concurrent misses on the same key may run the creator more than once;
creators are insert-if-absent followed by a read of the canonical row, so
they converge on one row.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from db.session import on_rollback

logger = structlog.get_logger()


def text_key(prefix: str, *parts: Any) -> str:
    """Build a cache key; free text is hashed so keys stay short and safe."""
    rendered = []
    for part in parts:
        if isinstance(part, str):
            rendered.append(hashlib.md5(part.encode("utf-8")).hexdigest())
        else:
            rendered.append(str(part))
    return ":".join([prefix, *rendered])


class ReferenceDataCache:
    """
    get-or-create with a tolerated race, backed by a redis.asyncio client.

    Values created on a miss come from rows inserted in the caller's open
    transaction, so they are staged in memory and only written to Redis by
    `publish_pending()` once the caller has committed. A rollback of a bound
    session drops the staged values.
    """

    def __init__(self, redis, namespace: str = "refdata"):
        self.redis = redis
        self.namespace = namespace
        self._staged: dict[str, tuple[str, int | None]] = {}
        self._sessions: set[int] = set()

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def bind_session(self, db: AsyncSession) -> None:
        if id(db.sync_session) in self._sessions:
            return
        self._sessions.add(id(db.sync_session))
        on_rollback(db, self.discard_pending)

    async def get_or_create(
        self,
        key: str,
        create_fn: Callable[[], Awaitable[Any]],
        ttl: int | None = None,
    ) -> Any:
        """
        Return the cached value for `key`, or run `create_fn` and stage it.

        `ttl=None` caches forever. `None` results are not cached so the
        next caller retries the creator.
        """
        cache_key = self._key(key)
        if cache_key in self._staged:
            return json.loads(self._staged[cache_key][0])

        cached = await self.redis.get(cache_key)
        if cached is not None:
            return json.loads(cached)

        value = await create_fn()
        if value is None:
            return None

        self._staged[cache_key] = (json.dumps(value, default=str), ttl)
        return value

    async def publish_pending(self) -> int:
        """Write staged values to Redis. Call only after the transaction commits."""
        staged, self._staged = self._staged, {}
        for cache_key, (payload, ttl) in staged.items():
            await self.redis.set(cache_key, payload, ex=ttl)
            logger.debug("refdata.cache_populated", key=cache_key, ttl=ttl)
        return len(staged)

    def discard_pending(self) -> None:
        if self._staged:
            logger.info("refdata.cache_discarded", keys=len(self._staged))
        self._staged = {}
