"""
Per-task resources for Celery workers.

Each task run gets its own engine, session and Redis client, disposed
when the run ends; tasks run their async body through asyncio.run().
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from alerts.error_sink import ErrorSink
from alerts.notifier import AlertNotifier, PendingAlerts, redis_client
from reconciliation.cache import ReferenceDataCache
from reconciliation.reference_data import ReferenceDataResolver, ServiceResolver
from reconciliation.store import ReconciliationStore


def open_redis(url: str):
    return redis_client(url)


@dataclass
class UnitResources:
    db: AsyncSession
    redis: Any
    notifier: AlertNotifier
    settings: Any

    def reconciliation_store(self) -> ReconciliationStore:
        return build_reconciliation_store(
            self.db,
            self.redis,
            self.notifier,
            uom_ttl=self.settings.uom_cache_ttl_seconds,
        )

    def error_sink(self) -> ErrorSink:
        return ErrorSink(self.db, self.notifier)


def build_reconciliation_store(db: AsyncSession, redis, notifier, uom_ttl: int | None = None) -> ReconciliationStore:
    cache = ReferenceDataCache(redis)
    alerts = PendingAlerts(notifier)
    return ReconciliationStore(
        db,
        ReferenceDataResolver(db, cache, alerts, uom_ttl=uom_ttl),
        ServiceResolver(db, cache),
        alerts,
    )


@asynccontextmanager
async def unit_resources():
    from core.config import get_settings

    settings = get_settings()
    engine = create_async_engine(settings.database_url)
    redis = open_redis(settings.redis_url)
    try:
        async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        async with async_session() as db:
            yield UnitResources(
                db=db,
                redis=redis,
                notifier=AlertNotifier(redis, settings.alert_channel),
                settings=settings,
            )
    finally:
        await redis.aclose()
        await engine.dispose()
