"""
Alert Notifier — Redis pub/sub alerting channel.

Operational alerts (missing files, provider failures, unmapped surcharge
names) are published as JSON to a single Redis channel that the on-call
relay subscribes to:

    {"site": "...", "message": "...", "level": "danger", "sent_at": "..."}

`site` is a stable key per failure location so the relay can group and
rate-limit repeats.
"""

import json
from datetime import datetime, timezone

import redis.asyncio as aioredis
import structlog

from core.config import get_settings
from db.session import on_rollback

logger = structlog.get_logger()

ALERT_LEVELS = ("good", "warning", "danger")


class AlertNotifier:
    def __init__(self, redis, channel: str | None = None):
        self.redis = redis
        self.channel = channel or get_settings().alert_channel

    async def notify(self, site: str, message: str, level: str = "danger") -> int:
        """Publish one alert. Returns the number of subscribers reached."""
        if level not in ALERT_LEVELS:
            raise ValueError(f"Unknown alert level: {level}")

        payload = json.dumps(
            {
                "site": site,
                "message": message,
                "level": level,
                "sent_at": datetime.now(timezone.utc).isoformat(),
            }
        )
        subscribers = await self.redis.publish(self.channel, payload)
        logger.info("alert.published", site=site, level=level, subscribers=subscribers)
        return subscribers


def redis_client(url: str | None = None):
    """Open a Redis client for the configured URL; callers must `aclose()` it."""
    return aioredis.from_url(url or get_settings().redis_url)


class PendingAlerts:
    """
    Alerts about rows written in an open transaction.

    They are queued and only published by `flush()` once the caller has
    committed; a rollback of a bound session drops them.
    """

    def __init__(self, notifier):
        self.notifier = notifier
        self._queued: list[tuple[str, str, str]] = []
        self._sessions: set[int] = set()

    def bind_session(self, db) -> None:
        if id(db.sync_session) in self._sessions:
            return
        self._sessions.add(id(db.sync_session))
        on_rollback(db, self.discard)

    def add(self, site: str, message: str, level: str = "danger") -> None:
        self._queued.append((site, message, level))

    async def flush(self) -> int:
        queued, self._queued = self._queued, []
        for site, message, level in queued:
            await self.notifier.notify(site, message, level=level)
        return len(queued)

    def discard(self) -> None:
        if self._queued:
            logger.info("alert.discarded", count=len(self._queued))
        self._queued = []
