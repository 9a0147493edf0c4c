"""
Work submission for fanned-out units.

Controllers hand units of work to a WorkSubmitter instead of calling
Celery directly, so the batch loops can be driven in tests with a
recording submitter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()

INVOICE_PROCESS_QUEUE = "invoice_process"
VALIDATE_TRACKING_QUEUE = "validate_tracking_numbers"
TRACKING_QUEUE = "tracking"


@dataclass(frozen=True)
class WorkUnit:
    task_name: str
    queue: str
    kwargs: dict[str, Any] = field(default_factory=dict)


class WorkSubmitter(Protocol):
    def submit(self, unit: WorkUnit) -> Any:
        """Hand off a unit; returns an opaque handle (a task id for Celery)."""
        ...


def queue_name(queue: str, app_env: str | None = None) -> str:
    """Queues are split per environment: `<queue>-<app_env>`."""
    if app_env is None:
        from core.config import get_settings

        app_env = get_settings().app_env
    return f"{queue}-{app_env}"


class CeleryWorkSubmitter:
    def __init__(self, app=None, app_env: str | None = None):
        if app is None:
            from workers.celery_app import celery_app

            app = celery_app
        self.app = app
        self.app_env = app_env

    def submit(self, unit: WorkUnit) -> str:
        queue = queue_name(unit.queue, self.app_env)
        result = self.app.send_task(unit.task_name, kwargs=unit.kwargs, queue=queue)
        logger.debug("dispatch.submitted", task_name=unit.task_name, queue=queue, task_id=result.id)
        return result.id


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for a unit of work; countdown doubles per attempt."""

    max_retries: int = 3
    backoff_seconds: int = 30

    @classmethod
    def from_settings(cls, settings=None) -> "RetryPolicy":
        if settings is None:
            from core.config import get_settings

            settings = get_settings()
        return cls(max_retries=settings.unit_max_retries, backoff_seconds=settings.unit_retry_backoff_seconds)

    def should_retry(self, attempt: int) -> bool:
        """`attempt` is the number of retries already made."""
        return attempt < self.max_retries

    def countdown(self, attempt: int) -> int:
        return self.backoff_seconds * (2**attempt)
