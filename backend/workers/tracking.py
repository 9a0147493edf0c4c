"""
Tracking Workers — per-number tracking ingestion.

Workers:
  1. process_tracking_number: fetch → classify → reconcile one number
  2. validate_tracking_number: register an alternate number discovered on
     another carrier's response and queue it for processing

Provider responses are classified before anything is written:
  Ok         → reconcile events/detail/status in one transaction
  SoftError  → "not available yet"; non-terminal, no alert
  HardError  → non-terminal, one alert + tracking import error
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.error_sink import ErrorKind, ErrorSink, exception_detail
from core.carriers import CarrierDescriptor
from db.models import QueueStatus, TrackingNumber, tracking_number_teams
from db.upsert import insert_ignore
from integrations.base import PayloadFormat, get_parser
from integrations.tracking_parser import (
    ProviderHardError,
    ProviderOk,
    ProviderResult,
    ProviderSoftError,
    classify_tracking_response,
    derive_label_created_at,
)
from reconciliation.store import ReconciliationStore, TrackingOutcome
from workers.celery_app import celery_app
from workers.dispatch import TRACKING_QUEUE, VALIDATE_TRACKING_QUEUE, RetryPolicy, WorkSubmitter, WorkUnit

logger = structlog.get_logger()

PROCESS_TRACKING_TASK = "workers.tracking.process_tracking_number"
VALIDATE_TRACKING_TASK = "workers.tracking.validate_tracking_number"
PROVIDER_ERROR_ALERT_SITE = "tracking-provider-error"
TRACKING_EXCEPTION_ALERT_SITE = "tracking-process-exception"


@dataclass(frozen=True)
class TrackingProcessResult:
    status: str  # "stored" | "soft_error" | "hard_error"
    outcome: TrackingOutcome | None = None
    cascaded: int = 0

    def to_dict(self) -> dict:
        summary = {"status": self.status, "cascaded": self.cascaded}
        if self.outcome is not None:
            summary.update(
                {
                    "queue_status": self.outcome.queue_status,
                    "events_stored": self.outcome.events_stored,
                    "latest_event_id": str(self.outcome.latest_event_id) if self.outcome.latest_event_id else None,
                    "alternate_tracking_number": self.outcome.alternate_tracking_number,
                }
            )
        return summary


def _error_text(errors: list[dict]) -> str:
    return "; ".join(f"{e.get('code')}: {e.get('description') or e.get('message') or ''}".strip() for e in errors)


class TrackingIngestionController:
    def __init__(
        self,
        db: AsyncSession,
        client,
        store: ReconciliationStore,
        error_sink: ErrorSink,
        submitter: WorkSubmitter,
        soft_error_codes: list[str] | tuple[str, ...],
        alternate_carrier: CarrierDescriptor,
    ):
        self.db = db
        self.client = client
        self.store = store
        self.error_sink = error_sink
        self.submitter = submitter
        self.soft_error_codes = tuple(soft_error_codes)
        self.alternate_carrier = alternate_carrier
        self.parser = get_parser(PayloadFormat.TRACKING_JSON)

    async def fetch(self, carrier: CarrierDescriptor, tracking_number: str) -> ProviderResult:
        data = await self.client.get_tracking_data(carrier, tracking_number)
        tagged = {**data, "carrierCode": carrier.code, "trackingNumber": tracking_number}
        return classify_tracking_response(tagged, self.soft_error_codes)

    async def process(self, carrier: CarrierDescriptor, tracking_number: TrackingNumber) -> TrackingProcessResult:
        number_id = tracking_number.id
        number = tracking_number.tracking_number
        result = await self.fetch(carrier, number)

        if isinstance(result, ProviderSoftError):
            logger.info(
                "tracking.not_available_yet",
                carrier=carrier.code,
                tracking_number=number,
                errors=_error_text(result.errors),
            )
            await self._mark_non_terminal(number_id)
            return TrackingProcessResult(status="soft_error")

        if isinstance(result, ProviderHardError):
            logger.warning(
                "tracking.provider_error",
                carrier=carrier.code,
                tracking_number=number,
                errors=_error_text(result.errors),
            )
            await self._mark_non_terminal(number_id)
            await self.error_sink.record(
                number_id,
                ErrorKind.PROVIDER_ERROR,
                {"message": _error_text(result.errors), "errors": result.errors},
                site=PROVIDER_ERROR_ALERT_SITE,
                carrier=carrier,
                tracking_number=number,
            )
            return TrackingProcessResult(status="hard_error")

        parsed = self.parser.parse(result.data)
        try:
            outcome = await self.store.store_tracking_result(parsed, carrier, tracking_number)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        await self.store.publish_pending()

        cascaded = 0
        if outcome.alternate_tracking_number:
            cascaded = await self.cascade_alternate(number_id, outcome.alternate_tracking_number)
        return TrackingProcessResult(status="stored", outcome=outcome, cascaded=cascaded)

    async def fetch_label_creation_time_only(self, carrier: CarrierDescriptor, tracking_number: str) -> datetime | None:
        """Label-creation time for a number, without persisting anything."""
        try:
            result = await self.fetch(carrier, tracking_number)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "tracking.label_fetch_failed",
                carrier=carrier.code,
                tracking_number=tracking_number,
                error=str(exc),
                exc_info=True,
            )
            return None

        if not isinstance(result, ProviderOk):
            logger.warning(
                "tracking.label_unavailable",
                carrier=carrier.code,
                tracking_number=tracking_number,
                errors=_error_text(result.errors),
            )
            return None
        return derive_label_created_at(result.data)

    async def cascade_alternate(self, parent_id: uuid.UUID, alternate_number: str) -> int:
        """Queue one validation unit per team watching the parent number."""
        rows = await self.db.execute(
            select(tracking_number_teams.c.team_id).where(tracking_number_teams.c.tracking_number_id == parent_id)
        )
        team_ids = [row.team_id for row in rows.all()]
        for team_id in team_ids:
            self.submitter.submit(
                WorkUnit(
                    task_name=VALIDATE_TRACKING_TASK,
                    queue=VALIDATE_TRACKING_QUEUE,
                    kwargs={
                        "tracking_number": alternate_number,
                        "carrier_code": self.alternate_carrier.code,
                        "team_id": str(team_id),
                        "parent_tracking_number_id": str(parent_id),
                    },
                )
            )
        logger.info(
            "tracking.alternate_cascaded",
            parent_tracking_number_id=str(parent_id),
            alternate_tracking_number=alternate_number,
            teams=len(team_ids),
        )
        return len(team_ids)

    async def validate_tracking_number(
        self,
        carrier: CarrierDescriptor,
        tracking_number: str,
        team_id: uuid.UUID | str,
        parent_tracking_number_id: uuid.UUID | str | None = None,
    ) -> uuid.UUID:
        """Register an alternate number for the team and queue it for processing."""
        number_id = await register_tracking_number(
            self.db, carrier, tracking_number, team_id, parent_tracking_number_id
        )
        await self.db.commit()
        submit_tracking_refresh(self.submitter, number_id, carrier)
        logger.info(
            "tracking.validated",
            carrier=carrier.code,
            tracking_number=tracking_number,
            tracking_number_id=str(number_id),
            parent_tracking_number_id=str(parent_tracking_number_id) if parent_tracking_number_id else None,
        )
        return number_id

    async def _mark_non_terminal(self, number_id: uuid.UUID) -> None:
        await self.db.execute(
            update(TrackingNumber)
            .where(TrackingNumber.id == number_id)
            .values(queue_status=QueueStatus.NON_TERMINAL, updated_at=datetime.utcnow())
        )
        await self.db.commit()


async def register_tracking_number(
    db: AsyncSession,
    carrier: CarrierDescriptor,
    tracking_number: str,
    team_id: uuid.UUID | str,
    parent_tracking_number_id: uuid.UUID | str | None = None,
) -> uuid.UUID:
    """
    Get-or-create a tracking number and link it to a team. Does not commit.

    Safe to repeat: the number, its parent link and its team link are all
    insert-if-absent. An existing parent link is never overwritten.
    """
    number = tracking_number.strip()
    if not number:
        raise ValueError("Tracking number is empty")
    parent_id = uuid.UUID(str(parent_tracking_number_id)) if parent_tracking_number_id else None

    await insert_ignore(
        db,
        TrackingNumber,
        {
            "id": uuid.uuid4(),
            "carrier_id": carrier.id,
            "tracking_number": number,
            "queue_status": QueueStatus.NON_TERMINAL,
            "parent_tracking_number_id": parent_id,
        },
        ["carrier_id", "tracking_number"],
    )
    number_id = (
        await db.execute(
            select(TrackingNumber.id).where(
                TrackingNumber.carrier_id == carrier.id,
                TrackingNumber.tracking_number == number,
            )
        )
    ).scalar_one()
    if parent_id is not None:
        await db.execute(
            update(TrackingNumber)
            .where(TrackingNumber.id == number_id, TrackingNumber.parent_tracking_number_id.is_(None))
            .values(parent_tracking_number_id=parent_id)
        )
    await insert_ignore(
        db,
        tracking_number_teams,
        {"tracking_number_id": number_id, "team_id": uuid.UUID(str(team_id))},
        ["tracking_number_id", "team_id"],
    )
    return number_id


def submit_tracking_refresh(submitter: WorkSubmitter, number_id: uuid.UUID, carrier: CarrierDescriptor):
    return submitter.submit(
        WorkUnit(
            task_name=PROCESS_TRACKING_TASK,
            queue=TRACKING_QUEUE,
            kwargs={"tracking_number_id": str(number_id), "carrier_code": carrier.code},
        )
    )


def build_tracking_controller(res, submitter=None, client=None) -> TrackingIngestionController:
    from core.carriers import get_carrier
    from integrations.tracking_client import TrackingProviderClient
    from workers.dispatch import CeleryWorkSubmitter

    settings = res.settings
    return TrackingIngestionController(
        res.db,
        client or TrackingProviderClient(),
        res.reconciliation_store(),
        res.error_sink(),
        submitter or CeleryWorkSubmitter(celery_app, app_env=settings.app_env),
        settings.tracking_soft_error_codes,
        get_carrier(settings.alternate_tracking_carrier, settings),
    )


# ──────────────────────────────────────────────────────────────────────────
# Celery tasks
# ──────────────────────────────────────────────────────────────────────────


@celery_app.task(
    name="workers.tracking.process_tracking_number",
    bind=True,
    acks_late=True,
)
def process_tracking_number(self, tracking_number_id: str, carrier_code: str):
    """Fetch and reconcile one tracking number."""
    from core.carriers import get_carrier
    from workers.runtime import unit_resources

    carrier = get_carrier(carrier_code)
    policy = RetryPolicy.from_settings()

    async def _process():
        async with unit_resources() as res:
            tracking_number = await res.db.get(TrackingNumber, uuid.UUID(tracking_number_id))
            if tracking_number is None:
                logger.warning("tracking.number_not_found", tracking_number_id=tracking_number_id)
                return {"status": "skipped", "reason": "not_found"}
            result = await build_tracking_controller(res).process(carrier, tracking_number)
            return result.to_dict()

    async def _record_failure(exc: Exception):
        async with unit_resources() as res:
            tracking_number = await res.db.get(TrackingNumber, uuid.UUID(tracking_number_id))
            await res.error_sink().record(
                tracking_number_id,
                ErrorKind.TRACKING_FAILURE,
                exception_detail(exc),
                site=TRACKING_EXCEPTION_ALERT_SITE,
                carrier=carrier,
                tracking_number=tracking_number.tracking_number if tracking_number else None,
            )

    try:
        return asyncio.run(_process())
    except Exception as exc:  # noqa: BLE001
        attempt = self.request.retries or 0
        logger.error(
            "tracking.process_failed",
            tracking_number_id=tracking_number_id,
            carrier=carrier.code,
            attempt=attempt,
            error=str(exc),
            exc_info=True,
        )
        if policy.should_retry(attempt):
            raise self.retry(exc=exc, countdown=policy.countdown(attempt), max_retries=policy.max_retries)
        asyncio.run(_record_failure(exc))
        return {"status": "failed", "tracking_number_id": tracking_number_id, "error": str(exc)}


@celery_app.task(
    name="workers.tracking.validate_tracking_number",
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    acks_late=True,
)
def validate_tracking_number(
    self,
    tracking_number: str,
    carrier_code: str,
    team_id: str,
    parent_tracking_number_id: str | None = None,
):
    """Register an alternate tracking number for a team and queue it."""
    from core.carriers import get_carrier
    from workers.runtime import unit_resources

    carrier = get_carrier(carrier_code)

    async def _validate():
        async with unit_resources() as res:
            number_id = await build_tracking_controller(res).validate_tracking_number(
                carrier, tracking_number, team_id, parent_tracking_number_id
            )
            return {"status": "success", "tracking_number_id": str(number_id)}

    try:
        return asyncio.run(_validate())
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "tracking.validate_failed",
            tracking_number=tracking_number,
            carrier=carrier.code,
            error=str(exc),
            exc_info=True,
        )
        raise self.retry(exc=exc)
