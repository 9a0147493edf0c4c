"""Celery beat fan-out: claim invoice files and refresh open tracking numbers."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()

IMPORT_INVOICE_FILES_TASK = "workers.invoice_import.import_invoice_files"


async def claim_pending_files(db: AsyncSession, carrier_code: str) -> int:
    """Flip every PENDING file of a carrier to PROCESSING in one statement."""
    from db.models import InvoiceFile, InvoiceFileImportStatus

    result = await db.execute(
        update(InvoiceFile)
        .where(
            InvoiceFile.carrier == carrier_code,
            InvoiceFile.import_status == InvoiceFileImportStatus.PENDING.value,
        )
        .values(import_status=InvoiceFileImportStatus.PROCESSING.value, updated_at=datetime.utcnow())
    )
    await db.commit()
    return max(result.rowcount or 0, 0)


@celery_app.task(
    name="workers.scheduler.claim_pending_invoice_files",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def claim_pending_invoice_files(self, carrier_codes: list[str] | None = None):
    """
    Claim pending invoice files per carrier and queue one import batch for
    each carrier that has claimed files.
    """
    from core.config import get_settings

    run_id = self.request.id or "manual"

    async def _claim():
        settings = get_settings()
        codes = [c.strip().lower() for c in (carrier_codes or list(settings.carriers))]
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession)
            claimed: dict[str, int] = {}
            async with async_session() as db:
                for code in codes:
                    claimed[code] = await claim_pending_files(db, code)

            dispatched = 0
            for code, count in claimed.items():
                if count == 0:
                    continue
                celery_app.send_task(IMPORT_INVOICE_FILES_TASK, kwargs={"carrier_code": code})
                dispatched += 1

            summary = {
                "status": "success",
                "claimed": claimed,
                "dispatched_count": dispatched,
                "triggered_at": datetime.now(timezone.utc).isoformat(),
                "run_id": run_id,
            }
            logger.info("scheduler.claim_complete", **summary)
            return summary
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_claim())
    except Exception as exc:  # noqa: BLE001
        logger.error("scheduler.claim_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.scheduler.dispatch_open_tracking_numbers",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def dispatch_open_tracking_numbers(self, carrier_codes: list[str] | None = None):
    """Queue a processing unit for every non-terminal tracking number."""
    from core.carriers import get_carrier
    from core.config import get_settings
    from db.models import QueueStatus, TrackingNumber
    from workers.dispatch import TRACKING_QUEUE, CeleryWorkSubmitter, WorkUnit
    from workers.tracking import PROCESS_TRACKING_TASK

    run_id = self.request.id or "manual"

    async def _dispatch():
        settings = get_settings()
        codes = [c.strip().lower() for c in (carrier_codes or list(settings.carriers))]
        carriers_by_id = {carrier.id: carrier for carrier in (get_carrier(code, settings) for code in codes)}
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession)
            async with async_session() as db:
                result = await db.execute(
                    select(TrackingNumber.id, TrackingNumber.carrier_id)
                    .where(
                        TrackingNumber.queue_status == QueueStatus.NON_TERMINAL,
                        TrackingNumber.carrier_id.in_(list(carriers_by_id)),
                    )
                    .order_by(TrackingNumber.updated_at)
                )
                open_numbers = [(row.id, row.carrier_id) for row in result.all()]

            submitter = CeleryWorkSubmitter(celery_app, app_env=settings.app_env)
            for number_id, carrier_id in open_numbers:
                submitter.submit(
                    WorkUnit(
                        task_name=PROCESS_TRACKING_TASK,
                        queue=TRACKING_QUEUE,
                        kwargs={
                            "tracking_number_id": str(number_id),
                            "carrier_code": carriers_by_id[carrier_id].code,
                        },
                    )
                )

            summary = {
                "status": "success",
                "dispatched_count": len(open_numbers),
                "carriers": codes,
                "triggered_at": datetime.now(timezone.utc).isoformat(),
                "run_id": run_id,
            }
            logger.info("scheduler.tracking_dispatch_complete", **summary)
            return summary
        finally:
            await engine.dispose()

    try:
        return asyncio.run(_dispatch())
    except Exception as exc:  # noqa: BLE001
        logger.error("scheduler.tracking_dispatch_failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
