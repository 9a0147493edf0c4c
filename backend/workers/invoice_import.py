"""
Invoice Import Workers — batch file pipeline and per-invoice units.

Workers:
  1. import_invoice_files: run one batch over every PROCESSING invoice file
     for a carrier (parse → dispatch one unit per invoice → move → mark)
  2. process_invoice: reconcile one parsed invoice record (unit of work)

A file is marked SUCCESS once its units are handed off, not once they
complete. Unit failures are retried and then recorded against the file.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.error_sink import ErrorKind, ErrorSink, exception_detail
from core.carriers import CarrierDescriptor
from db.models import InvoiceFile, InvoiceFileImportStatus
from integrations.base import ImportResult, ImportStatus, PayloadFormat, get_parser
from integrations.invoice_parser import NATURAL_ID_FIELD, InvoiceParseError
from integrations.storage import InvoiceFileStorage, StorageZone
from reconciliation.store import InvoiceReconciliation, ReconciliationStore
from workers.celery_app import celery_app
from workers.dispatch import INVOICE_PROCESS_QUEUE, RetryPolicy, WorkSubmitter, WorkUnit

logger = structlog.get_logger()

PROCESS_INVOICE_TASK = "workers.invoice_import.process_invoice"
MISSING_FILE_ALERT_SITE = "invoice-import-missing-file"
EXCEPTION_ALERT_SITE = "invoice-import-exception"
RECORD_ALERT_SITE = "invoice-process-exception"


class FileIngestionController:
    """
    Drives the lifecycle of claimed (PROCESSING) invoice files.

    Every file ends the pass as SUCCESS or FAILED. Nothing raised while
    handling one file escapes run_batch().
    """

    def __init__(
        self,
        db: AsyncSession,
        storage: InvoiceFileStorage,
        submitter: WorkSubmitter,
        error_sink: ErrorSink,
    ):
        self.db = db
        self.storage = storage
        self.submitter = submitter
        self.error_sink = error_sink
        self.parser = get_parser(PayloadFormat.INVOICE_XML)

    async def run_batch(self, carrier: CarrierDescriptor) -> ImportResult:
        result = ImportResult(status=ImportStatus.SUCCESS, metadata={"carrier": carrier.code})

        rows = await self.db.execute(
            select(InvoiceFile.id, InvoiceFile.file_name)
            .where(
                InvoiceFile.carrier == carrier.code,
                InvoiceFile.import_status == InvoiceFileImportStatus.PROCESSING.value,
            )
            .order_by(InvoiceFile.created_at)
        )
        claimed = [(row.id, row.file_name) for row in rows.all()]
        logger.info("invoice_import.batch_started", carrier=carrier.code, files=len(claimed))

        for file_id, file_name in claimed:
            try:
                await self._process_file(file_id, file_name, carrier, result)
            except Exception as exc:  # noqa: BLE001
                # Status/error writes themselves failed; the file stays PROCESSING for the next pass
                await self.db.rollback()
                result.files_failed += 1
                result.errors.append(f"{file_name}: {exc}")
                logger.error(
                    "invoice_import.file_unhandled",
                    file_id=str(file_id),
                    file_name=file_name,
                    error=str(exc),
                    exc_info=True,
                )

        result.complete()
        logger.info("invoice_import.batch_complete", **result.to_dict())
        return result

    async def _process_file(
        self,
        file_id: uuid.UUID,
        file_name: str,
        carrier: CarrierDescriptor,
        result: ImportResult,
    ) -> None:
        if not self.storage.exists(carrier.code, StorageZone.PENDING, file_name):
            await self._handle_absent_file(file_id, file_name, carrier, result)
            return

        dispatched = 0
        try:
            records = self.parser.parse(self.storage.read(carrier.code, StorageZone.PENDING, file_name))
            for record in records:
                self.submitter.submit(
                    WorkUnit(
                        task_name=PROCESS_INVOICE_TASK,
                        queue=INVOICE_PROCESS_QUEUE,
                        kwargs={
                            "invoice": record,
                            "invoice_file_id": str(file_id),
                            "carrier_code": carrier.code,
                        },
                    )
                )
                dispatched += 1
            self.storage.move(carrier.code, file_name, StorageZone.PENDING, StorageZone.SUCCESS)
        except Exception as exc:  # noqa: BLE001
            await self._fail_file(file_id, file_name, carrier, exc, dispatched, result)
            return

        await self._set_status(file_id, InvoiceFileImportStatus.SUCCESS)
        result.files_processed += 1
        result.records_dispatched += dispatched
        logger.info(
            "invoice_import.file_dispatched",
            file_id=str(file_id),
            file_name=file_name,
            carrier=carrier.code,
            records=dispatched,
        )

    async def _handle_absent_file(
        self,
        file_id: uuid.UUID,
        file_name: str,
        carrier: CarrierDescriptor,
        result: ImportResult,
    ) -> None:
        zone = self.storage.locate(carrier.code, file_name)

        # Already moved by an earlier pass that died before writing the status
        if zone == StorageZone.SUCCESS:
            await self._set_status(file_id, InvoiceFileImportStatus.SUCCESS)
            result.files_processed += 1
            logger.info("invoice_import.file_resumed", file_id=str(file_id), file_name=file_name, zone=zone.value)
            return
        if zone == StorageZone.FAILED:
            await self._set_status(file_id, InvoiceFileImportStatus.FAILED)
            result.files_failed += 1
            logger.info("invoice_import.file_resumed", file_id=str(file_id), file_name=file_name, zone=zone.value)
            return

        logger.error("invoice_import.file_missing", file_id=str(file_id), file_name=file_name, carrier=carrier.code)
        await self._set_status(file_id, InvoiceFileImportStatus.FAILED)
        await self.error_sink.record(
            file_id,
            ErrorKind.MISSING_FILE,
            {
                "message": f"Invoice file {file_name} is missing from {StorageZone.PENDING.value}",
                "file_name": file_name,
            },
            site=MISSING_FILE_ALERT_SITE,
            carrier=carrier,
        )
        result.files_failed += 1
        result.errors.append(f"{file_name}: missing")

    async def _fail_file(
        self,
        file_id: uuid.UUID,
        file_name: str,
        carrier: CarrierDescriptor,
        exc: Exception,
        dispatched: int,
        result: ImportResult,
    ) -> None:
        logger.error(
            "invoice_import.file_failed",
            file_id=str(file_id),
            file_name=file_name,
            carrier=carrier.code,
            dispatched=dispatched,
            error=str(exc),
            exc_info=True,
        )
        await self.db.rollback()

        try:
            self.storage.move(carrier.code, file_name, StorageZone.PENDING, StorageZone.FAILED)
        except Exception as move_exc:  # noqa: BLE001
            logger.error(
                "invoice_import.move_failed",
                file_id=str(file_id),
                file_name=file_name,
                error=str(move_exc),
                exc_info=True,
            )

        await self._set_status(file_id, InvoiceFileImportStatus.FAILED)
        await self.error_sink.record(
            file_id,
            ErrorKind.PARSE_FAILURE if isinstance(exc, InvoiceParseError) else ErrorKind.FILE_FAILURE,
            exception_detail(exc, file_name=file_name, records_dispatched=dispatched),
            site=EXCEPTION_ALERT_SITE,
            carrier=carrier,
        )
        result.files_failed += 1
        result.errors.append(f"{file_name}: {exc}")

    async def _set_status(self, file_id: uuid.UUID, status: InvoiceFileImportStatus) -> None:
        await self.db.execute(
            update(InvoiceFile)
            .where(InvoiceFile.id == file_id)
            .values(import_status=status.value, updated_at=datetime.utcnow())
        )
        await self.db.commit()


async def reconcile_invoice_unit(
    db: AsyncSession,
    store: ReconciliationStore,
    record: dict,
    invoice_file_id: str | None,
    carrier: CarrierDescriptor,
) -> InvoiceReconciliation:
    """One unit of work: reconcile a single invoice record in its own transaction."""
    try:
        outcome = await store.reconcile_invoice_charges(record, invoice_file_id, carrier)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await store.publish_pending()
    return outcome


# ──────────────────────────────────────────────────────────────────────────
# Celery tasks
# ──────────────────────────────────────────────────────────────────────────


@celery_app.task(
    name="workers.invoice_import.import_invoice_files",
    bind=True,
    max_retries=0,
    acks_late=True,
)
def import_invoice_files(self, carrier_code: str):
    """Run one batch pass over claimed invoice files for a carrier."""
    from core.carriers import get_carrier
    from integrations.storage import LocalInvoiceStorage
    from workers.dispatch import CeleryWorkSubmitter
    from workers.runtime import unit_resources

    run_id = self.request.id or "manual"
    carrier = get_carrier(carrier_code)
    logger.info("invoice_import.started", carrier=carrier.code, run_id=run_id)

    async def _run():
        async with unit_resources() as res:
            controller = FileIngestionController(
                res.db,
                LocalInvoiceStorage(res.settings.storage_root),
                CeleryWorkSubmitter(celery_app, app_env=res.settings.app_env),
                res.error_sink(),
            )
            result = await controller.run_batch(carrier)
            return {**result.to_dict(), "carrier": carrier.code, "run_id": run_id}

    return asyncio.run(_run())


@celery_app.task(
    name="workers.invoice_import.process_invoice",
    bind=True,
    acks_late=True,
)
def process_invoice(self, invoice: dict, invoice_file_id: str | None, carrier_code: str):
    """Reconcile one invoice record; retried, then recorded against its file."""
    from core.carriers import get_carrier
    from workers.runtime import unit_resources

    carrier = get_carrier(carrier_code)
    policy = RetryPolicy.from_settings()
    tracking_id = invoice.get(NATURAL_ID_FIELD)

    async def _process():
        async with unit_resources() as res:
            outcome = await reconcile_invoice_unit(res.db, res.reconciliation_store(), invoice, invoice_file_id, carrier)
            return {
                "status": "success",
                "invoice_id": str(outcome.invoice_id),
                "invoice_created": outcome.invoice_created,
                "charges_inserted": outcome.charges_inserted,
            }

    async def _record_failure(exc: Exception):
        async with unit_resources() as res:
            await res.error_sink().record(
                invoice_file_id,
                ErrorKind.RECORD_FAILURE,
                exception_detail(exc, tracking_id=tracking_id, invoice=invoice),
                site=RECORD_ALERT_SITE,
                carrier=carrier,
            )

    try:
        return asyncio.run(_process())
    except Exception as exc:  # noqa: BLE001
        attempt = self.request.retries or 0
        logger.error(
            "invoice_process.failed",
            carrier=carrier.code,
            tracking_id=tracking_id,
            invoice_file_id=invoice_file_id,
            attempt=attempt,
            error=str(exc),
            exc_info=True,
        )
        if policy.should_retry(attempt):
            raise self.retry(exc=exc, countdown=policy.countdown(attempt), max_retries=policy.max_retries)
        asyncio.run(_record_failure(exc))
        return {"status": "failed", "tracking_id": tracking_id, "error": str(exc)}
