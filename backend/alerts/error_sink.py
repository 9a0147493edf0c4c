"""
Error Sink — persist an import error and forward it to the alert channel.

Invoice-side kinds land in invoice_import_errors (keyed by invoice file),
tracking-side kinds in tracking_number_import_errors (keyed by tracking
number). Every record produces exactly one alert, tagged with a stable
site key.
"""

from __future__ import annotations

import json
import uuid
from enum import Enum
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.carriers import CarrierDescriptor
from db.models import InvoiceImportError, TrackingNumberImportError

logger = structlog.get_logger()


class ErrorKind(str, Enum):
    MISSING_FILE = "missing_file"
    PARSE_FAILURE = "parse_failure"
    FILE_FAILURE = "file_failure"
    RECORD_FAILURE = "record_failure"
    PROVIDER_ERROR = "provider_error"
    TRACKING_FAILURE = "tracking_failure"

    @property
    def is_tracking(self) -> bool:
        return self in (ErrorKind.PROVIDER_ERROR, ErrorKind.TRACKING_FAILURE)


def exception_detail(exc: BaseException, **context: Any) -> dict[str, Any]:
    """Error payload for an exception: type, message and caller context."""
    return {"exception": type(exc).__name__, "message": str(exc), **context}


class ErrorSink:
    def __init__(self, db: AsyncSession, notifier):
        self.db = db
        self.notifier = notifier

    async def record(
        self,
        subject_id: uuid.UUID | str | None,
        kind: ErrorKind,
        detail: dict[str, Any] | str,
        site: str,
        carrier: CarrierDescriptor | None = None,
        tracking_number: str | None = None,
        level: str = "danger",
    ):
        """
        Persist one error row, commit it, then alert.

        The caller's session must be usable; roll back any failed work
        before recording.
        """
        subject_uuid = uuid.UUID(str(subject_id)) if subject_id else None

        if kind.is_tracking:
            message = detail if isinstance(detail, str) else json.dumps(detail, default=str)
            row = TrackingNumberImportError(
                tracking_number_id=subject_uuid,
                carrier_id=carrier.id if carrier else None,
                tracking_number=tracking_number,
                error_type=kind.value,
                error_message=message,
            )
        else:
            payload = {"message": detail} if isinstance(detail, str) else detail
            row = InvoiceImportError(
                invoice_file_id=subject_uuid,
                error_type=kind.value,
                carrier=carrier.code if carrier else None,
                error=json.loads(json.dumps(payload, default=str)),
            )
        self.db.add(row)
        await self.db.commit()

        logger.warning(
            "error_sink.recorded",
            kind=kind.value,
            site=site,
            subject_id=str(subject_uuid) if subject_uuid else None,
            carrier=carrier.code if carrier else None,
        )

        summary = self._summary(kind, detail, carrier, subject_uuid, tracking_number)
        try:
            await self.notifier.notify(site, summary, level=level)
        except Exception as exc:  # noqa: BLE001
            logger.error("error_sink.alert_failed", site=site, error=str(exc), exc_info=True)
        return row

    @staticmethod
    def _summary(
        kind: ErrorKind,
        detail: dict[str, Any] | str,
        carrier: CarrierDescriptor | None,
        subject_id: uuid.UUID | None,
        tracking_number: str | None,
    ) -> str:
        carrier_label = carrier.code.upper() if carrier else "unknown carrier"
        subject = tracking_number or (str(subject_id) if subject_id else "n/a")
        if isinstance(detail, dict):
            text = detail.get("message") or json.dumps(detail, default=str)
        else:
            text = detail
        return f"{carrier_label} {kind.value} for {subject}: {text}"
