"""
Reconciliation Store — idempotent writes of parsed carrier data.

Invoices:
  An invoice is identified by its carrier-assigned shipment id. When it
  already exists only charges with a description not yet stored are
  inserted; when it is new the row is created and every parsed charge is
  inserted. Re-ingesting the same record therefore never duplicates
  charges.

Tracking:
  Events are upserted on (tracking number, status, location). The first
  event in provider order is the latest one; the provider returns
  newest-first and the order is never re-sorted here.

Neither method commits. The caller owns the transaction so a tracking
reconciliation lands atomically or not at all, and calls
`publish_pending()` after its commit so new reference ids reach the cache
and alerts go out only for rows that exist.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.notifier import PendingAlerts
from core.carriers import CarrierDescriptor
from db.models import CarrierInvoice, InvoiceCharge, QueueStatus, TrackingDetail, TrackingEvent, TrackingNumber
from db.upsert import insert_ignore, upsert
from integrations.invoice_parser import NATURAL_ID_FIELD, InvoiceParser, parse_amount
from integrations.tracking_parser import ParsedTracking
from reconciliation.reference_data import ReferenceDataResolver, ServiceResolver, normalize_text

logger = structlog.get_logger()

MULTI_PACKAGE_ALERT_SITE = "tracking-multi-packages"

# Invoice XML field -> carrier_invoices column. Anything else is dropped.
INVOICE_FIELD_MAP = {
    NATURAL_ID_FIELD: "tracking_id",
    "invoice_number": "invoice_number",
    "invoice_date": "invoice_date",
    "bill_to_account_number": "account_number",
    "shipment_date": "shipment_date",
    "pod_delivery_date": "pod_delivery_date",
    "zone_code": "zone_code",
    "number_of_pieces": "pieces",
    "rated_weight_amount": "rated_weight",
    "rated_weight_units": "rated_weight_unit",
    "transportation_charge_amount": "transportation_charge_amount",
    "net_charge_amount": "net_charge_amount",
    "invoice_currency_code": "currency",
    "recipient_name": "recipient_name",
    "recipient_zip_code": "recipient_postal_code",
    "shipper_zip_code": "shipper_postal_code",
}
SERVICE_FIELD = "service_type"
DATE_COLUMNS = frozenset({"invoice_date", "shipment_date", "pod_delivery_date"})
FLOAT_COLUMNS = frozenset({"rated_weight", "transportation_charge_amount", "net_charge_amount"})
INT_COLUMNS = frozenset({"pieces"})

_DATE_FORMATS = ("%Y-%m-%d", "%Y%m%d", "%m/%d/%Y", "%m/%d/%y", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S")


def parse_invoice_date(value: Any) -> datetime:
    text = str(value).strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    raise ValueError(f"Unrecognized invoice date: {value!r}")


@dataclass(frozen=True)
class InvoiceReconciliation:
    invoice_id: uuid.UUID
    invoice_created: bool
    charges_inserted: int


@dataclass(frozen=True)
class TrackingOutcome:
    tracking_number_id: uuid.UUID
    latest_event_id: uuid.UUID | None
    queue_status: int
    events_stored: int
    label_created_at: datetime | None
    alternate_tracking_number: str | None


class ReconciliationStore:
    def __init__(
        self,
        db: AsyncSession,
        resolver: ReferenceDataResolver,
        services: ServiceResolver,
        alerts: PendingAlerts,
    ):
        self.db = db
        self.resolver = resolver
        self.services = services
        self.alerts = alerts
        alerts.bind_session(db)

    async def publish_pending(self) -> None:
        """Publish reference ids and alerts staged by a transaction that has committed."""
        await self.resolver.cache.publish_pending()
        if self.services.cache is not self.resolver.cache:
            await self.services.cache.publish_pending()
        await self.alerts.flush()

    # ── Invoices ──────────────────────────────────────────────────────

    async def reconcile_invoice_charges(
        self,
        record: dict[str, Any],
        invoice_file_id: uuid.UUID | str | None,
        carrier: CarrierDescriptor,
    ) -> InvoiceReconciliation:
        tracking_id = normalize_text(record.get(NATURAL_ID_FIELD))
        if not tracking_id:
            raise ValueError(f"Invoice record has no {NATURAL_ID_FIELD}")

        charges = InvoiceParser.extract_charges(record)
        existing = await self._find_invoice(carrier, tracking_id)

        if existing is not None:
            result = await self.db.execute(select(InvoiceCharge.description).where(InvoiceCharge.invoice_id == existing))
            stored = {row[0] for row in result.all()}
            charges = [c for c in charges if c.description not in stored]
            invoice_id, created = existing, False
        else:
            values = await self.prepare_invoice_values(record, invoice_file_id, carrier)
            created = bool(await insert_ignore(self.db, CarrierInvoice, values, ["carrier_id", "tracking_id"]))
            invoice_id = await self._find_invoice(carrier, tracking_id)

        now = datetime.utcnow()
        rows = []
        for charge in charges:
            rows.append(
                {
                    "id": uuid.uuid4(),
                    "invoice_id": invoice_id,
                    "surcharge_name_id": await self.resolver.surcharge_name_id(
                        charge.description, carrier, invoice_id=invoice_id
                    ),
                    "description": charge.description,
                    "amount": charge.amount,
                    "created_at": now,
                    "updated_at": now,
                }
            )
        inserted = await insert_ignore(self.db, InvoiceCharge, rows, ["invoice_id", "description"])

        logger.info(
            "reconcile.invoice",
            carrier=carrier.code,
            tracking_id=tracking_id,
            invoice_id=str(invoice_id),
            invoice_created=created,
            charges_inserted=inserted,
        )
        return InvoiceReconciliation(invoice_id=invoice_id, invoice_created=created, charges_inserted=inserted)

    async def _find_invoice(self, carrier: CarrierDescriptor, tracking_id: str) -> uuid.UUID | None:
        result = await self.db.execute(
            select(CarrierInvoice.id).where(
                CarrierInvoice.carrier_id == carrier.id,
                CarrierInvoice.tracking_id == tracking_id,
            )
        )
        return result.scalar_one_or_none()

    async def prepare_invoice_values(
        self,
        record: dict[str, Any],
        invoice_file_id: uuid.UUID | str | None,
        carrier: CarrierDescriptor,
    ) -> dict[str, Any]:
        """
        Build a carrier_invoices row from a parsed record.

        Unknown fields are dropped, thousands separators stripped, dates
        parsed, and empty values omitted so column defaults apply.
        """
        values: dict[str, Any] = {}
        for source_field, column in INVOICE_FIELD_MAP.items():
            raw = record.get(source_field)
            if isinstance(raw, (list, dict)):
                continue
            text = normalize_text(raw)
            if not text:
                continue
            if column in DATE_COLUMNS:
                values[column] = parse_invoice_date(text)
            elif column in FLOAT_COLUMNS:
                values[column] = parse_amount(text)
            elif column in INT_COLUMNS:
                values[column] = int(parse_amount(text))
            else:
                values[column] = text

        if "currency" in values:
            values["currency"] = values["currency"][:3].upper()

        values["carrier_service_name_id"] = await self.services.service_name_id(record.get(SERVICE_FIELD), carrier)
        values["carrier_id"] = carrier.id
        values["id"] = uuid.uuid4()
        if invoice_file_id:
            values["invoice_file_id"] = uuid.UUID(str(invoice_file_id))
        return {key: value for key, value in values.items() if value is not None}

    # ── Tracking ──────────────────────────────────────────────────────

    async def store_tracking_result(
        self,
        parsed: ParsedTracking,
        carrier: CarrierDescriptor,
        tracking_number: TrackingNumber,
    ) -> TrackingOutcome:
        service_ids = await self.services.resolve(parsed.service_description, parsed.service_code, carrier)

        if parsed.package_count > 1:
            logger.warning(
                "reconcile.tracking_multi_packages",
                tracking_number=tracking_number.tracking_number,
                packages=parsed.package_count,
            )
            self.alerts.add(
                MULTI_PACKAGE_ALERT_SITE,
                (
                    f"{carrier.code.upper()} tracking number {tracking_number.tracking_number} returned "
                    f"{parsed.package_count} packages; all events were ingested."
                ),
                level="warning",
            )

        latest_event_id: uuid.UUID | None = None
        queue_status = QueueStatus.NON_TERMINAL
        now = datetime.utcnow()
        for position, event in enumerate(parsed.events):
            status = await self.resolver.tracking_status(
                event.status_code, event.status_description, event.status_type, carrier
            )
            location_id = await self.resolver.location_detail_id(event.location)
            event_id = await self._upsert_event(
                {
                    "id": uuid.uuid4(),
                    "tracking_number_id": tracking_number.id,
                    "tracking_status_id": status.id,
                    "location_detail_id": location_id,
                    "local_datetime": event.local_datetime,
                    "location_description": event.location_description,
                    "updated_at": now,
                }
            )
            if position == 0:
                latest_event_id = event_id
                queue_status = QueueStatus.TERMINAL if status.terminal_status else QueueStatus.NON_TERMINAL

        await self._replace_detail(
            parsed,
            carrier,
            tracking_number,
            service_ids.carrier_service_name_id,
            service_ids.carrier_service_code_id,
        )

        tracking_number.latest_event_id = latest_event_id
        tracking_number.queue_status = queue_status
        tracking_number.label_created_at = parsed.label_created_at
        await self.db.flush()

        logger.info(
            "reconcile.tracking",
            carrier=carrier.code,
            tracking_number=tracking_number.tracking_number,
            events=len(parsed.events),
            queue_status=queue_status,
        )
        return TrackingOutcome(
            tracking_number_id=tracking_number.id,
            latest_event_id=latest_event_id,
            queue_status=queue_status,
            events_stored=len(parsed.events),
            label_created_at=parsed.label_created_at,
            alternate_tracking_number=parsed.alternate_tracking_number,
        )

    async def _upsert_event(self, values: dict[str, Any]) -> uuid.UUID:
        key = ["tracking_number_id", "tracking_status_id", "location_detail_id"]
        await upsert(self.db, TrackingEvent, values, key)
        result = await self.db.execute(select(TrackingEvent.id).filter_by(**{col: values[col] for col in key}))
        return result.scalar_one()

    async def _replace_detail(
        self,
        parsed: ParsedTracking,
        carrier: CarrierDescriptor,
        tracking_number: TrackingNumber,
        service_name_id: uuid.UUID | None,
        service_code_id: uuid.UUID | None,
    ) -> None:
        weight_uom = await self.resolver.unit_of_measure(parsed.weight_unit)
        dimension_uom = await self.resolver.unit_of_measure(parsed.dimension_unit)
        # Every summary column is written so stale values never survive
        await upsert(
            self.db,
            TrackingDetail,
            {
                "id": uuid.uuid4(),
                "tracking_number_id": tracking_number.id,
                "carrier_id": carrier.id,
                "carrier_service_name_id": service_name_id,
                "carrier_service_code_id": service_code_id,
                "ship_from_address": parsed.ship_from_address or None,
                "ship_to_address": parsed.ship_to_address or None,
                "reference_numbers": parsed.reference_numbers,
                "estimated_delivery": parsed.estimated_delivery,
                "delivered_at": parsed.delivered_at,
                "pickup_date": parsed.pickup_date,
                "shipment_weight": parsed.weight,
                "weight_uom_id": uuid.UUID(weight_uom["id"]) if weight_uom else None,
                "shipment_length": parsed.length,
                "shipment_width": parsed.width,
                "shipment_height": parsed.height,
                "dimension_uom_id": uuid.UUID(dimension_uom["id"]) if dimension_uom else None,
                "updated_at": datetime.utcnow(),
            },
            ["tracking_number_id"],
        )
