"""
Reference-data resolvers.

Turn free-text carrier vocabulary (surcharge names, service names/codes,
status codes, locations, units) into stable row ids. Every resolver is a
cache-aside lookup whose creator inserts-if-absent on the natural key and
then reads the canonical row back, so racing workers in separate processes
end up with the same id.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.notifier import PendingAlerts
from core.carriers import CarrierDescriptor
from db.models import (
    CarrierServiceCode,
    CarrierServiceName,
    LocationDetail,
    SurchargeName,
    TrackingStatus,
    UnitOfMeasure,
)
from db.upsert import insert_ignore
from reconciliation.cache import ReferenceDataCache, text_key
from reconciliation.location import LocationNormalizer

logger = structlog.get_logger()

_WHITESPACE = re.compile(r"\s+")


def normalize_text(value: Any) -> str:
    """Collapse whitespace; reference text is normalized before lookup."""
    if value is None:
        return ""
    return _WHITESPACE.sub(" ", str(value)).strip()


async def _insert_then_read(db: AsyncSession, model, values: dict[str, Any], conflict_columns: list[str]):
    inserted = await insert_ignore(db, model, values, conflict_columns)
    result = await db.execute(select(model).filter_by(**{col: values[col] for col in conflict_columns}))
    return result.scalar_one(), bool(inserted)


@dataclass(frozen=True)
class ServiceIds:
    carrier_service_name_id: uuid.UUID | None
    carrier_service_code_id: uuid.UUID | None


@dataclass(frozen=True)
class ResolvedStatus:
    id: uuid.UUID
    terminal_status: bool


class ServiceResolver:
    """Carrier service description / code -> ids."""

    def __init__(self, db: AsyncSession, cache: ReferenceDataCache):
        self.db = db
        self.cache = cache
        cache.bind_session(db)

    async def service_name_id(self, description: Any, carrier: CarrierDescriptor) -> uuid.UUID | None:
        description = normalize_text(description)
        if not description:
            return None

        async def _create():
            row, _ = await _insert_then_read(
                self.db,
                CarrierServiceName,
                {"carrier_id": carrier.id, "description": description},
                ["carrier_id", "description"],
            )
            return str(row.id)

        cached = await self.cache.get_or_create(text_key("carrier_service_name", carrier.id, description), _create)
        return uuid.UUID(cached)

    async def service_code_id(self, code: Any, carrier: CarrierDescriptor) -> uuid.UUID | None:
        code = normalize_text(code)
        if not code:
            return None

        async def _create():
            row, _ = await _insert_then_read(
                self.db,
                CarrierServiceCode,
                {"carrier_id": carrier.id, "code": code},
                ["carrier_id", "code"],
            )
            return str(row.id)

        cached = await self.cache.get_or_create(text_key("carrier_service_code", carrier.id, code), _create)
        return uuid.UUID(cached)

    async def resolve(self, description: Any, code: Any, carrier: CarrierDescriptor) -> ServiceIds:
        return ServiceIds(
            carrier_service_name_id=await self.service_name_id(description, carrier),
            carrier_service_code_id=await self.service_code_id(code, carrier),
        )


class ReferenceDataResolver:
    """Surcharge names, tracking statuses, locations and units of measure."""

    def __init__(
        self,
        db: AsyncSession,
        cache: ReferenceDataCache,
        alerts: PendingAlerts,
        location_normalizer: LocationNormalizer | None = None,
        uom_ttl: int | None = None,
    ):
        self.db = db
        self.cache = cache
        self.alerts = alerts
        cache.bind_session(db)
        alerts.bind_session(db)
        self.location_normalizer = location_normalizer or LocationNormalizer()
        self.uom_ttl = uom_ttl

    async def surcharge_name_id(
        self,
        name: Any,
        carrier: CarrierDescriptor,
        invoice_id: uuid.UUID | None = None,
    ) -> uuid.UUID | None:
        """
        Resolve a surcharge name, creating it on first sight.

        Auto-created names have no billing category yet, so creation
        queues a manual-review alert, published after commit.
        """
        name = normalize_text(name)
        if not name:
            return None

        async def _create():
            row, created = await _insert_then_read(
                self.db,
                SurchargeName,
                {"carrier_id": carrier.id, "name": name},
                ["carrier_id", "name"],
            )
            if created:
                logger.warning(
                    "refdata.surcharge_name_created",
                    surcharge_name_id=str(row.id),
                    name=name,
                    carrier=carrier.code,
                    invoice_id=str(invoice_id) if invoice_id else None,
                )
                self.alerts.add(
                    f"surcharge-name-unmapped-{row.id}",
                    (
                        f"New {carrier.code.upper()} surcharge name created for invoice {invoice_id}. "
                        f"Requires manual linking to a billing surcharge. Name: {name}, ID: {row.id}"
                    ),
                    level="good",
                )
            return str(row.id)

        cached = await self.cache.get_or_create(text_key("surcharge_name", carrier.id, name), _create)
        return uuid.UUID(cached)

    async def tracking_status(
        self,
        code: Any,
        description: Any,
        status_type: Any,
        carrier: CarrierDescriptor,
    ) -> ResolvedStatus:
        """
        Resolve a provider status code.

        terminal_status is decided by whichever writer creates the row;
        later sightings read it back and never recompute it.
        """
        code = normalize_text(code)
        description = normalize_text(description)

        async def _create():
            row, _ = await _insert_then_read(
                self.db,
                TrackingStatus,
                {
                    "carrier_id": carrier.id,
                    "code": code,
                    "description": description or None,
                    "type": normalize_text(status_type) or None,
                    "terminal_status": carrier.is_terminal(description),
                },
                ["carrier_id", "code"],
            )
            return {"id": str(row.id), "terminal_status": bool(row.terminal_status)}

        cached = await self.cache.get_or_create(text_key("tracking_status", carrier.id, code), _create)
        return ResolvedStatus(id=uuid.UUID(cached["id"]), terminal_status=bool(cached["terminal_status"]))

    async def location_detail_id(self, location: dict[str, Any] | None) -> uuid.UUID:
        normalized = self.location_normalizer.normalize(location)
        content_hash = self.location_normalizer.content_hash(normalized)

        async def _create():
            row, _ = await _insert_then_read(
                self.db,
                LocationDetail,
                {"content_hash": content_hash, **normalized},
                ["content_hash"],
            )
            return str(row.id)

        cached = await self.cache.get_or_create(f"location_detail:{content_hash}", _create)
        return uuid.UUID(cached)

    async def unit_of_measure(self, name: Any) -> dict[str, Any] | None:
        name = normalize_text(name).lower()
        if not name:
            return None

        async def _create():
            row, _ = await _insert_then_read(self.db, UnitOfMeasure, {"name": name}, ["name"])
            return {"id": str(row.id), "name": row.name}

        return await self.cache.get_or_create(f"uom:{name}", _create, ttl=self.uom_ttl)
