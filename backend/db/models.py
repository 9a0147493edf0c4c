"""
CarrierSync Database Models

Tables:
  Invoice ingestion:
  1. invoice_files                 - Uploaded carrier invoice files + import status
  2. carrier_invoices              - One row per carrier-assigned shipment id
  3. invoice_charges               - Charge lines per invoice (unique description)
  4. surcharge_names               - Free-text surcharge vocabulary per carrier
  5. invoice_import_errors         - File and record level import failures

  Carrier reference data:
  6. carrier_service_names         - Service descriptions per carrier
  7. carrier_service_codes         - Service codes per carrier
  8. units_of_measure              - Weight / dimension units

  Tracking:
  9. teams                         - Teams watching tracking numbers
  10. tracking_number_teams        - Team <-> tracking number links
  11. tracking_numbers             - Tracked shipments + queue status
  12. tracking_statuses            - Provider status codes + terminal flag
  13. location_details             - Normalized, hashed event locations
  14. tracking_events              - Events keyed by (number, status, location)
  15. tracking_details             - One shipment summary per tracking number
  16. tracking_number_import_errors - Tracking processing failures

Reference rows (4, 6, 7, 8, 12, 13) carry a natural-key unique constraint;
concurrent first writers converge on it through INSERT ... ON CONFLICT.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


def UUID(as_uuid=True):
    return GUID()


from sqlalchemy.orm import relationship

from db.session import Base


class InvoiceFileImportStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


class QueueStatus:
    """TrackingNumber.queue_status values."""

    NON_TERMINAL = 0
    TERMINAL = 1


# ─── 1. Invoice Files ──────────────────────────────────────────────────────


class InvoiceFile(Base):
    __tablename__ = "invoice_files"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    carrier = Column(String(20), nullable=False)
    file_name = Column(String(500), nullable=False)
    import_status = Column(String(20), nullable=False, default=InvoiceFileImportStatus.PENDING.value)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_invoice_files_carrier_status", "carrier", "import_status"),
        CheckConstraint(
            "import_status IN ('pending', 'processing', 'success', 'failed')",
            name="ck_invoice_file_import_status",
        ),
    )

    errors = relationship("InvoiceImportError", back_populates="invoice_file")


# ─── 2. Carrier Invoices ───────────────────────────────────────────────────


class CarrierInvoice(Base):
    __tablename__ = "carrier_invoices"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    carrier_id = Column(Integer, nullable=False)
    invoice_file_id = Column(UUID(as_uuid=True), ForeignKey("invoice_files.id"), nullable=True)
    carrier_service_name_id = Column(UUID(as_uuid=True), ForeignKey("carrier_service_names.id"), nullable=True)

    # Carrier-assigned shipment id; the natural key for reconciliation
    tracking_id = Column(String(64), nullable=False)
    invoice_number = Column(String(64))
    invoice_date = Column(DateTime)
    account_number = Column(String(64))
    shipment_date = Column(DateTime)
    pod_delivery_date = Column(DateTime)
    zone_code = Column(String(20))
    pieces = Column(Integer)
    rated_weight = Column(Float)
    rated_weight_unit = Column(String(10))
    transportation_charge_amount = Column(Float)
    net_charge_amount = Column(Float)
    currency = Column(String(3))
    recipient_name = Column(String(255))
    recipient_postal_code = Column(String(20))
    shipper_postal_code = Column(String(20))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("carrier_id", "tracking_id", name="uq_carrier_invoice_tracking_id"),
        Index("ix_carrier_invoices_file", "invoice_file_id"),
    )

    charges = relationship("InvoiceCharge", back_populates="invoice", cascade="all, delete-orphan")


# ─── 3. Invoice Charges ────────────────────────────────────────────────────


class InvoiceCharge(Base):
    __tablename__ = "invoice_charges"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_id = Column(UUID(as_uuid=True), ForeignKey("carrier_invoices.id"), nullable=False)
    surcharge_name_id = Column(UUID(as_uuid=True), ForeignKey("surcharge_names.id"), nullable=True)
    description = Column(String(255), nullable=False)
    amount = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (UniqueConstraint("invoice_id", "description", name="uq_invoice_charge_description"),)

    invoice = relationship("CarrierInvoice", back_populates="charges")


# ─── 4. Surcharge Names ────────────────────────────────────────────────────


class SurchargeName(Base):
    __tablename__ = "surcharge_names"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    carrier_id = Column(Integer, nullable=False)
    name = Column(String(255), nullable=False)
    # Billing category; NULL until an operator links the name
    surcharge_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("carrier_id", "name", name="uq_surcharge_name_per_carrier"),)


# ─── 5. Invoice Import Errors ──────────────────────────────────────────────


class InvoiceImportError(Base):
    __tablename__ = "invoice_import_errors"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    invoice_file_id = Column(UUID(as_uuid=True), ForeignKey("invoice_files.id"), nullable=True)
    error_type = Column(String(50), nullable=False)
    carrier = Column(String(20))
    error = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_invoice_import_errors_file", "invoice_file_id", "created_at"),)

    invoice_file = relationship("InvoiceFile", back_populates="errors")


# ─── 6-7. Carrier Services ─────────────────────────────────────────────────


class CarrierServiceName(Base):
    __tablename__ = "carrier_service_names"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    carrier_id = Column(Integer, nullable=False)
    description = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("carrier_id", "description", name="uq_service_name_per_carrier"),)


class CarrierServiceCode(Base):
    __tablename__ = "carrier_service_codes"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    carrier_id = Column(Integer, nullable=False)
    code = Column(String(100), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("carrier_id", "code", name="uq_service_code_per_carrier"),)


# ─── 8. Units of Measure ───────────────────────────────────────────────────


class UnitOfMeasure(Base):
    __tablename__ = "units_of_measure"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(50), nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ─── 9-10. Teams ───────────────────────────────────────────────────────────


tracking_number_teams = Table(
    "tracking_number_teams",
    Base.metadata,
    Column("tracking_number_id", UUID(as_uuid=True), ForeignKey("tracking_numbers.id"), primary_key=True),
    Column("team_id", UUID(as_uuid=True), ForeignKey("teams.id"), primary_key=True),
)


class Team(Base):
    __tablename__ = "teams"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    tracking_numbers = relationship("TrackingNumber", secondary=tracking_number_teams, back_populates="teams")


# ─── 11. Tracking Numbers ──────────────────────────────────────────────────


class TrackingNumber(Base):
    __tablename__ = "tracking_numbers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    carrier_id = Column(Integer, nullable=False)
    tracking_number = Column(String(64), nullable=False)
    queue_status = Column(Integer, nullable=False, default=QueueStatus.NON_TERMINAL)
    # No FK: tracking_events already references tracking_numbers
    latest_event_id = Column(UUID(as_uuid=True), nullable=True)
    label_created_at = Column(DateTime, nullable=True)
    parent_tracking_number_id = Column(UUID(as_uuid=True), ForeignKey("tracking_numbers.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("carrier_id", "tracking_number", name="uq_tracking_number_per_carrier"),
        Index("ix_tracking_numbers_queue_status", "queue_status"),
        CheckConstraint("queue_status IN (0, 1)", name="ck_tracking_number_queue_status"),
    )

    teams = relationship("Team", secondary=tracking_number_teams, back_populates="tracking_numbers")
    events = relationship("TrackingEvent", back_populates="tracking_number", cascade="all, delete-orphan")
    detail = relationship("TrackingDetail", back_populates="tracking_number", uselist=False)


# ─── 12. Tracking Statuses ─────────────────────────────────────────────────


class TrackingStatus(Base):
    __tablename__ = "tracking_statuses"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    carrier_id = Column(Integer, nullable=False)
    code = Column(String(50), nullable=False)
    description = Column(String(255))
    type = Column(String(50))
    # Computed once at first creation
    terminal_status = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("carrier_id", "code", name="uq_tracking_status_per_carrier"),)


# ─── 13. Location Details ──────────────────────────────────────────────────


class LocationDetail(Base):
    __tablename__ = "location_details"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    content_hash = Column(String(32), nullable=False, unique=True)
    city = Column(String(255))
    state = Column(String(100))
    postal_code = Column(String(20))
    country = Column(String(100))
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# ─── 14. Tracking Events ───────────────────────────────────────────────────


class TrackingEvent(Base):
    __tablename__ = "tracking_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tracking_number_id = Column(UUID(as_uuid=True), ForeignKey("tracking_numbers.id"), nullable=False)
    tracking_status_id = Column(UUID(as_uuid=True), ForeignKey("tracking_statuses.id"), nullable=False)
    location_detail_id = Column(UUID(as_uuid=True), ForeignKey("location_details.id"), nullable=False)
    local_datetime = Column(DateTime)
    location_description = Column(Text)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "tracking_number_id",
            "tracking_status_id",
            "location_detail_id",
            name="uq_tracking_event_natural_key",
        ),
    )

    tracking_number = relationship("TrackingNumber", back_populates="events")
    tracking_status = relationship("TrackingStatus")
    location_detail = relationship("LocationDetail")


# ─── 15. Tracking Details ──────────────────────────────────────────────────


class TrackingDetail(Base):
    __tablename__ = "tracking_details"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tracking_number_id = Column(UUID(as_uuid=True), ForeignKey("tracking_numbers.id"), nullable=False, unique=True)
    carrier_id = Column(Integer, nullable=False)
    carrier_service_name_id = Column(UUID(as_uuid=True), ForeignKey("carrier_service_names.id"), nullable=True)
    carrier_service_code_id = Column(UUID(as_uuid=True), ForeignKey("carrier_service_codes.id"), nullable=True)
    ship_from_address = Column(JSON)
    ship_to_address = Column(JSON)
    reference_numbers = Column(JSON)
    estimated_delivery = Column(DateTime)
    delivered_at = Column(DateTime)
    pickup_date = Column(DateTime)
    shipment_weight = Column(Float)
    weight_uom_id = Column(UUID(as_uuid=True), ForeignKey("units_of_measure.id"), nullable=True)
    shipment_length = Column(Float)
    shipment_width = Column(Float)
    shipment_height = Column(Float)
    dimension_uom_id = Column(UUID(as_uuid=True), ForeignKey("units_of_measure.id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    tracking_number = relationship("TrackingNumber", back_populates="detail")


# ─── 16. Tracking Number Import Errors ─────────────────────────────────────


class TrackingNumberImportError(Base):
    __tablename__ = "tracking_number_import_errors"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tracking_number_id = Column(UUID(as_uuid=True), ForeignKey("tracking_numbers.id"), nullable=True)
    carrier_id = Column(Integer)
    tracking_number = Column(String(64))
    error_type = Column(String(50), nullable=False)
    error_message = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (Index("ix_tracking_import_errors_number", "tracking_number", "created_at"),)
