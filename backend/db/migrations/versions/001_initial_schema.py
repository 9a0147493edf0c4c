"""
Initial schema - invoice ingestion, carrier reference data and tracking

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects.postgresql import JSONB, UUID

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _id() -> sa.Column:
    return sa.Column("id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()"))


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now())


def _updated_at() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now())


def upgrade() -> None:
    # 1. Invoice files
    op.create_table(
        "invoice_files",
        _id(),
        sa.Column("carrier", sa.String(20), nullable=False),
        sa.Column("file_name", sa.String(500), nullable=False),
        sa.Column("import_status", sa.String(20), nullable=False, server_default="pending"),
        _created_at(),
        _updated_at(),
        sa.CheckConstraint(
            "import_status IN ('pending', 'processing', 'success', 'failed')",
            name="ck_invoice_file_import_status",
        ),
    )
    op.create_index("ix_invoice_files_carrier_status", "invoice_files", ["carrier", "import_status"])

    # 2. Carrier reference data
    op.create_table(
        "carrier_service_names",
        _id(),
        sa.Column("carrier_id", sa.Integer, nullable=False),
        sa.Column("description", sa.String(255), nullable=False),
        _created_at(),
        sa.UniqueConstraint("carrier_id", "description", name="uq_service_name_per_carrier"),
    )
    op.create_table(
        "carrier_service_codes",
        _id(),
        sa.Column("carrier_id", sa.Integer, nullable=False),
        sa.Column("code", sa.String(100), nullable=False),
        _created_at(),
        sa.UniqueConstraint("carrier_id", "code", name="uq_service_code_per_carrier"),
    )
    op.create_table(
        "units_of_measure",
        _id(),
        sa.Column("name", sa.String(50), nullable=False, unique=True),
        _created_at(),
    )
    op.create_table(
        "surcharge_names",
        _id(),
        sa.Column("carrier_id", sa.Integer, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("surcharge_id", sa.Integer),
        _created_at(),
        sa.UniqueConstraint("carrier_id", "name", name="uq_surcharge_name_per_carrier"),
    )

    # 3. Invoices and charges
    op.create_table(
        "carrier_invoices",
        _id(),
        sa.Column("carrier_id", sa.Integer, nullable=False),
        sa.Column("invoice_file_id", UUID(as_uuid=True), sa.ForeignKey("invoice_files.id")),
        sa.Column("carrier_service_name_id", UUID(as_uuid=True), sa.ForeignKey("carrier_service_names.id")),
        sa.Column("tracking_id", sa.String(64), nullable=False),
        sa.Column("invoice_number", sa.String(64)),
        sa.Column("invoice_date", sa.DateTime),
        sa.Column("account_number", sa.String(64)),
        sa.Column("shipment_date", sa.DateTime),
        sa.Column("pod_delivery_date", sa.DateTime),
        sa.Column("zone_code", sa.String(20)),
        sa.Column("pieces", sa.Integer),
        sa.Column("rated_weight", sa.Float),
        sa.Column("rated_weight_unit", sa.String(10)),
        sa.Column("transportation_charge_amount", sa.Float),
        sa.Column("net_charge_amount", sa.Float),
        sa.Column("currency", sa.String(3)),
        sa.Column("recipient_name", sa.String(255)),
        sa.Column("recipient_postal_code", sa.String(20)),
        sa.Column("shipper_postal_code", sa.String(20)),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("carrier_id", "tracking_id", name="uq_carrier_invoice_tracking_id"),
    )
    op.create_index("ix_carrier_invoices_file", "carrier_invoices", ["invoice_file_id"])

    op.create_table(
        "invoice_charges",
        _id(),
        sa.Column("invoice_id", UUID(as_uuid=True), sa.ForeignKey("carrier_invoices.id"), nullable=False),
        sa.Column("surcharge_name_id", UUID(as_uuid=True), sa.ForeignKey("surcharge_names.id")),
        sa.Column("description", sa.String(255), nullable=False),
        sa.Column("amount", sa.Float, nullable=False, server_default="0"),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("invoice_id", "description", name="uq_invoice_charge_description"),
    )

    op.create_table(
        "invoice_import_errors",
        _id(),
        sa.Column("invoice_file_id", UUID(as_uuid=True), sa.ForeignKey("invoice_files.id")),
        sa.Column("error_type", sa.String(50), nullable=False),
        sa.Column("carrier", sa.String(20)),
        sa.Column("error", JSONB, nullable=False),
        _created_at(),
    )
    op.create_index("ix_invoice_import_errors_file", "invoice_import_errors", ["invoice_file_id", "created_at"])

    # 4. Teams and tracking numbers
    op.create_table(
        "teams",
        _id(),
        sa.Column("name", sa.String(255), nullable=False),
        _created_at(),
    )
    op.create_table(
        "tracking_numbers",
        _id(),
        sa.Column("carrier_id", sa.Integer, nullable=False),
        sa.Column("tracking_number", sa.String(64), nullable=False),
        sa.Column("queue_status", sa.Integer, nullable=False, server_default="0"),
        sa.Column("latest_event_id", UUID(as_uuid=True)),
        sa.Column("label_created_at", sa.DateTime),
        sa.Column("parent_tracking_number_id", UUID(as_uuid=True), sa.ForeignKey("tracking_numbers.id")),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint("carrier_id", "tracking_number", name="uq_tracking_number_per_carrier"),
        sa.CheckConstraint("queue_status IN (0, 1)", name="ck_tracking_number_queue_status"),
    )
    op.create_index("ix_tracking_numbers_queue_status", "tracking_numbers", ["queue_status"])

    op.create_table(
        "tracking_number_teams",
        sa.Column("tracking_number_id", UUID(as_uuid=True), sa.ForeignKey("tracking_numbers.id"), primary_key=True),
        sa.Column("team_id", UUID(as_uuid=True), sa.ForeignKey("teams.id"), primary_key=True),
    )

    # 5. Tracking reference data
    op.create_table(
        "tracking_statuses",
        _id(),
        sa.Column("carrier_id", sa.Integer, nullable=False),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("description", sa.String(255)),
        sa.Column("type", sa.String(50)),
        sa.Column("terminal_status", sa.Boolean, nullable=False, server_default=sa.false()),
        _created_at(),
        sa.UniqueConstraint("carrier_id", "code", name="uq_tracking_status_per_carrier"),
    )
    op.create_table(
        "location_details",
        _id(),
        sa.Column("content_hash", sa.String(32), nullable=False, unique=True),
        sa.Column("city", sa.String(255)),
        sa.Column("state", sa.String(100)),
        sa.Column("postal_code", sa.String(20)),
        sa.Column("country", sa.String(100)),
        _created_at(),
    )

    # 6. Tracking events and details
    op.create_table(
        "tracking_events",
        _id(),
        sa.Column("tracking_number_id", UUID(as_uuid=True), sa.ForeignKey("tracking_numbers.id"), nullable=False),
        sa.Column("tracking_status_id", UUID(as_uuid=True), sa.ForeignKey("tracking_statuses.id"), nullable=False),
        sa.Column("location_detail_id", UUID(as_uuid=True), sa.ForeignKey("location_details.id"), nullable=False),
        sa.Column("local_datetime", sa.DateTime),
        sa.Column("location_description", sa.Text),
        _created_at(),
        _updated_at(),
        sa.UniqueConstraint(
            "tracking_number_id",
            "tracking_status_id",
            "location_detail_id",
            name="uq_tracking_event_natural_key",
        ),
    )

    op.create_table(
        "tracking_details",
        _id(),
        sa.Column(
            "tracking_number_id",
            UUID(as_uuid=True),
            sa.ForeignKey("tracking_numbers.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("carrier_id", sa.Integer, nullable=False),
        sa.Column("carrier_service_name_id", UUID(as_uuid=True), sa.ForeignKey("carrier_service_names.id")),
        sa.Column("carrier_service_code_id", UUID(as_uuid=True), sa.ForeignKey("carrier_service_codes.id")),
        sa.Column("ship_from_address", JSONB),
        sa.Column("ship_to_address", JSONB),
        sa.Column("reference_numbers", JSONB),
        sa.Column("estimated_delivery", sa.DateTime),
        sa.Column("delivered_at", sa.DateTime),
        sa.Column("pickup_date", sa.DateTime),
        sa.Column("shipment_weight", sa.Float),
        sa.Column("weight_uom_id", UUID(as_uuid=True), sa.ForeignKey("units_of_measure.id")),
        sa.Column("shipment_length", sa.Float),
        sa.Column("shipment_width", sa.Float),
        sa.Column("shipment_height", sa.Float),
        sa.Column("dimension_uom_id", UUID(as_uuid=True), sa.ForeignKey("units_of_measure.id")),
        _created_at(),
        _updated_at(),
    )

    op.create_table(
        "tracking_number_import_errors",
        _id(),
        sa.Column("tracking_number_id", UUID(as_uuid=True), sa.ForeignKey("tracking_numbers.id")),
        sa.Column("carrier_id", sa.Integer),
        sa.Column("tracking_number", sa.String(64)),
        sa.Column("error_type", sa.String(50), nullable=False),
        sa.Column("error_message", sa.Text, nullable=False),
        _created_at(),
    )
    op.create_index(
        "ix_tracking_import_errors_number",
        "tracking_number_import_errors",
        ["tracking_number", "created_at"],
    )


def downgrade() -> None:
    tables = [
        "tracking_number_import_errors",
        "tracking_details",
        "tracking_events",
        "location_details",
        "tracking_statuses",
        "tracking_number_teams",
        "tracking_numbers",
        "teams",
        "invoice_import_errors",
        "invoice_charges",
        "carrier_invoices",
        "surcharge_names",
        "units_of_measure",
        "carrier_service_codes",
        "carrier_service_names",
        "invoice_files",
    ]
    for table in tables:
        op.drop_table(table)
