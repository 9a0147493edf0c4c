"""
Invoice Files Router — register uploaded carrier invoice files and inspect
their import state.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_storage, resolve_carrier
from db.models import InvoiceFile, InvoiceFileImportStatus, InvoiceImportError
from integrations.storage import InvoiceFileStorage, StorageZone

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/invoice-files", tags=["invoice-files"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class InvoiceFileCreate(BaseModel):
    carrier: str = Field(..., min_length=1, max_length=20)
    file_name: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1)


class InvoiceFileResponse(BaseModel):
    id: UUID
    carrier: str
    file_name: str
    import_status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class InvoiceImportErrorResponse(BaseModel):
    id: UUID
    invoice_file_id: UUID | None
    error_type: str
    carrier: str | None
    error: dict[str, Any]
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/", response_model=InvoiceFileResponse, status_code=201)
async def register_invoice_file(
    payload: InvoiceFileCreate,
    db: AsyncSession = Depends(get_db),
    storage: InvoiceFileStorage = Depends(get_storage),
):
    """Store an uploaded invoice document in the pending zone and queue it for claiming."""
    carrier = resolve_carrier(payload.carrier)
    try:
        storage.write(carrier.code, StorageZone.PENDING, payload.file_name, payload.content.encode("utf-8"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    invoice_file = InvoiceFile(
        carrier=carrier.code,
        file_name=payload.file_name,
        import_status=InvoiceFileImportStatus.PENDING.value,
    )
    db.add(invoice_file)
    await db.commit()
    await db.refresh(invoice_file)
    logger.info("invoice_files.registered", file_id=str(invoice_file.id), carrier=carrier.code)
    return invoice_file


@router.get("/", response_model=list[InvoiceFileResponse])
async def list_invoice_files(
    carrier: str | None = None,
    import_status: InvoiceFileImportStatus | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """List invoice files, newest first."""
    query = select(InvoiceFile)
    if carrier:
        query = query.where(InvoiceFile.carrier == resolve_carrier(carrier).code)
    if import_status:
        query = query.where(InvoiceFile.import_status == import_status.value)
    query = query.order_by(InvoiceFile.created_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/{file_id}/errors", response_model=list[InvoiceImportErrorResponse])
async def list_invoice_file_errors(
    file_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Import errors recorded for one file (file-level and record-level)."""
    invoice_file = await db.get(InvoiceFile, file_id)
    if invoice_file is None:
        raise HTTPException(status_code=404, detail="Invoice file not found")
    result = await db.execute(
        select(InvoiceImportError)
        .where(InvoiceImportError.invoice_file_id == file_id)
        .order_by(InvoiceImportError.created_at)
    )
    return result.scalars().all()
