"""
Tracking Numbers Router — register numbers for a team, read their status,
and queue on-demand refreshes.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, get_submitter, resolve_carrier
from core.carriers import get_carrier
from core.config import get_settings
from db.models import Team, TrackingEvent, TrackingNumber, TrackingStatus
from workers.dispatch import WorkSubmitter
from workers.tracking import register_tracking_number, submit_tracking_refresh

router = APIRouter(prefix="/api/v1/tracking-numbers", tags=["tracking-numbers"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class TrackingNumberCreate(BaseModel):
    carrier: str = Field(..., min_length=1, max_length=20)
    tracking_number: str = Field(..., min_length=1, max_length=64)
    team_id: UUID


class LatestEvent(BaseModel):
    status_code: str
    status_description: str | None
    terminal_status: bool
    local_datetime: datetime | None
    location_description: str | None


class TrackingNumberResponse(BaseModel):
    id: UUID
    carrier: str | None
    tracking_number: str
    queue_status: int
    label_created_at: datetime | None
    parent_tracking_number_id: UUID | None
    latest_event: LatestEvent | None = None
    updated_at: datetime


class RefreshResponse(BaseModel):
    tracking_number_id: UUID
    task_id: str | None


# ─── Helpers ────────────────────────────────────────────────────────────────


def _carrier_code(carrier_id: int) -> str | None:
    for code, entry in get_settings().carriers.items():
        if int(entry["id"]) == carrier_id:
            return code
    return None


async def _serialize(db: AsyncSession, tracking_number: TrackingNumber) -> TrackingNumberResponse:
    latest = None
    if tracking_number.latest_event_id:
        row = (
            await db.execute(
                select(TrackingEvent, TrackingStatus)
                .join(TrackingStatus, TrackingStatus.id == TrackingEvent.tracking_status_id)
                .where(TrackingEvent.id == tracking_number.latest_event_id)
            )
        ).first()
        if row is not None:
            event, status = row
            latest = LatestEvent(
                status_code=status.code,
                status_description=status.description,
                terminal_status=status.terminal_status,
                local_datetime=event.local_datetime,
                location_description=event.location_description,
            )
    return TrackingNumberResponse(
        id=tracking_number.id,
        carrier=_carrier_code(tracking_number.carrier_id),
        tracking_number=tracking_number.tracking_number,
        queue_status=tracking_number.queue_status,
        label_created_at=tracking_number.label_created_at,
        parent_tracking_number_id=tracking_number.parent_tracking_number_id,
        latest_event=latest,
        updated_at=tracking_number.updated_at,
    )


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/", response_model=TrackingNumberResponse, status_code=201)
async def register_number(
    payload: TrackingNumberCreate,
    db: AsyncSession = Depends(get_db),
    submitter: WorkSubmitter = Depends(get_submitter),
):
    """Watch a tracking number for a team and queue its first fetch."""
    carrier = resolve_carrier(payload.carrier)
    if await db.get(Team, payload.team_id) is None:
        raise HTTPException(status_code=404, detail="Team not found")

    number_id = await register_tracking_number(db, carrier, payload.tracking_number, payload.team_id)
    await db.commit()
    submit_tracking_refresh(submitter, number_id, carrier)

    tracking_number = await db.get(TrackingNumber, number_id)
    return await _serialize(db, tracking_number)


@router.get("/{tracking_number_id}", response_model=TrackingNumberResponse)
async def get_tracking_number(
    tracking_number_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    tracking_number = await db.get(TrackingNumber, tracking_number_id)
    if tracking_number is None:
        raise HTTPException(status_code=404, detail="Tracking number not found")
    return await _serialize(db, tracking_number)


@router.post("/{tracking_number_id}/refresh", response_model=RefreshResponse, status_code=202)
async def refresh_tracking_number(
    tracking_number_id: UUID,
    db: AsyncSession = Depends(get_db),
    submitter: WorkSubmitter = Depends(get_submitter),
):
    """Queue an out-of-schedule fetch for one tracking number."""
    tracking_number = await db.get(TrackingNumber, tracking_number_id)
    if tracking_number is None:
        raise HTTPException(status_code=404, detail="Tracking number not found")
    code = _carrier_code(tracking_number.carrier_id)
    if code is None:
        raise HTTPException(status_code=409, detail="Tracking number has an unconfigured carrier")

    handle = submit_tracking_refresh(submitter, tracking_number.id, get_carrier(code))
    return RefreshResponse(tracking_number_id=tracking_number.id, task_id=str(handle) if handle else None)
