"""
CarrierSync API Dependencies

Dependency injection for DB sessions, invoice storage and work submission.
"""

from collections.abc import AsyncGenerator

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.carriers import CarrierDescriptor, get_carrier
from core.config import get_settings
from db.session import AsyncSessionLocal
from integrations.storage import InvoiceFileStorage, LocalInvoiceStorage
from workers.dispatch import CeleryWorkSubmitter, WorkSubmitter


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_storage() -> InvoiceFileStorage:
    return LocalInvoiceStorage(get_settings().storage_root)


def get_submitter() -> WorkSubmitter:
    return CeleryWorkSubmitter()


def resolve_carrier(code: str) -> CarrierDescriptor:
    """Carrier descriptor for a request, or 400 for an unknown code."""
    try:
        return get_carrier(code)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
