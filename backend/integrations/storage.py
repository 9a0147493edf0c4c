"""
Invoice File Storage Zones

Carrier invoice files live in three zones per carrier:

    carrier_invoices/<carrier>/pending_import/   ← uploaded, waiting for import
    carrier_invoices/<carrier>/imported/         ← handed off successfully
    carrier_invoices/<carrier>/error/            ← failed to import

Files only ever move pending → imported or pending → error. Moves are
idempotent so an import pass that crashed between "move" and "mark
status" can be resumed safely.
"""

from __future__ import annotations

import os
import shutil
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path

import structlog

logger = structlog.get_logger()


class StorageZone(str, Enum):
    PENDING = "pending_import"
    SUCCESS = "imported"
    FAILED = "error"


class InvoiceFileStorage(ABC):
    """Blob storage for invoice files, addressed by (carrier, zone, name)."""

    @abstractmethod
    def exists(self, carrier_code: str, zone: StorageZone, file_name: str) -> bool: ...

    @abstractmethod
    def read(self, carrier_code: str, zone: StorageZone, file_name: str) -> bytes: ...

    @abstractmethod
    def write(self, carrier_code: str, zone: StorageZone, file_name: str, content: bytes) -> None: ...

    @abstractmethod
    def _relocate(self, carrier_code: str, file_name: str, source: StorageZone, destination: StorageZone) -> None: ...

    def locate(self, carrier_code: str, file_name: str) -> StorageZone | None:
        """Return the zone currently holding the file, pending first."""
        for zone in (StorageZone.PENDING, StorageZone.SUCCESS, StorageZone.FAILED):
            if self.exists(carrier_code, zone, file_name):
                return zone
        return None

    def move(self, carrier_code: str, file_name: str, source: StorageZone, destination: StorageZone) -> bool:
        """
        Move a file between zones.

        Returns False without touching anything when the file is already in
        `destination` and gone from `source` (a resumed move).
        """
        if not self.exists(carrier_code, source, file_name):
            if self.exists(carrier_code, destination, file_name):
                logger.info(
                    "storage.move_already_done",
                    carrier=carrier_code,
                    file_name=file_name,
                    destination=destination.value,
                )
                return False
            raise FileNotFoundError(f"{file_name} not found in {carrier_code}/{source.value}")
        self._relocate(carrier_code, file_name, source, destination)
        return True


class LocalInvoiceStorage(InvoiceFileStorage):
    """Zones as directories under a local (or mounted) root."""

    def __init__(self, root: str | os.PathLike):
        self.root = Path(root)

    def _path(self, carrier_code: str, zone: StorageZone, file_name: str) -> Path:
        if not file_name or Path(file_name).name != file_name:
            raise ValueError(f"Invalid invoice file name: {file_name!r}")
        return self.root / "carrier_invoices" / carrier_code / zone.value / file_name

    def exists(self, carrier_code: str, zone: StorageZone, file_name: str) -> bool:
        return self._path(carrier_code, zone, file_name).is_file()

    def read(self, carrier_code: str, zone: StorageZone, file_name: str) -> bytes:
        return self._path(carrier_code, zone, file_name).read_bytes()

    def write(self, carrier_code: str, zone: StorageZone, file_name: str, content: bytes) -> None:
        path = self._path(carrier_code, zone, file_name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    def _relocate(self, carrier_code: str, file_name: str, source: StorageZone, destination: StorageZone) -> None:
        target = self._path(carrier_code, destination, file_name)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(self._path(carrier_code, source, file_name)), str(target))
