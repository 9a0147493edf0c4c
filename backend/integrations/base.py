"""
Carrier Payload Parsers — Abstract Base Class

Every carrier payload (batch invoice XML, per-number tracking JSON)
is normalized by a FormatParser into canonical intermediate records,
so reconciliation never sees a carrier's raw shape.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger()


# ── Payload formats ────────────────────────────────────────────────────────


class PayloadFormat(str, Enum):
    """Supported carrier payload formats."""

    INVOICE_XML = "invoice_xml"  # Batch invoice files (file-based)
    TRACKING_JSON = "tracking_json"  # Tracking provider responses (API-based)


class ImportStatus(str, Enum):
    """Result status of a batch import pass."""

    SUCCESS = "success"
    PARTIAL = "partial"  # Some files handed off, some failed
    FAILED = "failed"
    NO_DATA = "no_data"


# ── Import result container ───────────────────────────────────────────────


@dataclass
class ImportResult:
    """Summary returned by a batch import pass."""

    status: ImportStatus
    files_processed: int = 0
    files_failed: int = 0
    records_dispatched: int = 0
    errors: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    def complete(self) -> "ImportResult":
        if self.files_processed == 0 and self.files_failed == 0:
            self.status = ImportStatus.NO_DATA
        elif self.files_failed > 0 and self.files_processed == 0:
            self.status = ImportStatus.FAILED
        elif self.files_failed > 0:
            self.status = ImportStatus.PARTIAL
        self.completed_at = datetime.utcnow()
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "files_processed": self.files_processed,
            "files_failed": self.files_failed,
            "records_dispatched": self.records_dispatched,
            "errors": self.errors,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


# ── Abstract parser ───────────────────────────────────────────────────────


class FormatParser(ABC):
    """
    Base class for carrier payload parsers.

    Parsers are pure: no database, cache or network access. Reference
    data is resolved later by the reconciliation layer.
    """

    def __init__(self):
        self.logger = logger.bind(parser=self.payload_format.value)

    @property
    @abstractmethod
    def payload_format(self) -> PayloadFormat:
        """Return the payload format this parser handles."""
        ...

    @abstractmethod
    def parse(self, raw: Any) -> Any:
        """Normalize a raw payload into canonical intermediate record(s)."""
        ...


# ── Parser registry ───────────────────────────────────────────────────────

_PARSER_REGISTRY: dict[PayloadFormat, type[FormatParser]] = {}


def register_parser(parser_cls: type[FormatParser]):
    """Decorator: register a parser class for its payload format."""
    _PARSER_REGISTRY[parser_cls.payload_format.fget(None)] = parser_cls  # type: ignore
    return parser_cls


def get_parser(payload_format: PayloadFormat) -> FormatParser:
    """Factory: return the parser instance for the given payload format."""
    parser_cls = _PARSER_REGISTRY.get(payload_format)
    if parser_cls is None:
        raise ValueError(f"No parser registered for payload format: {payload_format.value}")
    return parser_cls()
