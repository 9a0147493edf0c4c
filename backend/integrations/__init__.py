"""
Carrier integration package.

Parsers and thin transport adapters for carrier-provided shipment data:
  - Invoice XML files           (batch — file-based, three storage zones)
  - Tracking provider responses (per number — HTTP API, JSON)

Usage:
    from integrations.base import get_parser, PayloadFormat

    parser = get_parser(PayloadFormat.INVOICE_XML)
    records = parser.parse(storage.read("fedex", StorageZone.PENDING, name))
"""

from integrations.base import (
    FormatParser,
    ImportResult,
    ImportStatus,
    PayloadFormat,
    get_parser,
    register_parser,
)
from integrations.invoice_parser import InvoiceParseError, InvoiceParser
from integrations.storage import InvoiceFileStorage, LocalInvoiceStorage, StorageZone
from integrations.tracking_client import TrackingProviderClient, TrackingProviderError
from integrations.tracking_parser import (
    ParsedTracking,
    ProviderHardError,
    ProviderOk,
    ProviderSoftError,
    TrackingParser,
    classify_tracking_response,
)

__all__ = [
    "FormatParser",
    "ImportResult",
    "ImportStatus",
    "InvoiceFileStorage",
    "InvoiceParseError",
    "InvoiceParser",
    "LocalInvoiceStorage",
    "ParsedTracking",
    "PayloadFormat",
    "ProviderHardError",
    "ProviderOk",
    "ProviderSoftError",
    "StorageZone",
    "TrackingParser",
    "TrackingProviderClient",
    "TrackingProviderError",
    "classify_tracking_response",
    "get_parser",
    "register_parser",
]
