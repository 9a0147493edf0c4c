"""
Tracking Provider Response Parser

The tracking provider answers one request per tracking number with a JSON
document shaped roughly like:

    {
      "trackingNumber": "...", "carrierCode": "...",   # tagged by us
      "errors": [{"code": "-2147219283", "description": "..."}],
      "service": {"code": "FEDEX_GROUND", "description": "FedEx Ground"},
      "origin": {...}, "destination": {...},
      "weight": {"amount": 4.2, "unit": "LB"},
      "dimensions": {"length": 10, "width": 8, "height": 4, "unit": "IN"},
      "estimated_delivery": "...", "delivered_time": "...", "pickup_date": "...",
      "reference_numbers": [...],
      "alternative_tracking_ids": [{"value": "9400..."}],
      "packages": [
        {"activity": [                                  # newest first
          {"status_code": "DL", "status_description": "Delivered",
           "status_type": "D", "time": "2026-02-12T14:03:00",
           "location": {"city": "Memphis", "state": "TN", ...}},
          ...
        ]}
      ]
    }

Responses are first classified into a tagged result (Ok / SoftError /
HardError); only Ok responses are parsed into a ParsedTracking record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Union

from integrations.base import FormatParser, PayloadFormat, register_parser

_TIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%Y-%m-%d",
    "%Y%m%d",
)


# ── Tagged provider results ───────────────────────────────────────────────


@dataclass(frozen=True)
class ProviderOk:
    data: dict[str, Any]


@dataclass(frozen=True)
class ProviderSoftError:
    """Known "not available yet" codes: expected, frequent, not alerted."""

    errors: list[dict[str, Any]]


@dataclass(frozen=True)
class ProviderHardError:
    errors: list[dict[str, Any]]


ProviderResult = Union[ProviderOk, ProviderSoftError, ProviderHardError]


def classify_tracking_response(data: dict[str, Any], soft_error_codes: list[str] | tuple[str, ...]) -> ProviderResult:
    errors = [e for e in (data.get("errors") or []) if isinstance(e, dict)]
    if not errors:
        return ProviderOk(data=data)
    soft = {str(code) for code in soft_error_codes}
    if any(str(e.get("code")) in soft for e in errors):
        return ProviderSoftError(errors=errors)
    return ProviderHardError(errors=errors)


# ── Canonical records ─────────────────────────────────────────────────────


def parse_provider_time(value: Any) -> datetime | None:
    """Parse a provider timestamp, keeping local wall time to the second."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        parsed = None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            for fmt in _TIME_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            raise ValueError(f"Unrecognized provider timestamp: {value!r}")
    return parsed.replace(tzinfo=None, microsecond=0)


def _as_float(value: Any) -> float | None:
    if value in (None, ""):
        return None
    return float(str(value).replace(",", ""))


@dataclass(frozen=True)
class TrackingEventRecord:
    status_code: str
    status_description: str
    status_type: str
    local_datetime: datetime | None
    location: dict[str, Any]
    location_description: str | None


@dataclass
class ParsedTracking:
    carrier_code: str
    tracking_number: str
    package_count: int = 0
    # Flattened across packages in provider order (newest first)
    events: list[TrackingEventRecord] = field(default_factory=list)
    service_code: str = ""
    service_description: str = ""
    ship_from_address: dict[str, Any] = field(default_factory=dict)
    ship_to_address: dict[str, Any] = field(default_factory=dict)
    reference_numbers: Any = None
    estimated_delivery: datetime | None = None
    delivered_at: datetime | None = None
    pickup_date: datetime | None = None
    weight: float | None = None
    weight_unit: str | None = None
    length: float | None = None
    width: float | None = None
    height: float | None = None
    dimension_unit: str | None = None
    label_created_at: datetime | None = None
    alternate_tracking_number: str | None = None


# ── Parser ────────────────────────────────────────────────────────────────


def _packages(data: dict[str, Any]) -> list[dict[str, Any]]:
    packages = data.get("packages")
    if not isinstance(packages, list):
        return []
    return [p for p in packages if isinstance(p, dict)]


def _activity(package: dict[str, Any]) -> list[dict[str, Any]]:
    activity = package.get("activity")
    if not isinstance(activity, list):
        return []
    return [a for a in activity if isinstance(a, dict)]


def derive_label_created_at(data: dict[str, Any]) -> datetime | None:
    """
    Label creation time: for each package take its final activity entry
    (the oldest, since activity is newest-first) and return the latest of
    those across packages.
    """
    latest: datetime | None = None
    for package in _packages(data):
        activity = _activity(package)
        if not activity:
            continue
        final_time = parse_provider_time(activity[-1].get("time"))
        if final_time is not None and (latest is None or final_time > latest):
            latest = final_time
    return latest


@register_parser
class TrackingParser(FormatParser):
    """Parses an Ok tracking-provider response into a ParsedTracking record."""

    @property
    def payload_format(self) -> PayloadFormat:
        return PayloadFormat.TRACKING_JSON

    def parse(self, raw: dict[str, Any]) -> ParsedTracking:
        packages = _packages(raw)
        service = raw.get("service") or {}
        weight = raw.get("weight") or {}
        dimensions = raw.get("dimensions") or {}

        return ParsedTracking(
            carrier_code=str(raw.get("carrierCode") or ""),
            tracking_number=str(raw.get("trackingNumber") or ""),
            package_count=len(packages),
            events=[self._event(event) for package in packages for event in _activity(package)],
            service_code=str(service.get("code") or ""),
            service_description=str(service.get("description") or ""),
            ship_from_address=raw.get("origin") or {},
            ship_to_address=raw.get("destination") or {},
            reference_numbers=raw.get("reference_numbers") or None,
            estimated_delivery=parse_provider_time(raw.get("estimated_delivery")),
            delivered_at=parse_provider_time(raw.get("delivered_time")),
            pickup_date=parse_provider_time(raw.get("pickup_date")),
            weight=_as_float(weight.get("amount")),
            weight_unit=weight.get("unit") or None,
            length=_as_float(dimensions.get("length")),
            width=_as_float(dimensions.get("width")),
            height=_as_float(dimensions.get("height")),
            dimension_unit=dimensions.get("unit") or None,
            label_created_at=derive_label_created_at(raw),
            alternate_tracking_number=self._alternate_tracking_number(raw),
        )

    @staticmethod
    def _event(event: dict[str, Any]) -> TrackingEventRecord:
        location = event.get("location") or {}
        if not isinstance(location, dict):
            location = {}
        return TrackingEventRecord(
            status_code=str(event.get("status_code") or ""),
            status_description=str(event.get("status_description") or ""),
            status_type=str(event.get("status_type") or ""),
            local_datetime=parse_provider_time(event.get("time")),
            location=location,
            location_description=location.get("description") or None,
        )

    @staticmethod
    def _alternate_tracking_number(data: dict[str, Any]) -> str | None:
        alternates = data.get("alternative_tracking_ids")
        if not alternates or not isinstance(alternates, list) or not isinstance(alternates[0], dict):
            return None
        value = alternates[0].get("value")
        return str(value) if value else None
