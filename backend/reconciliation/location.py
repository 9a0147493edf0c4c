"""
Location normalization for tracking events.

Providers send the same place with superficial differences ("memphis",
"MEMPHIS ", "Memphis"). Locations are normalized before lookup and keyed
by a hash of the normalized content.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Any

_WHITESPACE = re.compile(r"\s+")

# Provider field -> stored field
LOCATION_FIELDS = {
    "city": "city",
    "state": "state",
    "stateProvince": "state",
    "state_province": "state",
    "postal_code": "postal_code",
    "postalCode": "postal_code",
    "zip": "postal_code",
    "country": "country",
    "countryCode": "country",
    "country_code": "country",
}


class LocationNormalizer:
    """Maps a raw provider location fragment to a canonical dict and hash."""

    def normalize(self, location: dict[str, Any] | None) -> dict[str, str | None]:
        normalized: dict[str, str | None] = {
            "city": None,
            "state": None,
            "postal_code": None,
            "country": None,
        }
        for source, target in LOCATION_FIELDS.items():
            raw = (location or {}).get(source)
            if raw is None or normalized[target] is not None:
                continue
            value = _WHITESPACE.sub(" ", str(raw)).strip()
            if not value:
                continue
            if target == "city":
                value = value.title()
            elif target == "postal_code":
                value = value.upper().replace(" ", "")
                # ZIP+4 collapses to the 5-digit ZIP
                if re.fullmatch(r"\d{5}-?\d{4}", value):
                    value = value[:5]
            else:
                value = value.upper()
            normalized[target] = value
        return normalized

    @staticmethod
    def content_hash(normalized: dict[str, str | None]) -> str:
        payload = json.dumps(normalized, sort_keys=True, separators=(",", ":"))
        return hashlib.md5(payload.encode("utf-8")).hexdigest()
