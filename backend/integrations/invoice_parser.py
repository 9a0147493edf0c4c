"""
Carrier Invoice XML Parser

FedEx delivers invoice data as an XML "Invoice Download" file:

    <Invoice_Download_File>
      <Invoice_Download>
        <express_ground_tracking_id>794698393551</express_ground_tracking_id>
        <invoice_number>7-123-45678</invoice_number>
        <invoice_date>2026-02-10</invoice_date>
        <service_type>FedEx Ground</service_type>
        <net_charge_amount>1,024.50</net_charge_amount>
        <Tracking_ID_Charge_Description>Fuel Surcharge</Tracking_ID_Charge_Description>
        <Tracking_ID_Charge_Amount>12.40</Tracking_ID_Charge_Amount>
        <Tracking_ID_Charge_Description>Residential</Tracking_ID_Charge_Description>
        <Tracking_ID_Charge_Amount>4.95</Tracking_ID_Charge_Amount>
        <commodity_description/>
      </Invoice_Download>
      ...
    </Invoice_Download_File>

Each <Invoice_Download> becomes one intermediate record (a plain dict)
and one unit of work downstream. Empty elements become None, never an
empty container, so they cannot create reference rows downstream.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any

from integrations.base import FormatParser, PayloadFormat, register_parser

INVOICE_RECORD_TAG = "Invoice_Download"
CHARGE_DESCRIPTION_FIELD = "Tracking_ID_Charge_Description"
CHARGE_AMOUNT_FIELD = "Tracking_ID_Charge_Amount"
NATURAL_ID_FIELD = "express_ground_tracking_id"

# Repeated elements that must always come back as lists
LIST_FIELDS = frozenset({INVOICE_RECORD_TAG, CHARGE_DESCRIPTION_FIELD, CHARGE_AMOUNT_FIELD})


class InvoiceParseError(ValueError):
    """Raised when an invoice document cannot be parsed."""


@dataclass(frozen=True)
class ParsedCharge:
    description: str
    amount: float


def _local_name(tag: str) -> str:
    # Drop "{namespace}" prefixes
    return tag.rsplit("}", 1)[-1]


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def parse_amount(value: Any) -> float:
    """'1,024.50' -> 1024.5; blanks are 0."""
    if value is None:
        return 0.0
    text = str(value).replace(",", "").strip()
    if not text:
        return 0.0
    return float(text)


def element_to_value(elem: ET.Element) -> Any:
    """
    Convert an element to plain Python data.

    Leaves become stripped text (None when empty); elements with children
    become dicts; repeated child tags collect into lists.
    """
    children = list(elem)
    if not children:
        text = (elem.text or "").strip()
        return text or None

    out: dict[str, Any] = {}
    for child in children:
        tag = _local_name(child.tag)
        value = element_to_value(child)
        if tag in out:
            if not isinstance(out[tag], list):
                out[tag] = [out[tag]]
            out[tag].append(value)
        elif tag in LIST_FIELDS:
            out[tag] = [value]
        else:
            out[tag] = value

    # An element whose children were all empty is itself empty
    if all(v is None or v == [] for v in out.values()):
        return None
    return out


@register_parser
class InvoiceParser(FormatParser):
    """Parses a carrier invoice XML document into per-invoice records."""

    @property
    def payload_format(self) -> PayloadFormat:
        return PayloadFormat.INVOICE_XML

    def parse(self, raw: str | bytes | None) -> list[dict[str, Any]]:
        text = raw.decode("utf-8", "replace") if isinstance(raw, bytes) else raw
        if not text or not text.strip():
            raise InvoiceParseError("Invoice document is empty")

        try:
            root = ET.fromstring(raw)
        except ET.ParseError as exc:
            raise InvoiceParseError(f"Malformed invoice XML: {exc}") from exc

        if _local_name(root.tag) == INVOICE_RECORD_TAG:
            document = {INVOICE_RECORD_TAG: [element_to_value(root)]}
        else:
            document = element_to_value(root) or {}

        records = [r for r in _as_list(document.get(INVOICE_RECORD_TAG)) if isinstance(r, dict)]
        if not records:
            raise InvoiceParseError(f"No <{INVOICE_RECORD_TAG}> records found")

        for record in records:
            for list_field in (CHARGE_DESCRIPTION_FIELD, CHARGE_AMOUNT_FIELD):
                record[list_field] = _as_list(record.get(list_field))

        self.logger.info("invoice_parser.parsed", invoices=len(records))
        return records

    @staticmethod
    def extract_charges(record: dict[str, Any]) -> list[ParsedCharge]:
        """
        Pair charge descriptions with amounts by position.

        Blank descriptions are skipped; repeats keep the first occurrence.
        """
        descriptions = _as_list(record.get(CHARGE_DESCRIPTION_FIELD))
        amounts = _as_list(record.get(CHARGE_AMOUNT_FIELD))
        if not descriptions or not amounts:
            return []

        charges: list[ParsedCharge] = []
        seen: set[str] = set()
        for idx, description in enumerate(descriptions):
            description = " ".join(str(description).split()) if description else ""
            if not description or description in seen:
                continue
            amount = amounts[idx] if idx < len(amounts) else None
            charges.append(ParsedCharge(description=description, amount=parse_amount(amount)))
            seen.add(description)
        return charges
