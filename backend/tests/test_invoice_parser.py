"""
Tests for the carrier invoice XML parser.
"""

import pytest

from integrations.base import PayloadFormat, get_parser
from integrations.invoice_parser import (
    CHARGE_AMOUNT_FIELD,
    CHARGE_DESCRIPTION_FIELD,
    InvoiceParseError,
    InvoiceParser,
    ParsedCharge,
    parse_amount,
)

SAMPLE_INVOICE_XML = """<?xml version="1.0" encoding="UTF-8"?>
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
    <recipient_address>
      <line1/>
      <line2></line2>
    </recipient_address>
  </Invoice_Download>
  <Invoice_Download>
    <express_ground_tracking_id>794698393552</express_ground_tracking_id>
    <invoice_date>2026-02-10</invoice_date>
    <Tracking_ID_Charge_Description>Fuel Surcharge</Tracking_ID_Charge_Description>
    <Tracking_ID_Charge_Amount>3.10</Tracking_ID_Charge_Amount>
  </Invoice_Download>
</Invoice_Download_File>
"""


@pytest.fixture
def parser():
    return get_parser(PayloadFormat.INVOICE_XML)


class TestInvoiceParser:
    def test_registry_returns_invoice_parser(self, parser):
        assert isinstance(parser, InvoiceParser)

    def test_one_record_per_invoice(self, parser):
        records = parser.parse(SAMPLE_INVOICE_XML)
        assert [r["express_ground_tracking_id"] for r in records] == ["794698393551", "794698393552"]

    def test_accepts_bytes(self, parser):
        records = parser.parse(SAMPLE_INVOICE_XML.encode("utf-8"))
        assert len(records) == 2

    def test_empty_elements_become_none(self, parser):
        record = parser.parse(SAMPLE_INVOICE_XML)[0]
        assert record["commodity_description"] is None
        # Nested structure with only empty children collapses to None, not {}
        assert record["recipient_address"] is None

    def test_charge_fields_are_always_lists(self, parser):
        first, second = parser.parse(SAMPLE_INVOICE_XML)
        assert first[CHARGE_DESCRIPTION_FIELD] == ["Fuel Surcharge", "Residential"]
        assert second[CHARGE_DESCRIPTION_FIELD] == ["Fuel Surcharge"]
        assert second[CHARGE_AMOUNT_FIELD] == ["3.10"]

    def test_single_record_document(self, parser):
        xml = (
            "<Invoice_Download><express_ground_tracking_id>1</express_ground_tracking_id>"
            "<invoice_date>2026-01-01</invoice_date></Invoice_Download>"
        )
        records = parser.parse(xml)
        assert records[0]["express_ground_tracking_id"] == "1"
        assert records[0][CHARGE_DESCRIPTION_FIELD] == []

    def test_empty_document_raises(self, parser):
        with pytest.raises(InvoiceParseError):
            parser.parse("   ")

    def test_malformed_document_raises(self, parser):
        with pytest.raises(InvoiceParseError, match="Malformed"):
            parser.parse("<Invoice_Download_File><Invoice_Download>")

    def test_document_without_invoices_raises(self, parser):
        with pytest.raises(InvoiceParseError, match="No <Invoice_Download>"):
            parser.parse("<Invoice_Download_File><Other>1</Other></Invoice_Download_File>")


class TestExtractCharges:
    def test_pairs_descriptions_with_amounts_by_position(self):
        record = {
            CHARGE_DESCRIPTION_FIELD: ["Fuel Surcharge", "Residential"],
            CHARGE_AMOUNT_FIELD: ["12.40", "1,004.95"],
        }
        assert InvoiceParser.extract_charges(record) == [
            ParsedCharge("Fuel Surcharge", 12.40),
            ParsedCharge("Residential", 1004.95),
        ]

    def test_skips_blank_descriptions_and_keeps_first_duplicate(self):
        record = {
            CHARGE_DESCRIPTION_FIELD: [None, "Fuel  Surcharge", "Fuel Surcharge"],
            CHARGE_AMOUNT_FIELD: ["1.00", "2.00", "3.00"],
        }
        assert InvoiceParser.extract_charges(record) == [ParsedCharge("Fuel Surcharge", 2.0)]

    def test_missing_amounts_yield_no_charges(self):
        assert InvoiceParser.extract_charges({CHARGE_DESCRIPTION_FIELD: ["Fuel"]}) == []


def test_parse_amount_strips_thousands_separators():
    assert parse_amount("1,234,567.89") == 1234567.89
    assert parse_amount(None) == 0.0
    assert parse_amount(" ") == 0.0
