"""
Tests for invoice reconciliation: filter-on-existing charge inserts and
invoice row preparation.
"""

import uuid
from datetime import datetime

import pytest
from sqlalchemy import func, select

from db.models import CarrierInvoice, CarrierServiceName, InvoiceCharge, InvoiceFile, SurchargeName
from integrations.invoice_parser import CHARGE_AMOUNT_FIELD, CHARGE_DESCRIPTION_FIELD
from reconciliation.store import parse_invoice_date


def _record(tracking_id="794698393551", charges=(("Fuel Surcharge", "12.40"), ("Residential", "4.95")), **fields):
    record = {
        "express_ground_tracking_id": tracking_id,
        "invoice_number": "7-123-45678",
        "invoice_date": "2026-02-10",
        "service_type": "FedEx Ground",
        "net_charge_amount": "1,024.50",
        "number_of_pieces": "1",
        "zone_code": None,
        "commodity_description": None,
        "commodity_country_territory_code": "US",
        CHARGE_DESCRIPTION_FIELD: [c[0] for c in charges],
        CHARGE_AMOUNT_FIELD: [c[1] for c in charges],
    }
    record.update(fields)
    return record


@pytest.fixture
async def invoice_file(test_db):
    row = InvoiceFile(id=uuid.uuid4(), carrier="fedex", file_name="invoice.xml", import_status="processing")
    test_db.add(row)
    await test_db.commit()
    return row


async def _charges(db, invoice_id):
    result = await db.execute(
        select(InvoiceCharge.description, InvoiceCharge.amount)
        .where(InvoiceCharge.invoice_id == invoice_id)
        .order_by(InvoiceCharge.description)
    )
    return [(row.description, row.amount) for row in result.all()]


class TestReconcileInvoiceCharges:
    async def test_new_invoice_inserts_all_charges(self, test_db, store, fedex, invoice_file):
        outcome = await store.reconcile_invoice_charges(_record(), invoice_file.id, fedex)
        await test_db.commit()

        assert outcome.invoice_created is True
        assert outcome.charges_inserted == 2
        assert await _charges(test_db, outcome.invoice_id) == [("Fuel Surcharge", 12.40), ("Residential", 4.95)]

    async def test_reingesting_superset_adds_only_new_charges(self, test_db, store, fedex, invoice_file):
        first = await store.reconcile_invoice_charges(_record(), invoice_file.id, fedex)
        await test_db.commit()

        superset = _record(charges=(("Fuel Surcharge", "12.40"), ("Residential", "4.95"), ("Address Correction", "18.00")))
        second = await store.reconcile_invoice_charges(superset, invoice_file.id, fedex)
        await test_db.commit()

        assert second.invoice_id == first.invoice_id
        assert second.invoice_created is False
        assert second.charges_inserted == 1
        assert [d for d, _ in await _charges(test_db, first.invoice_id)] == [
            "Address Correction",
            "Fuel Surcharge",
            "Residential",
        ]
        assert (await test_db.execute(select(func.count()).select_from(CarrierInvoice))).scalar_one() == 1

    async def test_same_record_twice_is_a_no_op(self, test_db, store, fedex, invoice_file):
        await store.reconcile_invoice_charges(_record(), invoice_file.id, fedex)
        await test_db.commit()
        again = await store.reconcile_invoice_charges(_record(), invoice_file.id, fedex)
        await test_db.commit()

        assert again.charges_inserted == 0
        assert len(await _charges(test_db, again.invoice_id)) == 2

    async def test_new_surcharge_names_alert_once_each(self, test_db, store, notifier, fedex, invoice_file):
        await store.reconcile_invoice_charges(_record(), invoice_file.id, fedex)
        await store.reconcile_invoice_charges(_record(tracking_id="794698393552"), invoice_file.id, fedex)
        await test_db.commit()
        await store.publish_pending()

        unmapped = [site for site in notifier.sites() if site.startswith("surcharge-name-unmapped-")]
        assert len(unmapped) == 2
        assert (await test_db.execute(select(func.count()).select_from(SurchargeName))).scalar_one() == 2

    async def test_rolled_back_invoice_publishes_nothing(
        self, test_db, store, notifier, fake_redis, fedex, invoice_file
    ):
        file_id = invoice_file.id
        await store.reconcile_invoice_charges(_record(), file_id, fedex)
        assert notifier.calls == []
        await test_db.rollback()
        await store.publish_pending()

        assert notifier.calls == []
        assert fake_redis.store == {}

        outcome = await store.reconcile_invoice_charges(_record(), file_id, fedex)
        await test_db.commit()
        await store.publish_pending()

        result = await test_db.execute(
            select(SurchargeName.name)
            .join(InvoiceCharge, InvoiceCharge.surcharge_name_id == SurchargeName.id)
            .where(InvoiceCharge.invoice_id == outcome.invoice_id)
        )
        assert sorted(result.scalars().all()) == ["Fuel Surcharge", "Residential"]
        assert len(notifier.calls) == 2
        assert any(key.startswith("refdata:surcharge_name:") for key in fake_redis.store)

    async def test_charges_link_to_surcharge_names(self, test_db, store, fedex, invoice_file):
        outcome = await store.reconcile_invoice_charges(_record(), invoice_file.id, fedex)
        await test_db.commit()

        result = await test_db.execute(
            select(InvoiceCharge.description, SurchargeName.name)
            .join(SurchargeName, SurchargeName.id == InvoiceCharge.surcharge_name_id)
            .where(InvoiceCharge.invoice_id == outcome.invoice_id)
        )
        assert {(row.description, row.name) for row in result.all()} == {
            ("Fuel Surcharge", "Fuel Surcharge"),
            ("Residential", "Residential"),
        }

    async def test_invoice_without_charges(self, test_db, store, fedex, invoice_file):
        outcome = await store.reconcile_invoice_charges(_record(charges=()), invoice_file.id, fedex)
        await test_db.commit()
        assert outcome.invoice_created is True
        assert outcome.charges_inserted == 0

    async def test_missing_natural_id_raises(self, store, fedex, invoice_file):
        with pytest.raises(ValueError):
            await store.reconcile_invoice_charges(_record(tracking_id=None), invoice_file.id, fedex)


class TestInvoiceRow:
    async def test_invoice_row_is_normalized(self, test_db, store, fedex, invoice_file):
        outcome = await store.reconcile_invoice_charges(_record(), invoice_file.id, fedex)
        await test_db.commit()

        invoice = await test_db.get(CarrierInvoice, outcome.invoice_id)
        assert invoice.tracking_id == "794698393551"
        assert invoice.carrier_id == fedex.id
        assert invoice.invoice_file_id == invoice_file.id
        assert invoice.invoice_date == datetime(2026, 2, 10)
        assert invoice.net_charge_amount == 1024.50
        assert invoice.pieces == 1
        assert invoice.zone_code is None

        service = await test_db.get(CarrierServiceName, invoice.carrier_service_name_id)
        assert service.description == "FedEx Ground"

    async def test_unknown_and_empty_fields_are_dropped(self, store, fedex, invoice_file):
        values = await store.prepare_invoice_values(
            _record(unknown_field="x", recipient_name="  "), invoice_file.id, fedex
        )
        assert "unknown_field" not in values
        assert "commodity_country_territory_code" not in values
        assert "recipient_name" not in values
        assert "zone_code" not in values
        assert CHARGE_DESCRIPTION_FIELD not in values

    async def test_bad_invoice_date_raises(self, store, fedex, invoice_file):
        with pytest.raises(ValueError, match="invoice date"):
            await store.prepare_invoice_values(_record(invoice_date="soon"), invoice_file.id, fedex)


@pytest.mark.parametrize(
    "value,expected",
    [
        ("2026-02-10", datetime(2026, 2, 10)),
        ("20260210", datetime(2026, 2, 10)),
        ("02/10/2026", datetime(2026, 2, 10)),
    ],
)
def test_parse_invoice_date(value, expected):
    assert parse_invoice_date(value) == expected
