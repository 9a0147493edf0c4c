"""
Tests for the alert notifier and the error sink.
"""

import json

import pytest
from sqlalchemy import select

from alerts.error_sink import ErrorKind, ErrorSink, exception_detail
from alerts.notifier import AlertNotifier
from db.models import InvoiceImportError, TrackingNumberImportError


class TestAlertNotifier:
    async def test_publishes_json_alert(self, fake_redis):
        notifier = AlertNotifier(fake_redis, channel="alerts-test")

        reached = await notifier.notify("invoice-import-missing-file", "gone", level="warning")

        assert reached == 1
        channel, raw = fake_redis.published[0]
        payload = json.loads(raw)
        assert channel == "alerts-test"
        assert payload["site"] == "invoice-import-missing-file"
        assert payload["level"] == "warning"
        assert "sent_at" in payload

    async def test_rejects_unknown_level(self, fake_redis):
        with pytest.raises(ValueError):
            await AlertNotifier(fake_redis, channel="c").notify("site", "msg", level="fatal")


class _BrokenNotifier:
    async def notify(self, site, message, level="danger"):
        raise ConnectionError("redis down")


class TestErrorSink:
    async def test_invoice_kind_writes_invoice_error(self, test_db, notifier, fedex):
        row = await ErrorSink(test_db, notifier).record(
            None,
            ErrorKind.FILE_FAILURE,
            "disk full",
            site="invoice-import-exception",
            carrier=fedex,
        )

        stored = (await test_db.execute(select(InvoiceImportError))).scalar_one()
        assert stored.id == row.id
        assert stored.error == {"message": "disk full"}
        assert stored.carrier == "fedex"
        assert notifier.calls[0]["message"] == "FEDEX file_failure for n/a: disk full"

    async def test_tracking_kind_writes_tracking_error(self, test_db, notifier, fedex):
        await ErrorSink(test_db, notifier).record(
            None,
            ErrorKind.PROVIDER_ERROR,
            {"message": "500: Invalid account"},
            site="tracking-provider-error",
            carrier=fedex,
            tracking_number="794698393551",
        )

        stored = (await test_db.execute(select(TrackingNumberImportError))).scalar_one()
        assert stored.carrier_id == fedex.id
        assert json.loads(stored.error_message) == {"message": "500: Invalid account"}
        assert notifier.sites() == ["tracking-provider-error"]
        assert "794698393551" in notifier.calls[0]["message"]

    async def test_alert_failure_keeps_the_error_row(self, test_db, fedex):
        await ErrorSink(test_db, _BrokenNotifier()).record(
            None, ErrorKind.MISSING_FILE, "gone", site="invoice-import-missing-file", carrier=fedex
        )
        assert len((await test_db.execute(select(InvoiceImportError))).scalars().all()) == 1


def test_exception_detail_carries_context():
    detail = exception_detail(KeyError("tracking_id"), file_name="a.xml")
    assert detail == {"exception": "KeyError", "message": "'tracking_id'", "file_name": "a.xml"}


def test_tracking_kinds():
    assert ErrorKind.PROVIDER_ERROR.is_tracking
    assert not ErrorKind.RECORD_FAILURE.is_tracking
