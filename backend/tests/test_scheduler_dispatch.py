import asyncio
import uuid
from types import SimpleNamespace

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import DEFAULT_CARRIERS
from db.session import Base
from workers.scheduler import claim_pending_invoice_files, dispatch_open_tracking_numbers


def _seed(db_url, rows):
    async def _run():
        engine = create_async_engine(db_url, echo=False)
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            async with session_factory() as db:
                db.add_all(rows)
                await db.commit()
        finally:
            await engine.dispose()

    asyncio.run(_run())


def _statuses(db_url):
    from db.models import InvoiceFile

    async def _run():
        engine = create_async_engine(db_url, echo=False)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession)
            async with session_factory() as db:
                result = await db.execute(select(InvoiceFile.file_name, InvoiceFile.import_status))
                return dict(result.all())
        finally:
            await engine.dispose()

    return asyncio.run(_run())


def _capture(monkeypatch):
    dispatched_calls: list[tuple[str, dict, str | None]] = []

    def _capture_send_task(task_name: str, kwargs: dict, queue: str | None = None):
        dispatched_calls.append((task_name, kwargs, queue))
        return SimpleNamespace(id=f"task-{len(dispatched_calls)}")

    monkeypatch.setattr("workers.scheduler.celery_app.send_task", _capture_send_task)
    return dispatched_calls


def test_claim_pending_invoice_files_claims_and_fans_out_per_carrier(tmp_path, monkeypatch):
    from db.models import InvoiceFile

    db_url = f"sqlite+aiosqlite:///{tmp_path / 'claim.db'}"
    _seed(
        db_url,
        [
            InvoiceFile(id=uuid.uuid4(), carrier="fedex", file_name="f1.xml", import_status="pending"),
            InvoiceFile(id=uuid.uuid4(), carrier="fedex", file_name="f2.xml", import_status="pending"),
            InvoiceFile(id=uuid.uuid4(), carrier="fedex", file_name="done.xml", import_status="success"),
            InvoiceFile(id=uuid.uuid4(), carrier="ups", file_name="u1.xml", import_status="failed"),
        ],
    )
    monkeypatch.setattr(
        "core.config.get_settings",
        lambda: SimpleNamespace(database_url=db_url, carriers=DEFAULT_CARRIERS),
    )
    dispatched_calls = _capture(monkeypatch)

    result = claim_pending_invoice_files.run()

    assert result["status"] == "success"
    assert result["claimed"] == {"fedex": 2, "ups": 0, "usps": 0}
    assert result["dispatched_count"] == 1
    assert [(name, kwargs) for name, kwargs, _ in dispatched_calls] == [
        ("workers.invoice_import.import_invoice_files", {"carrier_code": "fedex"})
    ]
    assert _statuses(db_url) == {
        "f1.xml": "processing",
        "f2.xml": "processing",
        "done.xml": "success",
        "u1.xml": "failed",
    }

    # A second pass finds nothing left to claim
    again = claim_pending_invoice_files.run()
    assert again["dispatched_count"] == 0


def test_dispatch_open_tracking_numbers_skips_terminal(tmp_path, monkeypatch):
    from db.models import TrackingNumber

    db_url = f"sqlite+aiosqlite:///{tmp_path / 'tracking.db'}"
    open_fedex = uuid.uuid4()
    open_usps = uuid.uuid4()
    _seed(
        db_url,
        [
            TrackingNumber(id=open_fedex, carrier_id=1, tracking_number="794698393551", queue_status=0),
            TrackingNumber(id=open_usps, carrier_id=3, tracking_number="9400111899223197428490", queue_status=0),
            TrackingNumber(id=uuid.uuid4(), carrier_id=1, tracking_number="794698393000", queue_status=1),
        ],
    )
    monkeypatch.setattr(
        "core.config.get_settings",
        lambda: SimpleNamespace(database_url=db_url, carriers=DEFAULT_CARRIERS, app_env="test"),
    )
    dispatched_calls = _capture(monkeypatch)

    result = dispatch_open_tracking_numbers.run()

    assert result["status"] == "success"
    assert result["dispatched_count"] == 2
    assert {name for name, _, _ in dispatched_calls} == {"workers.tracking.process_tracking_number"}
    assert {queue for _, _, queue in dispatched_calls} == {"tracking-test"}
    assert {(kwargs["tracking_number_id"], kwargs["carrier_code"]) for _, kwargs, _ in dispatched_calls} == {
        (str(open_fedex), "fedex"),
        (str(open_usps), "usps"),
    }


def test_dispatch_open_tracking_numbers_limits_to_requested_carriers(tmp_path, monkeypatch):
    from db.models import TrackingNumber

    db_url = f"sqlite+aiosqlite:///{tmp_path / 'tracking.db'}"
    _seed(
        db_url,
        [
            TrackingNumber(id=uuid.uuid4(), carrier_id=1, tracking_number="794698393551", queue_status=0),
            TrackingNumber(id=uuid.uuid4(), carrier_id=3, tracking_number="9400111899223197428490", queue_status=0),
        ],
    )
    monkeypatch.setattr(
        "core.config.get_settings",
        lambda: SimpleNamespace(database_url=db_url, carriers=DEFAULT_CARRIERS, app_env="test"),
    )
    dispatched_calls = _capture(monkeypatch)

    result = dispatch_open_tracking_numbers.run(carrier_codes=["USPS"])

    assert result["dispatched_count"] == 1
    assert dispatched_calls[0][1]["carrier_code"] == "usps"
