"""
Tests for reference-data resolution: cache-aside, natural-key convergence,
terminal status computed once, location hashing and unit TTLs.
"""

from sqlalchemy import func, select

from core.carriers import CarrierDescriptor
from db.models import CarrierServiceCode, CarrierServiceName, LocationDetail, SurchargeName, TrackingStatus
from alerts.notifier import PendingAlerts
from reconciliation.cache import ReferenceDataCache, text_key
from reconciliation.location import LocationNormalizer
from reconciliation.reference_data import ReferenceDataResolver, ServiceResolver, normalize_text
from tests.doubles import FakeRedis, RecordingNotifier


def _resolver(db, redis=None, notifier=None, uom_ttl=3600):
    cache = ReferenceDataCache(redis or FakeRedis())
    return ReferenceDataResolver(db, cache, PendingAlerts(notifier or RecordingNotifier()), uom_ttl=uom_ttl)


async def _after_commit(resolver):
    await resolver.cache.publish_pending()
    await resolver.alerts.flush()


async def _count(db, model):
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestReferenceDataCache:
    async def test_miss_runs_creator_then_hit_skips_it(self, fake_redis):
        cache = ReferenceDataCache(fake_redis)
        calls = []

        async def create():
            calls.append(1)
            return {"id": "abc"}

        assert await cache.get_or_create("k", create) == {"id": "abc"}
        assert await cache.get_or_create("k", create) == {"id": "abc"}
        assert len(calls) == 1
        assert "refdata:k" not in fake_redis.store

        assert await cache.publish_pending() == 1
        assert fake_redis.ttls["refdata:k"] is None
        assert await ReferenceDataCache(fake_redis).get_or_create("k", create) == {"id": "abc"}
        assert len(calls) == 1

    async def test_none_is_not_cached(self, fake_redis):
        cache = ReferenceDataCache(fake_redis)

        async def create():
            return None

        assert await cache.get_or_create("k", create) is None
        assert await cache.publish_pending() == 0
        assert "refdata:k" not in fake_redis.store

    async def test_discarded_values_are_never_written(self, fake_redis):
        cache = ReferenceDataCache(fake_redis)
        calls = []

        async def create():
            calls.append(1)
            return "v"

        await cache.get_or_create("k", create, ttl=10)
        cache.discard_pending()
        await cache.publish_pending()

        assert "refdata:k" not in fake_redis.store
        await cache.get_or_create("k", create, ttl=10)
        assert len(calls) == 2

    def test_text_key_hashes_free_text(self):
        key = text_key("surcharge_name", 1, "Fuel Surcharge")
        assert key.startswith("surcharge_name:1:")
        assert "Fuel" not in key


class TestSurchargeNames:
    async def test_created_once_with_one_manual_review_alert(self, test_db, fedex):
        notifier = RecordingNotifier()
        resolver = _resolver(test_db, notifier=notifier)

        first = await resolver.surcharge_name_id("Fuel  Surcharge ", fedex)
        second = await resolver.surcharge_name_id("Fuel Surcharge", fedex)
        await test_db.commit()
        await _after_commit(resolver)

        assert first == second
        assert await _count(test_db, SurchargeName) == 1
        assert len(notifier.calls) == 1
        assert notifier.calls[0]["site"] == f"surcharge-name-unmapped-{first}"
        assert notifier.calls[0]["level"] == "good"

    async def test_concurrent_first_writers_converge(self, session_factory, fedex):
        # Two units, each with its own session and a cold cache
        notifier = RecordingNotifier()
        async with session_factory() as db_a, session_factory() as db_b:
            resolver_a = _resolver(db_a, redis=FakeRedis(), notifier=notifier)
            resolver_b = _resolver(db_b, redis=FakeRedis(), notifier=notifier)

            id_a = await resolver_a.surcharge_name_id("Address Correction", fedex)
            await db_a.commit()
            await _after_commit(resolver_a)
            id_b = await resolver_b.surcharge_name_id("Address Correction", fedex)
            await db_b.commit()
            await _after_commit(resolver_b)

        assert id_a == id_b
        async with session_factory() as db:
            assert await _count(db, SurchargeName) == 1
        # Only the writer that actually created the row alerts
        assert len(notifier.calls) == 1

    async def test_rolled_back_name_is_created_again(self, test_db, fake_redis, fedex):
        notifier = RecordingNotifier()
        resolver = _resolver(test_db, redis=fake_redis, notifier=notifier)

        await resolver.surcharge_name_id("Fuel Surcharge", fedex)
        await test_db.rollback()

        assert await resolver.cache.publish_pending() == 0
        assert await resolver.alerts.flush() == 0
        assert fake_redis.store == {}

        kept = await resolver.surcharge_name_id("Fuel Surcharge", fedex)
        await test_db.commit()
        await _after_commit(resolver)

        row = await test_db.get(SurchargeName, kept)
        assert row is not None
        assert row.name == "Fuel Surcharge"
        assert notifier.sites() == [f"surcharge-name-unmapped-{kept}"]
        assert await _count(test_db, SurchargeName) == 1

    async def test_names_are_scoped_per_carrier(self, test_db, fedex, usps):
        resolver = _resolver(test_db)
        assert await resolver.surcharge_name_id("Fuel", fedex) != await resolver.surcharge_name_id("Fuel", usps)

    async def test_blank_name_resolves_to_none(self, test_db, fedex):
        assert await _resolver(test_db).surcharge_name_id("   ", fedex) is None


class TestServiceResolver:
    async def test_resolves_name_and_code(self, test_db, fake_redis, fedex):
        services = ServiceResolver(test_db, ReferenceDataCache(fake_redis))

        ids = await services.resolve("FedEx Ground", "FEDEX_GROUND", fedex)
        again = await services.resolve("FedEx  Ground", "FEDEX_GROUND", fedex)

        assert ids == again
        assert ids.carrier_service_name_id is not None
        assert await _count(test_db, CarrierServiceName) == 1
        assert await _count(test_db, CarrierServiceCode) == 1

    async def test_empty_values_are_not_created(self, test_db, fake_redis, fedex):
        services = ServiceResolver(test_db, ReferenceDataCache(fake_redis))
        ids = await services.resolve("", None, fedex)
        assert ids.carrier_service_name_id is None
        assert ids.carrier_service_code_id is None
        assert await _count(test_db, CarrierServiceName) == 0


class TestTrackingStatus:
    async def test_terminal_flag_from_phrase_list(self, test_db, fedex):
        resolver = _resolver(test_db)
        delivered = await resolver.tracking_status("DL", "DELIVERED", "D", fedex)
        in_transit = await resolver.tracking_status("IT", "In transit", "I", fedex)
        assert delivered.terminal_status is True
        assert in_transit.terminal_status is False

    async def test_terminal_flag_not_recomputed_on_later_sightings(self, test_db, fedex):
        first = await _resolver(test_db).tracking_status("DL", "Delivered", "D", fedex)
        await test_db.commit()

        # Phrase list changed and the cache is cold: the stored flag still wins
        changed = CarrierDescriptor(code="fedex", id=fedex.id, terminal_phrases=())
        later = await _resolver(test_db).tracking_status("DL", "Delivered", "D", changed)

        assert later.id == first.id
        assert later.terminal_status is True
        row = (await test_db.execute(select(TrackingStatus))).scalar_one()
        assert row.terminal_status is True


class TestLocations:
    async def test_formatting_variants_share_one_row(self, test_db):
        resolver = _resolver(test_db)
        a = await resolver.location_detail_id({"city": "memphis ", "state": "tn", "postal_code": "38118-1234"})
        b = await resolver.location_detail_id({"city": "MEMPHIS", "stateProvince": "TN", "zip": "38118"})
        assert a == b
        assert await _count(test_db, LocationDetail) == 1

    async def test_empty_location_is_still_keyed(self, test_db):
        resolver = _resolver(test_db)
        assert await resolver.location_detail_id(None) == await resolver.location_detail_id({})

    def test_content_hash_is_stable(self):
        normalizer = LocationNormalizer()
        a = normalizer.normalize({"city": "AUSTIN", "state": "tx"})
        b = normalizer.normalize({"city": "Austin", "state": "TX"})
        assert normalizer.content_hash(a) == normalizer.content_hash(b)


class TestUnitsOfMeasure:
    async def test_units_cached_with_bounded_ttl(self, test_db, fake_redis):
        resolver = _resolver(test_db, redis=fake_redis, uom_ttl=600)
        unit = await resolver.unit_of_measure("LB")
        assert unit["name"] == "lb"
        await test_db.commit()
        await _after_commit(resolver)
        assert fake_redis.ttls["refdata:uom:lb"] == 600
        assert await resolver.unit_of_measure("") is None


def test_normalize_text():
    assert normalize_text("  Fuel \n Surcharge ") == "Fuel Surcharge"
    assert normalize_text(None) == ""
