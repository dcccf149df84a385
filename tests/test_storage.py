"""Tests for the key-value adapters and the record codec."""

import json
from concurrent.futures import ThreadPoolExecutor

import pytest
from conftest import FakeClock

from lore_kernel.errors import CorruptedRecordError, NotFoundError, StoreUnavailableError
from lore_kernel.models.world import WorldAttributes
from lore_kernel.storage.kv import InMemoryKeyValueStore, SQLiteKeyValueStore
from lore_kernel.storage.records import RecordStore, decode_record, encode_record


@pytest.fixture(params=["memory", "sqlite"])
def store_and_clock(request):
    clock = FakeClock()
    if request.param == "memory":
        store = InMemoryKeyValueStore(clock=clock.seconds)
    else:
        store = SQLiteKeyValueStore(db_path=":memory:", clock=clock.seconds)
    yield store, clock
    if request.param == "sqlite":
        store.close()


class TestKeyValueStore:
    def test_set_get_delete(self, store_and_clock):
        store, _ = store_and_clock
        assert store.get("a") is None
        store.set("a", "1")
        assert store.get("a") == "1"
        assert store.delete("a") is True
        assert store.delete("a") is False
        assert store.get("a") is None

    def test_ttl_expiry(self, store_and_clock):
        store, clock = store_and_clock
        store.set("a", "1", ttl_seconds=10)
        clock.advance(seconds=9)
        assert store.get("a") == "1"
        clock.advance(seconds=2)
        assert store.get("a") is None

    def test_expire_extends_and_reports_missing(self, store_and_clock):
        store, clock = store_and_clock
        store.set("a", "1", ttl_seconds=5)
        assert store.expire("a", 60) is True
        clock.advance(seconds=30)
        assert store.get("a") == "1"
        assert store.expire("missing", 60) is False

    def test_incr_by(self, store_and_clock):
        store, _ = store_and_clock
        assert store.incr_by("n") == 1
        assert store.incr_by("n", 5) == 6
        assert store.get("n") == "6"

    def test_incr_by_non_integer_is_corruption(self, store_and_clock):
        store, _ = store_and_clock
        store.set("n", "abc")
        with pytest.raises(CorruptedRecordError):
            store.incr_by("n")

    def test_set_if_absent(self, store_and_clock):
        store, clock = store_and_clock
        assert store.set_if_absent("k", "first", ttl_seconds=10) is True
        assert store.set_if_absent("k", "second") is False
        assert store.get("k") == "first"
        clock.advance(seconds=11)
        assert store.set_if_absent("k", "third") is True
        assert store.get("k") == "third"

    def test_compare_and_set(self, store_and_clock):
        store, _ = store_and_clock
        assert store.compare_and_set("k", None, "v1") is True
        assert store.compare_and_set("k", None, "v2") is False
        assert store.compare_and_set("k", "v1", "v2") is True
        assert store.get("k") == "v2"

    def test_compare_and_delete(self, store_and_clock):
        store, _ = store_and_clock
        store.set("lease", "holder-a")
        assert store.compare_and_delete("lease", "holder-b") is False
        assert store.compare_and_delete("lease", "holder-a") is True
        assert store.get("lease") is None

    def test_concurrent_set_if_absent_has_one_winner(self, store_and_clock):
        store, _ = store_and_clock
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda i: store.set_if_absent("claim", str(i)), range(50)))
        assert results.count(True) == 1

    def test_concurrent_incr_by_loses_nothing(self, store_and_clock):
        store, _ = store_and_clock
        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda _: store.incr_by("n"), range(200)))
        assert store.get("n") == "200"


class TestSQLiteStore:
    def test_purge_expired(self):
        clock = FakeClock()
        store = SQLiteKeyValueStore(clock=clock.seconds)
        store.set("short", "1", ttl_seconds=1)
        store.set("long", "1")
        clock.advance(seconds=5)
        assert store.purge_expired() == 1
        assert store.count() == 1

    def test_closed_connection_raises_store_unavailable(self):
        store = SQLiteKeyValueStore()
        store.close()
        with pytest.raises(StoreUnavailableError) as exc_info:
            store.get("a")
        assert exc_info.value.retryable is True

    def test_persists_across_connections(self, tmp_path):
        path = str(tmp_path / "kv.db")
        first = SQLiteKeyValueStore(db_path=path)
        first.set("world", "saved")
        first.close()
        second = SQLiteKeyValueStore(db_path=path)
        assert second.get("world") == "saved"
        second.close()


class TestRecordCodec:
    def test_envelope_carries_version_and_type(self):
        raw = encode_record(WorldAttributes(stability=3))
        envelope = json.loads(raw)
        assert envelope["v"] == 1
        assert envelope["type"] == "WorldAttributes"
        assert envelope["data"]["stability"] == 3

    def test_decode_rejects_garbage(self):
        with pytest.raises(CorruptedRecordError):
            decode_record("not json", WorldAttributes, "k")

    def test_decode_rejects_wrong_type(self):
        raw = json.dumps({"v": 1, "type": "Other", "data": {}})
        with pytest.raises(CorruptedRecordError):
            decode_record(raw, WorldAttributes, "k")

    def test_decode_rejects_unknown_version(self):
        raw = json.dumps({"v": 99, "type": "WorldAttributes", "data": {}})
        with pytest.raises(CorruptedRecordError):
            decode_record(raw, WorldAttributes, "k")

    def test_decode_rejects_out_of_bounds_data(self):
        raw = json.dumps({"v": 1, "type": "WorldAttributes", "data": {"stability": 50}})
        with pytest.raises(CorruptedRecordError):
            decode_record(raw, WorldAttributes, "k")


class TestRecordStore:
    def setup_method(self):
        self.records = RecordStore(InMemoryKeyValueStore())

    def test_get_or_default_tolerates_corruption(self):
        self.records.kv.set("attrs", "{broken")
        record = self.records.get_or_default("attrs", WorldAttributes, WorldAttributes)
        assert record == WorldAttributes()

    def test_update_without_default_raises_not_found(self):
        with pytest.raises(NotFoundError):
            self.records.update("missing", WorldAttributes, lambda r: r)

    def test_update_returning_none_skips_write(self):
        self.records.put("attrs", WorldAttributes(stability=1))
        before = self.records.kv.get("attrs")
        result = self.records.update("attrs", WorldAttributes, lambda r: None)
        assert result.stability == 1
        assert self.records.kv.get("attrs") == before

    def test_concurrent_updates_are_all_applied(self):
        self.records.put("attrs", WorldAttributes())

        def bump(_):
            def mutate(record):
                record.stability += 1
                return record
            self.records.update("attrs", WorldAttributes, mutate, max_retries=100)

        with ThreadPoolExecutor(max_workers=5) as pool:
            list(pool.map(bump, range(10)))
        assert self.records.get("attrs", WorldAttributes).stability == 10

    def test_update_gives_up_after_retries(self):
        self.records.put("attrs", WorldAttributes())

        def interfering(record):
            # Another writer lands between our read and our write, every time.
            self.records.kv.set("attrs", encode_record(WorldAttributes(curiosity=record.curiosity + 1)))
            record.stability = 1
            return record

        with pytest.raises(StoreUnavailableError):
            self.records.update("attrs", WorldAttributes, interfering, max_retries=3)
