"""Tests for the filter store."""

import json
import logging
import shutil
import threading

import pytest

from tallypoint.errors import NotFound, ValidationError
from tallypoint.models import Record
from tallypoint.store import FilterStore


class TestCreate:
    def test_returns_id(self, store):
        filter_id = store.create("errors", "1.2.3.4", "ERROR")
        assert filter_id
        flt = store.get(filter_id)
        assert flt.name == "errors"
        assert flt.owner == "1.2.3.4"
        assert flt.pattern == "ERROR"
        assert flt.results == {}

    def test_distinct_ids(self, store):
        a = store.create("errors", "1.2.3.4", "ERROR")
        b = store.create("warnings", "1.2.3.4", "WARN")
        assert a != b

    def test_duplicate_names_allowed(self, store):
        a = store.create("errors", "1.2.3.4", "ERROR")
        b = store.create("errors", "1.2.3.4", "ERROR")
        assert a != b
        assert len(store) == 2

    def test_trims_fields(self, store):
        flt = store.get(store.create("  errors ", "h", " ERROR\t"))
        assert flt.name == "errors"
        assert flt.pattern == "ERROR"

    @pytest.mark.parametrize("name, pattern", [("", "ERROR"), ("   ", "ERROR"), ("errors", ""), ("errors", " \n")])
    def test_rejects_empty(self, store, name, pattern):
        with pytest.raises(ValidationError):
            store.create(name, "h", pattern)
        assert len(store) == 0


class TestReadDelete:
    def test_get_unknown(self, store):
        with pytest.raises(NotFound):
            store.get("nope")

    def test_list_strips_results(self, store):
        filter_id = store.create("errors", "h", "ERROR")
        store.merge_results(filter_id, [Record(1, 60, 5)])
        listed = store.list()
        assert [f.id for f in listed] == [filter_id]
        assert listed[0].results == {}
        assert store.get(filter_id).results == {1: {60: 5}}

    def test_get_returns_snapshot(self, store):
        filter_id = store.create("errors", "h", "ERROR")
        store.merge_results(filter_id, [Record(1, 60, 5)])
        before = store.get(filter_id)
        store.merge_results(filter_id, [Record(1, 60, 5)])
        assert before.results == {1: {60: 5}}
        assert store.get(filter_id).results == {1: {60: 10}}

    def test_delete(self, store):
        filter_id = store.create("errors", "h", "ERROR")
        assert store.delete(filter_id) is True
        with pytest.raises(NotFound):
            store.get(filter_id)
        assert store.delete(filter_id) is False

    def test_deleted_filter_rejects_merge(self, store):
        filter_id = store.create("errors", "h", "ERROR")
        store.delete(filter_id)
        with pytest.raises(NotFound):
            store.merge_results(filter_id, [Record(1, 60, 1)])


class TestMerge:
    def test_additive(self, store):
        filter_id = store.create("errors", "h", "ERROR")
        batch = [Record(1, 60, 5), Record(1, 60, 3)]
        assert store.merge_results(filter_id, batch) == 2
        assert store.get(filter_id).results[1][60] == 8

    def test_replay_double_counts(self, store):
        filter_id = store.create("errors", "h", "ERROR")
        batch = [Record(1, 60, 5), Record(1, 60, 3)]
        store.merge_results(filter_id, batch)
        store.merge_results(filter_id, batch)
        assert store.get(filter_id).results[1][60] == 16

    def test_metrics_and_buckets_kept_apart(self, store):
        filter_id = store.create("errors", "h", "ERROR")
        store.merge_results(filter_id, [Record(1, 60, 1), Record(2, 60, 4), Record(1, 120, 2), Record(7, 0, 1)])
        assert store.get(filter_id).results == {1: {60: 1, 120: 2}, 2: {60: 4}, 7: {0: 1}}

    def test_unknown_filter(self, store):
        with pytest.raises(NotFound):
            store.merge_results("nope", [Record(1, 60, 1)])

    def test_empty_batch(self, store):
        filter_id = store.create("errors", "h", "ERROR")
        assert store.merge_results(filter_id, []) == 0
        assert store.get(filter_id).results == {}

    def test_concurrent_merges_lose_nothing(self, store):
        filter_id = store.create("errors", "h", "ERROR")
        barrier = threading.Barrier(2)

        def caller():
            barrier.wait()
            for _ in range(100):
                store.merge_results(filter_id, [Record(1, 60, 1)])

        threads = [threading.Thread(target=caller) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert store.get(filter_id).results[1][60] == 200


class TestSnapshot:
    def test_round_trip(self, tmp_path):
        path = str(tmp_path / "filters.json")
        store = FilterStore(path=path)
        a = store.create("errors", "1.2.3.4", "ERROR")
        b = store.create("slow", "5.6.7.8", r"took \d+ms")
        store.merge_results(a, [Record(1, 60, 5), Record(2, 60, 1), Record(1, 1434000000, 9)])

        reloaded = FilterStore.open(path)
        assert reloaded.get(a) == store.get(a)
        assert reloaded.get(b) == store.get(b)
        assert reloaded.get(a).results == {1: {60: 5, 1434000000: 9}, 2: {60: 1}}

    def test_delete_is_persisted(self, tmp_path):
        path = str(tmp_path / "filters.json")
        store = FilterStore(path=path)
        filter_id = store.create("errors", "h", "ERROR")
        store.delete(filter_id)
        assert len(FilterStore.open(path)) == 0

    def test_open_missing_file(self, tmp_path):
        store = FilterStore.open(str(tmp_path / "missing.json"))
        assert len(store) == 0

    def test_snapshot_format(self, tmp_path):
        path = tmp_path / "filters.json"
        store = FilterStore(path=str(path))
        filter_id = store.create("errors", "h", "ERROR")
        doc = json.loads(path.read_text())
        assert doc["version"] == 1
        assert doc["filters"][0]["id"] == filter_id

    def test_save_without_path(self, store):
        with pytest.raises(ValueError):
            store.save()

    def test_failed_write_keeps_merge(self, tmp_path, caplog):
        state_dir = tmp_path / "state"
        state_dir.mkdir()
        store = FilterStore(path=str(state_dir / "filters.json"))
        filter_id = store.create("errors", "h", "ERROR")
        shutil.rmtree(state_dir)

        with caplog.at_level(logging.ERROR, logger="tallypoint.store"):
            assert store.merge_results(filter_id, [Record(1, 60, 5)]) == 1
        assert store.get(filter_id).results == {1: {60: 5}}
        assert "failed to write snapshot" in caplog.text

    def test_failed_write_keeps_create_and_delete(self, tmp_path):
        state_dir = tmp_path / "state"
        state_dir.mkdir()
        store = FilterStore(path=str(state_dir / "filters.json"))
        shutil.rmtree(state_dir)

        filter_id = store.create("errors", "h", "ERROR")
        assert store.get(filter_id).name == "errors"
        assert store.delete(filter_id) is True
