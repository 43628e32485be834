"""
tests/test_score_ledger.py - Bounded Score Ledger and Key-Value Stores

Validates:
- record prepends, truncates to max_entries, persists
- load returns [] when nothing (or garbage) is stored
- clear persists an empty list
- the ledger itself never deduplicates
- JsonFileStore persistence and corruption handling
"""

import json
import threading

import pytest

from kv_store import JsonFileStore, KeyValueStore, MemoryStore
from race.constants import DEFAULT_PLAYER_NAME, SCORES_KEY
from score_ledger import ScoreLedger


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def ledger(store):
    return ScoreLedger(store)


# =============================================================================
# TEST: record
# =============================================================================

class TestRecord:

    def test_record_fields(self, ledger):
        entry = ledger.record(420, True, "Ada")
        assert entry.score == 420.0
        assert entry.outcome == "won"
        assert entry.won
        assert entry.player_name == "Ada"
        assert len(entry.record_id) == 32
        assert entry.timestamp.endswith("+00:00")

    def test_lost_outcome(self, ledger):
        assert ledger.record(10, False, "Bob").outcome == "lost"

    def test_blank_name_defaults(self, ledger):
        assert ledger.record(10, False, "   ").player_name == DEFAULT_PLAYER_NAME

    def test_most_recent_first(self, ledger):
        ledger.record(1, False, "p")
        ledger.record(2, False, "p")
        assert [r.score for r in ledger.load()] == [2.0, 1.0]

    def test_eleven_records_keep_ten(self, ledger):
        """After 11 records: 10 entries, newest first, oldest dropped."""
        for score in range(1, 12):
            ledger.record(score, False, "p")
        scores = [r.score for r in ledger.load()]
        assert len(scores) == 10
        assert scores == [float(s) for s in range(11, 1, -1)]

    def test_no_dedup(self, ledger):
        ledger.record(100, True, "p")
        ledger.record(100, True, "p")
        records = ledger.load()
        assert len(records) == 2
        assert records[0].record_id != records[1].record_id

    def test_persisted_as_json(self, store, ledger):
        ledger.record(5, True, "p")
        stored = json.loads(store.get(SCORES_KEY))
        assert stored[0]["score"] == 5.0
        assert stored[0]["outcome"] == "won"

    def test_custom_capacity(self, store):
        small = ScoreLedger(store, max_entries=3)
        for score in range(5):
            small.record(score, False, "p")
        assert len(small.load()) == 3

    def test_invalid_capacity(self, store):
        with pytest.raises(ValueError):
            ScoreLedger(store, max_entries=0)

    def test_concurrent_records_all_kept(self, store):
        shared = ScoreLedger(store, max_entries=100)

        def worker():
            for _ in range(5):
                shared.record(1, False, "t")

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(shared.load()) == 20


# =============================================================================
# TEST: load / clear
# =============================================================================

class TestLoadClear:

    def test_load_empty(self, ledger):
        assert ledger.load() == []

    def test_clear(self, store, ledger):
        ledger.record(5, True, "p")
        ledger.clear()
        assert ledger.load() == []
        assert store.get(SCORES_KEY) == "[]"

    @pytest.mark.parametrize("garbage", ["{not json", '{"a": 1}', '[{"score": 1}]'])
    def test_corrupt_value_loads_empty(self, store, ledger, garbage):
        store.set(SCORES_KEY, garbage)
        assert ledger.load() == []

    def test_record_over_corrupt_value(self, store, ledger):
        store.set(SCORES_KEY, "{not json")
        ledger.record(7, False, "p")
        assert [r.score for r in ledger.load()] == [7.0]

    def test_best(self, ledger):
        assert ledger.best() == 0.0
        ledger.record(30, False, "p")
        ledger.record(90, True, "p")
        ledger.record(60, False, "p")
        assert ledger.best() == 90.0


# =============================================================================
# TEST: stores
# =============================================================================

class TestStores:

    def test_memory_store_protocol(self):
        s = MemoryStore({"k": "v"})
        assert isinstance(s, KeyValueStore)
        assert s.get("k") == "v"
        s.remove("k")
        s.remove("k")
        assert s.get("k") is None

    def test_json_file_store_roundtrip(self, tmp_path):
        path = tmp_path / "nested" / "store.json"
        s = JsonFileStore(str(path))
        assert s.get("x") is None
        s.set("x", "1")
        s.set("y", "2")
        assert JsonFileStore(str(path)).get("x") == "1"
        s.remove("x")
        assert JsonFileStore(str(path)).get("x") is None
        assert JsonFileStore(str(path)).get("y") == "2"

    def test_json_file_store_corrupt(self, tmp_path):
        path = tmp_path / "store.json"
        path.write_text("garbage")
        s = JsonFileStore(str(path))
        assert s.get("x") is None
        s.set("x", "1")
        assert s.get("x") == "1"

    def test_ledger_on_file_store(self, tmp_path):
        path = str(tmp_path / "scores.json")
        ScoreLedger(JsonFileStore(path)).record(12, True, "file")
        records = ScoreLedger(JsonFileStore(path)).load()
        assert records[0].player_name == "file"
