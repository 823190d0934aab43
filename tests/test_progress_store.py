import asyncio
import json

from tenderflow.schemas.batch import UnitResult
from tenderflow.services.progress_store import (
    ProgressStore,
    compute_progress_key,
    string_hash,
)


class BrokenKV:
    """Store whose every operation fails, like a full or unreachable backend."""

    def get(self, key):
        raise ConnectionError("store unavailable")

    def set(self, key, value):
        raise OSError("quota exceeded")

    def remove(self, key):
        raise ConnectionError("store unavailable")


def _results(n):
    return [UnitResult(id=f"batch-{i + 1}", title=f"T{i + 1}", content=f"c{i + 1}") for i in range(n)]


def test_string_hash_matches_known_values():
    assert string_hash("") == "0"
    assert string_hash("a") == "2p"
    assert string_hash("abc") == "22ci"
    # 32-bit overflow to Integer.MIN_VALUE; absolute value taken
    assert string_hash("polygenelubricants") == "zik0zk"


def test_string_hash_handles_cjk_text():
    assert string_hash("标书大纲") == string_hash("标书大纲")
    assert string_hash("标书大纲") != string_hash("标书大綱")


def test_key_is_deterministic_and_prefixed():
    k1 = compute_progress_key("# A\nx", "req", "acme", "formal", prefix="batchSubmit_")
    k2 = compute_progress_key("# A\nx", "req", "acme", "formal", prefix="batchSubmit_")

    assert k1 == k2
    assert k1.startswith("batchSubmit_")


def test_key_changes_when_any_field_changes():
    base = ("# A\nx", "req", "acme", "formal")
    key = compute_progress_key(*base, prefix="p_")
    variants = [
        ("# A\nx!", "req", "acme", "formal"),
        ("# A\nx", "req!", "acme", "formal"),
        ("# A\nx", "req", "acme!", "formal"),
        ("# A\nx", "req", "acme", "formal!"),
    ]
    for variant in variants:
        assert compute_progress_key(*variant, prefix="p_") != key


def test_missing_fields_count_as_empty():
    assert compute_progress_key("# A", None, None, None, prefix="p_") == compute_progress_key("# A", prefix="p_")


def test_store_key_matches_module_helper(progress_store):
    assert progress_store.compute_key("# A", "b", "c", "d") == compute_progress_key(
        "# A", "b", "c", "d", prefix="batchSubmit_",
    )


def test_save_writes_wire_field_names(progress_store, kv):
    progress_store.save("batchSubmit_x", _results(1), 4)

    stored = json.loads(kv.get("batchSubmit_x"))
    assert stored["totalBatches"] == 4
    assert [u["id"] for u in stored["completedBatches"]] == ["batch-1"]
    assert isinstance(stored["timestamp"], int) and stored["timestamp"] > 0


def test_load_returns_saved_record(progress_store):
    progress_store.save("batchSubmit_x", _results(2), 3)

    record = progress_store.load("batchSubmit_x")
    assert record is not None
    assert record.total_units == 3
    assert [u.title for u in record.completed_units] == ["T1", "T2"]


def test_load_reads_records_written_by_other_clients(progress_store, kv):
    kv.set("batchSubmit_y", json.dumps({
        "completedBatches": [{"id": "batch-1", "title": "Overview", "content": "..."}],
        "totalBatches": 2,
        "timestamp": 1718000000000,
    }))

    record = progress_store.load("batchSubmit_y")
    assert record.total_units == 2
    assert record.completed_units[0].title == "Overview"


def test_load_missing_key_is_none(progress_store):
    assert progress_store.load("batchSubmit_nothing") is None


def test_malformed_records_are_treated_as_absent(progress_store, kv):
    kv.set("k1", "{not json")
    kv.set("k2", json.dumps([1, 2, 3]))
    kv.set("k3", json.dumps({"completedBatches": _dump(_results(3)), "totalBatches": 2}))

    assert progress_store.load("k1") is None
    assert progress_store.load("k2") is None
    assert progress_store.load("k3") is None
    assert progress_store.get_metrics()["discarded_records"] == 3


def test_clear_is_idempotent(progress_store, kv):
    progress_store.save("batchSubmit_x", _results(1), 2)
    progress_store.clear("batchSubmit_x")
    progress_store.clear("batchSubmit_x")

    assert kv.get("batchSubmit_x") is None


def test_storage_failures_are_swallowed_and_counted():
    store = ProgressStore(BrokenKV(), key_prefix="batchSubmit_")

    store.save("k", _results(1), 2)
    assert store.load("k") is None
    store.clear("k")

    metrics = store.get_metrics()
    assert metrics["save_failures"] == 1
    assert metrics["load_failures"] == 1
    assert metrics["clear_failures"] == 1


def _dump(results):
    return [r.model_dump() for r in results]


def test_async_operations_use_the_same_store(progress_store, kv):
    key = "batchSubmit_async"

    async def scenario():
        await progress_store.save_async(key, [UnitResult(id="batch-1", title="A", content="a")], 2)
        saved = await progress_store.load_async(key)
        await progress_store.clear_async(key)
        return saved, await progress_store.load_async(key)

    saved, cleared = asyncio.run(scenario())

    assert [u.title for u in saved.completed_units] == ["A"]
    assert saved.total_units == 2
    assert cleared is None
    assert kv.get(key) is None
    assert progress_store.get_metrics()["timeouts"] == 0


def test_async_failures_are_counted_once():
    store = ProgressStore(BrokenKV(), key_prefix="batchSubmit_")

    async def scenario():
        await store.save_async("batchSubmit_x", [], 1)
        return await store.load_async("batchSubmit_x")

    assert asyncio.run(scenario()) is None
    metrics = store.get_metrics()
    assert metrics["save_failures"] == 1
    assert metrics["load_failures"] == 1
    assert metrics["timeouts"] == 0
