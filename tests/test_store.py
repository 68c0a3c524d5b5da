import pytest

from flowdiff.errors import FlowNotFoundError
from flowdiff.store import FileFlowStore, FlowLocks


@pytest.fixture
def store(tmp_path):
    return FileFlowStore(tmp_path / "flows")


def test_save_get_list_delete(store):
    assert store.list_flows() == []

    store.save("b", {"name": "B", "nodes": [], "edges": []})
    store.save("a", {"name": "Ä", "nodes": [], "edges": []})

    assert store.list_flows() == ["a", "b"]
    assert store.get("a")["name"] == "Ä"
    assert store.exists("b")

    store.delete("b")
    assert store.list_flows() == ["a"]
    with pytest.raises(FlowNotFoundError):
        store.get("b")
    with pytest.raises(FlowNotFoundError):
        store.delete("b")


def test_save_overwrites(store):
    store.save("a", {"name": "one"})
    store.save("a", {"name": "two"})
    assert store.get("a") == {"name": "two"}


@pytest.mark.parametrize("flow_id", ["../escape", "a b", ".hidden", ""])
def test_invalid_ids_are_rejected(store, flow_id):
    with pytest.raises(ValueError):
        store.get(flow_id)


def test_locks_are_per_flow():
    locks = FlowLocks()
    assert locks.get("a") is locks.get("a")
    assert locks.get("a") is not locks.get("b")


def test_discarded_lock_is_replaced():
    locks = FlowLocks()
    first = locks.get("a")
    locks.get("b")
    locks.discard("a")
    locks.discard("missing")
    assert len(locks) == 1
    assert locks.get("a") is not first
