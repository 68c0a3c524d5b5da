from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from flowdiff import main
from flowdiff.client import RemoteFlowClient
from flowdiff.errors import FlowDiffError, FlowNotFoundError
from flowdiff.history import FlowHistory
from flowdiff.store import FileFlowStore, FlowLocks

client = TestClient(main.app)

FLOW = {"name": "T", "nodes": [], "edges": []}

BUILD_OPS = [
    {"type": "addNode", "nodeId": "in", "componentType": "ChatInput"},
    {"type": "addNode", "nodeId": "out", "componentType": "ChatOutput"},
    {"type": "addEdge", "source": "in", "target": "out"},
]


@pytest.fixture(autouse=True)
def service(tmp_path, monkeypatch, catalog):
    monkeypatch.setattr(main, "flow_store", FileFlowStore(tmp_path / "flows"))
    monkeypatch.setattr(main, "catalog", catalog)
    monkeypatch.setattr(main, "history", FlowHistory(max_entries=10))
    monkeypatch.setattr(main, "locks", FlowLocks())
    monkeypatch.setattr(main, "remote", None)


@pytest.fixture
def stored_flow():
    response = client.put("/api/flows/f1", json=FLOW)
    assert response.status_code == 200
    return "f1"


def test_root_and_components():
    assert client.get("/").status_code == 200
    names = [c["name"] for c in client.get("/api/components").json()]
    assert names == ["ChatInput", "ChatOutput", "OpenAIModel", "X"]


def test_validate_endpoint():
    response = client.post("/api/flows/validate", json={
        "flow": {"name": "T", "nodes": [{"id": "a", "componentType": "X", "parameters": {}, "position": {"x": 0, "y": 0}}]},
    })
    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is False
    assert body["issues"][0]["field"] == "k"
    assert body["summary"]["errors"] == 1


def test_validate_with_request_catalog():
    response = client.post("/api/flows/validate", json={
        "flow": {"name": "T", "nodes": [{"id": "a", "componentType": "Other", "parameters": {}, "position": {"x": 0, "y": 0}}]},
        "catalog": {"Other": {"parameters": []}},
    })
    assert response.json()["valid"] is True


def test_stateless_diff():
    response = client.post("/api/flows/diff", json={"flow": FLOW, "operations": BUILD_OPS})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert len(body["flow"]["nodes"]) == 2
    assert len(body["flow"]["edges"]) == 1
    assert client.get("/api/flows").json() == []


def test_flow_crud(stored_flow):
    assert client.get("/api/flows").json() == ["f1"]
    flow = client.get("/api/flows/f1").json()
    assert flow["name"] == "T"
    assert flow["notes"] == []

    assert client.delete("/api/flows/f1").status_code == 200
    assert len(main.locks) == 0
    assert client.get("/api/flows/f1").status_code == 404
    assert client.delete("/api/flows/f1").status_code == 404


def test_invalid_flow_id():
    assert client.get("/api/flows/bad id").status_code == 400


def test_diff_stored_flow_and_history(stored_flow):
    response = client.post("/api/flows/f1/diff", json={"operations": BUILD_OPS, "description": "build"})
    assert response.status_code == 200
    assert response.json()["operationsApplied"] == 3
    assert len(client.get("/api/flows/f1").json()["nodes"]) == 2

    history = client.get("/api/flows/f1/history").json()
    assert history["totalEntries"] == 1
    assert history["entries"][0]["description"] == "build"

    undone = client.post("/api/flows/f1/undo").json()
    assert undone["flow"]["nodes"] == []
    assert client.get("/api/flows/f1").json()["nodes"] == []
    assert client.post("/api/flows/f1/undo").status_code == 400

    redone = client.post("/api/flows/f1/redo").json()
    assert len(redone["flow"]["nodes"]) == 2
    assert client.post("/api/flows/f1/redo").status_code == 400

    entry_id = history["entries"][0]["id"]
    assert client.post(f"/api/flows/f1/history/{entry_id}").status_code == 200
    assert client.post("/api/flows/f1/history/missing").status_code == 404


def test_failed_diff_is_not_written(stored_flow):
    response = client.post("/api/flows/f1/diff", json={"operations": [{"type": "removeNode", "nodeId": "ghost"}]})
    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["success"] is False
    assert detail["errors"]
    assert client.get("/api/flows/f1").json()["nodes"] == []
    assert client.get("/api/flows/f1/history").json()["totalEntries"] == 0


def test_diff_unknown_flow():
    response = client.post("/api/flows/nope/diff", json={"operations": BUILD_OPS})
    assert response.status_code == 404


def test_add_note(stored_flow):
    response = client.post("/api/flows/f1/notes", json={"markdown": "# About", "backgroundColor": "blue"})
    assert response.status_code == 200
    notes = client.get("/api/flows/f1").json()["notes"]
    assert [(n["id"], n["backgroundColor"]) for n in notes] == [("note-1", "blue")]

    assert client.post("/api/flows/f1/notes", json={"markdown": " "}).status_code == 400


def test_logs_endpoint():
    assert isinstance(client.get("/api/logs").json(), list)


@pytest.fixture
def remote(monkeypatch):
    mock = MagicMock(spec=RemoteFlowClient)
    mock.get_flow.return_value = dict(FLOW)
    monkeypatch.setattr(main, "remote", mock)
    return mock


def test_remote_flow_is_fetched_diffed_and_written_back(remote):
    assert client.get("/api/flows/r1").json()["name"] == "T"
    remote.get_flow.assert_called_with("r1")

    response = client.post("/api/flows/r1/diff", json={"operations": BUILD_OPS})
    assert response.status_code == 200
    flow_id, written = remote.update_flow.call_args[0]
    assert flow_id == "r1"
    assert [n["id"] for n in written["nodes"]] == ["in", "out"]
    assert len(written["edges"]) == 1
    assert client.get("/api/flows/r1/history").json()["totalEntries"] == 1
    assert main.flow_store.list_flows() == []


def test_remote_failures_map_to_status_codes(remote):
    remote.get_flow.side_effect = FlowNotFoundError("r1")
    assert client.post("/api/flows/r1/diff", json={"operations": BUILD_OPS}).status_code == 404

    remote.get_flow.side_effect = FlowDiffError("Remote flow service unreachable")
    assert client.get("/api/flows/r1").status_code == 502
    remote.update_flow.assert_not_called()
