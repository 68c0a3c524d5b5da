import json
import logging
import os
import re
import threading
from typing import Any, Dict, List

from .errors import FlowNotFoundError

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class FileFlowStore:
    """Keeps each flow document as ``<flow_id>.json`` under one directory."""

    def __init__(self, flows_dir: str):
        self.flows_dir = str(flows_dir)
        os.makedirs(self.flows_dir, exist_ok=True)

    def _path(self, flow_id: str) -> str:
        if not _SAFE_ID.match(flow_id) or flow_id.startswith("."):
            raise ValueError(f"Invalid flow id: {flow_id}")
        return os.path.join(self.flows_dir, f"{flow_id}.json")

    def list_flows(self) -> List[str]:
        if not os.path.exists(self.flows_dir):
            return []
        return sorted(f[:-len(".json")] for f in os.listdir(self.flows_dir) if f.endswith(".json"))

    def exists(self, flow_id: str) -> bool:
        return os.path.exists(self._path(flow_id))

    def get(self, flow_id: str) -> Dict[str, Any]:
        path = self._path(flow_id)
        if not os.path.exists(path):
            raise FlowNotFoundError(flow_id)
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def save(self, flow_id: str, flow: Dict[str, Any]):
        path = self._path(flow_id)
        tmp_path = path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(flow, f, indent=2, ensure_ascii=False)
        os.replace(tmp_path, path)
        logger.info(f"Saved flow: {flow_id}")

    def delete(self, flow_id: str):
        path = self._path(flow_id)
        if not os.path.exists(path):
            raise FlowNotFoundError(flow_id)
        os.remove(path)
        logger.info(f"Deleted flow: {flow_id}")


class FlowLocks:
    """One lock per flow id, so that fetch, diff and write-back of a flow never interleave."""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, flow_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(flow_id)
            if lock is None:
                lock = self._locks[flow_id] = threading.Lock()
            return lock

    def discard(self, flow_id: str):
        with self._guard:
            self._locks.pop(flow_id, None)

    def __len__(self):
        return len(self._locks)
