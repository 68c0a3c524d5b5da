import copy
import logging
import time
import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class HistoryEntry(BaseModel):
    id: str
    flowId: str
    before: Dict[str, Any]
    after: Dict[str, Any]
    operations: List[Any] = Field(default_factory=list)
    timestamp: float
    description: Optional[str] = None
    actor: Optional[str] = None


class _FlowState:
    def __init__(self):
        self.entries: List[HistoryEntry] = []
        self.current = -1  # index of the entry whose ``after`` is the live flow


class FlowHistory:
    """
    Undo/redo stacks of full flow snapshots, one per flow id.

    Every successful diff pushes a (before, after) pair. Pushing after an undo
    drops the entries that could have been redone.
    """

    def __init__(self, max_entries: int = 50):
        self.max_entries = max_entries
        self._flows: Dict[str, _FlowState] = {}

    def push(self, flow_id: str, before: Dict[str, Any], after: Dict[str, Any], operations: List[Any],
             description: Optional[str] = None, actor: Optional[str] = None) -> HistoryEntry:
        state = self._flows.setdefault(flow_id, _FlowState())
        del state.entries[state.current + 1:]

        entry = HistoryEntry(
            id=f"{flow_id}-{uuid.uuid4().hex[:12]}",
            flowId=flow_id,
            before=copy.deepcopy(before),
            after=copy.deepcopy(after),
            operations=copy.deepcopy(operations),
            timestamp=time.time(),
            description=description,
            actor=actor,
        )
        state.entries.append(entry)

        overflow = len(state.entries) - self.max_entries
        if overflow > 0:
            del state.entries[:overflow]
            logger.debug(f"Evicted {overflow} history entries for flow {flow_id}")
        state.current = len(state.entries) - 1
        return entry

    def undo(self, flow_id: str) -> Optional[Dict[str, Any]]:
        """Step back one entry and return the flow as it was before it, or None."""
        if not self.can_undo(flow_id):
            return None
        state = self._flows[flow_id]
        entry = state.entries[state.current]
        state.current -= 1
        return copy.deepcopy(entry.before)

    def redo(self, flow_id: str) -> Optional[Dict[str, Any]]:
        if not self.can_redo(flow_id):
            return None
        state = self._flows[flow_id]
        state.current += 1
        return copy.deepcopy(state.entries[state.current].after)

    def can_undo(self, flow_id: str) -> bool:
        state = self._flows.get(flow_id)
        return state is not None and state.current >= 0

    def can_redo(self, flow_id: str) -> bool:
        state = self._flows.get(flow_id)
        return state is not None and state.current < len(state.entries) - 1

    def info(self, flow_id: str) -> Optional[Dict[str, Any]]:
        state = self._flows.get(flow_id)
        if state is None:
            return None
        return {
            "canUndo": self.can_undo(flow_id),
            "canRedo": self.can_redo(flow_id),
            "currentIndex": state.current,
            "totalEntries": len(state.entries),
            "entries": [
                {"id": e.id, "description": e.description, "timestamp": e.timestamp, "actor": e.actor}
                for e in state.entries
            ],
        }

    def get_entry(self, flow_id: str, entry_id: str) -> Optional[HistoryEntry]:
        state = self._flows.get(flow_id)
        if state is None:
            return None
        return next((e for e in state.entries if e.id == entry_id), None)

    def jump_to(self, flow_id: str, entry_id: str) -> Optional[Dict[str, Any]]:
        """Make ``entry_id`` the current entry and return the flow after it."""
        state = self._flows.get(flow_id)
        if state is None:
            return None
        for i, entry in enumerate(state.entries):
            if entry.id == entry_id:
                state.current = i
                return copy.deepcopy(entry.after)
        return None

    def clear(self, flow_id: str):
        self._flows.pop(flow_id, None)

    def clear_all(self):
        self._flows.clear()
