from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from typing import List, Dict, Any
import uvicorn
import os
import logging

import config
from .catalog import ComponentCatalog, ComponentSchema
from .client import RemoteFlowClient
from .engine import FlowDiffEngine, log_events
from .errors import FlowDiffError, FlowNotFoundError
from .history import FlowHistory
from .operations import add_note
from .schemas import (
    DiffRequest,
    DiffResult,
    FlowDiffRequest,
    FlowDocument,
    NoteRequest,
    ValidateRequest,
    ValidationResult,
)
from .store import FileFlowStore, FlowLocks
from .validator import validate_flow

# Setup Logging
logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="FlowDiff Service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def load_catalog() -> ComponentCatalog:
    if os.path.exists(config.COMPONENTS_FILE):
        return ComponentCatalog.from_file(config.COMPONENTS_FILE)
    logger.warning(f"No component catalog at {config.COMPONENTS_FILE}, starting empty")
    return ComponentCatalog()


flow_store = FileFlowStore(config.FLOWS_DIR)
catalog = load_catalog()
history = FlowHistory(config.HISTORY_MAX_ENTRIES)
locks = FlowLocks()
# When set, single flows are read from and written back to the remote service
remote = RemoteFlowClient() if config.REMOTE_API_URL else None


@app.on_event("startup")
def fetch_remote_catalog():
    global catalog
    if remote is None:
        return
    try:
        catalog = remote.get_components()
    except FlowDiffError as e:
        logger.error(f"Failed to fetch remote catalog, keeping local one: {e}")


def _engine(raw_catalog=None) -> FlowDiffEngine:
    cat = ComponentCatalog.from_mapping(raw_catalog) if raw_catalog is not None else catalog
    return FlowDiffEngine(cat, on_event=log_events(logger))


def _load(flow_id: str) -> Dict[str, Any]:
    try:
        if remote is not None:
            return remote.get_flow(flow_id)
        return flow_store.get(flow_id)
    except FlowNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except FlowDiffError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _write(flow_id: str, flow: Dict[str, Any]):
    try:
        if remote is not None:
            remote.update_flow(flow_id, flow)
        else:
            flow_store.save(flow_id, flow)
    except FlowNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except FlowDiffError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/")
def read_root():
    return {"message": "FlowDiff Service API"}


@app.get("/api/components", response_model=List[ComponentSchema])
def get_components():
    return catalog.get_all_metadata()


# --- STATELESS ENDPOINTS ---

@app.post("/api/flows/validate", response_model=ValidationResult)
def validate_endpoint(req: ValidateRequest):
    cat = ComponentCatalog.from_mapping(req.catalog) if req.catalog is not None else catalog
    return validate_flow(req.flow, cat)


@app.post("/api/flows/diff", response_model=DiffResult)
def diff_endpoint(req: DiffRequest):
    return _engine(req.catalog).apply_diff(
        req.flow, req.operations, validate_after=req.validateAfter, continue_on_error=req.continueOnError
    )


# --- STORED FLOW ENDPOINTS ---

@app.get("/api/flows")
def list_flows():
    return flow_store.list_flows()


@app.get("/api/flows/{flow_id}")
def get_flow(flow_id: str):
    return _load(flow_id)


@app.put("/api/flows/{flow_id}")
def save_flow(flow_id: str, flow: FlowDocument):
    with locks.get(flow_id):
        _write(flow_id, flow.to_dict())
    history.clear(flow_id)
    return {"status": "saved", "id": flow_id}


@app.delete("/api/flows/{flow_id}")
def delete_flow(flow_id: str):
    with locks.get(flow_id):
        try:
            flow_store.delete(flow_id)
        except FlowNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    locks.discard(flow_id)
    history.clear(flow_id)
    return {"status": "deleted", "id": flow_id}


@app.post("/api/flows/{flow_id}/diff", response_model=DiffResult)
def diff_stored_flow(flow_id: str, req: FlowDiffRequest):
    with locks.get(flow_id):
        before = _load(flow_id)
        result = _engine().apply_diff(
            before, req.operations, validate_after=req.validateAfter, continue_on_error=req.continueOnError
        )
        if not result.success:
            logger.warning(f"Diff on flow {flow_id} failed: {result.errors}")
            raise HTTPException(status_code=400, detail=result.model_dump(mode="json"))
        _write(flow_id, result.flow)
        history.push(flow_id, before, result.flow, req.operations, req.description, req.actor)
    return result


@app.post("/api/flows/{flow_id}/notes", response_model=DiffResult)
def add_flow_note(flow_id: str, req: NoteRequest):
    op = add_note(
        req.markdown,
        position=req.position.model_dump() if req.position else None,
        background_color=req.backgroundColor,
        note_id=req.noteId,
    )
    with locks.get(flow_id):
        before = _load(flow_id)
        result = _engine().apply_diff(before, [op], validate_after=False)
        if not result.success:
            raise HTTPException(status_code=400, detail=result.model_dump(mode="json"))
        _write(flow_id, result.flow)
        history.push(flow_id, before, result.flow, [op.model_dump()], "Add note")
    return result


# --- HISTORY ENDPOINTS ---

def _restore(flow_id: str, state, status: str):
    _write(flow_id, state)
    return {"status": status, "flow": state, "history": history.info(flow_id)}


@app.post("/api/flows/{flow_id}/undo")
def undo_flow(flow_id: str):
    with locks.get(flow_id):
        _load(flow_id)
        state = history.undo(flow_id)
        if state is None:
            raise HTTPException(status_code=400, detail="Nothing to undo")
        return _restore(flow_id, state, "undone")


@app.post("/api/flows/{flow_id}/redo")
def redo_flow(flow_id: str):
    with locks.get(flow_id):
        _load(flow_id)
        state = history.redo(flow_id)
        if state is None:
            raise HTTPException(status_code=400, detail="Nothing to redo")
        return _restore(flow_id, state, "redone")


@app.get("/api/flows/{flow_id}/history")
def get_flow_history(flow_id: str):
    info = history.info(flow_id)
    if info is None:
        return {"canUndo": False, "canRedo": False, "currentIndex": -1, "totalEntries": 0, "entries": []}
    return info


@app.post("/api/flows/{flow_id}/history/{entry_id}")
def jump_flow_history(flow_id: str, entry_id: str):
    with locks.get(flow_id):
        _load(flow_id)
        state = history.jump_to(flow_id, entry_id)
        if state is None:
            raise HTTPException(status_code=404, detail=f"History entry {entry_id} not found")
        return _restore(flow_id, state, "restored")


# Log Buffer
log_buffer = []

class ListHandler(logging.Handler):
    def emit(self, record):
        log_buffer.append(self.format(record))
        if len(log_buffer) > 100:
            log_buffer.pop(0)

handler = ListHandler()
formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
handler.setFormatter(formatter)
logging.getLogger().addHandler(handler)

@app.get("/api/logs")
def get_logs():
    return log_buffer

if __name__ == "__main__":
    uvicorn.run("flowdiff.main:app", host=config.HOST, port=config.PORT, reload=True)
