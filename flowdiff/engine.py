"""
Diff engine.

``apply_diff`` applies a batch of diff operations to a flow document:

1. parse the operations and expand bulk operations into singular ones
2. pre-validate every operation against the document as the batch leaves it
   so far (node ids, edge endpoints and note ids of earlier operations count)
3. apply the operations in order, each one atomically
4. validate the resulting document

The input document is never mutated. Any failure returns a deep copy of the
input unchanged, except in ``continue_on_error`` mode where the successfully
applied operations are kept.
"""

import copy
import logging
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union

from pydantic import BaseModel, ValidationError

from .catalog import ComponentCatalog, ComponentSchema, ParamDef
from .errors import (
    DuplicateNodeError,
    EdgeNotFoundError,
    FlowDiffError,
    NodeNotFoundError,
    OperationError,
)
from .handles import edge_id, handle_field_name, resolve_edge_handles
from .merge import deep_merge
from .operations import (
    AddFullEdge,
    AddFullNode,
    AddNote,
    AddSimpleEdge,
    AddSimpleNode,
    MoveNode,
    RemoveEdge,
    RemoveNode,
    UpdateMetadata,
    UpdateNode,
    expand_operations,
    parse_operations,
)
from .schemas import DiffResult
from .validator import is_object_type, validate_flow

EventSink = Callable[[str, Dict[str, Any]], None]


def log_events(logger: logging.Logger, level: int = logging.DEBUG) -> EventSink:
    """Adapt a logger into an ``on_event`` sink."""

    def sink(event: str, payload: Dict[str, Any]):
        logger.log(level, "%s: %s", event, payload)

    return sink


def unwrap_value(value: Any, param: Optional[ParamDef] = None) -> Any:
    """Strip the ``{"value": X}`` wrapper canvas exports put around field values.

    A dict with other keys besides ``value`` is only unwrapped when the
    parameter is not declared as an object.
    """
    if isinstance(value, dict) and "value" in value:
        if len(value) == 1 or (param is not None and not is_object_type(param.type)):
            return value["value"]
    return value


def _edge_matches(edge: Dict[str, Any], source: str, target: str,
                  source_handle: Optional[str], target_handle: Optional[str]) -> bool:
    if edge.get("source") != source or edge.get("target") != target:
        return False
    if source_handle is not None and edge.get("sourceHandle") not in (None, source_handle):
        return False
    if target_handle is not None:
        stored = edge.get("targetHandle")
        if stored is not None and stored != target_handle and handle_field_name(stored) != target_handle:
            return False
    return True


class _Projection:
    """What the document will look like after the operations checked so far.

    Only ids, component types and edge endpoints are tracked. Handles of edges
    added within the batch are unknown and match any handle.
    """

    def __init__(self, doc: Dict[str, Any]):
        self.node_types: Dict[str, Any] = {}
        for node in doc.get("nodes") or []:
            if isinstance(node, dict) and isinstance(node.get("id"), str):
                self.node_types[node["id"]] = node.get("componentType")
        self.edges: List[Dict[str, Any]] = [
            {k: e.get(k) for k in ("source", "target", "sourceHandle", "targetHandle")}
            for e in doc.get("edges") or []
            if isinstance(e, dict)
        ]
        self.note_ids: Set[str] = {
            n["id"] for n in doc.get("notes") or [] if isinstance(n, dict) and isinstance(n.get("id"), str)
        }

    def has_id(self, element_id: str) -> bool:
        return element_id in self.node_types or element_id in self.note_ids

    def incident_edges(self, node_id: str) -> List[Dict[str, Any]]:
        return [e for e in self.edges if e["source"] == node_id or e["target"] == node_id]


class FlowDiffEngine:
    def __init__(self, catalog: ComponentCatalog, on_event: Optional[EventSink] = None):
        self.catalog = catalog
        self.on_event = on_event
        self._prechecks = {
            AddSimpleNode: self._check_add_node,
            AddFullNode: self._check_add_node,
            RemoveNode: self._check_remove_node,
            UpdateNode: self._check_update_node,
            MoveNode: self._check_move_node,
            AddSimpleEdge: self._check_add_edge,
            AddFullEdge: self._check_add_edge,
            RemoveEdge: self._check_remove_edge,
            UpdateMetadata: self._check_update_metadata,
            AddNote: self._check_add_note,
        }
        self._handlers = {
            AddSimpleNode: self._add_simple_node,
            AddFullNode: self._add_full_node,
            RemoveNode: self._remove_node,
            UpdateNode: self._update_node,
            MoveNode: self._move_node,
            AddSimpleEdge: self._add_simple_edge,
            AddFullEdge: self._add_full_edge,
            RemoveEdge: self._remove_edge,
            UpdateMetadata: self._update_metadata,
            AddNote: self._add_note,
        }

    def _emit(self, event: str, payload: Dict[str, Any]):
        if self.on_event:
            self.on_event(event, payload)

    def apply_diff(
        self,
        doc: Union[Dict[str, Any], BaseModel],
        operations: List[Any],
        validate_after: bool = True,
        continue_on_error: bool = False,
    ) -> DiffResult:
        if isinstance(doc, BaseModel):
            doc = doc.model_dump()
        if not isinstance(doc, dict):
            return DiffResult(success=False, errors=["Flow document must be an object"])

        snapshot = copy.deepcopy(doc)
        working = copy.deepcopy(doc)
        if not isinstance(working.get("nodes"), list):
            return DiffResult(success=False, flow=snapshot, errors=["Flow must have a nodes array"])
        if working.get("edges") is None:
            working["edges"] = []
        elif not isinstance(working["edges"], list):
            return DiffResult(success=False, flow=snapshot, errors=["Flow edges must be an array"])

        operations = list(operations or [])
        self._emit("diff_start", {"operations": len(operations)})

        try:
            parsed = parse_operations(operations)
        except ValidationError as e:
            errors, failed = [], set()
            for err in e.errors():
                loc = err.get("loc") or ()
                index = loc[0] if loc and isinstance(loc[0], int) else None
                where = ".".join(str(part) for part in loc[1:])
                if index is not None:
                    failed.add(index)
                    errors.append(f"Operation {index} is malformed: {err.get('msg')}" + (f" at {where}" if where else ""))
                else:
                    errors.append(f"Operations are malformed: {err.get('msg')}")
            return self._rollback(snapshot, errors, [], failed=sorted(failed), reason="malformed operations")

        expanded = expand_operations(parsed)

        # Pre-validation
        errors: List[str] = []
        warnings: List[str] = []
        rejected: Set[int] = set()
        projection = _Projection(working)
        for index, op in expanded:
            op_errors, op_warnings = [], []
            self._prechecks[type(op)](op, projection, op_errors, op_warnings)
            if op_errors:
                rejected.add(index)
                errors.append(f"Operation {index} ({op.type}) validation failed:\n" + "\n".join(f"  - {m}" for m in op_errors))
            warnings.extend(f"Operation {index} ({op.type}): {m}" for m in op_warnings)
        if errors:
            return self._rollback(snapshot, errors, warnings, failed=sorted(rejected), reason="pre-validation failed")

        # Apply pass
        failed_indices: Set[int] = set()
        for index, op in expanded:
            candidate = copy.deepcopy(working)
            try:
                self._handlers[type(op)](candidate, op, warnings)
            except FlowDiffError as e:
                message = f"Operation {index} ({op.type}) failed: {e.message}"
                if e.suggested_fix:
                    message += f" ({e.suggested_fix})"
                errors.append(message)
            except Exception as e:
                errors.append(f"Operation {index} ({op.type}) failed: Unexpected error: {e}")
            else:
                working = candidate
                self._emit("operation_applied", {"index": index, "type": op.type})
                continue

            failed_indices.add(index)
            self._emit("operation_failed", {"index": index, "type": op.type, "error": errors[-1]})
            if not continue_on_error:
                return self._rollback(snapshot, errors, warnings, failed=[index], reason="operation failed")

        applied = [i for i in range(len(parsed)) if i not in failed_indices]
        if failed_indices:
            result = DiffResult(
                success=False,
                flow=working,
                operationsApplied=len(applied),
                applied=applied,
                failed=sorted(failed_indices),
                errors=errors,
                warnings=warnings,
            )
            self._emit("diff_complete", {"success": False, "applied": applied, "failed": result.failed})
            return result

        # Post-validation
        issues = []
        if validate_after:
            validation = validate_flow(working, self.catalog)
            issues = validation.issues
            if not validation.valid:
                errors = ["Flow validation failed after applying operations:"]
                errors.extend(f"  - {issue}" for issue in validation.errors)
                warnings.extend(str(issue) for issue in validation.warnings)
                return self._rollback(snapshot, errors, warnings, issues=issues, reason="validation failed")
            warnings.extend(str(issue) for issue in validation.warnings)

        self._emit("diff_complete", {"success": True, "applied": applied, "failed": []})
        return DiffResult(
            success=True,
            flow=working,
            operationsApplied=len(applied),
            applied=applied,
            warnings=warnings,
            issues=issues,
        )

    def _rollback(self, snapshot, errors, warnings, failed=None, issues=None, reason=""):
        self._emit("rollback", {"reason": reason, "errors": len(errors)})
        self._emit("diff_complete", {"success": False, "applied": [], "failed": failed or []})
        return DiffResult(
            success=False,
            flow=snapshot,
            failed=failed or [],
            errors=errors,
            warnings=warnings,
            issues=issues or [],
        )

    # --- Pre-validation checks ---

    def _check_component(self, component_type: Any, errors: List[str]) -> Optional[ComponentSchema]:
        schema = self.catalog.lookup(component_type) if isinstance(component_type, str) else None
        if schema is None:
            suggestion = self.catalog.suggest(component_type) if isinstance(component_type, str) else None
            hint = f" Did you mean {suggestion}?" if suggestion else ""
            errors.append(f'Unknown component type: "{component_type}".{hint}')
        return schema

    @staticmethod
    def _check_param_keys(schema: ComponentSchema, params: Dict[str, Any], warnings: List[str]):
        for key in params:
            if schema.param(key) is None:
                warnings.append(f'Unknown parameter "{key}" for component "{schema.name}"')

    def _check_add_node(self, op, projection: _Projection, errors, warnings):
        if isinstance(op, AddFullNode):
            node_id, component_type, params = op.node.id, op.node.componentType, op.node.parameters
        else:
            node_id, component_type, params = op.nodeId, op.componentType, op.params
        if not node_id.strip():
            errors.append("Node ID is required")
        elif projection.has_id(node_id):
            errors.append(f'Node with ID "{node_id}" already exists')
        schema = self._check_component(component_type, errors)
        if schema is not None:
            self._check_param_keys(schema, params, warnings)
            component_type = schema.name
        if node_id.strip():
            projection.node_types.setdefault(node_id, component_type)

    def _check_remove_node(self, op: RemoveNode, projection: _Projection, errors, warnings):
        if op.nodeId not in projection.node_types:
            errors.append(f'Node "{op.nodeId}" not found')
            return
        incident = projection.incident_edges(op.nodeId)
        if incident and not op.removeConnections:
            errors.append(
                f'Node "{op.nodeId}" has {len(incident)} connection(s); set removeConnections or remove the edges first'
            )
        del projection.node_types[op.nodeId]
        projection.edges = [e for e in projection.edges if e not in incident]

    def _check_update_node(self, op: UpdateNode, projection: _Projection, errors, warnings):
        if op.nodeId not in projection.node_types:
            errors.append(f'Node "{op.nodeId}" not found')
            return
        if "id" in op.updates and op.updates["id"] != op.nodeId:
            errors.append("Node ID cannot be changed; remove the node and add a new one")
        component_type = op.updates.get("componentType") or projection.node_types[op.nodeId]
        schema = self._check_component(component_type, errors)
        if schema is None:
            return
        projection.node_types[op.nodeId] = schema.name
        params: Dict[str, Any] = {}
        for key in ("template", "parameters"):
            bag = op.updates.get(key)
            if bag is None:
                continue
            if isinstance(bag, dict):
                params.update(bag)
            else:
                errors.append(f"updates.{key} must be an object")
        self._check_param_keys(schema, params, warnings)

    def _check_move_node(self, op: MoveNode, projection: _Projection, errors, warnings):
        if op.nodeId not in projection.node_types:
            errors.append(f'Node "{op.nodeId}" not found')

    def _check_add_edge(self, op, projection: _Projection, errors, warnings):
        edge = op.edge if isinstance(op, AddFullEdge) else op
        if edge.source not in projection.node_types:
            errors.append(f'Source node "{edge.source}" not found')
        if edge.target not in projection.node_types:
            errors.append(f'Target node "{edge.target}" not found')
        if edge.source == edge.target:
            errors.append("Node cannot connect to itself")
        projection.edges.append({
            "source": edge.source,
            "target": edge.target,
            "sourceHandle": getattr(edge, "sourceHandle", None),
            "targetHandle": getattr(edge, "targetHandle", None),
        })

    def _check_remove_edge(self, op: RemoveEdge, projection: _Projection, errors, warnings):
        match = next(
            (e for e in projection.edges if _edge_matches(e, op.source, op.target, op.sourceHandle, op.targetHandle)),
            None,
        )
        if match is None:
            errors.append(f'Edge from "{op.source}" to "{op.target}" not found')
            return
        projection.edges.remove(match)

    def _check_update_metadata(self, op: UpdateMetadata, projection: _Projection, errors, warnings):
        if op.updates.name is not None and not op.updates.name.strip():
            errors.append("Flow name cannot be empty")

    def _check_add_note(self, op: AddNote, projection: _Projection, errors, warnings):
        if not op.markdown.strip():
            errors.append("Note markdown cannot be empty")
        if op.noteId is not None:
            if projection.has_id(op.noteId):
                errors.append(f'Element with ID "{op.noteId}" already exists')
            projection.note_ids.add(op.noteId)

    # --- Handlers ---
    # Each handler edits ``doc`` in place; the caller hands it a private copy.

    @staticmethod
    def _node_index(doc: Dict[str, Any], node_id: str) -> int:
        for i, node in enumerate(doc["nodes"]):
            if isinstance(node, dict) and node.get("id") == node_id:
                return i
        raise NodeNotFoundError(node_id)

    @staticmethod
    def _taken_ids(doc: Dict[str, Any]) -> Set[Any]:
        taken = {n.get("id") for n in doc["nodes"] if isinstance(n, dict)}
        taken.update(n.get("id") for n in doc.get("notes") or [] if isinstance(n, dict))
        return taken

    def _ensure_unique_id(self, doc: Dict[str, Any], element_id: str):
        if element_id in self._taken_ids(doc):
            raise DuplicateNodeError(element_id)

    def _add_simple_node(self, doc, op: AddSimpleNode, warnings):
        schema = self.catalog.require(op.componentType)
        self._ensure_unique_id(doc, op.nodeId)
        parameters = {p.name: copy.deepcopy(p.default) for p in schema.parameters if p.has_default}
        for key, value in op.params.items():
            parameters[key] = unwrap_value(copy.deepcopy(value), schema.param(key))
        doc["nodes"].append({
            "id": op.nodeId,
            "componentType": schema.name,
            "position": op.position.model_dump() if op.position else {"x": 0, "y": 0},
            "parameters": parameters,
            "outputPorts": [p.model_dump() for p in schema.outputPorts],
        })

    def _add_full_node(self, doc, op: AddFullNode, warnings):
        schema = self.catalog.require(op.node.componentType)
        self._ensure_unique_id(doc, op.node.id)
        node = op.node.model_dump()
        node["parameters"] = {k: unwrap_value(v, schema.param(k)) for k, v in node["parameters"].items()}
        if op.position:
            node["position"] = op.position.model_dump()
        doc["nodes"].append(node)

    def _remove_node(self, doc, op: RemoveNode, warnings):
        index = self._node_index(doc, op.nodeId)
        incident = [e for e in doc["edges"] if e.get("source") == op.nodeId or e.get("target") == op.nodeId]
        if incident and not op.removeConnections:
            raise OperationError(
                f'Node "{op.nodeId}" still has {len(incident)} connection(s)',
                "Remove its edges first or set removeConnections",
            )
        del doc["nodes"][index]
        doc["edges"] = [e for e in doc["edges"] if e not in incident]

    def _update_node(self, doc, op: UpdateNode, warnings):
        node = doc["nodes"][self._node_index(doc, op.nodeId)]
        updates = copy.deepcopy(op.updates)

        if updates.pop("id", op.nodeId) != op.nodeId:
            raise OperationError("Node ID cannot be changed", "Remove the node and add a new one")
        new_type = updates.pop("componentType", None)
        if new_type is not None:
            node["componentType"] = self.catalog.require(new_type).name
        schema = self.catalog.require(node.get("componentType"))

        param_updates = updates.pop("parameters", None)
        template = updates.pop("template", None)
        if isinstance(template, dict):
            param_updates = {**template, **(param_updates or {})}
        if param_updates is not None and not isinstance(param_updates, dict):
            raise OperationError("updates.parameters must be an object")

        stored = node.get("parameters") if isinstance(node.get("parameters"), dict) else {}

        # An explicit None clears the stored value
        overrides: Dict[str, Any] = {}
        for key, raw in (param_updates or {}).items():
            value = unwrap_value(raw, schema.param(key))
            if op.merge and value is not None and stored.get(key) is not None:
                value, anomalies = deep_merge(stored[key], value, path=f"parameters.{key}")
                warnings.extend(f'Node "{op.nodeId}": {a}' for a in anomalies)
            overrides[key] = value

        for key, value in updates.items():
            if op.merge:
                node[key], anomalies = deep_merge(node.get(key), value, path=key)
                warnings.extend(f'Node "{op.nodeId}": {a}' for a in anomalies)
            else:
                node[key] = value

        # Rebuild against the catalog's current field list
        rebuilt: Dict[str, Any] = {}
        for param in schema.parameters:
            if param.name in overrides:
                rebuilt[param.name] = overrides[param.name]
            elif stored.get(param.name) is not None:
                rebuilt[param.name] = stored[param.name]
            elif param.has_default:
                rebuilt[param.name] = copy.deepcopy(param.default)
            elif param.name in stored:
                rebuilt[param.name] = None
        for key, value in {**stored, **overrides}.items():
            rebuilt.setdefault(key, value)
        node["parameters"] = rebuilt

        if schema.outputPorts and "outputPorts" not in updates:
            node["outputPorts"] = [p.model_dump() for p in schema.outputPorts]

    def _move_node(self, doc, op: MoveNode, warnings):
        node = doc["nodes"][self._node_index(doc, op.nodeId)]
        node["position"] = op.position.model_dump()

    def _endpoints(self, doc, source_id: str, target_id: str) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        source = doc["nodes"][self._node_index(doc, source_id)]
        target = doc["nodes"][self._node_index(doc, target_id)]
        if source_id == target_id:
            raise OperationError("Node cannot connect to itself", "Change either source or target")
        return source, target

    @staticmethod
    def _append_edge(doc, edge: Dict[str, Any], warnings) -> None:
        for existing in doc["edges"]:
            if (existing.get("source"), existing.get("target"), existing.get("targetHandle")) == (
                edge["source"], edge["target"], edge["targetHandle"]
            ):
                field = handle_field_name(edge["targetHandle"]) or edge["targetHandle"]
                warnings.append(f'Edge from "{edge["source"]}" to "{edge["target"]}" into "{field}" already exists; skipped')
                return
        doc["edges"].append(edge)

    def _add_simple_edge(self, doc, op: AddSimpleEdge, warnings):
        source, target = self._endpoints(doc, op.source, op.target)
        source_handle, target_handle = resolve_edge_handles(
            doc, source, target, self.catalog, target_param=op.targetParam, source_output=op.sourceOutput
        )
        self._append_edge(doc, {
            "id": edge_id(op.source, source_handle, op.target, target_handle),
            "source": op.source,
            "target": op.target,
            "sourceHandle": source_handle,
            "targetHandle": target_handle,
        }, warnings)

    def _add_full_edge(self, doc, op: AddFullEdge, warnings):
        edge = op.edge.model_dump()
        source, target = self._endpoints(doc, edge["source"], edge["target"])
        if not edge["sourceHandle"] or not edge["targetHandle"]:
            source_handle, target_handle = resolve_edge_handles(
                doc, source, target, self.catalog, target_param=handle_field_name(edge["targetHandle"])
            )
            edge["sourceHandle"] = edge["sourceHandle"] or source_handle
            edge["targetHandle"] = edge["targetHandle"] or target_handle
        if not edge["id"]:
            edge["id"] = edge_id(edge["source"], edge["sourceHandle"], edge["target"], edge["targetHandle"])
        self._append_edge(doc, edge, warnings)

    def _remove_edge(self, doc, op: RemoveEdge, warnings):
        for i, edge in enumerate(doc["edges"]):
            if _edge_matches(edge, op.source, op.target, op.sourceHandle, op.targetHandle):
                del doc["edges"][i]
                return
        raise EdgeNotFoundError(op.source, op.target)

    def _update_metadata(self, doc, op: UpdateMetadata, warnings):
        updates = op.updates
        if updates.name is not None:
            if not updates.name.strip():
                raise OperationError("Flow name cannot be empty")
            doc["name"] = updates.name
        if updates.description is not None:
            doc["description"] = updates.description
        if updates.tags is not None:
            doc["tags"] = list(updates.tags)
        if updates.metadata is not None:
            doc["metadata"], anomalies = deep_merge(doc.get("metadata") or {}, updates.metadata, path="metadata")
            warnings.extend(anomalies)

    def _add_note(self, doc, op: AddNote, warnings):
        if not op.markdown.strip():
            raise OperationError("Note markdown cannot be empty")
        notes = doc.setdefault("notes", [])
        note_id = op.noteId
        if note_id is None:
            taken = self._taken_ids(doc)
            n = len(notes) + 1
            while f"note-{n}" in taken:
                n += 1
            note_id = f"note-{n}"
        else:
            self._ensure_unique_id(doc, note_id)
        notes.append({
            "id": note_id,
            "markdown": op.markdown,
            "position": op.position.model_dump(),
            "backgroundColor": op.backgroundColor,
        })


def apply_diff(
    doc: Union[Dict[str, Any], BaseModel],
    operations: List[Any],
    catalog: ComponentCatalog,
    validate_after: bool = True,
    continue_on_error: bool = False,
    on_event: Optional[EventSink] = None,
) -> DiffResult:
    engine = FlowDiffEngine(catalog, on_event=on_event)
    return engine.apply_diff(doc, operations, validate_after=validate_after, continue_on_error=continue_on_error)
