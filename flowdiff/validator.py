"""Flow validation.

``validate_flow`` inspects a flow document against a component catalog and
returns every issue it finds. It never mutates its input and never stops at
the first problem, except that a document without a ``nodes`` list cannot be
inspected any further.
"""

import re
from typing import Any, Dict, List, Optional, Set, Tuple, Union

from pydantic import BaseModel

from .catalog import ComponentCatalog, ComponentSchema, ParamDef
from .schemas import Severity, ValidationIssue, ValidationResult, ValidationSummary

# Password fields with these names hold API credentials, which may be injected out-of-band
CREDENTIAL_FIELD = re.compile(r"(^|_)api_?key$", re.IGNORECASE)
# Unfilled credential placeholders such as "OPENAI_API_KEY"
ENV_PLACEHOLDER = re.compile(r"^[A-Z][A-Z0-9_]*_API_KEY$")

_STRING_TYPES = {"str", "string", "file", "code", "prompt", "multiline", "password"}
_NUMBER_TYPES = {"int", "integer", "float", "number"}
_BOOLEAN_TYPES = {"bool", "boolean"}
_OBJECT_TYPES = {"dict", "object", "nesteddict"}
_ARRAY_TYPES = {"list", "array"}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def value_matches_type(value: Any, declared_type: str) -> bool:
    """Check a runtime value's primitive shape against a declared catalog type.

    Types the check does not know about always match.
    """
    declared = (declared_type or "").lower()
    if declared in _STRING_TYPES:
        return isinstance(value, str)
    if declared in _NUMBER_TYPES:
        return _is_number(value)
    if declared in _BOOLEAN_TYPES:
        return isinstance(value, bool)
    if declared in _OBJECT_TYPES:
        return isinstance(value, dict)
    if declared in _ARRAY_TYPES:
        return isinstance(value, list)
    return True


def is_object_type(declared_type: str) -> bool:
    return (declared_type or "").lower() in _OBJECT_TYPES


def _hashable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float)):
        return value
    return repr(value)


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if _is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def is_credential_slot(param: ParamDef) -> bool:
    return param.password and bool(CREDENTIAL_FIELD.search(param.name))


def _credential_unset(value: Any) -> bool:
    return value is None or value == "" or (isinstance(value, str) and bool(ENV_PLACEHOLDER.match(value)))


class _Collector:
    def __init__(self):
        self.issues: List[ValidationIssue] = []

    def error(self, message: str, **kwargs):
        self.issues.append(ValidationIssue(severity=Severity.ERROR, message=message, **kwargs))

    def warning(self, message: str, **kwargs):
        self.issues.append(ValidationIssue(severity=Severity.WARNING, message=message, **kwargs))


def validate_flow(doc: Union[Dict[str, Any], BaseModel], catalog: ComponentCatalog) -> ValidationResult:
    if isinstance(doc, BaseModel):
        doc = doc.model_dump()
    out = _Collector()

    name = doc.get("name")
    if not isinstance(name, str) or not name.strip():
        out.error("Flow name is required", suggestedFix="Set name to a non-empty string")

    nodes = doc.get("nodes")
    if not isinstance(nodes, list):
        out.error("Flow must have a nodes array", suggestedFix="Set nodes = []")
        return _build_result(doc, out.issues)

    edges = doc.get("edges")
    if edges is None:
        edges = []
    elif not isinstance(edges, list):
        out.error("Flow edges must be an array", suggestedFix="Set edges = []")
        edges = []

    seen_ids: Set[str] = set()
    for node in nodes:
        _validate_node(node, catalog, seen_ids, out)

    node_ids = {n["id"] for n in nodes if isinstance(n, dict) and isinstance(n.get("id"), str)}
    seen_wiring: Set[Tuple[Any, Any, Any]] = set()
    for edge in edges:
        _validate_edge(edge, node_ids, seen_wiring, out)

    if len(nodes) > 1:
        connected = set()
        for edge in edges:
            if isinstance(edge, dict):
                connected.add(_hashable(edge.get("source")))
                connected.add(_hashable(edge.get("target")))
        for node in nodes:
            node_id = node.get("id") if isinstance(node, dict) and isinstance(node.get("id"), str) else None
            if node_id and node_id not in connected:
                out.warning(
                    f'Node "{node_id}" is not connected to any other nodes',
                    nodeId=node_id,
                    suggestedFix="Add edges to connect this node or remove it",
                )

    return _build_result(doc, out.issues)


def _validate_node(node: Any, catalog: ComponentCatalog, seen_ids: Set[str], out: _Collector):
    if not isinstance(node, dict):
        out.error("Node must be an object")
        return

    node_id = node.get("id")
    if not isinstance(node_id, str) or not node_id.strip():
        out.error("Node ID is required", suggestedFix="Set id to a unique string")
        node_id = None
    elif node_id in seen_ids:
        out.error(f'Duplicate node ID "{node_id}"', nodeId=node_id, suggestedFix="Node IDs must be unique")
    else:
        seen_ids.add(node_id)

    component_type = node.get("componentType")
    schema = catalog.lookup(component_type) if isinstance(component_type, str) else None
    if schema is None:
        suggestion = catalog.suggest(component_type) if isinstance(component_type, str) else None
        out.error(
            f'Unknown component type: "{component_type}"',
            nodeId=node_id,
            suggestedFix=f"Did you mean {suggestion}?" if suggestion else "Use a component type from the catalog",
        )
        return

    parameters = node.get("parameters")
    if not isinstance(parameters, dict):
        out.error("Node must have a parameters object", nodeId=node_id, suggestedFix="Set parameters = {}")
    else:
        _validate_parameters(node_id, parameters, schema, out)

    position = node.get("position")
    if not isinstance(position, dict) or not _is_number(position.get("x")) or not _is_number(position.get("y")):
        out.warning(
            "Node position is invalid or missing",
            nodeId=node_id,
            suggestedFix="Set position = {x: 100, y: 100}",
        )


def _validate_parameters(node_id: Optional[str], parameters: Dict[str, Any], schema: ComponentSchema, out: _Collector):
    for param in schema.parameters:
        value = parameters.get(param.name)
        if is_credential_slot(param):
            if _credential_unset(value):
                out.warning(
                    f'API key not provided for "{schema.displayName or schema.name}"',
                    nodeId=node_id,
                    field=param.name,
                    suggestedFix="Set a valid API key or provide it through the environment",
                )
            continue
        if param.required and not param.has_default and value is None:
            out.error(
                f'Missing required parameter: "{param.name}" (no default available)',
                nodeId=node_id,
                field=param.name,
                suggestedFix=f"Set parameters.{param.name} to a valid {param.type} value",
            )

    for key, value in parameters.items():
        param = schema.param(key)
        if param is None:
            out.warning(
                f'Unknown parameter: "{key}"',
                nodeId=node_id,
                field=key,
                suggestedFix=f"Known parameters: {', '.join(schema.param_names()) or 'none'}",
            )
            continue
        if value is None:
            continue
        if not value_matches_type(value, param.type):
            out.error(
                f'Parameter "{key}" has wrong type. Expected {param.type}, got {_type_name(value)}',
                nodeId=node_id,
                field=key,
                suggestedFix=f"Convert value to {param.type}",
            )


def _validate_edge(edge: Any, node_ids: Set[str], seen_wiring: Set[Tuple[Any, Any, Any]], out: _Collector):
    if not isinstance(edge, dict):
        out.error("Edge must be an object")
        return

    source, target, target_handle = (_hashable(edge.get(k)) for k in ("source", "target", "targetHandle"))
    edge_id = edge.get("id") or f"{source}->{target}"

    if source not in node_ids:
        out.error(
            f'Edge references non-existent source node: "{source}"',
            edgeId=edge_id,
            suggestedFix="Remove this edge or fix the source node ID",
        )
    if target not in node_ids:
        out.error(
            f'Edge references non-existent target node: "{target}"',
            edgeId=edge_id,
            suggestedFix="Remove this edge or fix the target node ID",
        )
    if source == target:
        out.error(
            "Node cannot connect to itself",
            edgeId=edge_id,
            suggestedFix="Change either source or target to a different node",
        )

    wiring = (source, target, target_handle)
    if wiring in seen_wiring:
        out.error(
            f'Duplicate edge from "{source}" to "{target}" into the same input',
            edgeId=edge_id,
            suggestedFix="Remove the duplicate edge",
        )
    seen_wiring.add(wiring)


def _build_result(doc: Dict[str, Any], issues: List[ValidationIssue]) -> ValidationResult:
    errors = sum(1 for i in issues if i.severity == Severity.ERROR)
    warnings = len(issues) - errors
    nodes = doc.get("nodes")
    edges = doc.get("edges")
    return ValidationResult(
        valid=errors == 0,
        issues=issues,
        summary=ValidationSummary(
            totalNodes=len(nodes) if isinstance(nodes, list) else 0,
            totalEdges=len(edges) if isinstance(edges, list) else 0,
            errors=errors,
            warnings=warnings,
        ),
    )
