"""Edge handle codec.

A handle is the canonical string form of one edge endpoint's port metadata:
JSON with lexicographically sorted keys and no whitespace, in which every
double quote is replaced by ``SENTINEL`` so that the string can travel inside
canvas attributes that cannot carry raw quotes.

Source handles carry ``{dataType, id, name, output_types}``, target handles
``{fieldName, id, inputTypes, type}``.
"""

import json
from typing import Any, Dict, List, Optional, Tuple

from .catalog import ComponentCatalog

SENTINEL = "œ"
DEFAULT_OUTPUT = {"name": "output", "types": ["Message"]}
DEFAULT_INPUT_TYPES = ["Message"]
DEFAULT_FIELD_TYPE = "str"
DEFAULT_TARGET_PARAM = "input_value"


def encode_handle(obj: Dict[str, Any]) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).replace('"', SENTINEL)


def decode_handle(handle: str) -> Dict[str, Any]:
    """Decode a handle string. Raw-quote JSON is accepted as well.

    Raises ``ValueError`` when the string is not an encoded object.
    """
    value = json.loads(handle.replace(SENTINEL, '"'))
    if not isinstance(value, dict):
        raise ValueError(f"Handle does not encode an object: {handle!r}")
    return value


def try_decode_handle(handle: Any) -> Optional[Dict[str, Any]]:
    if not handle or not isinstance(handle, str):
        return None
    try:
        return decode_handle(handle)
    except ValueError:
        return None


def is_encoded(handle: Optional[str]) -> bool:
    return bool(handle) and (handle.startswith("{") or SENTINEL in handle)


def source_handle_payload(node_id: str, component_type: str, port_name: str, output_types: List[str]) -> Dict[str, Any]:
    return {
        "dataType": component_type,
        "id": node_id,
        "name": port_name,
        "output_types": list(output_types),
    }


def target_handle_payload(node_id: str, field_name: str, input_types: List[str], field_type: str) -> Dict[str, Any]:
    return {
        "fieldName": field_name,
        "id": node_id,
        "inputTypes": list(input_types),
        "type": field_type,
    }


def build_source_handle(node: Dict[str, Any], catalog: ComponentCatalog, output_name: Optional[str] = None) -> str:
    """Synthesize a source handle from the node's declared output ports.

    Falls back to the catalog's ports, then to a generic ``output`` port.
    """
    if is_encoded(output_name):
        return output_name
    component_type = node.get("componentType", "")
    ports = node.get("outputPorts") or []
    if not ports:
        schema = catalog.lookup(component_type)
        if schema is not None:
            ports = [p.model_dump() for p in schema.outputPorts]

    port = None
    if output_name:
        port = next((p for p in ports if p.get("name") == output_name), None)
    if port is None and ports:
        port = ports[0]
    if port is None:
        port = {"name": output_name or DEFAULT_OUTPUT["name"], "types": DEFAULT_OUTPUT["types"]}

    payload = source_handle_payload(
        node["id"], component_type, port["name"], port.get("types") or DEFAULT_OUTPUT["types"]
    )
    return encode_handle(payload)


def build_target_handle(node: Dict[str, Any], catalog: ComponentCatalog, field_name: str) -> str:
    input_types = DEFAULT_INPUT_TYPES
    field_type = DEFAULT_FIELD_TYPE
    schema = catalog.lookup(node.get("componentType", ""))
    param = schema.param(field_name) if schema is not None else None
    if param is not None:
        input_types = param.inputTypes or DEFAULT_INPUT_TYPES
        field_type = param.type or DEFAULT_FIELD_TYPE
    return encode_handle(target_handle_payload(node["id"], field_name, input_types, field_type))


def handle_field_name(handle: Optional[str]) -> Optional[str]:
    payload = try_decode_handle(handle)
    return payload.get("fieldName") if payload else None


def resolve_edge_handles(
    doc: Dict[str, Any],
    source: Dict[str, Any],
    target: Dict[str, Any],
    catalog: ComponentCatalog,
    target_param: Optional[str] = None,
    source_output: Optional[str] = None,
) -> Tuple[str, str]:
    """Pick handles for a new edge: copy from an existing edge if one fits, else synthesize."""
    field_name = target_param or DEFAULT_TARGET_PARAM
    edges = doc.get("edges") or []

    source_handle = None
    if not source_output:
        existing = next((e for e in edges if e.get("source") == source["id"] and e.get("sourceHandle")), None)
        if existing is not None:
            source_handle = existing["sourceHandle"]
    if source_handle is None:
        source_handle = build_source_handle(source, catalog, source_output)

    target_handle = None
    existing = next(
        (
            e
            for e in edges
            if e.get("target") == target["id"]
            and e.get("targetHandle")
            and handle_field_name(e["targetHandle"]) == field_name
        ),
        None,
    )
    if existing is not None:
        target_handle = existing["targetHandle"]
    else:
        target_handle = build_target_handle(target, catalog, field_name)

    return source_handle, target_handle


def edge_id(source: str, source_handle: str, target: str, target_handle: str) -> str:
    return f"reactflow__edge-{source}{source_handle}-{target}{target_handle}"
