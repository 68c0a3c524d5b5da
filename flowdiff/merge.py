"""Structural merge over JSON-shaped values.

Values are one of three kinds: object (dict), list, or scalar. Objects merge
key by key, anything else is replaced by the incoming value. When both sides
are present but of different kinds the incoming value still wins and the
mismatch is reported as an anomaly. ``None`` in the incoming value means
"not given" and leaves the target untouched.
"""

import copy
from typing import Any, List, Tuple


def value_kind(value: Any) -> str:
    if isinstance(value, dict):
        return "object"
    if isinstance(value, list):
        return "list"
    return "scalar"


def deep_merge(target: Any, source: Any, path: str = "") -> Tuple[Any, List[str]]:
    """Merge ``source`` onto ``target`` without mutating either.

    Returns the merged value and a list of human-readable anomalies.
    """
    anomalies: List[str] = []
    merged = _merge(target, source, path, anomalies)
    return merged, anomalies


def _merge(target: Any, source: Any, path: str, anomalies: List[str]) -> Any:
    if source is None:
        return copy.deepcopy(target)
    if target is None:
        return copy.deepcopy(source)

    target_kind, source_kind = value_kind(target), value_kind(source)
    if target_kind != source_kind:
        anomalies.append(
            f"Type mismatch at {path or '<root>'}: existing value is {target_kind}, "
            f"incoming value is {source_kind}; using incoming value"
        )
        return copy.deepcopy(source)

    if target_kind != "object":
        return copy.deepcopy(source)

    result = copy.deepcopy(target)
    for key, value in source.items():
        if value is None:
            continue
        child = f"{path}.{key}" if path else key
        result[key] = _merge(target.get(key), value, child, anomalies)
    return result
