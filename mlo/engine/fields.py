"""
Field path helpers.

Memory payloads are arbitrary JSON-like values; entity mappings and
reference preservation address leaves by dotted path (``user.city``,
``tags.0``).
"""

from typing import Any

_MISSING = object()


def flatten_fields(data: Any, prefix: str = "") -> dict[str, Any]:
    """Map every leaf of a nested dict/list structure to its dotted path."""
    if isinstance(data, dict):
        items: dict[str, Any] = {}
        for key, value in data.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            items.update(flatten_fields(value, path))
        return items
    if isinstance(data, (list, tuple)):
        items = {}
        for index, value in enumerate(data):
            path = f"{prefix}.{index}" if prefix else str(index)
            items.update(flatten_fields(value, path))
        return items
    if not prefix:
        return {}
    return {prefix: data}


def get_path(data: Any, path: str, default: Any = None) -> Any:
    """Resolve a dotted path, returning ``default`` when any segment is missing."""
    current = data
    for segment in path.split("."):
        if isinstance(current, dict):
            current = current.get(segment, _MISSING)
        elif isinstance(current, (list, tuple)) and segment.isdigit():
            index = int(segment)
            current = current[index] if index < len(current) else _MISSING
        else:
            return default
        if current is _MISSING:
            return default
    return current


def has_path(data: Any, path: str) -> bool:
    return get_path(data, path, _MISSING) is not _MISSING


def text_of(data: Any) -> str:
    """Flatten a payload to the text used for lexical work."""
    if data is None:
        return ""
    if isinstance(data, str):
        return data
    if isinstance(data, (dict, list, tuple)):
        return " ".join(str(v) for v in flatten_fields(data).values() if v is not None)
    return str(data)
