"""
Generic record helpers.

A record is a plain ``dict`` whose fields are addressed with dotted paths
("customer.address.city"). Pipeline stages never mutate a record they were
given: ``set_path`` returns a new record, which keeps every stage testable
in isolation.
"""

import copy
from typing import Any, Mapping

Record = dict[str, Any]

_MISSING = object()


def get_path(record: Mapping[str, Any] | None, path: str, default: Any = None) -> Any:
    """
    Read a dotted path from a record.

    Args:
        record: Record to read from
        path: Dotted field path
        default: Returned when any segment is missing

    Returns:
        The value at the path, or ``default``
    """
    current: Any = record
    for key in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(key, _MISSING)
        elif isinstance(current, list) and key.isdigit() and int(key) < len(current):
            current = current[int(key)]
        else:
            return default
        if current is _MISSING:
            return default
    return current


def has_path(record: Mapping[str, Any] | None, path: str) -> bool:
    """True when every segment of the path exists (the value may be None)."""
    return get_path(record, path, _MISSING) is not _MISSING


def set_path(record: Mapping[str, Any], path: str, value: Any) -> Record:
    """
    Return a copy of the record with ``value`` written at the dotted path.

    Intermediate mappings are created as needed; a non-mapping value in the
    way is replaced by a mapping.
    """
    result = copy.deepcopy(dict(record))
    _assign(result, path.split("."), value)
    return result


def _assign(target: Record, keys: list[str], value: Any) -> None:
    current = target
    for key in keys[:-1]:
        nested = current.get(key)
        if not isinstance(nested, dict):
            nested = {}
            current[key] = nested
        current = nested
    current[keys[-1]] = value


def build_record(items: list[tuple[str, Any]]) -> Record:
    """Build a new record from (dotted path, value) pairs, in order."""
    result: Record = {}
    for path, value in items:
        _assign(result, path.split("."), value)
    return result


def flatten(record: Mapping[str, Any], prefix: str = "") -> Record:
    """
    Flatten nested mappings into a single level of dotted paths.

    Lists are kept as values.
    """
    flat: Record = {}
    for key, value in record.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping) and value:
            flat.update(flatten(value, path))
        else:
            flat[path] = value
    return flat


def unflatten(flat: Mapping[str, Any]) -> Record:
    """Inverse of ``flatten``."""
    return build_record(list(flat.items()))
