"""Typed accessors for nested fields of an untyped resource document.

A resource document is a tree of dicts, lists and scalar values as produced by
the YAML decoder. Every accessor returns a `(value, found)` pair: a missing
field is reported as not found, while a field of the wrong type (or a path
that runs through a non-mapping value) raises `FieldTypeError`.

```python
from gke_deploy import fields

replicas, found = fields.nested_int(doc, "spec", "replicas")
if not found:
    ...
```
"""

from typing import Any

from .exceptions import FieldTypeError

__all__ = [
    "nested_field",
    "nested_int",
    "nested_str",
    "nested_list",
    "nested_map",
    "set_nested_field",
    "remove_nested_field",
]


def _path(fields: tuple[str, ...]) -> str:
    return ".".join(fields)


def nested_field(doc: dict[str, Any], *fields: str) -> tuple[Any, bool]:
    """Return the value at the nested path and whether it was present."""
    value: Any = doc
    for i, field in enumerate(fields):
        if not isinstance(value, dict):
            raise FieldTypeError(
                f"{_path(fields[:i])} accessor error: {value!r} is of the type "
                f"{type(value).__name__}, expected map"
            )
        if field not in value:
            return None, False
        value = value[field]
    return value, True


def nested_int(doc: dict[str, Any], *fields: str) -> tuple[int, bool]:
    """Return an integer field, or `(0, False)` when absent."""
    value, found = nested_field(doc, *fields)
    if not found or value is None:
        return 0, False
    if isinstance(value, bool) or not isinstance(value, int):
        raise FieldTypeError(
            f"{_path(fields)} accessor error: {value!r} is of the type "
            f"{type(value).__name__}, expected int"
        )
    return value, True


def nested_str(doc: dict[str, Any], *fields: str) -> tuple[str, bool]:
    """Return a string field, or `("", False)` when absent."""
    value, found = nested_field(doc, *fields)
    if not found or value is None:
        return "", False
    if not isinstance(value, str):
        raise FieldTypeError(
            f"{_path(fields)} accessor error: {value!r} is of the type "
            f"{type(value).__name__}, expected string"
        )
    return value, True


def nested_list(doc: dict[str, Any], *fields: str) -> tuple[list[Any], bool]:
    """Return a list field, or `([], False)` when absent."""
    value, found = nested_field(doc, *fields)
    if not found or value is None:
        return [], False
    if not isinstance(value, list):
        raise FieldTypeError(
            f"{_path(fields)} accessor error: {value!r} is of the type "
            f"{type(value).__name__}, expected list"
        )
    return value, True


def nested_map(doc: dict[str, Any], *fields: str) -> tuple[dict[str, Any], bool]:
    """Return a mapping field, or `({}, False)` when absent."""
    value, found = nested_field(doc, *fields)
    if not found or value is None:
        return {}, False
    if not isinstance(value, dict):
        raise FieldTypeError(
            f"{_path(fields)} accessor error: {value!r} is of the type "
            f"{type(value).__name__}, expected map"
        )
    return value, True


def set_nested_field(doc: dict[str, Any], value: Any, *fields: str) -> None:
    """Set the value at the nested path, creating intermediate mappings."""
    current = doc
    for i, field in enumerate(fields[:-1]):
        child = current.get(field)
        if child is None:
            child = {}
            current[field] = child
        elif not isinstance(child, dict):
            raise FieldTypeError(
                f"value cannot be set because {_path(fields[: i + 1])} is not a map"
            )
        current = child
    current[fields[-1]] = value


def remove_nested_field(doc: dict[str, Any], *fields: str) -> None:
    """Remove the value at the nested path if present."""
    current: Any = doc
    for field in fields[:-1]:
        if not isinstance(current, dict) or field not in current:
            return
        current = current[field]
    if isinstance(current, dict):
        current.pop(fields[-1], None)
