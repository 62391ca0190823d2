"""Restricted structural schema validator.

A small recursive validator over a JSON-Schema-like subset, used by the
``json_schema`` gate. Keywords are applied at each node in this order:

  $ref        local fragment pointers only (``#/a/b``, ``~1`` -> ``/``, ``~0`` -> ``~``)
  allOf       every sub-schema, errors unioned
  if / then   ``then`` applies only when the data fully matches ``if`` (no ``else``)
  const/enum  deep equality
  type        null, boolean, integer, number, string, array, object
  minLength, pattern                 (strings)
  minItems, items                    (arrays)
  required, properties, additionalProperties: false   (objects)

Not supported: numeric ranges, oneOf/anyOf, format, remote $ref. Schemas
that need them belong in a ``custom_script`` gate.

Validation never stops at the first problem; it returns every error as
``<path>: <message>`` with paths like ``$.field[0].sub``.
"""

from __future__ import annotations

import re
from typing import Any

_JSON_TYPES = ("null", "boolean", "integer", "number", "string", "array", "object")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _matches_type(value: Any, expected: str) -> bool:
    if expected == "null":
        return value is None
    if expected == "boolean":
        return isinstance(value, bool)
    if expected == "integer":
        if isinstance(value, float):
            return value.is_integer()
        return _is_number(value)
    if expected == "number":
        return _is_number(value)
    if expected == "string":
        return isinstance(value, str)
    if expected == "array":
        return isinstance(value, list)
    if expected == "object":
        return isinstance(value, dict)
    return False


def _type_name(value: Any) -> str:
    for name in _JSON_TYPES:
        if _matches_type(value, name):
            return name
    return type(value).__name__


def deep_equal(a: Any, b: Any) -> bool:
    """JSON equality: booleans never equal numbers, 1 == 1.0."""
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    if _is_number(a) and _is_number(b):
        return a == b
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(deep_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(deep_equal(a[k], b[k]) for k in a)
    if type(a) is not type(b):
        return False
    return a == b


def resolve_ref(root: Any, ref: str) -> tuple[bool, Any]:
    """Resolve a local ``#/a/b`` pointer against the root schema.

    Returns (found, target).
    """
    if not isinstance(ref, str) or not ref.startswith("#"):
        return False, None
    pointer = ref[1:]
    if pointer in ("", "/"):
        return True, root
    if not pointer.startswith("/"):
        return False, None
    node = root
    for token in pointer[1:].split("/"):
        token = token.replace("~1", "/").replace("~0", "~")
        if isinstance(node, dict) and token in node:
            node = node[token]
        elif isinstance(node, list) and token.isdigit() and int(token) < len(node):
            node = node[int(token)]
        else:
            return False, None
    return True, node


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _validate(schema: Any, data: Any, root: Any, path: str,
              active_refs: frozenset[tuple[str, str]]) -> list[str]:
    if not isinstance(schema, dict):
        return []
    errors: list[str] = []

    ref = schema.get("$ref")
    if ref is not None:
        found, target = resolve_ref(root, ref)
        if not found:
            errors.append(f"{path}: unresolved $ref {ref}")
        elif (ref, path) in active_refs:
            errors.append(f"{path}: circular $ref {ref}")
        else:
            errors.extend(_validate(target, data, root, path, active_refs | {(ref, path)}))

    all_of = schema.get("allOf")
    if isinstance(all_of, list):
        for sub in all_of:
            errors.extend(_validate(sub, data, root, path, active_refs))

    if "if" in schema and "then" in schema:
        if not _validate(schema["if"], data, root, path, active_refs):
            errors.extend(_validate(schema["then"], data, root, path, active_refs))

    if "const" in schema and not deep_equal(data, schema["const"]):
        errors.append(f"{path}: must equal {schema['const']!r}")

    enum = schema.get("enum")
    if isinstance(enum, list) and not any(deep_equal(data, member) for member in enum):
        errors.append(f"{path}: must be one of {enum!r}")

    expected = schema.get("type")
    if isinstance(expected, str):
        if expected not in _JSON_TYPES:
            errors.append(f"{path}: unsupported type {expected!r}")
        elif not _matches_type(data, expected):
            errors.append(f"{path}: expected {expected}, got {_type_name(data)}")

    if isinstance(data, str):
        errors.extend(_validate_string(schema, data, path))
    elif isinstance(data, list):
        errors.extend(_validate_array(schema, data, root, path, active_refs))
    elif isinstance(data, dict):
        errors.extend(_validate_object(schema, data, root, path, active_refs))

    return errors


def _validate_string(schema: dict[str, Any], data: str, path: str) -> list[str]:
    errors: list[str] = []
    min_length = schema.get("minLength")
    if _is_number(min_length) and len(data) < min_length:
        errors.append(f"{path}: length {len(data)} is less than minLength {min_length}")
    pattern = schema.get("pattern")
    if isinstance(pattern, str):
        try:
            if re.search(pattern, data) is None:
                errors.append(f"{path}: does not match pattern {pattern!r}")
        except re.error as exc:
            errors.append(f"{path}: invalid pattern {pattern!r} ({exc})")
    return errors


def _validate_array(schema: dict[str, Any], data: list[Any], root: Any, path: str,
                    active_refs: frozenset[tuple[str, str]]) -> list[str]:
    errors: list[str] = []
    min_items = schema.get("minItems")
    if _is_number(min_items) and len(data) < min_items:
        errors.append(f"{path}: has {len(data)} items, fewer than minItems {min_items}")
    items = schema.get("items")
    if isinstance(items, dict):
        for i, item in enumerate(data):
            errors.extend(_validate(items, item, root, f"{path}[{i}]", active_refs))
    return errors


def _validate_object(schema: dict[str, Any], data: dict[str, Any], root: Any, path: str,
                     active_refs: frozenset[tuple[str, str]]) -> list[str]:
    errors: list[str] = []
    required = schema.get("required")
    if isinstance(required, list):
        for name in required:
            if name not in data:
                errors.append(f"{path}.{name}: is required")
    properties = schema.get("properties")
    properties = properties if isinstance(properties, dict) else {}
    for name, sub in properties.items():
        if name in data:
            errors.extend(_validate(sub, data[name], root, f"{path}.{name}", active_refs))
    if schema.get("additionalProperties") is False:
        for name in data:
            if name not in properties:
                errors.append(f"{path}.{name}: additional property not allowed")
    return errors


def validate(schema: dict[str, Any], data: Any) -> list[str]:
    """Validate ``data`` against ``schema``; an empty list means valid."""
    return _validate(schema, data, schema, "$", frozenset())

