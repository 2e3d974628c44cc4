"""
Helpers over JSON-compatible property values.

Every value is classified into one of three kinds, and equality and
merging dispatch on the kind rather than on arbitrary runtime types.
"""

from __future__ import annotations

from typing import Any

SCALAR = "scalar"
ARRAY = "array"
MAP = "map"


def value_kind(value: Any) -> str:
    if isinstance(value, dict):
        return MAP
    if isinstance(value, (list, tuple)):
        return ARRAY
    return SCALAR


def values_equal(a: Any, b: Any) -> bool:
    """Deep equality that keeps booleans distinct from numbers."""
    kind = value_kind(a)
    if kind != value_kind(b):
        return False
    if kind == MAP:
        return a.keys() == b.keys() and all(values_equal(a[k], b[k]) for k in a)
    if kind == ARRAY:
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a == b
    return a == b


def union_arrays(existing: list, incoming: list) -> list:
    """Existing items in order, then incoming items not already present."""
    merged = list(existing)
    for item in incoming:
        if not any(values_equal(item, seen) for seen in merged):
            merged.append(item)
    return merged


def merge_values(existing: Any, incoming: Any) -> Any:
    """
    Merge *incoming* into *existing*.

    array + array unions, map + map recurses key by key, and in every other
    combination the incoming value wins.
    """
    kinds = (value_kind(existing), value_kind(incoming))
    if kinds == (ARRAY, ARRAY):
        return union_arrays(existing, incoming)
    if kinds == (MAP, MAP):
        return merge_properties(existing, incoming)
    return incoming


def merge_properties(existing: dict | None, incoming: dict | None) -> dict:
    """Deep-merge two property maps; keys only in *existing* are kept."""
    merged = dict(existing or {})
    for key, value in (incoming or {}).items():
        if key in merged:
            merged[key] = merge_values(merged[key], value)
        else:
            merged[key] = value
    return merged


def flatten_text(value: Any) -> list[str]:
    """Collect the textual leaves of a property value, depth first."""
    kind = value_kind(value)
    if kind == MAP:
        return [t for v in value.values() for t in flatten_text(v)]
    if kind == ARRAY:
        return [t for v in value for t in flatten_text(v)]
    if value is None:
        return []
    return [str(value)]
