"""Rules for the workflow context bag."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any


def is_blank(value: Any) -> bool:
    """A value counts as missing when it is None, a blank string or an empty collection."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (Mapping, Sequence, set)):
        return len(value) == 0
    return False


def missing_fields(context: Mapping[str, Any], required: Sequence[str]) -> list[str]:
    """Return required keys that are absent or blank, in declaration order."""
    return [name for name in required if is_blank(context.get(name))]


def merge_context(existing: Mapping[str, Any], partial: Mapping[str, Any]) -> dict[str, Any]:
    """Additive merge: keys in ``partial`` add or overwrite, nothing is dropped.

    A blank value never overwrites a fact that is already present.
    """
    merged = dict(existing)
    for key, value in partial.items():
        if is_blank(value) and not is_blank(merged.get(key)):
            continue
        merged[key] = value
    return merged
