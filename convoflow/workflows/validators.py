"""Plan-specific cross-field checks run by validate tasks."""

from __future__ import annotations

from typing import Any, Callable

from convoflow.workflows.models import parse_timestamp

ContextValidator = Callable[[dict[str, Any]], "str | None"]

_REGISTRY: dict[str, list[ContextValidator]] = {}


def validator(template_id: str) -> Callable[[ContextValidator], ContextValidator]:
    """Register a context check for every workflow built from ``template_id``."""

    def decorator(fn: ContextValidator) -> ContextValidator:
        _REGISTRY.setdefault(template_id, []).append(fn)
        return fn

    return decorator


def run_validators(template_id: str | None, context: dict[str, Any]) -> str | None:
    """Return the first validation error, or None. Unknown templates pass."""
    if not template_id:
        return None
    for check in _REGISTRY.get(template_id, []):
        error = check(context)
        if error:
            return error
    return None


@validator("meeting_scheduler")
def parseable_times(context: dict[str, Any]) -> str | None:
    for key in ("startTime", "endTime"):
        value = context.get(key)
        if value and parse_timestamp(value) is None:
            return f"{key} is not a valid timestamp: {value}"
    return None


@validator("meeting_scheduler")
def end_after_start(context: dict[str, Any]) -> str | None:
    start = parse_timestamp(context.get("startTime"))
    end = parse_timestamp(context.get("endTime"))
    if start and end and end <= start:
        return "End time must be after start time"
    return None
