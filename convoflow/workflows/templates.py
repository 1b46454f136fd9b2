"""Built-in plan templates and workflow instantiation."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable
from uuid import uuid4

from convoflow.workflows.context import missing_fields
from convoflow.workflows.graph import validate_graph
from convoflow.workflows.models import (
    ActionKind,
    Task,
    TaskStatus,
    TaskType,
    WorkflowInstance,
    WorkflowStatus,
)


@dataclass
class WorkflowTemplate:
    id: str
    name: str
    category: str
    build_tasks: Callable[[], list[Task]]
    required_capabilities: list[str] = field(default_factory=list)


def _meeting_tasks() -> list[Task]:
    return [
        Task(
            id="gather_attendees",
            type=TaskType.GATHER,
            title="Gather attendee information",
            description="Collect email addresses of meeting participants",
            required_data=["attendees"],
        ),
        Task(
            id="gather_datetime",
            type=TaskType.GATHER,
            title="Determine meeting time",
            description="Specify when the meeting should occur",
            required_data=["startTime", "endTime"],
        ),
        Task(
            id="validate_times",
            type=TaskType.VALIDATE,
            title="Validate meeting time",
            description="End time must fall after the start time",
            depends_on=["gather_datetime"],
        ),
        Task(
            id="check_availability",
            type=TaskType.EXECUTE,
            title="Check calendar availability",
            description="Verify the time slot is available",
            depends_on=["validate_times"],
            action=ActionKind.CHECK_AVAILABILITY,
        ),
        Task(
            id="confirm_details",
            type=TaskType.CONFIRM,
            title="Confirm meeting details",
            description="Review all details before booking",
            depends_on=["gather_attendees", "gather_datetime"],
        ),
        Task(
            id="book_meeting",
            type=TaskType.EXECUTE,
            title="Book the meeting",
            description="Create calendar event and send invites",
            depends_on=["confirm_details", "check_availability"],
            action=ActionKind.SCHEDULE_MEETING,
        ),
    ]


TEMPLATES: dict[str, WorkflowTemplate] = {
    "meeting_scheduler": WorkflowTemplate(
        id="meeting_scheduler",
        name="Schedule Meeting",
        category="scheduling",
        build_tasks=_meeting_tasks,
        required_capabilities=["check_availability", "schedule_meeting"],
    ),
}


def get_template(template_id: str) -> WorkflowTemplate:
    try:
        return TEMPLATES[template_id]
    except KeyError:
        raise ValueError(f"Unknown workflow template: {template_id}") from None


def instantiate_workflow(
    template: WorkflowTemplate,
    conversation_id: str,
    context: dict[str, Any] | None = None,
    workflow_id: str | None = None,
) -> WorkflowInstance:
    """Create a fresh ``planning`` instance from ``template``.

    Gather tasks whose required data the seed context already holds start out
    ``skipped``, and dependency edges pointing at them are dropped. Every other
    task starts ``pending``.
    """
    seed = dict(context or {})
    tasks = [
        replace(t, status=TaskStatus.PENDING, error_message=None)
        for t in template.build_tasks()
    ]
    validate_graph(tasks)
    tasks = skip_satisfied_gathers(tasks, seed)
    return WorkflowInstance(
        id=workflow_id or uuid4().hex,
        conversation_id=conversation_id,
        tasks=tasks,
        template_id=template.id,
        template_name=template.name,
        status=WorkflowStatus.PLANNING,
        context=seed,
    )


def skip_satisfied_gathers(tasks: list[Task], context: dict[str, Any]) -> list[Task]:
    skipped = {
        t.id for t in tasks
        if t.type is TaskType.GATHER
        and t.required_data
        and not missing_fields(context, t.required_data)
    }
    if not skipped:
        return tasks
    adapted = []
    for t in tasks:
        if t.id in skipped:
            adapted.append(replace(t, status=TaskStatus.SKIPPED))
        else:
            adapted.append(replace(t, depends_on=[d for d in t.depends_on if d not in skipped]))
    return adapted
