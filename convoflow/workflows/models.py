"""Workflow data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from convoflow.errors import IllegalTransitionError


class WorkflowStatus(str, Enum):
    PLANNING = "planning"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED)


class TaskStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_done(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.SKIPPED)


class TaskType(str, Enum):
    GATHER = "gather"
    VALIDATE = "validate"
    EXECUTE = "execute"
    CONFIRM = "confirm"
    DECISION = "decision"
    NOTIFY = "notify"


class ActionKind(str, Enum):
    """Named action an execute task performs."""
    CHECK_AVAILABILITY = "check_availability"
    SCHEDULE_MEETING = "schedule_meeting"
    CANCEL_MEETING = "cancel_meeting"
    UPDATE_MEETING = "update_meeting"


# Plans persisted before tasks carried an explicit action used these ids
_LEGACY_ACTION_IDS: dict[str, ActionKind] = {
    "check_availability": ActionKind.CHECK_AVAILABILITY,
    "book_meeting": ActionKind.SCHEDULE_MEETING,
    "schedule_meeting": ActionKind.SCHEDULE_MEETING,
    "cancel_meeting": ActionKind.CANCEL_MEETING,
    "update_meeting": ActionKind.UPDATE_MEETING,
}


ALLOWED_TRANSITIONS: dict[WorkflowStatus, set[WorkflowStatus]] = {
    WorkflowStatus.PLANNING: {
        WorkflowStatus.ACTIVE,
        WorkflowStatus.COMPLETED,
        WorkflowStatus.FAILED,
        WorkflowStatus.CANCELLED,
    },
    WorkflowStatus.ACTIVE: {
        WorkflowStatus.COMPLETED,
        WorkflowStatus.FAILED,
        WorkflowStatus.CANCELLED,
    },
    WorkflowStatus.COMPLETED: set(),
    WorkflowStatus.FAILED: set(),
    WorkflowStatus.CANCELLED: set(),
}


def check_transition(current: WorkflowStatus, to: WorkflowStatus) -> None:
    if to not in ALLOWED_TRANSITIONS.get(current, set()):
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string (``Z`` suffix allowed). Naive values are UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class Task:
    id: str
    title: str
    type: TaskType
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    depends_on: list[str] = field(default_factory=list)
    required_data: list[str] = field(default_factory=list)
    action: ActionKind | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def resolve_action(self) -> ActionKind | None:
        if self.action is not None:
            return self.action
        return _LEGACY_ACTION_IDS.get(self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "type": self.type.value,
            "description": self.description,
            "status": self.status.value,
            "depends_on": list(self.depends_on),
            "required_data": list(self.required_data),
            "action": self.action.value if self.action else None,
            "error_message": self.error_message,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        action = data.get("action")
        return cls(
            id=data["id"],
            title=data.get("title", data["id"]),
            type=TaskType(data["type"]),
            description=data.get("description") or "",
            status=TaskStatus(data.get("status", "pending")),
            depends_on=list(data.get("depends_on") or []),
            required_data=list(data.get("required_data") or []),
            action=ActionKind(action) if action else None,
            error_message=data.get("error_message"),
            started_at=parse_timestamp(data.get("started_at")),
            completed_at=parse_timestamp(data.get("completed_at")),
        )


@dataclass
class WorkflowInstance:
    id: str
    conversation_id: str
    tasks: list[Task] = field(default_factory=list)
    template_id: str | None = None
    template_name: str = ""
    status: WorkflowStatus = WorkflowStatus.PLANNING
    context: dict[str, Any] = field(default_factory=dict)
    failure_reason: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    version: int = 0

    def task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "template_id": self.template_id,
            "template_name": self.template_name,
            "status": self.status.value,
            "context": dict(self.context),
            "failure_reason": self.failure_reason,
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
            "created_at": _iso(self.created_at),
            "version": self.version,
            "tasks": [t.to_dict() for t in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowInstance:
        return cls(
            id=data["id"],
            conversation_id=data["conversation_id"],
            tasks=[Task.from_dict(t) for t in data.get("tasks", [])],
            template_id=data.get("template_id"),
            template_name=data.get("template_name") or "",
            status=WorkflowStatus(data.get("status", "planning")),
            context=dict(data.get("context") or {}),
            failure_reason=data.get("failure_reason"),
            started_at=parse_timestamp(data.get("started_at")),
            completed_at=parse_timestamp(data.get("completed_at")),
            created_at=parse_timestamp(data.get("created_at")) or utcnow(),
            version=int(data.get("version", 0)),
        )


def _attendee_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [a.strip() for a in value.split(",") if a.strip()]
    if isinstance(value, (list, tuple)):
        return [str(a).strip() for a in value if str(a).strip()]
    return []


@dataclass
class MeetingDetails:
    """Typed view of the scheduling facts held in a workflow context."""

    title: str = "Meeting"
    start_time: datetime | None = None
    end_time: datetime | None = None
    attendees: list[str] = field(default_factory=list)
    duration_minutes: int = 60
    location: str | None = None
    description: str | None = None
    include_meet_link: bool = False
    organizer_email: str = ""

    @classmethod
    def from_context(
        cls, context: dict[str, Any], default_organizer: str = ""
    ) -> MeetingDetails:
        start = parse_timestamp(context.get("startTime"))
        end = parse_timestamp(context.get("endTime"))
        if start and end:
            duration = round((end - start).total_seconds() / 60)
        else:
            try:
                duration = int(context.get("duration") or 60)
            except (TypeError, ValueError):
                duration = 60
        title = context.get("title")
        return cls(
            title=title.strip() if isinstance(title, str) and title.strip() else "Meeting",
            start_time=start,
            end_time=end,
            attendees=_attendee_list(context.get("attendees")),
            duration_minutes=duration,
            location=context.get("location") or None,
            description=context.get("description") or None,
            include_meet_link=bool(context.get("includeMeetLink", False)),
            organizer_email=context.get("organizerEmail") or default_organizer,
        )

    def availability_payload(self) -> dict[str, Any]:
        return {
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "duration": self.duration_minutes,
        }

    def booking_payload(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "attendees": list(self.attendees),
            "location": self.location,
            "description": self.description,
            "includeMeetLink": self.include_meet_link,
            "organizer": self.organizer_email,
        }
