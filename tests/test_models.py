"""Tests for workflow models, context rules and validators."""

from datetime import datetime, timezone

import pytest

from convoflow.errors import IllegalTransitionError
from convoflow.workflows.context import is_blank, merge_context, missing_fields
from convoflow.workflows.models import (
    ActionKind,
    MeetingDetails,
    Task,
    TaskStatus,
    TaskType,
    WorkflowInstance,
    WorkflowStatus,
    check_transition,
    parse_timestamp,
)
from convoflow.workflows.validators import run_validators


class TestStatuses:
    def test_terminal_statuses(self):
        assert WorkflowStatus.COMPLETED.is_terminal
        assert WorkflowStatus.FAILED.is_terminal
        assert WorkflowStatus.CANCELLED.is_terminal
        assert not WorkflowStatus.PLANNING.is_terminal
        assert not WorkflowStatus.ACTIVE.is_terminal

    def test_skipped_counts_as_done(self):
        assert TaskStatus.SKIPPED.is_done
        assert TaskStatus.COMPLETED.is_done
        assert not TaskStatus.FAILED.is_done

    def test_legal_transitions(self):
        check_transition(WorkflowStatus.PLANNING, WorkflowStatus.ACTIVE)
        check_transition(WorkflowStatus.ACTIVE, WorkflowStatus.COMPLETED)
        check_transition(WorkflowStatus.ACTIVE, WorkflowStatus.CANCELLED)

    @pytest.mark.parametrize("terminal", [
        WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED,
    ])
    def test_terminal_has_no_exits(self, terminal):
        with pytest.raises(IllegalTransitionError):
            check_transition(terminal, WorkflowStatus.ACTIVE)

    def test_no_return_to_planning(self):
        with pytest.raises(IllegalTransitionError):
            check_transition(WorkflowStatus.ACTIVE, WorkflowStatus.PLANNING)


class TestTask:
    def test_defaults(self):
        task = Task(id="t1", title="Do it", type=TaskType.GATHER)
        assert task.status is TaskStatus.PENDING
        assert task.depends_on == []
        assert task.required_data == []
        assert task.action is None

    def test_explicit_action_wins(self):
        task = Task(
            id="book_meeting", title="x", type=TaskType.EXECUTE,
            action=ActionKind.CHECK_AVAILABILITY,
        )
        assert task.resolve_action() is ActionKind.CHECK_AVAILABILITY

    def test_legacy_action_from_id(self):
        task = Task(id="book_meeting", title="Anything", type=TaskType.EXECUTE)
        assert task.resolve_action() is ActionKind.SCHEDULE_MEETING

    def test_title_never_routes(self):
        task = Task(id="step_4", title="Check availability", type=TaskType.EXECUTE)
        assert task.resolve_action() is None

    def test_dict_round_trip_keeps_action_and_timestamps(self):
        now = datetime(2025, 1, 1, 9, tzinfo=timezone.utc)
        task = Task(
            id="book", title="Book", type=TaskType.EXECUTE,
            action=ActionKind.SCHEDULE_MEETING, depends_on=["a"], started_at=now,
        )
        restored = Task.from_dict(task.to_dict())
        assert restored == task


class TestWorkflowInstance:
    def test_task_lookup(self):
        instance = WorkflowInstance(
            id="wf", conversation_id="c",
            tasks=[Task(id="a", title="A", type=TaskType.DECISION)],
        )
        assert instance.task("a").title == "A"
        assert instance.task("missing") is None

    def test_from_dict_defaults(self):
        instance = WorkflowInstance.from_dict({"id": "wf", "conversation_id": "c"})
        assert instance.status is WorkflowStatus.PLANNING
        assert instance.context == {}
        assert instance.version == 0


class TestParseTimestamp:
    def test_z_suffix(self):
        parsed = parse_timestamp("2025-01-01T10:00:00Z")
        assert parsed == datetime(2025, 1, 1, 10, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert parse_timestamp("2025-01-01T10:00:00").tzinfo is timezone.utc

    def test_garbage(self):
        assert parse_timestamp("next tuesday") is None
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None


class TestMeetingDetails:
    def test_from_context(self):
        details = MeetingDetails.from_context({
            "title": "Sync",
            "startTime": "2025-01-01T10:00:00Z",
            "endTime": "2025-01-01T10:30:00Z",
            "attendees": "a@x.com, b@x.com",
        }, default_organizer="me@x.com")
        assert details.title == "Sync"
        assert details.attendees == ["a@x.com", "b@x.com"]
        assert details.duration_minutes == 30
        assert details.organizer_email == "me@x.com"

    def test_defaults(self):
        details = MeetingDetails.from_context({})
        assert details.title == "Meeting"
        assert details.duration_minutes == 60
        assert details.attendees == []

    def test_duration_fallback(self):
        assert MeetingDetails.from_context({"duration": "45"}).duration_minutes == 45
        assert MeetingDetails.from_context({"duration": "soon"}).duration_minutes == 60

    def test_booking_payload(self):
        details = MeetingDetails.from_context({
            "startTime": "2025-01-01T10:00:00Z",
            "endTime": "2025-01-01T11:00:00Z",
            "attendees": ["a@x.com"],
            "organizerEmail": "boss@x.com",
        })
        payload = details.booking_payload()
        assert payload["attendees"] == ["a@x.com"]
        assert payload["organizer"] == "boss@x.com"
        assert payload["startTime"].startswith("2025-01-01T10:00:00")


class TestContext:
    @pytest.mark.parametrize("value", [None, "", "   ", [], {}, ()])
    def test_blank_values(self, value):
        assert is_blank(value)

    @pytest.mark.parametrize("value", ["x", 0, False, ["a"], {"k": 1}])
    def test_present_values(self, value):
        assert not is_blank(value)

    def test_missing_fields_in_declaration_order(self):
        context = {"startTime": "2025-01-01T10:00:00Z", "attendees": []}
        assert missing_fields(context, ["attendees", "startTime", "endTime"]) == [
            "attendees", "endTime",
        ]

    def test_merge_is_monotonic(self):
        context = merge_context({}, {"name": "Dana"})
        context = merge_context(context, {"email": "dana@x.com"})
        assert context == {"name": "Dana", "email": "dana@x.com"}

    def test_blank_never_erases(self):
        merged = merge_context({"name": "Dana"}, {"name": "", "email": None})
        assert merged["name"] == "Dana"
        assert "email" in merged

    def test_merge_overwrites_with_real_value(self):
        assert merge_context({"name": "Dana"}, {"name": "Dee"}) == {"name": "Dee"}

    def test_merge_does_not_mutate_input(self):
        original = {"a": 1}
        merge_context(original, {"b": 2})
        assert original == {"a": 1}


class TestValidators:
    def test_end_before_start(self):
        error = run_validators("meeting_scheduler", {
            "startTime": "2025-01-01T11:00:00Z",
            "endTime": "2025-01-01T10:00:00Z",
        })
        assert error == "End time must be after start time"

    def test_equal_times_rejected(self):
        error = run_validators("meeting_scheduler", {
            "startTime": "2025-01-01T10:00:00Z",
            "endTime": "2025-01-01T10:00:00Z",
        })
        assert error is not None

    def test_unparseable_time(self):
        error = run_validators("meeting_scheduler", {
            "startTime": "tomorrow", "endTime": "2025-01-01T10:00:00Z",
        })
        assert "startTime" in error

    def test_valid(self):
        assert run_validators("meeting_scheduler", {
            "startTime": "2025-01-01T10:00:00Z",
            "endTime": "2025-01-01T11:00:00Z",
        }) is None

    def test_unknown_template_passes(self):
        assert run_validators("other", {"startTime": "junk"}) is None
        assert run_validators(None, {}) is None
