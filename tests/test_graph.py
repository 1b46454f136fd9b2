"""Tests for task selection, graph validation and templates."""

import pytest

from convoflow.errors import MalformedWorkflowError
from convoflow.workflows.graph import (
    is_settled,
    is_stalled,
    next_eligible_task,
    select_task,
    validate_graph,
)
from convoflow.workflows.models import ActionKind, Task, TaskStatus, TaskType, WorkflowStatus
from convoflow.workflows.templates import get_template, instantiate_workflow


def _task(task_id, depends_on=(), status=TaskStatus.PENDING):
    return Task(
        id=task_id, title=task_id, type=TaskType.DECISION,
        depends_on=list(depends_on), status=status,
    )


class TestSelection:
    def test_first_pending_in_stored_order(self):
        tasks = [_task("a"), _task("b")]
        assert next_eligible_task(tasks).id == "a"

    def test_waits_for_dependencies(self):
        tasks = [_task("b", depends_on=["a"]), _task("a")]
        assert next_eligible_task(tasks).id == "a"

    def test_dependency_must_be_completed(self):
        tasks = [_task("a", status=TaskStatus.FAILED), _task("b", depends_on=["a"])]
        assert next_eligible_task(tasks) is None

    def test_skipped_dependency_does_not_unblock(self):
        tasks = [_task("a", status=TaskStatus.SKIPPED), _task("b", depends_on=["a"])]
        assert next_eligible_task(tasks) is None

    def test_active_task_resumed_first(self):
        tasks = [_task("a"), _task("b", status=TaskStatus.ACTIVE)]
        assert select_task(tasks).id == "b"

    def test_settled(self):
        tasks = [_task("a", status=TaskStatus.COMPLETED), _task("b", status=TaskStatus.SKIPPED)]
        assert is_settled(tasks)
        assert not is_stalled(tasks)

    def test_empty_graph_is_settled(self):
        assert is_settled([])

    def test_stalled(self):
        tasks = [_task("a", status=TaskStatus.COMPLETED), _task("b", depends_on=["ghost"])]
        assert is_stalled(tasks)


class TestValidateGraph:
    def test_valid(self):
        validate_graph([_task("a"), _task("b", ["a"]), _task("c", ["a", "b"])])

    def test_duplicate_ids(self):
        with pytest.raises(MalformedWorkflowError, match="Duplicate"):
            validate_graph([_task("a"), _task("a")])

    def test_unknown_dependency(self):
        with pytest.raises(MalformedWorkflowError, match="unknown task ghost"):
            validate_graph([_task("a", ["ghost"])])

    def test_cycle(self):
        with pytest.raises(MalformedWorkflowError, match="cycle"):
            validate_graph([_task("a", ["b"]), _task("b", ["a"])])

    def test_self_dependency(self):
        with pytest.raises(MalformedWorkflowError):
            validate_graph([_task("a", ["a"])])


class TestTemplates:
    def test_unknown_template(self):
        with pytest.raises(ValueError):
            get_template("nope")

    def test_meeting_scheduler_shape(self):
        template = get_template("meeting_scheduler")
        tasks = template.build_tasks()
        ids = [t.id for t in tasks]
        assert ids[0] == "gather_attendees"
        assert ids[-1] == "book_meeting"
        book = tasks[-1]
        assert book.action is ActionKind.SCHEDULE_MEETING
        assert set(book.depends_on) == {"confirm_details", "check_availability"}

    def test_instantiate(self):
        template = get_template("meeting_scheduler")
        instance = instantiate_workflow(template, "conv-1", {"title": "Sync"})
        assert instance.status is WorkflowStatus.PLANNING
        assert instance.conversation_id == "conv-1"
        assert instance.context == {"title": "Sync"}
        assert all(t.status is TaskStatus.PENDING for t in instance.tasks)
        assert instance.template_id == "meeting_scheduler"

    def test_seeded_gathers_are_skipped(self):
        template = get_template("meeting_scheduler")
        instance = instantiate_workflow(template, "conv-1", {
            "attendees": ["a@x.com"],
            "startTime": "2025-01-01T10:00:00Z",
            "endTime": "2025-01-01T11:00:00Z",
        })
        assert instance.task("gather_attendees").status is TaskStatus.SKIPPED
        assert instance.task("gather_datetime").status is TaskStatus.SKIPPED
        assert instance.task("validate_times").depends_on == []
        assert instance.task("confirm_details").depends_on == []
        assert select_task(instance.tasks).id == "validate_times"

    def test_partial_seed_skips_only_satisfied_gathers(self):
        template = get_template("meeting_scheduler")
        instance = instantiate_workflow(template, "conv-1", {
            "attendees": ["a@x.com"],
            "startTime": "2025-01-01T10:00:00Z",
            "endTime": "  ",
        })
        assert instance.task("gather_attendees").status is TaskStatus.SKIPPED
        assert instance.task("gather_datetime").status is TaskStatus.PENDING
        assert instance.task("confirm_details").depends_on == ["gather_datetime"]
        assert select_task(instance.tasks).id == "gather_datetime"

    def test_template_tasks_are_not_mutated(self):
        template = get_template("meeting_scheduler")
        instantiate_workflow(template, "c", {"attendees": ["a@x.com"]})
        fresh = instantiate_workflow(template, "c")
        assert fresh.task("gather_attendees").status is TaskStatus.PENDING
        assert fresh.task("confirm_details").depends_on == ["gather_attendees", "gather_datetime"]

    def test_instances_do_not_share_tasks(self):
        template = get_template("meeting_scheduler")
        first = instantiate_workflow(template, "c")
        second = instantiate_workflow(template, "c")
        first.tasks[0].status = TaskStatus.COMPLETED
        assert second.tasks[0].status is TaskStatus.PENDING
        assert first.id != second.id
