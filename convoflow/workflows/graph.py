"""Dependency-aware task selection."""

from __future__ import annotations

from collections.abc import Sequence

from convoflow.errors import MalformedWorkflowError
from convoflow.workflows.models import Task, TaskStatus


def dependencies_met(task: Task, by_id: dict[str, Task]) -> bool:
    for dep_id in task.depends_on:
        dep = by_id.get(dep_id)
        if dep is None or dep.status is not TaskStatus.COMPLETED:
            return False
    return True


def find_active_task(tasks: Sequence[Task]) -> Task | None:
    for task in tasks:
        if task.status is TaskStatus.ACTIVE:
            return task
    return None


def next_eligible_task(tasks: Sequence[Task]) -> Task | None:
    """First pending task, in stored order, whose dependencies are all completed."""
    by_id = {t.id: t for t in tasks}
    for task in tasks:
        if task.status is TaskStatus.PENDING and dependencies_met(task, by_id):
            return task
    return None


def select_task(tasks: Sequence[Task]) -> Task | None:
    """Task to run next. A task left active by an earlier step is resumed first."""
    return find_active_task(tasks) or next_eligible_task(tasks)


def is_settled(tasks: Sequence[Task]) -> bool:
    return all(t.status.is_done for t in tasks)


def is_stalled(tasks: Sequence[Task]) -> bool:
    """Nothing can run, yet the graph is not done."""
    return select_task(tasks) is None and not is_settled(tasks)


def validate_graph(tasks: Sequence[Task]) -> None:
    """Reject duplicate ids, dangling dependencies and cycles."""
    by_id: dict[str, Task] = {}
    for task in tasks:
        if task.id in by_id:
            raise MalformedWorkflowError(f"Duplicate task id: {task.id}")
        by_id[task.id] = task

    for task in tasks:
        for dep_id in task.depends_on:
            if dep_id not in by_id:
                raise MalformedWorkflowError(
                    f"Task {task.id} depends on unknown task {dep_id}"
                )

    visiting: set[str] = set()
    visited: set[str] = set()

    def visit(task_id: str, path: list[str]) -> None:
        if task_id in visited:
            return
        if task_id in visiting:
            cycle = " -> ".join(path[path.index(task_id):] + [task_id])
            raise MalformedWorkflowError(f"Dependency cycle: {cycle}")
        visiting.add(task_id)
        for dep_id in by_id[task_id].depends_on:
            visit(dep_id, path + [task_id])
        visiting.discard(task_id)
        visited.add(task_id)

    for task in tasks:
        visit(task.id, [])
