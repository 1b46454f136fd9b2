"""Workflow store interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from convoflow.workflows.models import (
    TaskStatus,
    WorkflowInstance,
    WorkflowStatus,
    check_transition,
    utcnow,
)


@dataclass
class ExecutionEvent:
    """One entry in a workflow's execution log."""
    workflow_id: str
    event: str
    task_id: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)
    id: int | None = None


class WorkflowStore(ABC):
    """Persistence for workflow instances, their tasks and execution log.

    ``load`` raises ``WorkflowNotFoundError`` for unknown ids. Every mutation
    bumps the instance ``version``.
    """

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    @abstractmethod
    async def create(self, instance: WorkflowInstance) -> None: ...

    @abstractmethod
    async def load(self, workflow_id: str) -> WorkflowInstance: ...

    @abstractmethod
    async def list_workflows(self, conversation_id: str | None = None) -> list[WorkflowInstance]: ...

    @abstractmethod
    async def save_task_status(
        self,
        workflow_id: str,
        task_id: str,
        status: TaskStatus,
        error_message: str | None = None,
    ) -> None: ...

    @abstractmethod
    async def save_instance_status(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        failure_reason: str | None = None,
    ) -> None: ...

    @abstractmethod
    async def merge_context(self, workflow_id: str, partial: dict[str, Any]) -> dict[str, Any]:
        """Additively merge ``partial`` into the context and return the result."""
        ...

    @abstractmethod
    async def acquire_lease(self, workflow_id: str, owner: str, ttl: float) -> bool:
        """Take or renew the advance lease. False if another owner holds it."""
        ...

    @abstractmethod
    async def release_lease(self, workflow_id: str, owner: str) -> None: ...

    @abstractmethod
    async def record_event(self, event: ExecutionEvent) -> None: ...

    @abstractmethod
    async def list_events(self, workflow_id: str) -> list[ExecutionEvent]: ...


def apply_task_status(
    instance: WorkflowInstance,
    task_id: str,
    status: TaskStatus,
    error_message: str | None = None,
) -> None:
    """Mutate ``instance`` in place, stamping task lifecycle timestamps."""
    task = instance.task(task_id)
    if task is None:
        raise KeyError(f"Task {task_id} not found in workflow {instance.id}")
    now = utcnow()
    task.status = status
    if status is TaskStatus.ACTIVE and task.started_at is None:
        task.started_at = now
    if status in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.SKIPPED):
        task.completed_at = now
    if error_message is not None:
        task.error_message = error_message
    instance.version += 1


def apply_instance_status(
    instance: WorkflowInstance,
    status: WorkflowStatus,
    failure_reason: str | None = None,
) -> None:
    """Mutate ``instance`` in place after checking the transition is legal."""
    if instance.status is not status:
        check_transition(instance.status, status)
    now = utcnow()
    instance.status = status
    if status is WorkflowStatus.ACTIVE and instance.started_at is None:
        instance.started_at = now
    if status.is_terminal and instance.completed_at is None:
        instance.completed_at = now
    if status is WorkflowStatus.FAILED:
        instance.failure_reason = failure_reason
    instance.version += 1
