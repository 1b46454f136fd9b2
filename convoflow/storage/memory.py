"""In-memory workflow store."""

from __future__ import annotations

import copy
import time
from typing import Any

from convoflow.errors import WorkflowNotFoundError
from convoflow.storage.base import (
    ExecutionEvent,
    WorkflowStore,
    apply_instance_status,
    apply_task_status,
)
from convoflow.workflows.context import merge_context
from convoflow.workflows.models import TaskStatus, WorkflowInstance, WorkflowStatus


class InMemoryWorkflowStore(WorkflowStore):
    """Keeps workflows in process memory.

    Useful for tests or single-process deployments. ``load`` hands out copies
    so callers never alias stored state.
    """

    def __init__(self) -> None:
        self._workflows: dict[str, WorkflowInstance] = {}
        self._events: dict[str, list[ExecutionEvent]] = {}
        self._leases: dict[str, tuple[str, float]] = {}
        self._event_id = 0

    def _get(self, workflow_id: str) -> WorkflowInstance:
        instance = self._workflows.get(workflow_id)
        if instance is None:
            raise WorkflowNotFoundError(workflow_id)
        return instance

    async def create(self, instance: WorkflowInstance) -> None:
        if instance.id in self._workflows:
            raise ValueError(f"Workflow already exists: {instance.id}")
        self._workflows[instance.id] = copy.deepcopy(instance)

    async def load(self, workflow_id: str) -> WorkflowInstance:
        return copy.deepcopy(self._get(workflow_id))

    async def list_workflows(self, conversation_id: str | None = None) -> list[WorkflowInstance]:
        return [
            copy.deepcopy(wf)
            for wf in self._workflows.values()
            if conversation_id is None or wf.conversation_id == conversation_id
        ]

    async def save_task_status(
        self,
        workflow_id: str,
        task_id: str,
        status: TaskStatus,
        error_message: str | None = None,
    ) -> None:
        apply_task_status(self._get(workflow_id), task_id, status, error_message)

    async def save_instance_status(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        failure_reason: str | None = None,
    ) -> None:
        apply_instance_status(self._get(workflow_id), status, failure_reason)

    async def merge_context(self, workflow_id: str, partial: dict[str, Any]) -> dict[str, Any]:
        instance = self._get(workflow_id)
        instance.context = merge_context(instance.context, partial)
        instance.version += 1
        return dict(instance.context)

    async def acquire_lease(self, workflow_id: str, owner: str, ttl: float) -> bool:
        now = time.monotonic()
        held = self._leases.get(workflow_id)
        if held is not None and held[0] != owner and held[1] > now:
            return False
        self._leases[workflow_id] = (owner, now + ttl)
        return True

    async def release_lease(self, workflow_id: str, owner: str) -> None:
        held = self._leases.get(workflow_id)
        if held is not None and held[0] == owner:
            del self._leases[workflow_id]

    async def record_event(self, event: ExecutionEvent) -> None:
        self._event_id += 1
        event.id = self._event_id
        self._events.setdefault(event.workflow_id, []).append(event)

    async def list_events(self, workflow_id: str) -> list[ExecutionEvent]:
        return list(self._events.get(workflow_id, []))
