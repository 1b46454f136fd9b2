"""Step-wise workflow execution."""

from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

import structlog

from convoflow.capabilities.base import ActionResult, ActionType, CapabilityAction
from convoflow.capabilities.manager import IntegrationManager
from convoflow.config import ExecutorConfig
from convoflow.errors import (
    ErrorKind,
    IllegalTransitionError,
    WorkflowBusyError,
    WorkflowTerminalError,
)
from convoflow.storage.base import ExecutionEvent, WorkflowStore
from convoflow.utils.logging import get_logger
from convoflow.workflows.context import missing_fields
from convoflow.workflows.graph import is_settled, select_task
from convoflow.workflows.models import (
    ActionKind,
    MeetingDetails,
    Task,
    TaskStatus,
    TaskType,
    WorkflowInstance,
    WorkflowStatus,
)
from convoflow.workflows.notifications import NotificationFanout
from convoflow.workflows.validators import run_validators

log = get_logger(__name__)


@dataclass
class AdvanceResult:
    """What one ``advance()`` call did.

    ``completed`` means there is no further work: the workflow is terminal.
    """

    workflow_id: str
    status: WorkflowStatus
    completed: bool = False
    requires_input: bool = False
    task_id: str | None = None
    failed_task: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    missing_fields: list[str] = field(default_factory=list)

    @property
    def retryable(self) -> bool:
        return self.error_kind is not None and self.error_kind.retryable

    @property
    def outcome(self) -> str:
        if self.requires_input:
            return "requires_input"
        if self.status is WorkflowStatus.FAILED:
            return "failed"
        if self.status in (WorkflowStatus.COMPLETED, WorkflowStatus.CANCELLED):
            return self.status.value
        return "in_progress"

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "status": self.status.value,
            "outcome": self.outcome,
            "completed": self.completed,
            "requires_input": self.requires_input,
            "task_id": self.task_id,
            "failed_task": self.failed_task,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "retryable": self.retryable,
            "missing_fields": list(self.missing_fields),
        }


@dataclass
class TaskOutcome:
    success: bool
    error: str = ""
    kind: ErrorKind | None = None
    requires_input: bool = False
    missing: list[str] = field(default_factory=list)
    context_update: dict[str, Any] = field(default_factory=dict)
    booking: dict[str, Any] | None = None

    @classmethod
    def ok(cls, **kwargs: Any) -> TaskOutcome:
        return cls(success=True, **kwargs)

    @classmethod
    def fail(cls, error: str, kind: ErrorKind) -> TaskOutcome:
        return cls(success=False, error=error, kind=kind)


def _failure_kind(result: ActionResult) -> ErrorKind:
    if result.retryable:
        return ErrorKind.TIMEOUT
    if result.unavailable:
        return ErrorKind.PROVIDER_UNAVAILABLE
    return ErrorKind.ACTION


def _conflict_label(conflict: Any) -> str:
    if isinstance(conflict, dict):
        return str(conflict.get("summary") or conflict.get("title") or conflict.get("id") or conflict)
    return str(conflict)


class WorkflowExecutor:
    """Advances workflow instances one task at a time.

    ``advance`` never loops: each call runs at most one task and returns.
    Calls for the same workflow are serialized by a per-workflow lock and a
    store lease, so a task is never dispatched twice concurrently.
    """

    def __init__(
        self,
        store: WorkflowStore,
        integrations: IntegrationManager | None = None,
        config: ExecutorConfig | None = None,
        notifications: NotificationFanout | None = None,
        default_organizer: str = "",
        owner: str | None = None,
    ) -> None:
        self._store = store
        self._integrations = integrations
        self._config = config or ExecutorConfig()
        if notifications is None and integrations is not None:
            notifications = NotificationFanout(integrations, store)
        self._notifications = notifications
        self._default_organizer = default_organizer
        self._owner = owner or f"executor-{uuid4().hex[:8]}"
        # Entries vanish once no in-flight call holds the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    # --- Caller-facing surface ---

    async def get(self, workflow_id: str) -> WorkflowInstance:
        return await self._store.load(workflow_id)

    async def cancel(self, workflow_id: str) -> WorkflowInstance:
        """Move a live workflow to ``cancelled``. Terminal workflows are left as-is."""
        async with self._lock_for(workflow_id):
            instance = await self._store.load(workflow_id)
            if instance.status.is_terminal:
                return instance
            await self._store.save_instance_status(workflow_id, WorkflowStatus.CANCELLED)
            await self._record(workflow_id, "workflow_cancelled")
            log.info("workflow_cancelled", workflow_id=workflow_id)
            return await self._store.load(workflow_id)

    async def provide_input(self, workflow_id: str, partial: dict[str, Any]) -> dict[str, Any]:
        """Merge facts gathered from the user into the workflow context."""
        instance = await self._store.load(workflow_id)
        if instance.status.is_terminal:
            raise WorkflowTerminalError(
                f"Workflow {workflow_id} is {instance.status.value}; input not accepted"
            )
        merged = await self._store.merge_context(workflow_id, partial)
        await self._record(workflow_id, "context_merged", detail={"keys": sorted(partial)})
        log.info("context_merged", workflow_id=workflow_id, keys=sorted(partial))
        return merged

    async def advance(self, workflow_id: str) -> AdvanceResult:
        """Run the next eligible task of ``workflow_id``.

        Raises ``WorkflowNotFoundError`` for unknown ids and ``WorkflowBusyError``
        when another process holds the workflow's lease.
        """
        async with self._lock_for(workflow_id):
            instance = await self._store.load(workflow_id)
            if instance.status.is_terminal:
                return self._terminal_result(instance)

            if not await self._store.acquire_lease(
                workflow_id, self._owner, self._config.lease_ttl_seconds
            ):
                log.warning("workflow_busy", workflow_id=workflow_id, owner=self._owner)
                raise WorkflowBusyError(workflow_id)

            try:
                with structlog.contextvars.bound_contextvars(workflow_id=workflow_id):
                    return await self._step(workflow_id)
            finally:
                await self._store.release_lease(workflow_id, self._owner)

    # --- Step ---

    async def _step(self, workflow_id: str) -> AdvanceResult:
        # Reload under the lease; another process may have moved the workflow on
        instance = await self._store.load(workflow_id)
        if instance.status.is_terminal:
            return self._terminal_result(instance)

        if is_settled(instance.tasks):
            return await self._complete(instance)

        task = select_task(instance.tasks)
        if task is None:
            return await self._fail(
                instance,
                None,
                TaskOutcome.fail(
                    "No eligible task: the task graph is stalled", ErrorKind.MALFORMED
                ),
            )

        if instance.status is WorkflowStatus.PLANNING:
            await self._store.save_instance_status(workflow_id, WorkflowStatus.ACTIVE)
            log.info("workflow_started", template=instance.template_id)

        resumed = task.status is TaskStatus.ACTIVE
        if not resumed:
            await self._store.save_task_status(workflow_id, task.id, TaskStatus.ACTIVE)
            await self._record(workflow_id, "task_started", task.id)

        with structlog.contextvars.bound_contextvars(task_id=task.id, task_type=task.type.value):
            log.info("task_started", resumed=resumed)
            try:
                outcome = await self._dispatch(instance, task)
            except Exception as e:
                log.exception("task_dispatch_error")
                outcome = TaskOutcome.fail(f"{task.title} failed: {e}", ErrorKind.ACTION)

            if outcome.requires_input:
                await self._record(
                    workflow_id, "task_awaiting_input", task.id,
                    {"missing": outcome.missing},
                )
                log.info("task_awaiting_input", missing=outcome.missing)
                return AdvanceResult(
                    workflow_id=workflow_id,
                    status=WorkflowStatus.ACTIVE,
                    requires_input=True,
                    task_id=task.id,
                    error=outcome.error,
                    error_kind=ErrorKind.VALIDATION,
                    missing_fields=outcome.missing,
                )

            if not outcome.success:
                return await self._fail(instance, task, outcome)

            if outcome.context_update:
                await self._store.merge_context(workflow_id, outcome.context_update)
            await self._store.save_task_status(workflow_id, task.id, TaskStatus.COMPLETED)
            await self._record(workflow_id, "task_completed", task.id)
            log.info("task_completed")

            if outcome.booking is not None:
                await self._fan_out(instance, outcome)

        refreshed = await self._store.load(workflow_id)
        if is_settled(refreshed.tasks):
            return await self._complete(refreshed, task_id=task.id)
        return AdvanceResult(workflow_id=workflow_id, status=refreshed.status, task_id=task.id)

    async def _dispatch(self, instance: WorkflowInstance, task: Task) -> TaskOutcome:
        if task.type is TaskType.GATHER:
            return self._check_required(instance, task)
        if task.type is TaskType.VALIDATE:
            error = run_validators(instance.template_id, instance.context)
            if error:
                return TaskOutcome.fail(error, ErrorKind.VALIDATION)
            return TaskOutcome.ok()
        if task.type is TaskType.CONFIRM:
            # No human confirmation gate yet; confirms once the data exists
            return self._check_required(instance, task)
        if task.type is TaskType.DECISION:
            return TaskOutcome.ok()
        if task.type is TaskType.EXECUTE:
            return await self._execute_action(instance, task)
        if task.type is TaskType.NOTIFY:
            await self._notify(instance, task)
            return TaskOutcome.ok()
        return TaskOutcome.ok()

    def _check_required(self, instance: WorkflowInstance, task: Task) -> TaskOutcome:
        missing = missing_fields(instance.context, task.required_data)
        if not missing:
            return TaskOutcome.ok()
        error = f"Missing required data: {missing[0]}"
        if self._config.await_input_on_missing:
            return TaskOutcome(success=False, error=error, requires_input=True, missing=missing)
        return TaskOutcome.fail(error, ErrorKind.VALIDATION)

    # --- Execute tasks ---

    async def _execute_action(self, instance: WorkflowInstance, task: Task) -> TaskOutcome:
        action = task.resolve_action()
        if action is None:
            log.info("execute_task_without_action")
            return TaskOutcome.ok()

        details = MeetingDetails.from_context(instance.context, self._default_organizer)
        if action is ActionKind.CHECK_AVAILABILITY:
            return await self._check_availability(details)
        if action is ActionKind.SCHEDULE_MEETING:
            return await self._schedule_meeting(instance, task, details)
        return await self._modify_meeting(instance, action, details)

    async def _check_availability(self, details: MeetingDetails) -> TaskOutcome:
        if not self._has(ActionType.CHECK_AVAILABILITY):
            if self._config.availability_policy == "fail_closed":
                return TaskOutcome.fail(
                    "No calendar capability configured to check availability",
                    ErrorKind.PROVIDER_UNAVAILABLE,
                )
            log.warning("availability_unchecked", policy="fail_open")
            return TaskOutcome.ok(context_update={"available": True})

        assert self._integrations is not None
        result = await self._integrations.execute(
            CapabilityAction(ActionType.CHECK_AVAILABILITY, details.availability_payload())
        )
        if not result.success:
            return TaskOutcome.fail(
                result.error or "Failed to check calendar availability",
                _failure_kind(result),
            )

        conflicts = result.data.get("conflicts") or []
        if conflicts:
            labels = ", ".join(_conflict_label(c) for c in conflicts)
            return TaskOutcome.fail(
                f"Time slot is not available. Conflicts found: {labels}",
                ErrorKind.ACTION,
            )
        return TaskOutcome.ok(context_update={"available": True})

    async def _schedule_meeting(
        self, instance: WorkflowInstance, task: Task, details: MeetingDetails
    ) -> TaskOutcome:
        if not details.attendees:
            return TaskOutcome.fail(
                "Cannot book meeting without at least one attendee", ErrorKind.VALIDATION
            )
        if details.start_time is None or details.end_time is None:
            return TaskOutcome.fail(
                "Cannot book meeting without a start and end time", ErrorKind.VALIDATION
            )
        if not self._has(ActionType.SCHEDULE_MEETING):
            return TaskOutcome.fail(
                "No calendar capability configured to book the meeting",
                ErrorKind.PROVIDER_UNAVAILABLE,
            )

        assert self._integrations is not None
        payload = details.booking_payload()
        payload["idempotencyKey"] = f"{instance.id}:{task.id}"
        result = await self._integrations.execute(
            CapabilityAction(ActionType.SCHEDULE_MEETING, payload)
        )
        if not result.success or result.data.get("success") is False:
            return TaskOutcome.fail(
                result.error or result.data.get("error") or "Failed to book meeting",
                _failure_kind(result),
            )

        conflicts = result.data.get("conflicts") or []
        if conflicts:
            labels = ", ".join(_conflict_label(c) for c in conflicts)
            return TaskOutcome.fail(
                f"Calendar reported conflicts: {labels}", ErrorKind.ACTION
            )

        booking = {
            "eventLink": result.data.get("eventLink") or result.data.get("htmlLink"),
            "meetLink": result.data.get("meetLink"),
            "eventId": result.data.get("eventId"),
        }
        return TaskOutcome.ok(
            context_update={k: v for k, v in booking.items() if v},
            booking=booking,
        )

    async def _modify_meeting(
        self, instance: WorkflowInstance, action: ActionKind, details: MeetingDetails
    ) -> TaskOutcome:
        event_id = instance.context.get("eventId")
        if not event_id:
            return TaskOutcome.fail(
                f"No booked event to {action.value.split('_')[0]}", ErrorKind.VALIDATION
            )
        action_type = ActionType(action.value)
        if not self._has(action_type):
            return TaskOutcome.fail(
                f"No calendar capability configured for {action.value}",
                ErrorKind.PROVIDER_UNAVAILABLE,
            )

        assert self._integrations is not None
        payload: dict[str, Any] = {"eventId": event_id}
        if action is ActionKind.UPDATE_MEETING:
            payload.update(details.booking_payload())
        result = await self._integrations.execute(CapabilityAction(action_type, payload))
        if not result.success:
            return TaskOutcome.fail(result.error or f"{action.value} failed", _failure_kind(result))
        if action is ActionKind.CANCEL_MEETING:
            return TaskOutcome.ok(context_update={"meetingCancelled": True})
        return TaskOutcome.ok()

    # --- Notifications ---

    async def _fan_out(self, instance: WorkflowInstance, outcome: TaskOutcome) -> None:
        if self._notifications is None or outcome.booking is None:
            return
        details = MeetingDetails.from_context(instance.context, self._default_organizer)
        try:
            report = await self._notifications.booking_confirmed(
                instance.id, details, outcome.booking
            )
        except Exception:
            log.exception("notification_fanout_error")
            return
        log.info("notification_fanout_done", sent=len(report.sent), failed=len(report.failed))

    async def _notify(self, instance: WorkflowInstance, task: Task) -> None:
        if self._notifications is None:
            log.info("notify_task_skipped", reason="no notification channels")
            return
        try:
            await self._notifications.workflow_summary(instance, task.title)
        except Exception:
            log.exception("notify_task_error")

    # --- Transitions ---

    async def _complete(
        self, instance: WorkflowInstance, task_id: str | None = None
    ) -> AdvanceResult:
        try:
            await self._store.save_instance_status(instance.id, WorkflowStatus.COMPLETED)
        except IllegalTransitionError:
            return self._terminal_result(await self._store.load(instance.id))
        await self._record(instance.id, "workflow_completed")
        log.info("workflow_completed", workflow_id=instance.id)
        return AdvanceResult(
            workflow_id=instance.id,
            status=WorkflowStatus.COMPLETED,
            completed=True,
            task_id=task_id,
        )

    async def _fail(
        self, instance: WorkflowInstance, task: Task | None, outcome: TaskOutcome
    ) -> AdvanceResult:
        task_id = task.id if task else None
        if task is not None:
            await self._store.save_task_status(
                instance.id, task.id, TaskStatus.FAILED, outcome.error
            )
            await self._record(
                instance.id, "task_failed", task.id,
                {"error": outcome.error, "kind": outcome.kind.value if outcome.kind else None},
            )
            log.warning(
                "task_failed",
                task_id=task.id,
                error=outcome.error,
                kind=outcome.kind.value if outcome.kind else None,
            )

        try:
            await self._store.save_instance_status(
                instance.id, WorkflowStatus.FAILED, outcome.error
            )
        except IllegalTransitionError:
            # Cancelled from elsewhere while the task ran
            log.warning("workflow_fail_skipped", workflow_id=instance.id)
            current = await self._store.load(instance.id)
            result = self._terminal_result(current)
            result.failed_task = task_id
            result.error = outcome.error
            result.error_kind = outcome.kind
            return result

        await self._record(instance.id, "workflow_failed", task_id, {"reason": outcome.error})
        log.warning("workflow_failed", workflow_id=instance.id, reason=outcome.error)
        return AdvanceResult(
            workflow_id=instance.id,
            status=WorkflowStatus.FAILED,
            failed_task=task_id,
            error=outcome.error,
            error_kind=outcome.kind,
        )

    # --- Helpers ---

    def _lock_for(self, workflow_id: str) -> asyncio.Lock:
        lock = self._locks.get(workflow_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[workflow_id] = lock
        return lock

    def _has(self, action_type: ActionType) -> bool:
        return self._integrations is not None and self._integrations.has_capability(action_type)

    def _terminal_result(self, instance: WorkflowInstance) -> AdvanceResult:
        failed = next((t for t in instance.tasks if t.status is TaskStatus.FAILED), None)
        return AdvanceResult(
            workflow_id=instance.id,
            status=instance.status,
            completed=True,
            failed_task=failed.id if failed else None,
            error=instance.failure_reason,
        )

    async def _record(
        self,
        workflow_id: str,
        event: str,
        task_id: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        await self._store.record_event(
            ExecutionEvent(workflow_id=workflow_id, event=event, task_id=task_id, detail=detail or {})
        )


async def drive_workflow(
    executor: WorkflowExecutor, workflow_id: str, max_steps: int = 20
) -> AdvanceResult:
    """Call ``advance`` until the workflow is terminal, needs input, or ``max_steps`` is hit."""
    result: AdvanceResult | None = None
    for _ in range(max_steps):
        result = await executor.advance(workflow_id)
        if result.completed or result.requires_input or result.status.is_terminal:
            break
    if result is None:
        raise ValueError("max_steps must be at least 1")
    return result
