"""Shared fixtures: fake capability services and an in-memory executor."""

from __future__ import annotations

from collections.abc import Iterable

import pytest

from convoflow.capabilities.base import (
    ActionResult,
    ActionType,
    BaseCapability,
    CapabilityAction,
)
from convoflow.capabilities.manager import IntegrationManager
from convoflow.storage.memory import InMemoryWorkflowStore
from convoflow.workflows.executor import WorkflowExecutor
from convoflow.workflows.models import Task, TaskType, WorkflowInstance, ActionKind


class FakeCapability(BaseCapability):
    """Records every action; answers from ``responses`` (an exception is raised)."""

    def __init__(self, actions: Iterable[ActionType], name: str = "fake") -> None:
        self._actions = frozenset(actions)
        self._name = name
        self.calls: list[CapabilityAction] = []
        self.responses: dict[ActionType, ActionResult | Exception] = {}

    @property
    def name(self) -> str:
        return self._name

    @property
    def actions(self) -> frozenset[ActionType]:
        return self._actions

    async def execute(self, action: CapabilityAction) -> ActionResult:
        self.calls.append(action)
        response = self.responses.get(action.type, ActionResult(success=True))
        if isinstance(response, Exception):
            raise response
        return response

    def calls_for(self, action_type: ActionType) -> list[CapabilityAction]:
        return [c for c in self.calls if c.type is action_type]


MEETING_CONTEXT = {
    "startTime": "2025-01-01T10:00:00Z",
    "endTime": "2025-01-01T11:00:00Z",
    "attendees": ["a@x.com"],
}


def three_step_workflow(workflow_id: str = "wf-1", context: dict | None = None) -> WorkflowInstance:
    return WorkflowInstance(
        id=workflow_id,
        conversation_id="conv-1",
        template_id="meeting_scheduler",
        template_name="Schedule Meeting",
        context=dict(MEETING_CONTEXT if context is None else context),
        tasks=[
            Task(
                id="gather",
                title="Gather details",
                type=TaskType.GATHER,
                required_data=["startTime", "endTime", "attendees"],
            ),
            Task(
                id="availability",
                title="Check availability",
                type=TaskType.EXECUTE,
                depends_on=["gather"],
                action=ActionKind.CHECK_AVAILABILITY,
            ),
            Task(
                id="book",
                title="Book meeting",
                type=TaskType.EXECUTE,
                depends_on=["availability"],
                action=ActionKind.SCHEDULE_MEETING,
            ),
        ],
    )


@pytest.fixture
def calendar():
    cap = FakeCapability(
        [
            ActionType.CHECK_AVAILABILITY,
            ActionType.SCHEDULE_MEETING,
            ActionType.CANCEL_MEETING,
            ActionType.UPDATE_MEETING,
            ActionType.SEND_EMAIL,
        ],
        name="calendar",
    )
    cap.responses[ActionType.CHECK_AVAILABILITY] = ActionResult(
        success=True, data={"conflicts": []}
    )
    cap.responses[ActionType.SCHEDULE_MEETING] = ActionResult(
        success=True,
        data={"success": True, "eventLink": "cal://1", "eventId": "evt-1"},
    )
    return cap


@pytest.fixture
def chat():
    return FakeCapability([ActionType.SEND_CHAT_MESSAGE], name="chat")


@pytest.fixture
def integrations(calendar, chat):
    return IntegrationManager([calendar, chat], timeout=1.0)


@pytest.fixture
def store():
    return InMemoryWorkflowStore()


@pytest.fixture
def executor(store, integrations):
    return WorkflowExecutor(store, integrations, default_organizer="organizer@x.com")
