"""Exception hierarchy and failure classification."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    ACTION = "action"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    TIMEOUT = "timeout"
    MALFORMED = "malformed"

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.TIMEOUT


class ConvoflowError(Exception):
    """Base class for errors surfaced to callers."""


class WorkflowNotFoundError(ConvoflowError, LookupError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class MalformedWorkflowError(ConvoflowError):
    """Task graph is stalled or references tasks that do not exist."""


class WorkflowBusyError(ConvoflowError):
    """Another caller holds the workflow's lease."""

    def __init__(self, workflow_id: str, holder: str | None = None) -> None:
        super().__init__(f"Workflow {workflow_id} is being advanced by another caller")
        self.workflow_id = workflow_id
        self.holder = holder


class WorkflowTerminalError(ConvoflowError):
    """Mutation requested on a completed, failed or cancelled workflow."""


class IllegalTransitionError(ConvoflowError, ValueError):
    pass
