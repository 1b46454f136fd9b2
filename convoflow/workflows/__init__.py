"""Workflow plans, templates and task graph."""

from convoflow.workflows.models import (
    ActionKind,
    MeetingDetails,
    Task,
    TaskStatus,
    TaskType,
    WorkflowInstance,
    WorkflowStatus,
)
from convoflow.workflows.templates import TEMPLATES, WorkflowTemplate, get_template, instantiate_workflow

__all__ = [
    "ActionKind",
    "MeetingDetails",
    "TEMPLATES",
    "Task",
    "TaskStatus",
    "TaskType",
    "WorkflowInstance",
    "WorkflowStatus",
    "WorkflowTemplate",
    "get_template",
    "instantiate_workflow",
]
