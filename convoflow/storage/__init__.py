"""Workflow persistence backends."""

from __future__ import annotations

from convoflow.config import Settings
from convoflow.storage.base import ExecutionEvent, WorkflowStore
from convoflow.storage.memory import InMemoryWorkflowStore
from convoflow.storage.sqlite import SQLiteWorkflowStore


def create_store(settings: Settings) -> WorkflowStore:
    """Factory to create the configured store backend."""
    if settings.storage.backend == "memory":
        return InMemoryWorkflowStore()
    return SQLiteWorkflowStore(settings.get_db_path())


__all__ = [
    "ExecutionEvent",
    "InMemoryWorkflowStore",
    "SQLiteWorkflowStore",
    "WorkflowStore",
    "create_store",
]
