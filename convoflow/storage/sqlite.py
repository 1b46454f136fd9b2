"""SQLite workflow store."""

from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from convoflow.errors import WorkflowNotFoundError
from convoflow.storage.base import (
    ExecutionEvent,
    WorkflowStore,
    apply_instance_status,
    apply_task_status,
)
from convoflow.utils.logging import get_logger
from convoflow.workflows.context import merge_context
from convoflow.workflows.models import (
    Task,
    TaskStatus,
    WorkflowInstance,
    WorkflowStatus,
    parse_timestamp,
    utcnow,
)

log = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS workflows (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    template_id TEXT,
    template_name TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL,
    context TEXT NOT NULL DEFAULT '{}',
    failure_reason TEXT,
    started_at TEXT,
    completed_at TEXT,
    created_at TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_workflows_conversation ON workflows(conversation_id);

CREATE TABLE IF NOT EXISTS workflow_tasks (
    workflow_id TEXT NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
    id TEXT NOT NULL,
    position INTEGER NOT NULL,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL,
    depends_on TEXT NOT NULL DEFAULT '[]',
    required_data TEXT NOT NULL DEFAULT '[]',
    action TEXT,
    error_message TEXT,
    started_at TEXT,
    completed_at TEXT,
    PRIMARY KEY (workflow_id, id)
);

CREATE TABLE IF NOT EXISTS workflow_leases (
    workflow_id TEXT PRIMARY KEY,
    owner TEXT NOT NULL,
    expires_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS workflow_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    workflow_id TEXT NOT NULL,
    task_id TEXT,
    event TEXT NOT NULL,
    detail TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_workflow_events_workflow ON workflow_events(workflow_id);
"""

_WORKFLOW_COLUMNS = (
    "id, conversation_id, template_id, template_name, status, context, "
    "failure_reason, started_at, completed_at, created_at, version"
)
_TASK_COLUMNS = (
    "id, type, title, description, status, depends_on, required_data, "
    "action, error_message, started_at, completed_at"
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class SQLiteWorkflowStore(WorkflowStore):
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        # Serializes read-modify-write sequences on the shared connection
        self._write_lock = asyncio.Lock()

    async def start(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._db_path))
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.executescript(_SCHEMA)
        await self._db.commit()
        log.debug("workflow_store_started", path=str(self._db_path))

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    # --- Workflows ---

    async def create(self, instance: WorkflowInstance) -> None:
        assert self._db is not None
        async with self._write_lock:
            try:
                await self._db.execute(
                    f"INSERT INTO workflows ({_WORKFLOW_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        instance.id, instance.conversation_id, instance.template_id,
                        instance.template_name, instance.status.value,
                        json.dumps(instance.context), instance.failure_reason,
                        _iso(instance.started_at), _iso(instance.completed_at),
                        instance.created_at.isoformat(), instance.version,
                    ),
                )
            except aiosqlite.IntegrityError:
                await self._db.rollback()
                raise ValueError(f"Workflow already exists: {instance.id}") from None
            try:
                await self._db.executemany(
                    f"INSERT INTO workflow_tasks (workflow_id, position, {_TASK_COLUMNS}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    [
                        (
                            instance.id, position, t.id, t.type.value, t.title,
                            t.description, t.status.value, json.dumps(t.depends_on),
                            json.dumps(t.required_data),
                            t.action.value if t.action else None, t.error_message,
                            _iso(t.started_at), _iso(t.completed_at),
                        )
                        for position, t in enumerate(instance.tasks)
                    ],
                )
            except Exception:
                # Never leave a workflow row without its full task list
                await self._db.rollback()
                log.warning("workflow_create_rolled_back", workflow_id=instance.id)
                raise
            await self._db.commit()

    async def load(self, workflow_id: str) -> WorkflowInstance:
        assert self._db is not None
        cursor = await self._db.execute(
            f"SELECT {_WORKFLOW_COLUMNS} FROM workflows WHERE id = ?",
            (workflow_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            raise WorkflowNotFoundError(workflow_id)
        instance = self._row_to_instance(row)
        instance.tasks = await self._load_tasks(workflow_id)
        return instance

    async def list_workflows(self, conversation_id: str | None = None) -> list[WorkflowInstance]:
        assert self._db is not None
        if conversation_id is None:
            cursor = await self._db.execute(
                f"SELECT {_WORKFLOW_COLUMNS} FROM workflows ORDER BY created_at"
            )
        else:
            cursor = await self._db.execute(
                f"SELECT {_WORKFLOW_COLUMNS} FROM workflows "
                "WHERE conversation_id = ? ORDER BY created_at",
                (conversation_id,),
            )
        rows = await cursor.fetchall()
        workflows = []
        for row in rows:
            instance = self._row_to_instance(row)
            instance.tasks = await self._load_tasks(instance.id)
            workflows.append(instance)
        return workflows

    async def save_task_status(
        self,
        workflow_id: str,
        task_id: str,
        status: TaskStatus,
        error_message: str | None = None,
    ) -> None:
        assert self._db is not None
        async with self._write_lock:
            instance = await self.load(workflow_id)
            apply_task_status(instance, task_id, status, error_message)
            task = instance.task(task_id)
            assert task is not None
            await self._db.execute(
                "UPDATE workflow_tasks SET status = ?, error_message = ?, "
                "started_at = ?, completed_at = ? WHERE workflow_id = ? AND id = ?",
                (
                    task.status.value, task.error_message, _iso(task.started_at),
                    _iso(task.completed_at), workflow_id, task_id,
                ),
            )
            await self._bump_version(workflow_id, instance.version)
            await self._db.commit()

    async def save_instance_status(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        failure_reason: str | None = None,
    ) -> None:
        assert self._db is not None
        async with self._write_lock:
            instance = await self.load(workflow_id)
            apply_instance_status(instance, status, failure_reason)
            await self._db.execute(
                "UPDATE workflows SET status = ?, failure_reason = ?, started_at = ?, "
                "completed_at = ?, version = ? WHERE id = ?",
                (
                    instance.status.value, instance.failure_reason,
                    _iso(instance.started_at), _iso(instance.completed_at),
                    instance.version, workflow_id,
                ),
            )
            await self._db.commit()

    async def merge_context(self, workflow_id: str, partial: dict[str, Any]) -> dict[str, Any]:
        assert self._db is not None
        async with self._write_lock:
            instance = await self.load(workflow_id)
            merged = merge_context(instance.context, partial)
            await self._db.execute(
                "UPDATE workflows SET context = ?, version = ? WHERE id = ?",
                (json.dumps(merged), instance.version + 1, workflow_id),
            )
            await self._db.commit()
        return merged

    # --- Leases ---

    async def acquire_lease(self, workflow_id: str, owner: str, ttl: float) -> bool:
        assert self._db is not None
        now = time.time()
        async with self._write_lock:
            await self._db.execute(
                "INSERT INTO workflow_leases (workflow_id, owner, expires_at) VALUES (?, ?, ?) "
                "ON CONFLICT(workflow_id) DO UPDATE SET "
                "owner = excluded.owner, expires_at = excluded.expires_at "
                "WHERE workflow_leases.owner = excluded.owner "
                "OR workflow_leases.expires_at < ?",
                (workflow_id, owner, now + ttl, now),
            )
            await self._db.commit()
            cursor = await self._db.execute(
                "SELECT owner FROM workflow_leases WHERE workflow_id = ?",
                (workflow_id,),
            )
            row = await cursor.fetchone()
        return row is not None and row[0] == owner

    async def release_lease(self, workflow_id: str, owner: str) -> None:
        assert self._db is not None
        async with self._write_lock:
            await self._db.execute(
                "DELETE FROM workflow_leases WHERE workflow_id = ? AND owner = ?",
                (workflow_id, owner),
            )
            await self._db.commit()

    # --- Execution log ---

    async def record_event(self, event: ExecutionEvent) -> None:
        assert self._db is not None
        async with self._write_lock:
            cursor = await self._db.execute(
                "INSERT INTO workflow_events (workflow_id, task_id, event, detail, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    event.workflow_id, event.task_id, event.event,
                    json.dumps(event.detail, default=str), event.created_at.isoformat(),
                ),
            )
            await self._db.commit()
        event.id = cursor.lastrowid

    async def list_events(self, workflow_id: str) -> list[ExecutionEvent]:
        assert self._db is not None
        cursor = await self._db.execute(
            "SELECT id, workflow_id, task_id, event, detail, created_at "
            "FROM workflow_events WHERE workflow_id = ? ORDER BY id",
            (workflow_id,),
        )
        rows = await cursor.fetchall()
        return [
            ExecutionEvent(
                id=row[0], workflow_id=row[1], task_id=row[2], event=row[3],
                detail=json.loads(row[4]),
                created_at=datetime.fromisoformat(row[5]),
            )
            for row in rows
        ]

    # --- Helpers ---

    async def _load_tasks(self, workflow_id: str) -> list[Task]:
        assert self._db is not None
        cursor = await self._db.execute(
            f"SELECT {_TASK_COLUMNS} FROM workflow_tasks "
            "WHERE workflow_id = ? ORDER BY position",
            (workflow_id,),
        )
        rows = await cursor.fetchall()
        return [
            Task.from_dict({
                "id": r[0], "type": r[1], "title": r[2], "description": r[3],
                "status": r[4], "depends_on": json.loads(r[5]),
                "required_data": json.loads(r[6]), "action": r[7],
                "error_message": r[8], "started_at": r[9], "completed_at": r[10],
            })
            for r in rows
        ]

    async def _bump_version(self, workflow_id: str, version: int) -> None:
        assert self._db is not None
        await self._db.execute(
            "UPDATE workflows SET version = ? WHERE id = ?",
            (version, workflow_id),
        )

    @staticmethod
    def _row_to_instance(row: Any) -> WorkflowInstance:
        return WorkflowInstance(
            id=row[0],
            conversation_id=row[1],
            template_id=row[2],
            template_name=row[3],
            status=WorkflowStatus(row[4]),
            context=json.loads(row[5]) if row[5] else {},
            failure_reason=row[6],
            started_at=parse_timestamp(row[7]),
            completed_at=parse_timestamp(row[8]),
            created_at=parse_timestamp(row[9]) or utcnow(),
            version=row[10],
        )
