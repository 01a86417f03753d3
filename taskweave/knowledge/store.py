"""
Durable task records.

TaskStore upserts one row per task ID. A concurrent insert of the same ID
(e.g. two managers adding the same task) surfaces as an IntegrityError and
is retried as an update.
"""

import json
from datetime import datetime, timezone
from typing import Any

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from taskweave.knowledge.database import get_db_session, init_db
from taskweave.knowledge.models import TaskRecord
from taskweave.tasks.models import TaskSnapshot, TaskStatus


def to_jsonable(value: Any) -> Any:
    """Convert a value to something the JSON column accepts."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _record_values(snapshot: TaskSnapshot) -> dict[str, Any]:
    return {
        "name": snapshot.name,
        "description": snapshot.description,
        "status": snapshot.status.value,
        "retries": snapshot.retries,
        "plugins": list(snapshot.plugins),
        "input": to_jsonable(snapshot.input),
        "dependencies": list(snapshot.dependencies),
        "result": to_jsonable(snapshot.result),
        "created_at": snapshot.created_at,
        "started_at": snapshot.started_at,
        "completed_at": snapshot.completed_at,
        "agent_id": snapshot.agent_id,
        "session_id": snapshot.session_id,
        "context_id": snapshot.context_id,
    }


def _to_snapshot(record: TaskRecord) -> TaskSnapshot:
    try:
        status = TaskStatus(record.status)
    except ValueError:
        logger.warning(f"Unknown status '{record.status}' for task {record.id}, using pending")
        status = TaskStatus.PENDING

    return TaskSnapshot(
        id=record.id,
        name=record.name,
        description=record.description or "",
        status=status,
        retries=record.retries or 0,
        plugins=list(record.plugins or []),
        input=record.input,
        dependencies=list(record.dependencies or []),
        result=record.result,
        created_at=_as_utc(record.created_at),
        started_at=_as_utc(record.started_at),
        completed_at=_as_utc(record.completed_at),
        agent_id=record.agent_id,
        session_id=record.session_id,
        context_id=record.context_id,
    )


class TaskStore:
    """
    SQLAlchemy-backed store of task records.

    Example:
        >>> store = TaskStore()
        >>> await store.initialize()
        >>> await store.save(task.snapshot())
        >>> records = await store.load(session_id="session-1")
    """

    async def initialize(self) -> None:
        """Create the schema if it does not exist."""
        await init_db()

    async def save(self, snapshot: TaskSnapshot) -> None:
        """
        Insert or update the record for a task.

        Args:
            snapshot: Serializable view of the task.
        """
        values = _record_values(snapshot)

        try:
            async with get_db_session() as session:
                record = await session.get(TaskRecord, snapshot.id)
                if record is None:
                    session.add(TaskRecord(id=snapshot.id, **values))
                else:
                    for key, value in values.items():
                        setattr(record, key, value)
        except IntegrityError:
            logger.debug(f"Task {snapshot.id} inserted concurrently, updating instead")
            async with get_db_session() as session:
                await session.execute(
                    update(TaskRecord).where(TaskRecord.id == snapshot.id).values(**values)
                )

    async def get(self, task_id: str) -> TaskSnapshot | None:
        """Get the stored record for a task."""
        async with get_db_session() as session:
            record = await session.get(TaskRecord, task_id)
            return _to_snapshot(record) if record is not None else None

    async def load(
        self,
        agent_id: str | None = None,
        session_id: str | None = None,
    ) -> list[TaskSnapshot]:
        """
        Load stored task records.

        The session filter takes precedence over the agent filter; with
        neither, every record is returned.

        Args:
            agent_id: Only tasks owned by this agent.
            session_id: Only tasks in this session.

        Returns:
            Records ordered by creation time.
        """
        stmt = select(TaskRecord).order_by(TaskRecord.created_at)
        if session_id:
            stmt = stmt.where(TaskRecord.session_id == session_id)
        elif agent_id:
            stmt = stmt.where(TaskRecord.agent_id == agent_id)

        async with get_db_session() as session:
            result = await session.execute(stmt)
            return [_to_snapshot(r) for r in result.scalars().all()]
