"""
Memory side channel used for task audit entries and session context.

Tasks write ``task_event``, ``task_tool`` and ``task_result`` entries while
they execute, and a ``task_context`` entry holding the accumulated session
context after each successful run.
"""

from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import select

from taskweave.knowledge.database import get_db_session
from taskweave.knowledge.models import MemoryRecord

TASK_EVENT = "task_event"
TASK_TOOL = "task_tool"
TASK_RESULT = "task_result"
TASK_CONTEXT = "task_context"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryEntry(BaseModel):
    """A single memory entry."""

    id: str | None = Field(default=None, description="Entry ID (assigned on add)")
    agent_id: str = Field(default="system", description="Agent that wrote the entry")
    session_id: str = Field(..., description="Session the entry belongs to")
    user_id: str = Field(default="", description="User the entry concerns")
    role: str = Field(..., description="Entry role, e.g. task_event or task_context")
    content: str = Field(..., description="Entry content")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Additional metadata")
    timestamp: datetime = Field(default_factory=_utcnow, description="When it was written")


@runtime_checkable
class Memory(Protocol):
    """Memory backend contract."""

    async def add(self, entry: MemoryEntry) -> str: ...

    async def get_by_session(self, session_id: str) -> list[MemoryEntry]: ...


class InMemoryMemory:
    """Process-local memory backend."""

    def __init__(self) -> None:
        self._entries: list[MemoryEntry] = []

    async def add(self, entry: MemoryEntry) -> str:
        stored = entry.model_copy(update={"id": entry.id or str(uuid4())})
        self._entries.append(stored)
        return stored.id

    async def get_by_session(self, session_id: str) -> list[MemoryEntry]:
        return [e for e in self._entries if e.session_id == session_id]

    def clear(self) -> None:
        """Remove all entries."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class DatabaseMemory:
    """
    Memory backend persisted in the ``memories`` table.

    Example:
        >>> memory = DatabaseMemory()
        >>> await memory.add(MemoryEntry(session_id="s1", role="task_event", content="hi"))
    """

    async def add(self, entry: MemoryEntry) -> str:
        entry_id = entry.id or str(uuid4())
        async with get_db_session() as session:
            session.add(
                MemoryRecord(
                    id=entry_id,
                    agent_id=entry.agent_id,
                    session_id=entry.session_id,
                    user_id=entry.user_id,
                    role=entry.role,
                    content=entry.content,
                    entry_metadata=entry.metadata,
                    timestamp=entry.timestamp,
                )
            )
        logger.debug(f"Stored memory entry {entry_id} ({entry.role})")
        return entry_id

    async def get_by_session(self, session_id: str) -> list[MemoryEntry]:
        stmt = (
            select(MemoryRecord)
            .where(MemoryRecord.session_id == session_id)
            .order_by(MemoryRecord.timestamp)
        )
        async with get_db_session() as session:
            result = await session.execute(stmt)
            records = result.scalars().all()

        return [
            MemoryEntry(
                id=r.id,
                agent_id=r.agent_id,
                session_id=r.session_id,
                user_id=r.user_id or "",
                role=r.role,
                content=r.content,
                metadata=r.entry_metadata or {},
                timestamp=(
                    r.timestamp.replace(tzinfo=timezone.utc)
                    if r.timestamp.tzinfo is None
                    else r.timestamp
                ),
            )
            for r in records
        ]


def latest_entry(entries: list[MemoryEntry], role: str) -> MemoryEntry | None:
    """Get the most recent entry with the given role."""
    matching = [e for e in entries if e.role == role]
    if not matching:
        return None
    # max() keeps the first maximum, so walk newest-inserted first for equal timestamps
    return max(reversed(matching), key=lambda e: e.timestamp)
