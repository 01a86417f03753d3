"""Persistence layer: database plumbing, task records and memory."""

from taskweave.knowledge.database import (
    close_db,
    drop_db,
    get_db_session,
    get_engine,
    health_check,
    init_db,
)
from taskweave.knowledge.memory import (
    TASK_CONTEXT,
    TASK_EVENT,
    TASK_RESULT,
    TASK_TOOL,
    DatabaseMemory,
    InMemoryMemory,
    Memory,
    MemoryEntry,
)
from taskweave.knowledge.models import Base, MemoryRecord, TaskRecord
from taskweave.knowledge.store import TaskStore

__all__ = [
    "Base",
    "DatabaseMemory",
    "InMemoryMemory",
    "Memory",
    "MemoryEntry",
    "MemoryRecord",
    "TASK_CONTEXT",
    "TASK_EVENT",
    "TASK_RESULT",
    "TASK_TOOL",
    "TaskRecord",
    "TaskStore",
    "close_db",
    "drop_db",
    "get_db_session",
    "get_engine",
    "health_check",
    "init_db",
]
