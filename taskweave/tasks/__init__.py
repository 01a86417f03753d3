"""Task model, dependency resolution and wave scheduling."""

from taskweave.tasks.models import (
    RetryPolicy,
    TaskConfig,
    TaskResult,
    TaskSnapshot,
    TaskStatus,
    parse_task_config,
)
from taskweave.tasks.task import Task
from taskweave.tasks.dependency_resolver import DependencyResolver
from taskweave.tasks.scheduler import WaveExecutionResult, WaveScheduler

__all__ = [
    "DependencyResolver",
    "RetryPolicy",
    "Task",
    "TaskConfig",
    "TaskResult",
    "TaskSnapshot",
    "TaskStatus",
    "WaveExecutionResult",
    "WaveScheduler",
    "parse_task_config",
]
