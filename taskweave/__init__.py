"""
taskweave - dependency-graph task scheduler.

Register tasks with a TaskManager, then run them in concurrency-bounded
waves that respect their dependencies.
"""

from taskweave.capabilities import (
    Capability,
    CapabilityCatalog,
    FunctionCapability,
    ParamSpec,
    default_catalog,
)
from taskweave.core.exceptions import (
    CapabilityExecutionError,
    TaskAlreadyRunningError,
    TaskCancelledError,
    TaskNotFoundError,
    TaskweaveError,
    UnresolvedDependencyError,
)
from taskweave.core.manager import TaskManager
from taskweave.tasks import (
    DependencyResolver,
    RetryPolicy,
    Task,
    TaskConfig,
    TaskResult,
    TaskStatus,
    WaveScheduler,
    parse_task_config,
)

__version__ = "0.1.0"

__all__ = [
    "Capability",
    "CapabilityCatalog",
    "CapabilityExecutionError",
    "DependencyResolver",
    "FunctionCapability",
    "ParamSpec",
    "RetryPolicy",
    "Task",
    "TaskAlreadyRunningError",
    "TaskCancelledError",
    "TaskConfig",
    "TaskManager",
    "TaskNotFoundError",
    "TaskResult",
    "TaskStatus",
    "TaskweaveError",
    "UnresolvedDependencyError",
    "WaveScheduler",
    "__version__",
    "parse_task_config",
]
