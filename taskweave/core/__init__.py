"""Core configuration, logging and errors."""

from taskweave.core.config import Settings, clear_settings_cache, get_settings
from taskweave.core.exceptions import (
    CapabilityExecutionError,
    TaskAlreadyRunningError,
    TaskCancelledError,
    TaskNotFoundError,
    TaskweaveError,
    UnresolvedDependencyError,
)
from taskweave.core.logs import configure_logging

__all__ = [
    "CapabilityExecutionError",
    "Settings",
    "TaskAlreadyRunningError",
    "TaskCancelledError",
    "TaskNotFoundError",
    "TaskweaveError",
    "UnresolvedDependencyError",
    "clear_settings_cache",
    "configure_logging",
    "get_settings",
]
