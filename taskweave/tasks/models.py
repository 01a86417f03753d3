"""Pydantic models for task scheduling.

This module defines the data structures shared by the scheduler: task
status, task configuration, execution results and the retry policy used
by the wave driver. It also hosts the config-parsing adapter that accepts
the legacy ``dependsOn`` spelling at the boundary.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator

from taskweave.core.exceptions import restore_error

DEPENDENCY_OUTPUTS_KEY = "_dependencyOutputs"
CONTEXT_KEY = "_context"


# =============================================================================
# ENUMS
# =============================================================================


class TaskStatus(str, Enum):
    """Execution status of a task."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if the status ends an execution attempt."""
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


# =============================================================================
# TASK CONFIGURATION
# =============================================================================


class TaskConfig(BaseModel):
    """Declarative configuration of a schedulable task.

    Example:
        >>> config = TaskConfig(
        ...     name="summarise",
        ...     description="Summarise the fetched article",
        ...     plugins=["fetch", "summarise"],
        ...     dependencies=["fetch-task"],
        ... )
    """

    model_config = ConfigDict(frozen=False)

    id: str | None = Field(
        default=None,
        description="Unique task identifier (generated when absent)",
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Task name",
    )
    description: str = Field(
        default="",
        description="What the task should accomplish",
    )
    plugins: list[str] = Field(
        default_factory=list,
        description="Names of capabilities this task pipes its input through",
    )
    input: Any = Field(
        default=None,
        description="Opaque input payload",
    )
    dependencies: list[str] = Field(
        default_factory=list,
        description="Task IDs whose completion gates this task",
    )
    max_retries: int = Field(
        default=0,
        ge=0,
        description="Additional attempts after a failed execution",
    )
    agent_id: str | None = Field(
        default=None,
        description="Agent that owns this task",
    )
    session_id: str | None = Field(
        default=None,
        description="Session this task belongs to",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional metadata",
    )
    model: Any = Field(
        default=None,
        exclude=True,
        description="Reasoning model used for tool selection and model-driven execution",
    )

    @field_validator("dependencies")
    @classmethod
    def dedupe_dependencies(cls, v: list[str]) -> list[str]:
        """Keep dependencies as an ordered set."""
        return list(dict.fromkeys(v))


# Config keys accepted at the boundary, mapped to their canonical field
_CONFIG_ALIASES: dict[str, str] = {
    "maxRetries": "max_retries",
    "agentId": "agent_id",
    "sessionId": "session_id",
}

_DEPENDENCY_KEYS = ("dependencies", "dependsOn", "depends_on")


def parse_task_config(raw: TaskConfig | Mapping[str, Any]) -> TaskConfig:
    """
    Parse a task configuration from a loosely-typed mapping.

    This is the only place where the legacy ``dependsOn`` / ``depends_on``
    spellings and camelCase keys are understood. Both dependency lists are
    merged in order with duplicates dropped. Non-string plugin entries are
    filtered out with a warning.

    Args:
        raw: TaskConfig instance or mapping (e.g. decoded JSON).

    Returns:
        Canonical TaskConfig.

    Example:
        >>> config = parse_task_config({"name": "b", "dependsOn": ["a"]})
        >>> config.dependencies
        ['a']
    """
    if isinstance(raw, TaskConfig):
        return raw

    data: dict[str, Any] = {}
    dependencies: list[str] = []

    for key, value in raw.items():
        if key in _DEPENDENCY_KEYS:
            dependencies.extend(value or [])
            continue
        data[_CONFIG_ALIASES.get(key, key)] = value

    plugins = data.get("plugins")
    if plugins:
        valid = [p for p in plugins if isinstance(p, str)]
        if len(valid) != len(plugins):
            logger.warning(
                f"Filtered out {len(plugins) - len(valid)} invalid plugins from task config"
            )
        data["plugins"] = valid

    data["dependencies"] = dependencies
    return TaskConfig(**data)


# =============================================================================
# RESULTS
# =============================================================================


@dataclass
class TaskResult:
    """Outcome of a task execution attempt."""

    success: bool
    output: Any = None
    error: BaseException | None = None
    context: dict[str, Any] | None = None

    @classmethod
    def failure(cls, error: BaseException) -> "TaskResult":
        """Create a failed result carrying the given error."""
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "success": self.success,
            "output": self.output,
            "error": (
                {"type": type(self.error).__name__, "message": str(self.error)}
                if self.error is not None
                else None
            ),
            "context": self.context,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TaskResult":
        """Rebuild a result persisted with ``to_dict``."""
        error = data.get("error")
        restored: BaseException | None = None
        if isinstance(error, Mapping):
            restored = restore_error(error.get("type"), str(error.get("message", "")))
        elif error:
            restored = restore_error(None, str(error))

        return cls(
            success=bool(data.get("success", False)),
            output=data.get("output"),
            error=restored,
            context=data.get("context"),
        )


# =============================================================================
# RETRY POLICY
# =============================================================================


class RetryPolicy(BaseModel):
    """Retry behaviour applied by the wave driver.

    When ``max_attempts`` is unset each task gets ``max_retries + 1``
    attempts from its own configuration.

    Example:
        >>> policy = RetryPolicy(backoff=0.5)
        >>> policy.delay_for(2)
        1.0
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int | None = Field(
        default=None,
        ge=1,
        description="Attempts per task, overriding task max_retries",
    )
    backoff: float = Field(
        default=0.0,
        ge=0.0,
        description="Delay before the first retry in seconds",
    )
    backoff_factor: float = Field(
        default=2.0,
        ge=1.0,
        description="Multiplier applied to the delay after each retry",
    )
    max_backoff: float = Field(
        default=30.0,
        ge=0.0,
        description="Upper bound on a single delay",
    )

    def attempts_for(self, max_retries: int) -> int:
        """Total attempts allowed for a task with the given max_retries."""
        if self.max_attempts is not None:
            return self.max_attempts
        return max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        if self.backoff <= 0:
            return 0.0
        return min(self.backoff * self.backoff_factor ** (attempt - 1), self.max_backoff)


# =============================================================================
# INPUT HELPERS
# =============================================================================


def as_input_dict(value: Any) -> dict[str, Any]:
    """
    Coerce a task input into a dictionary that can be enriched.

    ``None`` becomes an empty dict, mappings are copied and any other value
    is wrapped under an ``input`` key.
    """
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return dict(value)
    return {"input": value}


def has_output(value: Any) -> bool:
    """Check whether an output carries something worth propagating."""
    if value is None:
        return False
    if isinstance(value, (str, bytes, Mapping, list, tuple, set)):
        return len(value) > 0
    return True


@dataclass
class TaskSnapshot:
    """Serializable view of a task used for persistence and APIs."""

    id: str
    name: str
    description: str
    status: TaskStatus
    retries: int
    plugins: list[str] = field(default_factory=list)
    input: Any = None
    dependencies: list[str] = field(default_factory=list)
    result: dict[str, Any] | None = None
    created_at: Any = None
    started_at: Any = None
    completed_at: Any = None
    agent_id: str | None = None
    session_id: str | None = None
    context_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "retries": self.retries,
            "plugins": self.plugins,
            "input": self.input,
            "dependencies": self.dependencies,
            "result": self.result,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "agent_id": self.agent_id,
            "session_id": self.session_id,
            "context_id": self.context_id,
        }
