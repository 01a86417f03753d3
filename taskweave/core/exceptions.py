"""Exception hierarchy for task scheduling."""


class TaskweaveError(Exception):
    """Base exception for taskweave errors."""

    pass


class TaskCancelledError(TaskweaveError):
    """Task was cancelled before or during execution."""

    def __init__(self, message: str = "Task was cancelled"):
        super().__init__(message)


class UnresolvedDependencyError(TaskweaveError):
    """Task never became ready because its dependencies never finished."""

    task_id: str = ""
    pending: list[str]

    def __init__(self, task_id: str = "", pending: list[str] | None = None):
        self.task_id = task_id
        self.pending = list(pending or [])
        message = "Task not executed due to unresolved dependencies"
        if self.pending:
            message = f"{message}: {', '.join(self.pending)}"
        super().__init__(message)


class CapabilityExecutionError(TaskweaveError):
    """A capability raised while a task was piping input through it."""

    capability: str = ""

    def __init__(self, capability: str, cause: BaseException | str):
        self.capability = capability
        super().__init__(f"Capability '{capability}' failed: {cause}")


class TaskNotFoundError(TaskweaveError):
    """No task registered under the given ID."""

    task_id: str = ""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task with ID {task_id} not found")


class TaskAlreadyRunningError(TaskweaveError):
    """A second execution was requested while the task is in flight."""

    task_id: str = ""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task {task_id} is already running")


ERROR_TYPES: dict[str, type[TaskweaveError]] = {
    cls.__name__: cls
    for cls in (
        TaskweaveError,
        TaskCancelledError,
        UnresolvedDependencyError,
        CapabilityExecutionError,
        TaskNotFoundError,
        TaskAlreadyRunningError,
    )
}


def restore_error(error_type: str | None, message: str) -> TaskweaveError:
    """
    Rebuild an exception from its persisted type name and message.

    Unknown types come back as a plain TaskweaveError carrying the message.
    """
    cls = ERROR_TYPES.get(error_type or "", TaskweaveError)
    # Bypass subclass __init__ signatures; only the message survives persistence
    error = cls.__new__(cls)
    Exception.__init__(error, message)
    if isinstance(error, UnresolvedDependencyError):
        error.pending = []
    return error
