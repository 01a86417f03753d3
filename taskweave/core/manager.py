"""Task manager - the public entry point of taskweave.

This module provides the registry of tasks and the ``run`` entry point that
hands a run-set to the WaveScheduler. Failures are returned as data: ``run``
always resolves with one result per task.
"""

import asyncio
from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger

from taskweave.capabilities.base import (
    CapabilityCatalog,
    CapabilitySelector,
    ReasoningModel,
)
from taskweave.capabilities.intent import IntentRecognizer
from taskweave.core.config import Settings, get_settings
from taskweave.core.exceptions import TaskNotFoundError
from taskweave.knowledge.memory import Memory
from taskweave.knowledge.store import TaskStore
from taskweave.tasks.dependency_resolver import DependencyResolver
from taskweave.tasks.models import RetryPolicy, TaskConfig, TaskResult, parse_task_config
from taskweave.tasks.scheduler import ExecutionCallback, WaveExecutionResult, WaveScheduler
from taskweave.tasks.task import Task


def retry_policy_from_settings(settings: Settings) -> RetryPolicy:
    """Build the retry policy configured through the environment."""
    max_attempts = None
    if settings.taskweave_max_retries is not None:
        max_attempts = settings.taskweave_max_retries + 1
    return RetryPolicy(max_attempts=max_attempts, backoff=settings.taskweave_retry_backoff)


class TaskManager:
    """
    Registry and run entry point for tasks.

    Tasks stored by a previous process are loaded from the store in the
    background; ``run`` and ``execute_task`` wait for that load first.

    Example:
        >>> manager = TaskManager(catalog=default_catalog())
        >>> a = await manager.create_task({"name": "a", "plugins": ["echo"], "input": "x"})
        >>> b = await manager.create_task({"name": "b", "plugins": ["echo"], "dependencies": [a.id]})
        >>> results = await manager.run()
        >>> results[b.id].success
        True
    """

    def __init__(
        self,
        catalog: CapabilityCatalog | None = None,
        store: TaskStore | None = None,
        memory: Memory | None = None,
        model: ReasoningModel | None = None,
        selector: CapabilitySelector | None = None,
        concurrency: int | None = None,
        agent_id: str | None = None,
        session_id: str | None = None,
        retry_policy: RetryPolicy | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the task manager.

        Args:
            catalog: Capabilities available to tasks.
            store: Durable task store (None disables persistence).
            memory: Memory backend for audit entries and session context.
            model: Default reasoning model for tasks without their own.
            selector: Capability selector (default IntentRecognizer).
            concurrency: Maximum tasks per wave (default from settings).
            agent_id: Default agent for new tasks, and load filter.
            session_id: Default session for new tasks, and load filter.
            retry_policy: Retry policy (default from settings).
            settings: Optional settings override. Uses default if not provided.
        """
        self.settings = settings or get_settings()
        self.catalog = catalog if catalog is not None else CapabilityCatalog()
        self.store = store
        self.memory = memory
        self.model = model
        self.selector = selector or IntentRecognizer()
        self.concurrency = (
            concurrency if concurrency is not None else self.settings.taskweave_concurrency
        )
        if self.concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {self.concurrency}")
        self.retry_policy = retry_policy or retry_policy_from_settings(self.settings)
        self.agent_id = agent_id
        self.session_id = session_id

        self._tasks: dict[str, Task] = {}
        self._callbacks: list[ExecutionCallback] = []
        self.last_waves: list[WaveExecutionResult] = []

        self._tasks_loaded = store is None
        self._loading: asyncio.Future | None = None
        if store is not None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            if loop is not None:
                self._loading = loop.create_task(self._load_tasks())

        logger.info("Task manager initialized")

    # =========================================================================
    # LOADING
    # =========================================================================

    async def _load_tasks(self) -> None:
        """Restore stored tasks without overriding tasks registered meanwhile."""
        try:
            records = await self.store.load(agent_id=self.agent_id, session_id=self.session_id)
            logger.info(f"Loading {len(records)} tasks from database")

            for record in records:
                if record.id in self._tasks:
                    continue
                try:
                    task = Task.from_snapshot(record, **self._collaborators())
                except Exception as e:
                    logger.error(f"Error loading task {record.id}: {e}")
                    continue
                self._tasks[task.id] = task
                logger.debug(f"Loaded task '{task.name}' ({task.id}) from database")

            logger.info(f"Task registry holds {len(self._tasks)} tasks after load")
        except Exception as e:
            logger.error(f"Error loading tasks from database: {e}")
        finally:
            self._tasks_loaded = True

    async def wait_for_tasks_loaded(self) -> None:
        """Wait until stored tasks have been loaded."""
        if self._tasks_loaded:
            return
        if self._loading is None:
            self._loading = asyncio.ensure_future(self._load_tasks())
        await self._loading

    @property
    def tasks_loaded(self) -> bool:
        return self._tasks_loaded

    # =========================================================================
    # REGISTRY
    # =========================================================================

    def _collaborators(self, model: ReasoningModel | None = None) -> dict[str, Any]:
        return {
            "catalog": self.catalog,
            "memory": self.memory,
            "model": model or self.model,
            "store": self.store,
            "selector": self.selector,
        }

    def add_existing_task(
        self,
        task: Task | TaskConfig | Mapping[str, Any],
        model: ReasoningModel | None = None,
    ) -> Task:
        """
        Register a task, creating it from a config when needed.

        Re-adding a known ID returns the registered instance. Manager
        defaults (agent, session, model, memory) fill whatever the task
        leaves unset. The durable record is written in the background.

        Args:
            task: Task instance, TaskConfig or config mapping.
            model: Reasoning model for this task.

        Returns:
            The registered task.
        """
        if isinstance(task, Task):
            existing = self._tasks.get(task.id)
            if existing is not None:
                logger.debug(f"Task {task.id} already exists in manager, returning it")
                return existing
            self._apply_defaults(task, model)
        else:
            config = parse_task_config(task)
            if isinstance(task, TaskConfig):
                config = config.model_copy()
            if config.id and config.id in self._tasks:
                logger.debug(f"Task {config.id} already exists in manager, returning it")
                return self._tasks[config.id]

            config.agent_id = config.agent_id or self.agent_id
            config.session_id = config.session_id or self.session_id
            task = Task(config, **self._collaborators(model))

        self._tasks[task.id] = task
        task.schedule_save()

        logger.debug(f"Task '{task.name}' ({task.id}) added to manager")
        return task

    def _apply_defaults(self, task: Task, model: ReasoningModel | None) -> None:
        if task.agent_id is None and self.agent_id:
            task.agent_id = task.config.agent_id = self.agent_id
        if task.session_id is None and self.session_id:
            task.session_id = task.config.session_id = self.session_id
            task.context_id = task.context_id or self.session_id
        if task.model is None:
            task.set_model(model or self.model)
        if task.memory is None:
            task.set_memory(self.memory)
        if task.catalog is None:
            task.catalog = self.catalog
        if task.store is None:
            task.store = self.store
        if task.selector is None:
            task.selector = self.selector

    async def create_task(
        self,
        config: TaskConfig | Mapping[str, Any],
        model: ReasoningModel | None = None,
    ) -> Task:
        """
        Create and register a task, waiting for its durable record.

        Args:
            config: TaskConfig or config mapping.
            model: Reasoning model for this task.

        Returns:
            The registered task.
        """
        task = self.add_existing_task(config, model)
        await task.wait_for_save()
        await task.save()
        logger.info(f"Created new task: '{task.name}' ({task.id})")
        return task

    def get_task(self, task_id: str) -> Task | None:
        """Get a task by ID."""
        return self._tasks.get(task_id)

    def get_all_tasks(self) -> list[Task]:
        """Get all registered tasks in registration order."""
        return list(self._tasks.values())

    def get_tasks_by_agent(self, agent_id: str) -> list[Task]:
        """Get tasks owned by an agent."""
        return [t for t in self._tasks.values() if t.agent_id == agent_id]

    def get_tasks_by_session(self, session_id: str) -> list[Task]:
        """Get tasks in a session."""
        return [t for t in self._tasks.values() if t.session_id == session_id]

    def set_memory(self, memory: Memory | None) -> None:
        """Set the memory backend for the manager and every registered task."""
        self.memory = memory
        for task in self._tasks.values():
            task.set_memory(memory)
        logger.debug("Memory instance set for task manager")

    def set_model(self, model: ReasoningModel | None) -> None:
        """Set the default model, also for registered tasks that have none."""
        self.model = model
        for task in self._tasks.values():
            if task.model is None:
                task.set_model(model)

    def set_agent_id(self, agent_id: str | None) -> None:
        """Set the default agent for tasks registered from now on."""
        self.agent_id = agent_id
        logger.debug(f"Task manager agent ID set to {agent_id}")

    def set_session_id(self, session_id: str | None) -> None:
        """Set the default session for tasks registered from now on."""
        self.session_id = session_id
        logger.debug(f"Task manager session ID set to {session_id}")

    def add_callback(self, callback: ExecutionCallback) -> None:
        """Add a callback invoked as each task of a run finishes."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: ExecutionCallback) -> None:
        """Remove a callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _select(self, task_ids: Iterable[str] | None) -> list[Task]:
        if not task_ids:
            return list(self._tasks.values())

        selected: list[Task] = []
        seen: set[str] = set()
        for task_id in task_ids:
            task = self._tasks.get(task_id)
            if task is None:
                logger.warning(f"Task {task_id} not found, dropping it from the run")
                continue
            if task_id not in seen:
                seen.add(task_id)
                selected.append(task)
        return selected

    async def run(self, task_ids: Iterable[str] | None = None) -> dict[str, TaskResult]:
        """
        Run all tasks, or the named subset.

        Args:
            task_ids: Tasks to run. Unknown IDs are dropped. Runs every
                registered task when omitted or empty.

        Returns:
            One TaskResult per task in the run-set.
        """
        await self.wait_for_tasks_loaded()

        tasks = self._select(task_ids)
        logger.info(f"Running {len(tasks)} tasks")

        # The run works on a snapshot; tasks added meanwhile wait for the next run
        resolver = DependencyResolver(tasks, dict(self._tasks))
        scheduler = WaveScheduler(self.concurrency, self.retry_policy)
        for callback in self._callbacks:
            scheduler.add_callback(callback)

        results = await scheduler.run(tasks, resolver)
        self.last_waves = scheduler.waves
        return results

    async def execute_task(self, task_id: str, input: Any = None) -> TaskResult:
        """
        Run a single task directly, ignoring its dependencies.

        Raises:
            TaskNotFoundError: If no task has this ID.
        """
        await self.wait_for_tasks_loaded()

        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)

        logger.info(f"Executing task: '{task.name}' ({task_id})")
        return await task.execute(input)

    def plan(self, task_ids: Iterable[str] | None = None) -> dict[str, Any]:
        """
        Describe how a run would proceed without executing anything.

        Returns:
            Dictionary with the predicted ``waves``, detected ``cycles`` and
            the ``unresolved`` tasks that would never become ready.
        """
        tasks = self._select(task_ids)
        resolver = DependencyResolver(tasks, dict(self._tasks))
        waves = resolver.plan_waves(self.concurrency)
        planned = {task_id for wave in waves for task_id in wave}
        return {
            "waves": waves,
            "cycles": resolver.detect_cycles() or [],
            "unresolved": [t.id for t in tasks if t.id not in planned],
        }

    # =========================================================================
    # CANCELLATION
    # =========================================================================

    def cancel_task(self, task_id: str) -> bool:
        """Cancel a task. Returns False when the task is unknown."""
        task = self._tasks.get(task_id)
        if task is None:
            logger.warning(f"Task {task_id} not found for cancellation")
            return False
        task.cancel()
        logger.info(f"Task {task_id} cancelled")
        return True

    def cancel_all(self) -> int:
        """Cancel every registered task. Returns the number of tasks."""
        for task in self._tasks.values():
            task.cancel()
        logger.info(f"Cancelled all {len(self._tasks)} tasks")
        return len(self._tasks)

    async def flush(self) -> None:
        """Wait for every background save to finish."""
        await asyncio.gather(*(t.wait_for_save() for t in self._tasks.values()))

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks
