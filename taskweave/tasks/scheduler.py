"""
Wave scheduler for taskweave.

This module drives a run: it pulls ready tasks from a FIFO queue, executes
up to ``concurrency_limit`` of them together as a wave, waits for the whole
wave, then queues the dependents the wave unblocked.

The wave is a barrier, not a sliding window: a slow task delays the next
wave even when slots are free. This keeps wave membership predictable.
"""

import asyncio
from collections import deque
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from taskweave.core.exceptions import UnresolvedDependencyError
from taskweave.tasks.dependency_resolver import DependencyResolver
from taskweave.tasks.models import RetryPolicy, TaskResult
from taskweave.tasks.task import Task

# =============================================================================
# RESULT MODELS
# =============================================================================


class WaveExecutionResult:
    """Result of executing a full wave of tasks."""

    def __init__(
        self,
        wave_number: int,
        results: dict[str, TaskResult],
        started_at: datetime | None = None,
    ):
        self.wave_number = wave_number
        self.results = results
        self.started_at = started_at or datetime.now(timezone.utc)
        self.completed_at = datetime.now(timezone.utc)

    @property
    def task_ids(self) -> list[str]:
        """Get IDs of the tasks in this wave."""
        return list(self.results)

    @property
    def completed_tasks(self) -> list[str]:
        """Get IDs of successfully completed tasks."""
        return [task_id for task_id, r in self.results.items() if r.success]

    @property
    def failed_tasks(self) -> list[str]:
        """Get IDs of failed tasks."""
        return [task_id for task_id, r in self.results.items() if not r.success]

    @property
    def success_rate(self) -> float:
        """Calculate success rate."""
        if not self.results:
            return 0.0
        return len(self.completed_tasks) / len(self.results)

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "wave_number": self.wave_number,
            "task_ids": self.task_ids,
            "completed_tasks": self.completed_tasks,
            "failed_tasks": self.failed_tasks,
            "success_rate": self.success_rate,
            "duration_seconds": self.duration_seconds,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
        }


# =============================================================================
# EXECUTION CALLBACK TYPE
# =============================================================================


ExecutionCallback = Callable[[str, TaskResult], None]


# =============================================================================
# WAVE SCHEDULER
# =============================================================================


class WaveScheduler:
    """
    Execute tasks in concurrency-bounded waves.

    Attributes:
        concurrency_limit: Maximum number of tasks in one wave.
        retry_policy: Retry behaviour for failed attempts.
        waves: Waves executed by the last run.

    Example:
        >>> scheduler = WaveScheduler(concurrency_limit=2)
        >>> results = await scheduler.run([a, b, c])
        >>> [w.task_ids for w in scheduler.waves]
        [['a'], ['b'], ['c']]
    """

    def __init__(
        self,
        concurrency_limit: int = 5,
        retry_policy: RetryPolicy | None = None,
    ):
        """
        Initialize the scheduler.

        Args:
            concurrency_limit: Maximum concurrent tasks (default 5).
            retry_policy: Retry policy (default: each task's max_retries).

        Raises:
            ValueError: If concurrency_limit is below 1.
        """
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be at least 1, got {concurrency_limit}")

        self.concurrency_limit = concurrency_limit
        self.retry_policy = retry_policy or RetryPolicy()
        self.waves: list[WaveExecutionResult] = []
        self.peak_concurrency = 0
        self._active = 0
        self._callbacks: list[ExecutionCallback] = []

    def add_callback(self, callback: ExecutionCallback) -> None:
        """Add a callback for task completion events."""
        self._callbacks.append(callback)

    def remove_callback(self, callback: ExecutionCallback) -> None:
        """Remove a callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _emit_callback(self, task_id: str, result: TaskResult) -> None:
        """Emit callback to all registered listeners."""
        for callback in self._callbacks:
            try:
                callback(task_id, result)
            except Exception as e:
                logger.warning(f"Callback error: {e}")

    async def run(
        self,
        tasks: list[Task],
        resolver: DependencyResolver | None = None,
    ) -> dict[str, TaskResult]:
        """
        Run tasks to completion.

        Args:
            tasks: The run-set.
            resolver: Resolver for the run-set (built from ``tasks`` if omitted).

        Returns:
            Exactly one TaskResult per run-set task, including tasks that
            never became ready.
        """
        resolver = resolver or DependencyResolver(tasks)
        self.waves = []
        self.peak_concurrency = 0
        results: dict[str, TaskResult] = {}

        ready: deque[Task] = deque(resolver.initial_ready())
        logger.info(f"Running {len(tasks)} tasks with concurrency {self.concurrency_limit}")

        while ready:
            wave_number = len(self.waves)
            batch = [ready.popleft() for _ in range(min(self.concurrency_limit, len(ready)))]
            started_at = datetime.now(timezone.utc)
            logger.info(f"Executing wave {wave_number} with {len(batch)} tasks")

            outcomes = await asyncio.gather(
                *(self._run_task(task, resolver) for task in batch),
                return_exceptions=True,
            )

            wave_results: dict[str, TaskResult] = {}
            for task, outcome in zip(batch, outcomes, strict=True):
                if isinstance(outcome, Exception):
                    logger.error(f"Task {task.id} raised during execution: {outcome}")
                    outcome = TaskResult.failure(outcome)
                elif isinstance(outcome, BaseException):
                    raise outcome
                wave_results[task.id] = outcome
                results[task.id] = outcome
                self._emit_callback(task.id, outcome)

            wave = WaveExecutionResult(wave_number, wave_results, started_at)
            self.waves.append(wave)
            logger.info(
                f"Wave {wave_number} complete: "
                f"{len(wave.completed_tasks)} succeeded, "
                f"{len(wave.failed_tasks)} failed"
            )

            for task in batch:
                ready.extend(resolver.mark_done(task.id, results[task.id]))

        for task in resolver.unresolved():
            error = UnresolvedDependencyError(task.id, resolver.pending_dependencies(task.id))
            results[task.id] = await task.mark_unresolved(error)
            self._emit_callback(task.id, results[task.id])

        logger.info(
            f"Run complete: {sum(1 for r in results.values() if r.success)} of "
            f"{len(results)} tasks succeeded in {len(self.waves)} waves"
        )
        return {task.id: results[task.id] for task in tasks}

    async def _run_task(self, task: Task, resolver: DependencyResolver) -> TaskResult:
        """Execute one task, retrying failed attempts per the retry policy."""
        task_input = resolver.dependency_input(task)
        attempts = self.retry_policy.attempts_for(task.config.max_retries)
        attempt = 1

        self._active += 1
        self.peak_concurrency = max(self.peak_concurrency, self._active)
        try:
            while True:
                result = await self._attempt(task, task_input)
                if result.success or task.is_cancelled or attempt >= attempts:
                    return result

                delay = self.retry_policy.delay_for(attempt)
                logger.info(f"Retrying task {task.id} (attempt {attempt + 1}/{attempts})")
                if delay > 0:
                    await asyncio.sleep(delay)
                if task.is_cancelled:
                    return result

                await task.prepare_retry()
                attempt += 1
        finally:
            self._active -= 1

    async def _attempt(self, task: Task, task_input: Any) -> TaskResult:
        """Run one attempt, or join the attempt already in flight for this task."""
        if task.is_running:
            logger.info(f"Task {task.id} is already running, waiting for its attempt to finish")
            result = await task.wait_until_idle()
            if result is not None:
                return result
        return await task.execute(task_input)
