"""Dependency resolver - builds the task graph and tracks readiness.

This module computes which tasks of a run are ready, which dependents are
unblocked as tasks finish, and which tasks can never run. A failed
dependency does not block its dependents; only dependencies that never
reach a terminal status do.
"""

from collections import defaultdict
from collections.abc import Mapping

from loguru import logger

from taskweave.tasks.models import (
    DEPENDENCY_OUTPUTS_KEY,
    TaskResult,
    as_input_dict,
    has_output,
)
from taskweave.tasks.task import Task


class DependencyResolver:
    """
    Resolve task dependencies for one run.

    Dependencies are classified against ``known_tasks`` (everything
    registered with the manager):

    - inside the run-set: the dependency must finish during this run;
    - known but outside the run-set: satisfied if it was already terminal
      when the run started, otherwise it blocks forever;
    - unknown: logged and ignored.

    Example:
        >>> resolver = DependencyResolver([a, b, c])
        >>> [t.id for t in resolver.initial_ready()]
        ['a']
        >>> [t.id for t in resolver.mark_done("a", result)]
        ['b']
    """

    def __init__(
        self,
        tasks: list[Task],
        known_tasks: Mapping[str, Task] | None = None,
    ) -> None:
        """
        Initialize the resolver.

        Args:
            tasks: The run-set, in registration order.
            known_tasks: Every registered task by ID (defaults to the run-set).
        """
        self._tasks: dict[str, Task] = {t.id: t for t in tasks}
        self._known: Mapping[str, Task] = known_tasks if known_tasks is not None else self._tasks

        # task_id -> ordered known dependency IDs
        self.dependencies: dict[str, list[str]] = {}
        # dependency_id -> ordered dependents within the run-set
        self.dependents: dict[str, list[str]] = defaultdict(list)

        self._results: dict[str, TaskResult] = {}
        self._done: set[str] = set()
        self._queued: set[str] = set()

        self._build()

    def _build(self) -> None:
        logger.debug(f"Building dependency graph for {len(self._tasks)} tasks")

        for task_id, task in self._tasks.items():
            deps: list[str] = []
            for dep_id in task.dependencies:
                if dep_id == task_id:
                    # A self-dependency can never be satisfied
                    deps.append(dep_id)
                    continue
                dep = self._known.get(dep_id)
                if dep is None:
                    logger.warning(f"Task {task_id} has unknown dependency {dep_id}, ignoring it")
                    continue

                deps.append(dep_id)
                if dep_id not in self._tasks and dep.is_terminal:
                    # Finished before this run; its result counts as-is
                    self._done.add(dep_id)
                    if dep.result is not None:
                        self._results[dep_id] = dep.result

            self.dependencies[task_id] = deps
            for dep_id in deps:
                self.dependents[dep_id].append(task_id)

        cycles = self.detect_cycles()
        if cycles:
            for cycle in cycles:
                logger.warning(f"Circular dependency detected: {' -> '.join(cycle)}")

    # =========================================================================
    # READINESS
    # =========================================================================

    def is_ready(self, task_id: str) -> bool:
        """Check if every known dependency of a task has finished."""
        return all(d in self._done for d in self.dependencies.get(task_id, []))

    def initial_ready(self) -> list[Task]:
        """Get the tasks that can run immediately, in run-set order."""
        ready = [t for t_id, t in self._tasks.items() if self.is_ready(t_id)]
        self._queued.update(t.id for t in ready)
        logger.debug(f"{len(ready)} of {len(self._tasks)} tasks ready initially")
        return ready

    def mark_done(self, task_id: str, result: TaskResult | None = None) -> list[Task]:
        """
        Record that a task reached a terminal status.

        Args:
            task_id: Finished task.
            result: Its final result (success or failure).

        Returns:
            Dependents that became ready, each returned exactly once.
        """
        self._done.add(task_id)
        if result is not None:
            self._results[task_id] = result

        newly_ready: list[Task] = []
        for dependent_id in self.dependents.get(task_id, []):
            if dependent_id in self._queued or dependent_id in self._done:
                continue
            if self.is_ready(dependent_id):
                self._queued.add(dependent_id)
                newly_ready.append(self._tasks[dependent_id])

        return newly_ready

    def unresolved(self) -> list[Task]:
        """Get run-set tasks that never finished during the run."""
        return [t for t_id, t in self._tasks.items() if t_id not in self._done]

    def pending_dependencies(self, task_id: str) -> list[str]:
        """Get the dependencies of a task that have not finished."""
        return [d for d in self.dependencies.get(task_id, []) if d not in self._done]

    # =========================================================================
    # OUTPUT PROPAGATION
    # =========================================================================

    def dependency_outputs(self, task_id: str) -> dict[str, object]:
        """Collect successful, non-empty outputs of a task's dependencies."""
        outputs: dict[str, object] = {}
        for dep_id in self.dependencies.get(task_id, []):
            result = self._results.get(dep_id)
            if result is not None and result.success and has_output(result.output):
                outputs[dep_id] = result.output
        return outputs

    def dependency_input(self, task: Task) -> dict[str, object] | None:
        """
        Build the execution input of a task from its dependencies.

        Returns:
            ``{**config.input, "_dependencyOutputs": {...}}`` when at least
            one dependency contributed output, otherwise None.
        """
        outputs = self.dependency_outputs(task.id)
        if not outputs:
            return None
        return {**as_input_dict(task.config.input), DEPENDENCY_OUTPUTS_KEY: outputs}

    # =========================================================================
    # CYCLE DETECTION
    # =========================================================================

    def detect_cycles(
        self,
        graph: dict[str, list[str]] | None = None,
    ) -> list[list[str]] | None:
        """
        Detect cycles in the dependency graph using DFS.

        Args:
            graph: Dependency graph (task_id -> [dependency_ids]).
                Defaults to the run's graph.

        Returns:
            List of cycle paths if found, None otherwise.

        Example:
            >>> cycles = resolver.detect_cycles({"a": ["b"], "b": ["a"]})
            >>> cycles[0]
            ['a', 'b', 'a']
        """
        graph = self.dependencies if graph is None else graph
        WHITE, GRAY, BLACK = 0, 1, 2
        colors: dict[str, int] = {node: WHITE for node in graph}
        cycles: list[list[str]] = []

        def dfs(node: str, path: list[str]) -> None:
            colors[node] = GRAY
            path.append(node)

            for neighbor in graph.get(node, []):
                if neighbor not in colors:
                    continue  # Outside the graph
                if colors[neighbor] == GRAY:
                    cycle_start = path.index(neighbor)
                    cycles.append(path[cycle_start:] + [neighbor])
                elif colors[neighbor] == WHITE:
                    dfs(neighbor, path)

            path.pop()
            colors[node] = BLACK

        for node in graph:
            if colors[node] == WHITE:
                dfs(node, [])

        return cycles if cycles else None

    def plan_waves(self, concurrency_limit: int) -> list[list[str]]:
        """
        Predict the waves a run would execute, without executing anything.

        Every task is assumed to finish. Tasks that can never become ready
        are left out.
        """
        simulation = DependencyResolver(list(self._tasks.values()), self._known)
        queue = [t.id for t in simulation.initial_ready()]
        waves: list[list[str]] = []

        while queue:
            wave, queue = queue[:concurrency_limit], queue[concurrency_limit:]
            waves.append(wave)
            for task_id in wave:
                queue.extend(t.id for t in simulation.mark_done(task_id))

        return waves
