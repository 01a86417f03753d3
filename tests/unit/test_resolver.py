"""Unit tests for dependency resolution."""

import pytest

from taskweave.tasks.dependency_resolver import DependencyResolver
from taskweave.tasks.models import TaskResult, TaskStatus


def ids(tasks) -> list[str]:
    return [t.id for t in tasks]


class TestReadiness:
    """Tests for initial readiness and mark_done."""

    def test_initial_ready_in_registration_order(self, make_task) -> None:
        tasks = [make_task("b"), make_task("a"), make_task("c", ["a"])]

        resolver = DependencyResolver(tasks)

        assert ids(resolver.initial_ready()) == ["b", "a"]

    def test_mark_done_unblocks_dependent_once(self, make_task) -> None:
        tasks = [make_task("a"), make_task("b"), make_task("c", ["a", "b"])]
        resolver = DependencyResolver(tasks)
        resolver.initial_ready()

        assert resolver.mark_done("a") == []
        assert ids(resolver.mark_done("b")) == ["c"]
        assert resolver.mark_done("b") == []

    def test_failed_dependency_still_unblocks(self, make_task) -> None:
        tasks = [make_task("a"), make_task("b", ["a"])]
        resolver = DependencyResolver(tasks)
        resolver.initial_ready()

        ready = resolver.mark_done("a", TaskResult.failure(RuntimeError("x")))

        assert ids(ready) == ["b"]
        assert resolver.dependency_input(tasks[1]) is None

    def test_unknown_dependency_ignored(self, make_task) -> None:
        tasks = [make_task("a", ["ghost"])]

        resolver = DependencyResolver(tasks)

        assert resolver.dependencies["a"] == []
        assert ids(resolver.initial_ready()) == ["a"]

    def test_self_dependency_blocks(self, make_task) -> None:
        tasks = [make_task("a", ["a"])]

        resolver = DependencyResolver(tasks)

        assert resolver.initial_ready() == []
        assert ids(resolver.unresolved()) == ["a"]
        assert resolver.pending_dependencies("a") == ["a"]

    def test_unresolved_after_partial_run(self, make_task) -> None:
        tasks = [make_task("a"), make_task("b", ["c"]), make_task("c", ["b"])]
        resolver = DependencyResolver(tasks)
        resolver.initial_ready()
        resolver.mark_done("a")

        assert ids(resolver.unresolved()) == ["b", "c"]
        assert resolver.pending_dependencies("b") == ["c"]


class TestKnownTasksOutsideRun:
    """Tests for dependencies registered but not part of the run-set."""

    def test_terminal_dependency_satisfied(self, make_task) -> None:
        done = make_task("done")
        done.status = TaskStatus.COMPLETED
        done.result = TaskResult(success=True, output={"v": 1})
        child = make_task("child", ["done"], input={"own": True})

        resolver = DependencyResolver([child], {"done": done, "child": child})

        assert ids(resolver.initial_ready()) == ["child"]
        assert resolver.dependency_input(child) == {
            "own": True,
            "_dependencyOutputs": {"done": {"v": 1}},
        }

    def test_terminal_dependency_without_result(self, make_task) -> None:
        failed = make_task("failed")
        failed.status = TaskStatus.FAILED
        child = make_task("child", ["failed"])

        resolver = DependencyResolver([child], {"failed": failed, "child": child})

        assert ids(resolver.initial_ready()) == ["child"]
        assert resolver.dependency_input(child) is None

    def test_pending_dependency_blocks(self, make_task) -> None:
        waiting = make_task("waiting")
        child = make_task("child", ["waiting"])

        resolver = DependencyResolver([child], {"waiting": waiting, "child": child})

        assert resolver.initial_ready() == []
        assert ids(resolver.unresolved()) == ["child"]


class TestOutputPropagation:
    """Tests for dependency output collection."""

    def test_outputs_keyed_by_dependency(self, make_task) -> None:
        tasks = [make_task("a"), make_task("b"), make_task("c", ["a", "b"], input="seed")]
        resolver = DependencyResolver(tasks)
        resolver.mark_done("a", TaskResult(success=True, output={"a": 1}))
        resolver.mark_done("b", TaskResult(success=True, output=[1, 2]))

        assert resolver.dependency_input(tasks[2]) == {
            "input": "seed",
            "_dependencyOutputs": {"a": {"a": 1}, "b": [1, 2]},
        }

    def test_empty_outputs_skipped(self, make_task) -> None:
        tasks = [make_task("a"), make_task("b"), make_task("c", ["a", "b"])]
        resolver = DependencyResolver(tasks)
        resolver.mark_done("a", TaskResult(success=True, output={}))
        resolver.mark_done("b", TaskResult(success=True, output="text"))

        assert resolver.dependency_outputs("c") == {"b": "text"}

    def test_no_dependencies_no_input(self, make_task) -> None:
        tasks = [make_task("a", input={"x": 1})]

        assert DependencyResolver(tasks).dependency_input(tasks[0]) is None


class TestCycleDetection:
    """Tests for cycle detection."""

    def test_two_task_cycle(self, make_task) -> None:
        tasks = [make_task("a", ["b"]), make_task("b", ["a"])]

        cycles = DependencyResolver(tasks).detect_cycles()

        assert cycles == [["a", "b", "a"]]

    def test_no_cycles(self, make_task) -> None:
        tasks = [make_task("a"), make_task("b", ["a"])]

        assert DependencyResolver(tasks).detect_cycles() is None

    def test_explicit_graph(self, make_task) -> None:
        resolver = DependencyResolver([])

        cycles = resolver.detect_cycles({"x": ["y"], "y": ["z"], "z": ["x"], "w": ["w"]})

        assert ["x", "y", "z", "x"] in cycles
        assert ["w", "w"] in cycles


class TestPlanWaves:
    """Tests for wave planning."""

    def test_chain_with_slack(self, make_task) -> None:
        tasks = [make_task("a"), make_task("b", ["a"]), make_task("c", ["a", "b"])]

        waves = DependencyResolver(tasks).plan_waves(2)

        assert waves == [["a"], ["b"], ["c"]]

    def test_fan_out_split_by_limit(self, make_task) -> None:
        tasks = [make_task("root")] + [make_task(f"leaf{i}", ["root"]) for i in range(5)]

        waves = DependencyResolver(tasks).plan_waves(2)

        assert waves == [["root"], ["leaf0", "leaf1"], ["leaf2", "leaf3"], ["leaf4"]]

    def test_planning_leaves_resolver_untouched(self, make_task) -> None:
        tasks = [make_task("a"), make_task("b", ["a"])]
        resolver = DependencyResolver(tasks)

        resolver.plan_waves(1)

        assert ids(resolver.unresolved()) == ["a", "b"]
        assert ids(resolver.initial_ready()) == ["a"]

    def test_cycle_members_not_planned(self, make_task) -> None:
        tasks = [make_task("a"), make_task("b", ["c"]), make_task("c", ["b"])]

        assert DependencyResolver(tasks).plan_waves(3) == [["a"]]

    @pytest.mark.parametrize("limit", [1, 3])
    def test_every_task_planned_once(self, make_task, limit: int) -> None:
        tasks = [
            make_task("a"),
            make_task("b"),
            make_task("c", ["a"]),
            make_task("d", ["b", "c"]),
        ]

        waves = DependencyResolver(tasks).plan_waves(limit)

        planned = [t for wave in waves for t in wave]
        assert sorted(planned) == ["a", "b", "c", "d"]
        assert all(len(w) <= limit for w in waves)
