"""
Unit tests for the wave scheduler.

Tests wave batching, the concurrency bound, retries and callbacks.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from taskweave.capabilities import CapabilityCatalog
from taskweave.core.exceptions import TaskCancelledError, UnresolvedDependencyError
from taskweave.tasks.dependency_resolver import DependencyResolver
from taskweave.tasks.models import RetryPolicy, TaskResult, TaskStatus
from taskweave.tasks.scheduler import WaveExecutionResult, WaveScheduler

# =============================================================================
# TEST WAVE RESULT
# =============================================================================


class TestWaveExecutionResult:
    """Tests for WaveExecutionResult."""

    def test_counts(self) -> None:
        wave = WaveExecutionResult(
            0,
            {
                "a": TaskResult(success=True),
                "b": TaskResult.failure(RuntimeError("x")),
                "c": TaskResult(success=True),
            },
        )

        assert wave.task_ids == ["a", "b", "c"]
        assert wave.completed_tasks == ["a", "c"]
        assert wave.failed_tasks == ["b"]
        assert wave.success_rate == pytest.approx(2 / 3)
        assert wave.duration_seconds >= 0

    def test_empty_wave(self) -> None:
        assert WaveExecutionResult(0, {}).success_rate == 0.0

    def test_to_dict(self) -> None:
        data = WaveExecutionResult(3, {"a": TaskResult(success=True)}).to_dict()

        assert data["wave_number"] == 3
        assert data["task_ids"] == ["a"]
        assert isinstance(data["started_at"], str)


# =============================================================================
# TEST SCHEDULING
# =============================================================================


class TestWaveScheduler:
    """Tests for WaveScheduler.run()."""

    def test_invalid_concurrency(self) -> None:
        with pytest.raises(ValueError):
            WaveScheduler(concurrency_limit=0)

    @pytest.mark.asyncio
    async def test_independent_tasks_batched(self, make_task) -> None:
        tasks = [make_task(f"t{i}", plugins=["noop"]) for i in range(5)]
        scheduler = WaveScheduler(concurrency_limit=2)

        results = await scheduler.run(tasks)

        assert list(results) == ["t0", "t1", "t2", "t3", "t4"]
        assert all(r.success for r in results.values())
        assert [w.task_ids for w in scheduler.waves] == [
            ["t0", "t1"],
            ["t2", "t3"],
            ["t4"],
        ]

    @pytest.mark.asyncio
    async def test_concurrency_bound(self, make_task, make_capability, tracker) -> None:
        slow = make_capability("slow", {"ok": True}, delay=0.02, tracker=tracker)
        catalog = CapabilityCatalog([slow])
        tasks = [make_task(f"t{i}", plugins=["slow"], catalog=catalog) for i in range(7)]
        scheduler = WaveScheduler(concurrency_limit=3)

        await scheduler.run(tasks)

        assert tracker.peak == 3
        assert scheduler.peak_concurrency == 3
        assert [len(w.task_ids) for w in scheduler.waves] == [3, 3, 1]

    @pytest.mark.asyncio
    async def test_wave_is_barrier(self, make_task, make_capability) -> None:
        """Test a dependent waits for the whole wave, not just its dependency."""
        events: list[str] = []
        catalog = CapabilityCatalog(
            [
                make_capability("slow", {"v": "slow"}, delay=0.05, events=events),
                make_capability("fast", {"v": "fast"}, events=events),
                make_capability("after", None, events=events),
            ]
        )
        tasks = [
            make_task("slow", plugins=["slow"], catalog=catalog),
            make_task("fast", plugins=["fast"], catalog=catalog),
            make_task("child", ["fast"], plugins=["after"], catalog=catalog),
        ]

        await WaveScheduler(concurrency_limit=2).run(tasks)

        assert events.index("slow:end") < events.index("after:start")

    @pytest.mark.asyncio
    async def test_dependency_outputs_delivered(self, make_task, catalog) -> None:
        tasks = [
            make_task("a", plugins=["upper"], input={"text": "x"}),
            make_task("b", ["a"], plugins=["noop"], input={"own": 1}),
        ]

        results = await WaveScheduler().run(tasks)

        assert catalog.get("noop").calls[0] == {
            "own": 1,
            "_dependencyOutputs": {"a": {"text": "X"}},
            "_context": {},
        }
        assert results["b"].output == {"own": 1, "_dependencyOutputs": {"a": {"text": "X"}}}

    @pytest.mark.asyncio
    async def test_failed_dependency_does_not_block(self, make_task, catalog) -> None:
        tasks = [
            make_task("a", plugins=["boom"]),
            make_task("b", ["a"], plugins=["noop"], input={"own": 1}),
        ]

        results = await WaveScheduler().run(tasks)

        assert not results["a"].success
        assert results["b"].success
        assert "_dependencyOutputs" not in catalog.get("noop").calls[0]

    @pytest.mark.asyncio
    async def test_unresolved_tasks_failed(self, make_task) -> None:
        tasks = [make_task("a", ["b"]), make_task("b", ["a"]), make_task("c")]

        results = await WaveScheduler().run(tasks)

        assert results["c"].success
        for task_id, pending in (("a", ["b"]), ("b", ["a"])):
            error = results[task_id].error
            assert isinstance(error, UnresolvedDependencyError)
            assert error.pending == pending
        assert tasks[0].status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_raising_execute_becomes_failure(self, make_task) -> None:
        task = make_task("a")
        task.execute = AsyncMock(side_effect=RuntimeError("unexpected"))

        results = await WaveScheduler().run([task])

        assert not results["a"].success
        assert str(results["a"].error) == "unexpected"

    @pytest.mark.asyncio
    async def test_external_resolver(self, make_task) -> None:
        done = make_task("done")
        done.status = TaskStatus.COMPLETED
        child = make_task("child", ["done"])

        results = await WaveScheduler().run(
            [child], DependencyResolver([child], {"done": done, "child": child})
        )

        assert results["child"].success


# =============================================================================
# TEST RETRIES
# =============================================================================


class TestRetries:
    """Tests for retry handling."""

    @pytest.mark.asyncio
    async def test_retries_until_success(self, make_task, make_capability) -> None:
        flaky = make_capability("flaky", {"ok": True}, fail_times=2)
        catalog = CapabilityCatalog([flaky])
        task = make_task("a", plugins=["flaky"], max_retries=2, catalog=catalog)

        results = await WaveScheduler().run([task])

        assert results["a"].success
        assert task.retries == 2
        assert len(flaky.calls) == 3

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, make_task, make_capability) -> None:
        flaky = make_capability("flaky", {"ok": True}, fail_times=5)
        catalog = CapabilityCatalog([flaky])
        task = make_task("a", plugins=["flaky"], max_retries=1, catalog=catalog)

        results = await WaveScheduler().run([task])

        assert not results["a"].success
        assert task.retries == 1
        assert len(flaky.calls) == 2
        assert task.status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_policy_overrides_task_retries(self, make_task, make_capability) -> None:
        flaky = make_capability("flaky", {"ok": True}, fail_times=5)
        catalog = CapabilityCatalog([flaky])
        task = make_task("a", plugins=["flaky"], max_retries=4, catalog=catalog)

        await WaveScheduler(retry_policy=RetryPolicy(max_attempts=1)).run([task])

        assert len(flaky.calls) == 1
        assert task.retries == 0

    @pytest.mark.asyncio
    async def test_cancelled_task_not_retried(self, make_task) -> None:
        task = make_task("a", plugins=["boom"], max_retries=3)
        task.cancel()

        results = await WaveScheduler().run([task])

        assert isinstance(results["a"].error, TaskCancelledError)
        assert task.retries == 0

    @pytest.mark.asyncio
    async def test_backoff_sleeps_between_attempts(
        self, make_task, make_capability, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        sleep = AsyncMock()
        monkeypatch.setattr("taskweave.tasks.scheduler.asyncio.sleep", sleep)
        flaky = make_capability("flaky", {"ok": True}, fail_times=2)
        catalog = CapabilityCatalog([flaky])
        task = make_task("a", plugins=["flaky"], max_retries=2, catalog=catalog)

        await WaveScheduler(retry_policy=RetryPolicy(backoff=0.5)).run([task])

        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]


# =============================================================================
# TEST CALLBACKS
# =============================================================================


class TestCallbacks:
    """Tests for completion callbacks."""

    @pytest.mark.asyncio
    async def test_callback_per_task(self, make_task) -> None:
        callback = MagicMock()
        tasks = [make_task("a"), make_task("b", ["a"]), make_task("c", ["c"])]
        scheduler = WaveScheduler()
        scheduler.add_callback(callback)

        await scheduler.run(tasks)

        assert [c.args[0] for c in callback.call_args_list] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_callback_errors_ignored(self, make_task) -> None:
        scheduler = WaveScheduler()
        scheduler.add_callback(MagicMock(side_effect=RuntimeError("bad listener")))

        results = await scheduler.run([make_task("a")])

        assert results["a"].success

    @pytest.mark.asyncio
    async def test_remove_callback(self, make_task) -> None:
        callback = MagicMock()
        scheduler = WaveScheduler()
        scheduler.add_callback(callback)
        scheduler.remove_callback(callback)

        await scheduler.run([make_task("a")])

        callback.assert_not_called()
