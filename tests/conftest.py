"""Pytest configuration and shared fixtures."""

import asyncio
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any, AsyncGenerator, Generator

import pytest
import pytest_asyncio

# Set test environment
os.environ["TASKWEAVE_LOG_DIR"] = ""
os.environ["TASKWEAVE_PERSIST"] = "false"
os.environ.setdefault("TASKWEAVE_LOG_LEVEL", "DEBUG")

from taskweave.capabilities.base import (  # noqa: E402
    Capability,
    CapabilityCatalog,
    Completion,
    CompletionOptions,
    Message,
)
from taskweave.core.config import Settings, clear_settings_cache  # noqa: E402
from taskweave.tasks.models import TaskConfig  # noqa: E402
from taskweave.tasks.task import Task  # noqa: E402

# =============================================================================
# TEST DOUBLES
# =============================================================================


class ConcurrencyTracker:
    """Count how many capability calls are in flight at once."""

    def __init__(self) -> None:
        self.active = 0
        self.peak = 0

    def enter(self) -> None:
        self.active += 1
        self.peak = max(self.peak, self.active)

    def exit(self) -> None:
        self.active -= 1


class RecordingCapability(Capability):
    """Capability that records its inputs and returns a fixed or computed output."""

    def __init__(
        self,
        name: str,
        output: Any = None,
        delay: float = 0.0,
        fail_times: int = 0,
        tracker: ConcurrencyTracker | None = None,
        events: list[str] | None = None,
    ):
        self.name = name
        self.description = f"Test capability {name}"
        self.parameters = []
        self.output = output
        self.delay = delay
        self.fail_times = fail_times
        self.tracker = tracker
        self.events = events
        self.calls: list[Any] = []

    async def execute(self, params: Any) -> Any:
        self.calls.append(params)
        if self.events is not None:
            self.events.append(f"{self.name}:start")
        if self.tracker is not None:
            self.tracker.enter()
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail_times > 0:
                self.fail_times -= 1
                raise RuntimeError(f"{self.name} failed")
            return self.output(params) if callable(self.output) else self.output
        finally:
            if self.tracker is not None:
                self.tracker.exit()
            if self.events is not None:
                self.events.append(f"{self.name}:end")


class ScriptedModel:
    """Reasoning model answering from a list of canned responses."""

    def __init__(self, responses: list[Any], name: str = "scripted-model"):
        self.name = name
        self.responses = list(responses)
        self.calls: list[tuple[list[Message], CompletionOptions | None]] = []

    async def complete(
        self,
        messages: list[Message],
        options: CompletionOptions | None = None,
    ) -> str | Completion | dict[str, Any]:
        self.calls.append((messages, options))
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def mock_settings() -> Generator:
    """Clear cached settings around a test."""
    clear_settings_cache()

    yield

    clear_settings_cache()


@pytest.fixture
def settings() -> Settings:
    """Provide settings isolated from the environment's persistence options."""
    return Settings(taskweave_persist=False, taskweave_log_dir=None, taskweave_concurrency=5)


@pytest.fixture
def tracker() -> ConcurrencyTracker:
    """Provide a concurrency tracker."""
    return ConcurrencyTracker()


@pytest.fixture
def make_capability() -> Callable[..., RecordingCapability]:
    """Provide a factory for recording capabilities."""
    return RecordingCapability


@pytest.fixture
def make_model() -> Callable[..., ScriptedModel]:
    """Provide a factory for scripted reasoning models."""
    return ScriptedModel


@pytest.fixture
def catalog() -> CapabilityCatalog:
    """Provide a catalog with a few deterministic capabilities."""
    return CapabilityCatalog(
        [
            RecordingCapability("upper", lambda p: {"text": str(p.get("text", "")).upper()}),
            RecordingCapability("exclaim", lambda p: {"text": f"{p['text']}!"}),
            RecordingCapability("noop", None),
            RecordingCapability("boom", fail_times=10**6),
        ]
    )


@pytest.fixture
def make_task(catalog: CapabilityCatalog) -> Callable[..., Task]:
    """Provide a factory for tasks bound to the shared catalog."""

    def factory(task_id: str, dependencies: list[str] | None = None, **kwargs: Any) -> Task:
        collaborators = {
            key: kwargs.pop(key)
            for key in ("memory", "model", "store", "selector")
            if key in kwargs
        }
        task_catalog = kwargs.pop("catalog", catalog)
        config = TaskConfig(
            id=task_id,
            name=kwargs.pop("name", task_id),
            dependencies=dependencies or [],
            **kwargs,
        )
        return Task(config, catalog=task_catalog, **collaborators)

    return factory


@pytest_asyncio.fixture
async def sqlite_db(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> AsyncGenerator[str, None]:
    """Point the database layer at a fresh SQLite file and create the schema."""
    from taskweave.knowledge.database import close_db, init_db

    url = f"sqlite+aiosqlite:///{tmp_path / 'taskweave-test.db'}"
    monkeypatch.setenv("TASKWEAVE_DATABASE_URL", url)
    monkeypatch.setenv("TASKWEAVE_DEBUG", "false")
    clear_settings_cache()
    await close_db()
    await init_db()

    yield url

    await close_db()
    clear_settings_cache()


# Markers
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
