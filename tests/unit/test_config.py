"""Tests for settings and logging configuration."""

import sys
from pathlib import Path

import pytest
from loguru import logger
from pydantic import ValidationError

from taskweave.core.config import Settings, get_settings
from taskweave.core.logs import configure_logging


@pytest.fixture
def restore_logger():
    """Reset loguru to a single stderr sink after the test."""
    yield
    logger.remove()
    logger.add(sys.stderr)


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        for name in ("TASKWEAVE_DATABASE_URL", "TASKWEAVE_PERSIST", "TASKWEAVE_LOG_DIR"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.taskweave_concurrency == 5
        assert settings.taskweave_persist is True
        assert settings.taskweave_max_retries is None
        assert settings.taskweave_log_dir == "logs"
        assert settings.is_sqlite

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch, mock_settings) -> None:
        monkeypatch.setenv("TASKWEAVE_CONCURRENCY", "3")
        monkeypatch.setenv("TASKWEAVE_MAX_RETRIES", "2")

        settings = get_settings()

        assert settings.taskweave_concurrency == 3
        assert settings.taskweave_max_retries == 2
        assert get_settings() is settings

    def test_concurrency_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            Settings(taskweave_concurrency=0)

    def test_async_driver_urls(self) -> None:
        postgres = Settings(taskweave_database_url="postgresql://u:p@db/taskweave")
        sqlite = Settings(taskweave_database_url="sqlite:///./tasks.db")

        assert postgres.database_url_async == "postgresql+asyncpg://u:p@db/taskweave"
        assert not postgres.is_sqlite
        assert sqlite.database_url_async == "sqlite+aiosqlite:///./tasks.db"


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_creates_log_dir(self, tmp_path: Path, restore_logger) -> None:
        log_dir = tmp_path / "logs"

        configure_logging(Settings(taskweave_log_dir=str(log_dir)))
        logger.info("written to file")

        assert log_dir.is_dir()
        assert any(log_dir.iterdir())

    def test_stderr_only(self, tmp_path: Path, restore_logger) -> None:
        configure_logging(Settings(taskweave_log_dir=None, taskweave_debug=True))

        assert list(tmp_path.iterdir()) == []
