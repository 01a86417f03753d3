"""
taskweave HTTP API.

FastAPI application exposing a TaskManager.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from taskweave import __version__
from taskweave.api.routes import tasks
from taskweave.capabilities.builtin import default_catalog
from taskweave.core.config import Settings, get_settings
from taskweave.core.manager import TaskManager
from taskweave.knowledge.database import close_db, health_check
from taskweave.knowledge.store import TaskStore


async def build_manager(settings: Settings) -> TaskManager:
    """Create a TaskManager from settings, preparing the store if enabled."""
    store = None
    if settings.taskweave_persist:
        store = TaskStore()
        await store.initialize()
    return TaskManager(catalog=default_catalog(), store=store, settings=settings)


def create_app(manager: TaskManager | None = None, settings: Settings | None = None) -> FastAPI:
    """
    Create the API application.

    Args:
        manager: TaskManager to expose. Built from settings at startup if omitted.
        settings: Optional settings override. Uses default if not provided.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """
        Startup and shutdown events.

        Yields:
            None during application runtime.
        """
        logger.info("Starting taskweave API...")
        owns_manager = app.state.manager is None
        if owns_manager:
            app.state.manager = await build_manager(settings)
        yield
        await app.state.manager.flush()
        if owns_manager and settings.taskweave_persist:
            await close_db()
        logger.info("Shutting down taskweave API...")

    app = FastAPI(
        title="taskweave API",
        description="Dependency-graph task scheduler",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.manager = manager
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(tasks.router, prefix="/api/tasks", tags=["tasks"])

    @app.get("/health")
    async def health() -> dict[str, str]:
        """
        Health check endpoint.

        Returns:
            Health status, version and database reachability.
        """
        database = "disabled"
        manager = app.state.manager
        if manager is not None and manager.store is not None:
            database = "ok" if await health_check() else "unreachable"
        return {"status": "healthy", "version": __version__, "database": database}

    return app


app = create_app()
