"""
FastAPI integration for hubdb.

Usage:
    from fastapi import Depends, FastAPI
    from hubdb.dependencies import database_lifespan, get_collection

    app = FastAPI(lifespan=database_lifespan)

    @app.get("/projects")
    async def list_projects(projects=Depends(get_collection("projects"))):
        return await projects.find({}).sort("created", -1).to_list()
"""

import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request

from .backends import BaseCollection, StorageBackend
from .config import DatabaseConfig
from .connection import DatabaseManager
from .observability.logging import set_storage_context

logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan
# =============================================================================


@asynccontextmanager
async def database_lifespan(
    app: FastAPI, config: DatabaseConfig | None = None
) -> AsyncIterator[None]:
    """Connect on startup, store the manager on ``app.state.database``, close on shutdown."""
    manager = DatabaseManager(config)
    await manager.connect()
    app.state.database = manager
    try:
        yield
    finally:
        await manager.close()
        app.state.database = None
        logger.info("Database closed on application shutdown")


# =============================================================================
# Database Dependencies
# =============================================================================


async def get_database(request: Request) -> StorageBackend:
    """Get the active backend from app state."""
    manager = getattr(request.app.state, "database", None)
    if not manager:
        raise HTTPException(503, "Database not initialized")
    if not manager.connected:
        raise HTTPException(503, "Database not connected")
    set_storage_context(backend=manager.backend.kind.value)
    return manager.backend


def get_collection(name: str) -> Callable[[Request], Any]:
    """
    Dependency factory for a single collection handle.

    Example:
        @app.post("/users")
        async def create(user: dict, users=Depends(get_collection("users"))):
            result = await users.insert_one(user)
            return {"id": result.inserted_id}
    """

    async def _get_collection(request: Request) -> BaseCollection:
        backend = await get_database(request)
        return backend.collection(name)

    return _get_collection
