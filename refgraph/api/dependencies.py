"""
refgraph API Dependencies
=========================

Dependency injection container for the refgraph API, providing
centralized access to the store, resolver and backlink index.

Usage:
    from refgraph.api.dependencies import get_container, Container

    @router.get("/api/graph")
    async def graph(container: Container = Depends(get_container)):
        return container.graph.graph()
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..config.settings import RefgraphSettings, load_settings
from ..notes import InMemoryEntityStore, RefGraph, SqliteEntityStore

logger = logging.getLogger(__name__)


@dataclass
class Container:
    """
    Dependency injection container for refgraph services.

    Attributes:
        settings: Loaded settings; read from YAML/environment when unset
        graph: Reference graph facade (store, resolver, index)
    """

    settings: Optional[RefgraphSettings] = None
    graph: Optional[RefGraph] = None

    # Internal state
    _initialized: bool = field(default=False, repr=False)

    async def initialize(self) -> None:
        """
        Initialize services.

        Uses a SQLite store when ``database_path`` is configured, otherwise
        an in-memory store. The backlink index is built from the store.
        """
        if self._initialized:
            logger.debug("Container already initialized")
            return

        logger.info("Initializing refgraph API container...")

        if self.settings is None:
            self.settings = load_settings()

        if self.graph is None:
            if self.settings.database_path:
                store = SqliteEntityStore(self.settings.database_path)
            else:
                store = InMemoryEntityStore()
            self.graph = RefGraph(store, self.settings.options)

        await self.graph.load()
        self._initialized = True
        logger.info(f"Container initialized: {len(self.graph.index)} notes indexed")

    async def close(self) -> None:
        """Release services."""
        logger.info("Closing refgraph API container...")
        self.graph = None
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        """Check if container is initialized."""
        return self._initialized


# Global container instance
_container: Optional[Container] = None


def get_container() -> Container:
    """
    Get or create the global container instance.

    Note:
        The container must be initialized via `container.initialize()`
        during application startup.
    """
    global _container
    if _container is None:
        _container = Container()
    return _container


def set_container(container: Optional[Container]) -> None:
    """
    Replace the global container.

    Primarily used for testing to inject a pre-built graph.
    """
    global _container
    _container = container


def get_refgraph() -> RefGraph:
    """
    Get the RefGraph from the container.

    FastAPI dependency for injecting the graph into route handlers.

    Raises:
        HTTPException: If the container is not initialized
    """
    from fastapi import HTTPException

    container = get_container()
    if container.graph is None:
        raise HTTPException(status_code=503, detail="Reference graph not initialized")
    return container.graph
