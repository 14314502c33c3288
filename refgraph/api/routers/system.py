"""
refgraph System Router
======================

System-level API endpoints.

Endpoints:
    GET /api/health     - Health check with component status
"""

import logging
from datetime import datetime, timezone
from typing import Dict

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ... import __version__
from ..dependencies import get_container

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["System"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(..., description="Overall status: healthy or unhealthy")
    version: str = Field(..., description="API version")
    components: Dict[str, bool] = Field(..., description="Component health status")
    notes_indexed: int = Field(default=0, description="Notes in the backlink index")
    timestamp: str = Field(..., description="ISO timestamp of the check")


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check that the store is reachable and the index is loaded."""
    container = get_container()
    graph = container.graph

    components = {"container": container.is_initialized, "store": False}
    if graph is not None:
        try:
            components["store"] = graph.health_check()
        except Exception as e:
            logger.warning(f"Store health check failed: {e}")

    return HealthResponse(
        status="healthy" if all(components.values()) else "unhealthy",
        version=__version__,
        components=components,
        notes_indexed=len(graph.index) if graph is not None else 0,
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
    )
