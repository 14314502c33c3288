"""
refgraph Notes Router

FastAPI router for reference graph operations: references, backlinks,
suggestions, entity resolution and the graph view.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ...core.errors import RefgraphError
from ...notes import RefGraph, ReferenceKind
from ...notes.models import reference_to_dict
from ..dependencies import get_refgraph

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Notes"])


# =============================================================================
# Pydantic Models - Request Types
# =============================================================================


class ResolveRequest(BaseModel):
    """Request to resolve display text to an entity id."""

    kind: ReferenceKind = Field(..., description="wiki_link, mention or hashtag")
    text: str = Field(..., min_length=1, description="Display text typed by the user")


class UpdateContentRequest(BaseModel):
    """Request to replace a note's content."""

    content: str = Field(..., description="New content, markers included")


# =============================================================================
# Helper Functions
# =============================================================================


def get_timestamp() -> str:
    """Get current ISO timestamp."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def create_response(
    data=None, error: Optional[str] = None, success: bool = True
) -> dict:
    """Create a standardized API response."""
    return {
        "success": success and error is None,
        "data": data,
        "error": error,
        "timestamp": get_timestamp(),
    }


def raise_http(error: RefgraphError) -> None:
    """Translate a refgraph error into an HTTP error."""
    error.log()
    raise HTTPException(status_code=error.http_status, detail=error.user_message)


# =============================================================================
# Reference Endpoints
# =============================================================================


@router.get("/notes/{note_id}/references")
async def get_note_references(
    note_id: str,
    graph: RefGraph = Depends(get_refgraph),
):
    """References in a note, in content order."""
    try:
        references = await graph.references_of(note_id)
        return create_response(data=[reference_to_dict(r) for r in references])

    except RefgraphError as e:
        raise_http(e)


@router.put("/notes/{note_id}/content")
async def update_note_content(
    note_id: str,
    request: UpdateContentRequest,
    graph: RefGraph = Depends(get_refgraph),
):
    """Replace a note's content and re-index it."""
    try:
        note = await graph.update_note_content(note_id, request.content)
        return create_response(
            data={
                **note.to_dict(),
                "references": [reference_to_dict(r) for r in graph.index.outgoing(note_id)],
            }
        )

    except RefgraphError as e:
        raise_http(e)


@router.get("/entities/{target_id}/backlinks")
async def get_backlinks(
    target_id: str,
    graph: RefGraph = Depends(get_refgraph),
):
    """Notes referencing an entity, with context snippets."""
    backlinks = graph.backlinks_of(target_id)
    return create_response(data=[b.to_dict() for b in backlinks])


@router.get("/graph")
async def get_graph(
    graph: RefGraph = Depends(get_refgraph),
):
    """Get the reference graph for visualization."""
    return create_response(data=graph.graph())


# =============================================================================
# Authoring Endpoints
# =============================================================================


@router.get("/suggest")
async def suggest(
    kind: ReferenceKind,
    q: str = "",
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    graph: RefGraph = Depends(get_refgraph),
):
    """
    Ranked candidates for a partially typed reference.

    Args:
        kind: wiki_link, mention or hashtag
        q: Query typed after the trigger
        limit: Maximum candidates (defaults to the configured limit)
    """
    try:
        candidates = await graph.suggest(kind, q, limit)
        return create_response(data=[c.to_dict() for c in candidates])

    except RefgraphError as e:
        raise_http(e)


@router.post("/resolve")
async def resolve(
    request: ResolveRequest,
    graph: RefGraph = Depends(get_refgraph),
):
    """Resolve display text to an entity id, creating the entity if needed."""
    try:
        entity_id = await graph.resolve(request.kind, request.text)
        return create_response(
            data={"kind": request.kind.value, "text": request.text, "id": entity_id}
        )

    except RefgraphError as e:
        raise_http(e)
