"""
Notes Module

Inline references between notes, contacts and topics: marker extraction,
the backlink index, entity resolution and the authoring state machine.

Example usage:
    from refgraph.notes import RefGraph

    graph = RefGraph()
    await graph.load()

    surface = await graph.open_surface("note_42")
    surface.type_text("Met [[Ali")
    await surface.settle()
    await surface.create_new()

    # Who references Alice?
    backlinks = graph.backlinks_of(surface.references[0].target_id)
"""

import logging
from typing import Any, Dict, List, Optional

from ..config.settings import EngineOptions
from ..core.errors import EntityNotFoundError, StoreWriteError, wrap_exception
from .backlinks import BacklinkIndex, make_snippet
from .editor import EditingSurface, SuggestionListener
from .input import (
    Backspace,
    Cancel,
    CreateNew,
    CursorMove,
    InputEvent,
    KeyboardAdapter,
    SelectCandidate,
    TearDown,
    TextInput,
)
from .markers import (
    MarkerSpan,
    display_form,
    extract,
    extract_spans,
    find_reference_at,
    plain_text,
    render,
    render_reference,
)
from .models import (
    Backlink,
    Contact,
    ContactRef,
    Entity,
    EntityKind,
    Note,
    Reference,
    ReferenceKind,
    Topic,
    TopicRef,
    WikiLinkRef,
    make_reference,
)
from .resolver import EntityResolver
from .store import EntityStore, InMemoryEntityStore
from .suggestions import (
    CloseReason,
    CommitPhase,
    CreateRequest,
    Selection,
    SessionState,
    SuggestionSession,
)
from .vault import SqliteEntityStore

logger = logging.getLogger(__name__)

__all__ = [
    # Main classes
    "RefGraph",
    "EditingSurface",
    "SuggestionListener",
    "KeyboardAdapter",
    "BacklinkIndex",
    "EntityResolver",
    "SuggestionSession",
    # Stores
    "EntityStore",
    "InMemoryEntityStore",
    "SqliteEntityStore",
    # Models
    "Note",
    "Contact",
    "Topic",
    "Entity",
    "WikiLinkRef",
    "ContactRef",
    "TopicRef",
    "Reference",
    "Backlink",
    "MarkerSpan",
    # Enums
    "EntityKind",
    "ReferenceKind",
    "SessionState",
    "CloseReason",
    "CommitPhase",
    # Input events
    "InputEvent",
    "TextInput",
    "Backspace",
    "CursorMove",
    "SelectCandidate",
    "CreateNew",
    "Cancel",
    "TearDown",
    "Selection",
    "CreateRequest",
    # Functions
    "extract",
    "extract_spans",
    "render",
    "render_reference",
    "display_form",
    "find_reference_at",
    "plain_text",
    "make_reference",
    "make_snippet",
]


class RefGraph:
    """
    High-level interface for the reference graph.

    Wires one store, resolver and backlink index together and hands out
    editing surfaces that share them.
    """

    def __init__(
        self,
        store: Optional[EntityStore] = None,
        options: Optional[EngineOptions] = None,
    ):
        """
        Initialize the reference graph.

        Args:
            store: Entity store. Defaults to an empty in-memory store
            options: Engine options. Defaults to ``EngineOptions()``
        """
        self.store = store or InMemoryEntityStore()
        self.options = options or EngineOptions()
        self.resolver = EntityResolver(self.store)
        self.index = BacklinkIndex(self.options)

    async def load(self) -> None:
        """Index every note currently in the store."""
        await self.index.refresh(self.store)

    async def open_surface(
        self,
        note_id: str,
        listener: Optional[SuggestionListener] = None,
        autosave: bool = True,
    ) -> EditingSurface:
        """
        Open an editing surface on a stored note.

        Raises:
            EntityNotFoundError: If the note does not exist
        """
        return await EditingSurface.open(
            note_id,
            self.store,
            resolver=self.resolver,
            index=self.index,
            options=self.options,
            listener=listener,
            autosave=autosave,
        )

    def backlinks_of(self, target_id: str) -> List[Backlink]:
        return self.index.backlinks_of(target_id)

    async def references_of(self, note_id: str) -> List[Reference]:
        """
        References in a note, in content order.

        Raises:
            EntityNotFoundError: If the note does not exist
        """
        if note_id in self.index:
            return self.index.outgoing(note_id)
        note = await self.store.get_entity(EntityKind.NOTE, note_id)
        if note is None:
            raise EntityNotFoundError(detail=f"Note not found: {note_id}")
        return self.index.index_note(note)

    def graph(self) -> Dict[str, Any]:
        """Get the reference graph for visualization."""
        return self.index.graph()

    async def resolve(self, kind: ReferenceKind, text: str) -> str:
        return await self.resolver.resolve(kind, text)

    async def suggest(
        self, kind: ReferenceKind, query: str, limit: Optional[int] = None
    ) -> List[Entity]:
        """Ranked candidates for a partially typed query."""
        return await self.resolver.candidates(
            kind, query, limit or self.options.candidate_limit
        )

    async def update_note_content(self, note_id: str, content: str) -> Note:
        """
        Save note content outside an editing surface and re-index it.

        Raises:
            EntityNotFoundError: If the note does not exist
            StoreWriteError: If the store rejects the write
        """
        try:
            note = await self.store.save_note_content(note_id, content)
        except Exception as e:
            raise wrap_exception(e, StoreWriteError) from e
        self.index.index_note(note)
        return note

    async def dangling(self) -> List[Reference]:
        """References whose target entity no longer exists."""
        return await self.index.dangling(self.store)

    def health_check(self) -> bool:
        """Check if the store is reachable."""
        check = getattr(self.store, "health_check", None)
        return check() if check else True
