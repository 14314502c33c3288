"""
Entity Store Module

The repository interface the engine depends on, plus an in-memory
implementation. Stores may be remote, so every operation is a coroutine.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from ..core.errors import EntityNotFoundError, ValidationError
from .models import Contact, Entity, EntityKind, Note, Topic, utcnow

logger = logging.getLogger(__name__)


def new_entity_id(kind: EntityKind) -> str:
    return f"{kind.value}_{uuid.uuid4().hex[:12]}"


def build_entity(
    kind: EntityKind,
    entity_id: str,
    seed: Dict[str, Any],
    now: Optional[datetime] = None,
) -> Entity:
    """
    Build an entity of ``kind`` from a seed mapping.

    ``display_text`` in the seed fills the kind's display field (title,
    full name or label) when that field is absent.
    """
    now = now or utcnow()
    display = seed.get("display_text", "")

    if kind is EntityKind.NOTE:
        return Note(
            id=entity_id,
            title=seed.get("title") or display,
            content=seed.get("content", ""),
            created_at=now,
            updated_at=now,
        )
    if kind is EntityKind.CONTACT:
        return Contact(
            id=entity_id,
            full_name=seed.get("full_name") or display,
            email=seed.get("email", ""),
            company=seed.get("company", ""),
            created_at=now,
            updated_at=now,
        )
    if kind is EntityKind.TOPIC:
        return Topic(
            id=entity_id,
            label=seed.get("label") or display,
            slug=seed.get("slug", ""),
            created_at=now,
            updated_at=now,
        )
    raise ValidationError(detail=f"Unknown entity kind: {kind!r}")


def rank_entities(entities: Iterable[Entity], query: str, limit: int) -> List[Entity]:
    """
    Rank entities against a query.

    Case-insensitive prefix matches come first, then substring matches.
    Within each group the incoming (store insertion) order is kept. An empty
    query matches everything.
    """
    needle = query.strip().casefold()
    prefix: List[Entity] = []
    substring: List[Entity] = []

    for entity in entities:
        text = entity.display_text.casefold()
        if text.startswith(needle):
            prefix.append(entity)
        elif needle in text:
            substring.append(entity)

    return (prefix + substring)[: max(limit, 0)]


class EntityStore(ABC):
    """Canonical owner of notes, contacts and topics."""

    @abstractmethod
    async def get_entity(self, kind: EntityKind, entity_id: str) -> Optional[Entity]:
        """Fetch one entity, or None."""

    @abstractmethod
    async def list_entities(self, kind: EntityKind) -> List[Entity]:
        """All entities of a kind in insertion order."""

    @abstractmethod
    async def search_entities(
        self, kind: EntityKind, prefix: str, limit: int
    ) -> List[Entity]:
        """Ranked candidates for a typed query."""

    @abstractmethod
    async def create_entity(self, kind: EntityKind, seed: Dict[str, Any]) -> Entity:
        """Create and persist an entity."""

    @abstractmethod
    async def save_note_content(self, note_id: str, content: str) -> Note:
        """Replace a note's content."""

    @abstractmethod
    async def delete_entity(self, kind: EntityKind, entity_id: str) -> bool:
        """Delete an entity. Returns True if it existed."""


class InMemoryEntityStore(EntityStore):
    """Dictionary-backed store; dict order is insertion order."""

    def __init__(self, entities: Optional[Iterable[Entity]] = None):
        self._entities: Dict[EntityKind, Dict[str, Entity]] = {
            kind: {} for kind in EntityKind
        }
        for entity in entities or []:
            self.add(entity)

    def add(self, entity: Entity) -> Entity:
        """Insert an entity created out-of-band (normal CRUD)."""
        self._entities[entity.kind][entity.id] = entity
        return entity

    def count(self, kind: EntityKind) -> int:
        return len(self._entities[kind])

    async def get_entity(self, kind: EntityKind, entity_id: str) -> Optional[Entity]:
        return self._entities[kind].get(entity_id)

    async def list_entities(self, kind: EntityKind) -> List[Entity]:
        return list(self._entities[kind].values())

    async def search_entities(
        self, kind: EntityKind, prefix: str, limit: int
    ) -> List[Entity]:
        return rank_entities(self._entities[kind].values(), prefix, limit)

    async def create_entity(self, kind: EntityKind, seed: Dict[str, Any]) -> Entity:
        entity_id = seed.get("id") or new_entity_id(kind)
        if entity_id in self._entities[kind]:
            raise ValidationError(detail=f"Duplicate {kind.value} id: {entity_id}")
        entity = build_entity(kind, entity_id, seed)
        self._entities[kind][entity_id] = entity
        logger.info(f"Created {kind.value}: {entity_id}")
        return entity

    async def save_note_content(self, note_id: str, content: str) -> Note:
        note = self._entities[EntityKind.NOTE].get(note_id)
        if note is None:
            raise EntityNotFoundError(detail=f"Note not found: {note_id}")
        note.content = content
        note.updated_at = utcnow()
        return note

    async def delete_entity(self, kind: EntityKind, entity_id: str) -> bool:
        return self._entities[kind].pop(entity_id, None) is not None
