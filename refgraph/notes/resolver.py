"""
Entity Resolver Module

Maps typed display text to an entity id, creating the entity on demand.
Resolution is idempotent with respect to store state: the same
``(kind, text)`` with no other mutation in between yields the same id.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from ..core.errors import (
    AmbiguousResolutionError,
    EntityNotFoundError,
    StoreWriteError,
    ValidationError,
)
from .models import Entity, ReferenceKind
from .store import EntityStore

logger = logging.getLogger(__name__)


def clean_display(text: str) -> str:
    """Trim and collapse internal whitespace."""
    return " ".join(text.split())


def normalize_display(text: str) -> str:
    """Comparison key for display text."""
    return clean_display(text).casefold()


class EntityResolver:
    """
    Deduplicating entity resolver.

    Concurrent resolutions of the same key share one in-flight lookup, so
    interleaved callers on the same event loop never create duplicates.
    """

    def __init__(self, store: EntityStore):
        self.store = store
        self._inflight: Dict[Tuple[ReferenceKind, str], "asyncio.Future[str]"] = {}

    async def find(self, kind: ReferenceKind, text: str) -> Optional[Entity]:
        """
        Find the existing entity whose display text matches ``text``.

        When several match, the most recently updated one wins (later
        insertion breaks ties).
        """
        key = normalize_display(text)
        entities = await self.store.list_entities(kind.entity_kind)
        matches = [
            (index, entity)
            for index, entity in enumerate(entities)
            if normalize_display(entity.display_text) == key
        ]
        if not matches:
            return None

        if len(matches) > 1:
            AmbiguousResolutionError(
                detail=f"{len(matches)} {kind.entity_kind.value}s named {text!r}",
                context={"ids": [entity.id for _, entity in matches]},
            ).log()

        _, chosen = max(matches, key=lambda item: (item[1].updated_at, item[0]))
        return chosen

    async def resolve(self, kind: ReferenceKind, query_text: str) -> str:
        """
        Resolve display text to an entity id, creating the entity if needed.

        Args:
            kind: Reference kind being committed
            query_text: Text the user typed

        Returns:
            Entity id

        Raises:
            ValidationError: If the text is empty
            StoreWriteError: If creating the entity failed
        """
        text = clean_display(query_text)
        if not text:
            raise ValidationError(detail="Cannot resolve empty text")

        key = (kind, text.casefold())
        pending = self._inflight.get(key)
        if pending is None:
            pending = asyncio.ensure_future(self._resolve(kind, text))
            self._inflight[key] = pending
            pending.add_done_callback(lambda _: self._inflight.pop(key, None))

        return await asyncio.shield(pending)

    async def _resolve(self, kind: ReferenceKind, text: str) -> str:
        existing = await self.find(kind, text)
        if existing is not None:
            logger.debug(f"Resolved {kind.value} {text!r} to {existing.id}")
            return existing.id

        try:
            entity = await self.store.create_entity(
                kind.entity_kind, {"display_text": text}
            )
        except StoreWriteError:
            raise
        except Exception as e:
            raise StoreWriteError(
                detail=f"Could not create {kind.entity_kind.value} {text!r}: {e}",
                original_error=e,
            ) from e

        logger.info(f"Created {kind.entity_kind.value} {entity.id} for {text!r}")
        return entity.id

    async def get(self, kind: ReferenceKind, entity_id: str) -> Entity:
        """
        Fetch a selected entity.

        Raises:
            EntityNotFoundError: If no entity of the kind has that id
        """
        entity = await self.store.get_entity(kind.entity_kind, entity_id)
        if entity is None:
            raise EntityNotFoundError(
                detail=f"{kind.entity_kind.value} {entity_id} does not exist"
            )
        return entity

    async def candidates(
        self,
        kind: ReferenceKind,
        query: str,
        limit: int = 8,
        exclude_id: Optional[str] = None,
    ) -> List[Entity]:
        """Ranked suggestions for a query, optionally excluding one id."""
        fetch = limit + 1 if exclude_id else limit
        results = await self.store.search_entities(kind.entity_kind, query, fetch)
        if exclude_id:
            results = [entity for entity in results if entity.id != exclude_id]
        return results[:limit]
