"""
Backlinks Module

Incrementally maintained backlink index. Everything here is derived from
note content: re-indexing a note whose marker was removed drops the
backlink, with no separate deletion step.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..config.logging import log_performance
from ..config.settings import EngineOptions
from .markers import MarkerSpan, display_form, extract_spans
from .models import Backlink, EntityKind, Note, Reference
from .store import EntityStore

logger = logging.getLogger(__name__)

ELLIPSIS = "…"
_WHITESPACE = re.compile(r"\s+")


def make_snippet(
    content: str,
    spans: List[MarkerSpan],
    focus: MarkerSpan,
    radius: int,
) -> Tuple[str, Tuple[int, int]]:
    """
    Cut a context window around ``focus``.

    The raw window is ``radius`` characters on each side of the marker. An
    edge landing inside another marker moves inward to that marker's
    boundary, so markers are either whole or absent. Markers are shown in
    display form and whitespace runs collapse to one space.

    Returns:
        (snippet, (start, end) of the focus display text within the snippet)
    """
    start = max(0, focus.start - radius)
    end = min(len(content), focus.end + radius)
    for span in spans:
        if span.start < start < span.end:
            start = span.end
        if span.start < end < span.end:
            end = span.start

    pieces: List[Tuple[str, bool]] = []
    cursor = start
    for span in spans:
        if span.end <= start or span.start >= end:
            continue
        pieces.append((content[cursor:span.start], False))
        pieces.append((display_form(span.reference), span.start == focus.start))
        cursor = span.end
    pieces.append((content[cursor:end], False))

    text = ""
    highlight = (0, 0)
    for piece, is_focus in pieces:
        piece = _WHITESPACE.sub(" ", piece)
        if text.endswith(" ") and piece.startswith(" "):
            piece = piece[1:]
        if is_focus:
            highlight = (len(text), len(text) + len(piece))
        text += piece

    lead = len(text) - len(text.lstrip(" "))
    text = text.strip(" ")
    offset = -lead
    if start > 0:
        text = ELLIPSIS + text
        offset += len(ELLIPSIS)
    if end < len(content):
        text = text + ELLIPSIS

    return text, (max(0, highlight[0] + offset), max(0, highlight[1] + offset))


@dataclass
class _IndexedNote:
    note_id: str
    title: str
    content: str
    spans: List[MarkerSpan] = field(default_factory=list)


class BacklinkIndex:
    """
    Eager backlink index.

    Keeps the scanned markers of every note and an inverted
    ``target id -> source note ids`` map. Reads and writes share the editing
    surface's single logical thread, so queries always see a consistent
    snapshot.
    """

    def __init__(self, options: Optional[EngineOptions] = None):
        self.options = options or EngineOptions()
        self._notes: Dict[str, _IndexedNote] = {}
        self._sources: Dict[str, Dict[str, None]] = {}

    def __contains__(self, note_id: str) -> bool:
        return note_id in self._notes

    def __len__(self) -> int:
        return len(self._notes)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def index_note(self, note: Note) -> List[Reference]:
        """(Re)index one note and return its references."""
        self._drop_edges(note.id)

        spans = extract_spans(note.content, note.id, self.options.max_marker_length)
        self._notes[note.id] = _IndexedNote(note.id, note.title, note.content, spans)
        for span in spans:
            self._sources.setdefault(span.reference.target_id, {})[note.id] = None

        logger.debug(f"Indexed note {note.id}: {len(spans)} references")
        return [span.reference for span in spans]

    def remove_note(self, note_id: str) -> bool:
        """Forget a note. Returns True if it was indexed."""
        self._drop_edges(note_id)
        return self._notes.pop(note_id, None) is not None

    def _drop_edges(self, note_id: str) -> None:
        previous = self._notes.get(note_id)
        if previous is None:
            return
        for span in previous.spans:
            sources = self._sources.get(span.reference.target_id)
            if sources is None:
                continue
            sources.pop(note_id, None)
            if not sources:
                del self._sources[span.reference.target_id]

    @log_performance(threshold_ms=500)
    def rebuild(self, notes: Iterable[Note]) -> None:
        """Discard everything and index ``notes`` from scratch."""
        self._notes.clear()
        self._sources.clear()
        for note in notes:
            self.index_note(note)
        logger.info(f"Rebuilt backlink index: {len(self._notes)} notes")

    async def refresh(self, store: EntityStore) -> None:
        """Rebuild from every note in the store."""
        self.rebuild(await store.list_entities(EntityKind.NOTE))

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def backlinks_of(self, target_id: str) -> List[Backlink]:
        """
        Notes referencing ``target_id``.

        One entry per source note, ordered by source title then id. The
        snippet is cut around the first reference in the note.
        """
        backlinks = []
        for source_id in self._sources.get(target_id, {}):
            indexed = self._notes[source_id]
            hits = [s for s in indexed.spans if s.reference.target_id == target_id]
            snippet, highlight = make_snippet(
                indexed.content, indexed.spans, hits[0], self.options.snippet_radius
            )
            backlinks.append(
                Backlink(
                    target_id=target_id,
                    source_note_id=source_id,
                    source_title=indexed.title,
                    context_snippet=snippet,
                    highlight=highlight,
                    occurrences=len(hits),
                )
            )

        backlinks.sort(key=lambda b: (b.source_title.casefold(), b.source_note_id))
        return backlinks

    def outgoing(self, note_id: str) -> List[Reference]:
        """References in a note, in content order."""
        indexed = self._notes.get(note_id)
        if indexed is None:
            return []
        return [span.reference for span in indexed.spans]

    def targets(self) -> List[str]:
        """Every target id with at least one live reference."""
        return list(self._sources)

    def graph(self) -> Dict[str, Any]:
        """
        Get the reference graph for visualization.

        Returns:
            Dict with nodes and edges; edges aggregate repeated references
        """
        nodes: Dict[str, Dict[str, Any]] = {}
        for indexed in self._notes.values():
            nodes[indexed.note_id] = {
                "id": indexed.note_id,
                "label": indexed.title,
                "kind": EntityKind.NOTE.value,
            }

        edges: Dict[Tuple[str, str], Dict[str, Any]] = {}
        for indexed in self._notes.values():
            for span in indexed.spans:
                ref = span.reference
                nodes.setdefault(
                    ref.target_id,
                    {
                        "id": ref.target_id,
                        "label": ref.display_text,
                        "kind": ref.kind.entity_kind.value,
                    },
                )
                edge = edges.setdefault(
                    (indexed.note_id, ref.target_id),
                    {
                        "source": indexed.note_id,
                        "target": ref.target_id,
                        "kind": ref.kind.value,
                        "count": 0,
                    },
                )
                edge["count"] += 1

        return {"nodes": list(nodes.values()), "edges": list(edges.values())}

    async def dangling(self, store: EntityStore) -> List[Reference]:
        """References whose target no longer exists in the store."""
        missing = []
        for indexed in self._notes.values():
            for span in indexed.spans:
                ref = span.reference
                if await store.get_entity(ref.kind.entity_kind, ref.target_id) is None:
                    missing.append(ref)
        return missing
