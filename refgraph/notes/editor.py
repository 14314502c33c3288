"""
Editing Surface Module

Host-agnostic editing surface for one note: a text buffer, a cursor, the
open suggestion sessions (at most one per reference kind) and the commit
path that splices markers into the buffer.

All mutations run on the surface's single logical thread. Store calls are
the only suspension points; anything that completes after its session moved
on is discarded.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Set

from ..config.logging import log_with_context, set_session_context
from ..config.settings import EngineOptions
from ..core.errors import (
    EntityNotFoundError,
    InvalidTransitionError,
    RefgraphError,
    StaleResolutionError,
    StoreWriteError,
    ValidationError,
    wrap_exception,
)
from .backlinks import BacklinkIndex
from .input import (
    Backspace,
    Cancel,
    CreateNew,
    CursorMove,
    InputEvent,
    SelectCandidate,
    TearDown,
    TextInput,
)
from .markers import extract, find_reference_at, render_reference
from .models import Entity, EntityKind, Note, Reference, ReferenceKind, make_reference
from .resolver import EntityResolver, clean_display
from .store import EntityStore
from .suggestions import (
    CommitPhase,
    CommitRequest,
    CreateRequest,
    Selection,
    SuggestionSession,
)

logger = logging.getLogger(__name__)


class SuggestionListener:
    """Callbacks from the engine to the host UI. Override what you need."""

    def on_trigger_detected(self, kind: ReferenceKind, anchor: int) -> None:
        pass

    def on_query_changed(self, kind: ReferenceKind, text: str) -> None:
        pass

    def on_candidates(self, kind: ReferenceKind, candidates: List[Entity]) -> None:
        pass

    def on_commit(self, kind: ReferenceKind, reference: Reference) -> None:
        pass

    def on_cancel(self, kind: ReferenceKind) -> None:
        pass


class EditingSurface:
    """
    Editing surface for a single note.

    Example:
        surface = await EditingSurface.open("note_1", store, index=index)
        surface.type_text("Met [[Ali")
        await surface.settle()
        await surface.select(surface.active_session.candidates[0].id)
    """

    def __init__(
        self,
        note_id: str,
        store: EntityStore,
        resolver: Optional[EntityResolver] = None,
        index: Optional[BacklinkIndex] = None,
        content: str = "",
        title: str = "",
        options: Optional[EngineOptions] = None,
        listener: Optional[SuggestionListener] = None,
        autosave: bool = True,
    ):
        self.note_id = note_id
        self.title = title
        self.store = store
        self.resolver = resolver or EntityResolver(store)
        self.index = index
        self.options = options or EngineOptions()
        self.listener = listener or SuggestionListener()
        self.autosave = autosave

        self.text = content
        self.cursor = len(content)
        self.sessions: Dict[ReferenceKind, SuggestionSession] = {}
        self.history: List[SuggestionSession] = []
        self.errors: List[RefgraphError] = []
        self.torn_down = False
        self._tasks: Set[asyncio.Task] = set()

        self.session_id = set_session_context(note_id=note_id)

    @classmethod
    async def open(
        cls,
        note_id: str,
        store: EntityStore,
        **kwargs,
    ) -> "EditingSurface":
        """Open a surface on a note loaded from the store."""
        note = await store.get_entity(EntityKind.NOTE, note_id)
        if note is None:
            raise EntityNotFoundError(detail=f"Note not found: {note_id}")
        return cls(note_id, store, content=note.content, title=note.title, **kwargs)

    # -------------------------------------------------------------------------
    # Inspection
    # -------------------------------------------------------------------------

    @property
    def active_session(self) -> Optional[SuggestionSession]:
        """Most recently opened session that is still open."""
        if not self.sessions:
            return None
        return list(self.sessions.values())[-1]

    def session(self, kind: ReferenceKind) -> Optional[SuggestionSession]:
        return self.sessions.get(kind)

    @property
    def references(self) -> List[Reference]:
        return extract(self.text, self.note_id, self.options.max_marker_length)

    def _enabled(self, kind: ReferenceKind) -> bool:
        if kind is ReferenceKind.WIKI_LINK:
            return self.options.enable_wiki_links
        if kind is ReferenceKind.MENTION:
            return self.options.enable_mentions
        return self.options.enable_hashtags

    def _ensure_live(self) -> None:
        if self.torn_down:
            raise InvalidTransitionError(detail="Editing surface was torn down")

    def _pick(self, kind: Optional[ReferenceKind]) -> SuggestionSession:
        session = self.sessions.get(kind) if kind else self.active_session
        if session is None:
            raise InvalidTransitionError(
                detail=f"No open {kind.value if kind else 'suggestion'} session"
            )
        return session

    # -------------------------------------------------------------------------
    # Keystrokes
    # -------------------------------------------------------------------------

    def type_text(self, text: str) -> None:
        """Type characters one at a time at the cursor."""
        for ch in text:
            self._insert(ch)

    def _insert(self, ch: str) -> None:
        self._ensure_live()
        pos = self.cursor
        self.text = self.text[:pos] + ch + self.text[pos:]
        self.cursor = pos + 1
        self._shift_frozen(pos, pos, 1)
        self._refresh_sessions()

        kind = self._detect_trigger(pos, ch)
        if kind is not None:
            anchor = pos - 1 if kind is ReferenceKind.WIKI_LINK else pos
            self._open_session(kind, anchor)

    def _detect_trigger(self, pos: int, ch: str) -> Optional[ReferenceKind]:
        """Kind triggered by ``ch`` inserted at ``pos``, if its context allows."""
        previous = self.text[pos - 1] if pos > 0 else ""

        if ch == "[":
            kind = ReferenceKind.WIKI_LINK
            if previous != "[":
                return None
        elif ch == "@":
            kind = ReferenceKind.MENTION
            if previous and not previous.isspace():
                return None
        elif ch == "#":
            kind = ReferenceKind.HASHTAG
            if previous and not previous.isspace():
                return None
        else:
            return None

        if not self._enabled(kind) or kind in self.sessions:
            return None
        return kind

    def _open_session(self, kind: ReferenceKind, anchor: int) -> SuggestionSession:
        session = SuggestionSession(kind)
        session.on_trigger_detected(kind, anchor)
        self.sessions[kind] = session
        self.history.append(session)
        self.listener.on_trigger_detected(kind, anchor)
        self._schedule_lookup(session)
        return session

    def backspace(self) -> None:
        """Delete the character (or whole marker) before the cursor."""
        self._ensure_live()
        if self.cursor == 0:
            return

        end = self.cursor
        start = end - 1
        if self.options.atomic_marker_delete:
            span = find_reference_at(self.text, end, self.options.max_marker_length)
            if span is not None:
                start = span.start

        self.text = self.text[:start] + self.text[end:]
        self.cursor = start
        self._shift_frozen(start, end, 0)
        self._refresh_sessions()

    def move_cursor(self, position: int) -> None:
        self._ensure_live()
        self.cursor = min(max(position, 0), len(self.text))
        self._refresh_sessions()

    def cancel(self, kind: Optional[ReferenceKind] = None) -> None:
        """Escape: cancel the given (or the active) session."""
        self._ensure_live()
        session = self.sessions.get(kind) if kind else self.active_session
        if session is not None:
            self._close_cancelled(session, "escape")

    def teardown(self) -> None:
        """
        The surface is going away: cancel everything.

        Sessions whose marker is already spliced in (SAVING) are left to
        finish their save so the store and the index stay in step.
        """
        if self.torn_down:
            return
        for session in list(self.sessions.values()):
            if session.phase is CommitPhase.SAVING:
                continue
            self._close_cancelled(session, "teardown", force=True)
        for task in list(self._tasks):
            task.cancel()
        self.torn_down = True
        logger.debug(f"Tore down editing surface for {self.note_id}")

    # -------------------------------------------------------------------------
    # Session upkeep
    # -------------------------------------------------------------------------

    def _context_lost(self, session: SuggestionSession) -> Optional[str]:
        if self.cursor <= session.anchor:
            return "cursor moved before anchor"
        trigger = session.kind.trigger
        if self.text[session.anchor:session.trigger_end] != trigger:
            return "trigger erased"
        if self.cursor < session.trigger_end:
            return "cursor inside trigger"

        query = self.text[session.trigger_end:self.cursor]
        if "\n" in query or "\r" in query:
            return "line break"
        if session.kind is ReferenceKind.HASHTAG and any(c.isspace() for c in query):
            return "whitespace ends a tag"
        return None

    def _refresh_sessions(self) -> None:
        for session in list(self.sessions.values()):
            if session.committing:
                continue
            reason = self._context_lost(session)
            if reason:
                self._close_cancelled(session, reason)
                continue

            query = self.text[session.trigger_end:self.cursor]
            if query != session.query:
                session.on_query_changed(query)
                self.listener.on_query_changed(session.kind, query)
                self._schedule_lookup(session)

    def _close_cancelled(
        self, session: SuggestionSession, reason: str, force: bool = False
    ) -> None:
        if session.on_cancel(reason, force=force):
            self.sessions.pop(session.kind, None)
            self.listener.on_cancel(session.kind)

    def _shift_frozen(self, start: int, end: int, inserted: int) -> None:
        """
        Keep spans of in-flight commits aligned with an edit.

        ``[start, end)`` was replaced by ``inserted`` characters. Spans after
        the edit shift; spans the edit touches are marked dirty.
        """
        delta = inserted - (end - start)
        for session in self.sessions.values():
            if session.commit_span is None:
                continue
            span_start, span_end, expected = session.commit_span
            if end <= span_start:
                session.commit_span = (span_start + delta, span_end + delta, expected)
            elif start < span_end:
                session.commit_span = (span_start, span_end, None)

    # -------------------------------------------------------------------------
    # Candidate lookups
    # -------------------------------------------------------------------------

    def _schedule_lookup(self, session: SuggestionSession) -> None:
        if len(session.query) < self.options.min_lookup_length:
            session.candidates = []
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        seq = session.begin_lookup()
        task = loop.create_task(self._lookup(session, seq, session.query))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _lookup(self, session: SuggestionSession, seq: int, query: str) -> None:
        exclude = None
        if session.kind is ReferenceKind.WIKI_LINK and not self.options.allow_self_links:
            exclude = self.note_id
        try:
            results = await self.resolver.candidates(
                session.kind, query, self.options.candidate_limit, exclude
            )
        except Exception as e:
            logger.warning(f"Candidate lookup failed for {query!r}: {e}")
            session.abandon_lookup(seq)
            return

        if session.apply_candidates(seq, results):
            self.listener.on_candidates(session.kind, results)

    async def refresh_candidates(
        self, kind: Optional[ReferenceKind] = None
    ) -> List[Entity]:
        """Run a lookup for the current query and wait for it."""
        session = self._pick(kind)
        seq = session.begin_lookup()
        await self._lookup(session, seq, session.query)
        return session.candidates

    async def settle(self) -> None:
        """Wait until no candidate lookups are outstanding."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Commits
    # -------------------------------------------------------------------------

    async def select(
        self, entity_id: str, kind: Optional[ReferenceKind] = None
    ) -> Optional[Reference]:
        """Commit an existing entity from the candidate list."""
        return await self._commit(self._pick(kind), Selection(entity_id))

    async def create_new(
        self, kind: Optional[ReferenceKind] = None, text: Optional[str] = None
    ) -> Optional[Reference]:
        """Commit by resolving (creating on demand) the typed text."""
        return await self._commit(self._pick(kind), CreateRequest(text))

    async def _resolve_target(self, session: SuggestionSession, request: CommitRequest):
        if isinstance(request, Selection):
            entity = await self.resolver.get(session.kind, request.entity_id)
            return entity.id, clean_display(entity.display_text) or entity.id
        text = clean_display(request.text if request.text is not None else session.query)
        if not text:
            raise ValidationError(detail="Nothing typed to create")
        return await self.resolver.resolve(session.kind, text), text

    async def _commit(
        self, session: SuggestionSession, request: CommitRequest
    ) -> Optional[Reference]:
        """
        Replace the session's trigger+query span with a marker.

        Returns:
            The committed reference, or None if the session moved on while
            the target was being resolved

        Raises:
            RefgraphError: Resolution or save failed; the buffer is left
                holding the raw typed text
        """
        self._ensure_live()
        session.on_commit(request)
        start, end = session.anchor, self.cursor
        session.commit_span = (start, end, self.text[start:end])

        try:
            target_id, display = await self._resolve_target(session, request)
        except Exception as e:
            error = wrap_exception(e, StoreWriteError)
            if session.is_open:
                self._close_cancelled(session, "resolution failed", force=True)
            error.log()
            raise error from e

        start, end, raw = session.commit_span
        if (
            session.is_closed
            or self.torn_down
            or raw is None
            or self.text[start:end] != raw
        ):
            StaleResolutionError(
                detail=f"{session.kind.value} commit for {target_id} arrived late",
                context={"session_id": session.session_id},
            ).log()
            if session.is_open:
                self._close_cancelled(session, "span edited during commit", force=True)
            return None

        reference = make_reference(session.kind, target_id, display, self.note_id, start)
        marker = render_reference(reference)
        self.text = self.text[:start] + marker + self.text[end:]
        if self.cursor >= end:
            self.cursor += len(marker) - (end - start)
        elif self.cursor > start:
            self.cursor = start + len(marker)
        self._shift_frozen(start, end, len(marker))
        session.commit_span = (start, start + len(marker), marker)
        session.mark_saving()

        for other in list(self.sessions.values()):
            if other is not session and not other.committing:
                self._close_cancelled(other, "content replaced by commit")

        try:
            note = await self._persist()
        except Exception as e:
            self._roll_back(session, raw)
            error = wrap_exception(e, StoreWriteError)
            error.log()
            raise error from e

        # The marker is stored from here on; index it whatever the session did
        if self.index is not None:
            self.index.index_note(note)
        session.commit_span = None
        if session.is_open:
            session.complete_commit(reference)
        self.sessions.pop(session.kind, None)

        self.listener.on_commit(session.kind, reference)
        log_with_context(
            logger,
            logging.INFO,
            f"Committed {session.kind.value} reference",
            note_id=self.note_id,
            target_id=target_id,
        )
        return reference

    def _roll_back(self, session: SuggestionSession, raw: str) -> None:
        """Put the raw trigger+query text back where the marker went."""
        start, end, marker = session.commit_span
        if marker is not None and self.text[start:end] == marker:
            self.text = self.text[:start] + raw + self.text[end:]
            if self.cursor >= end:
                self.cursor += len(raw) - (end - start)
            elif self.cursor > start:
                self.cursor = start + len(raw)
            self._shift_frozen(start, end, len(raw))
        else:
            logger.warning(f"Marker at {start} was edited; leaving text as is")
        session.commit_span = None
        if session.is_open:
            self._close_cancelled(session, "save failed", force=True)
        else:
            self.sessions.pop(session.kind, None)

    async def _persist(self) -> Note:
        if not self.autosave:
            return Note(id=self.note_id, title=self.title, content=self.text)
        return await self.store.save_note_content(self.note_id, self.text)

    async def save(self) -> Note:
        """
        Persist the buffer and re-index the note.

        Raises:
            StoreWriteError: If the store rejects the write
        """
        try:
            note = await self.store.save_note_content(self.note_id, self.text)
        except Exception as e:
            raise wrap_exception(e, StoreWriteError) from e
        if self.index is not None:
            self.index.index_note(note)
        return note

    # -------------------------------------------------------------------------
    # Input stream
    # -------------------------------------------------------------------------

    async def dispatch(self, event: InputEvent) -> None:
        """
        Apply one logical input event.

        Refgraph errors are logged and collected in ``errors``; they never
        propagate to the host.
        """
        try:
            if isinstance(event, TextInput):
                self.type_text(event.text)
            elif isinstance(event, Backspace):
                self.backspace()
            elif isinstance(event, CursorMove):
                self.move_cursor(event.position)
            elif isinstance(event, SelectCandidate):
                await self.select(event.entity_id, event.kind)
            elif isinstance(event, CreateNew):
                await self.create_new(event.kind, event.text)
            elif isinstance(event, Cancel):
                self.cancel(event.kind)
            elif isinstance(event, TearDown):
                self.teardown()
            else:
                raise TypeError(f"Unknown input event: {type(event).__name__}")
        except RefgraphError as e:
            self.errors.append(e)
            logger.debug(f"Input event {type(event).__name__} failed: {e}")

    async def feed(self, events: Iterable[InputEvent]) -> None:
        """Dispatch events in arrival order."""
        for event in events:
            await self.dispatch(event)
