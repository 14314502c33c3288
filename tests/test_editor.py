"""Tests for the editing surface and keyboard adapter."""

import asyncio

import pytest

from refgraph.config.settings import EngineOptions
from refgraph.core.errors import (
    EntityNotFoundError,
    InvalidTransitionError,
    StoreWriteError,
)
from refgraph.notes import (
    Backspace,
    Cancel,
    CreateNew,
    EditingSurface,
    KeyboardAdapter,
    SuggestionListener,
    TextInput,
)
from refgraph.notes.markers import extract
from refgraph.notes.models import EntityKind, ReferenceKind, WikiLinkRef
from refgraph.notes.suggestions import CloseReason, CommitPhase, SessionState

from doubles import DelayedStore, FailingStore, seed_entities


class RecordingListener(SuggestionListener):
    """Listener that records every callback."""

    def __init__(self):
        self.events = []

    def on_trigger_detected(self, kind, anchor):
        self.events.append(("trigger", kind, anchor))

    def on_query_changed(self, kind, text):
        self.events.append(("query", kind, text))

    def on_candidates(self, kind, candidates):
        self.events.append(("candidates", kind, [c.id for c in candidates]))

    def on_commit(self, kind, reference):
        self.events.append(("commit", kind, reference.target_id))

    def on_cancel(self, kind):
        self.events.append(("cancel", kind))


async def pump(times=3):
    """Let scheduled tasks take a few steps."""
    for _ in range(times):
        await asyncio.sleep(0)


# =============================================================================
# Scenarios
# =============================================================================


class TestScenarios:
    """End-to-end authoring flows."""

    @pytest.mark.asyncio
    async def test_select_existing_note(self, surface, index):
        """Typing [[Ali and picking "Alice 1:1" links to note_42."""
        surface.type_text("Met [[")
        session = surface.session(ReferenceKind.WIKI_LINK)
        assert session.state is SessionState.COMPOSING
        assert session.anchor == 4
        assert session.query == ""

        surface.type_text("Ali")
        assert session.query == "Ali"
        await surface.settle()
        assert [c.id for c in session.candidates] == ["note_42", "note_7"]

        reference = await surface.select("note_42")

        assert reference == WikiLinkRef("note_42", "Alice 1:1", "note_1", 4)
        assert surface.text == "Met [[note_42|Alice 1:1]]"
        assert surface.cursor == len(surface.text)
        assert session.close_reason is CloseReason.COMMITTED
        assert surface.sessions == {}

        backlinks = index.backlinks_of("note_42")
        assert [b.source_note_id for b in backlinks] == ["note_1"]
        assert backlinks[0].context_snippet == "Met Alice 1:1"

    @pytest.mark.asyncio
    async def test_create_contact_once(self, surface, store):
        """@Bob creates one contact; a second @Bob reuses it."""
        surface.type_text("@Bob")
        first = await surface.create_new()

        surface.type_text(" and later @Bob")
        second = await surface.create_new()

        assert first.kind is ReferenceKind.MENTION
        assert first.target_id == second.target_id
        assert store.count(EntityKind.CONTACT) == 2

        contact = await store.get_entity(EntityKind.CONTACT, first.target_id)
        assert contact.full_name == "Bob"
        assert [r.target_id for r in extract(surface.text)] == [first.target_id] * 2

    @pytest.mark.asyncio
    async def test_backspace_past_trigger_cancels(self, make_surface, store):
        """[[Al then four backspaces leaves the text alone."""
        surface = make_surface(store, content="Notes: ")
        surface.type_text("[[Al")
        session = surface.session(ReferenceKind.WIKI_LINK)

        for _ in range(4):
            surface.backspace()

        assert session.state is SessionState.CLOSED
        assert session.close_reason is CloseReason.CANCELLED
        assert surface.text == "Notes: "
        assert surface.references == []
        assert surface.index.targets() == []


# =============================================================================
# Session upkeep
# =============================================================================


class TestTriggers:
    """Tests for trigger detection."""

    def test_mention_needs_word_boundary(self, surface):
        surface.type_text("mail me at bob@example.com")
        assert surface.sessions == {}

    def test_hashtag_needs_word_boundary(self, surface):
        surface.type_text("issue#12")
        assert surface.sessions == {}

    def test_single_bracket_is_not_a_trigger(self, surface):
        surface.type_text("a [b]")
        assert surface.sessions == {}

    def test_disabled_kind_never_triggers(self, make_surface, store):
        surface = make_surface(store, options=EngineOptions(enable_hashtags=False))
        surface.type_text("#ops")
        assert surface.sessions == {}

    def test_same_kind_trigger_is_plain_text(self, surface):
        surface.type_text("@Al @x")
        session = surface.session(ReferenceKind.MENTION)
        assert session.query == "Al @x"
        assert len(surface.history) == 1

    def test_anchor_for_mention(self, surface):
        surface.type_text("hi @")
        assert surface.session(ReferenceKind.MENTION).anchor == 3


class TestContextLoss:
    """Sessions close when their context goes away."""

    def test_cursor_before_anchor(self, surface):
        surface.type_text("see @Bo")
        session = surface.active_session
        surface.move_cursor(2)
        assert session.close_reason is CloseReason.CANCELLED

    def test_newline_ends_mention(self, surface):
        surface.type_text("@Bo\n")
        assert surface.history[0].is_closed

    def test_space_ends_hashtag(self, surface):
        surface.type_text("#q3 ")
        assert surface.history[0].is_closed

    def test_space_allowed_in_mention(self, surface):
        surface.type_text("@Alice Sm")
        assert surface.active_session.query == "Alice Sm"

    def test_escape(self, surface):
        surface.type_text("[[Pro")
        surface.cancel()
        assert surface.history[0].close_reason is CloseReason.CANCELLED
        assert surface.text == "[[Pro"

    @pytest.mark.asyncio
    async def test_commit_cancels_other_sessions(self, surface):
        surface.type_text("@Al #q")
        mention = surface.session(ReferenceKind.MENTION)
        assert surface.session(ReferenceKind.HASHTAG) is not None

        await surface.create_new(ReferenceKind.HASHTAG)

        assert mention.close_reason is CloseReason.CANCELLED
        assert surface.sessions == {}


# =============================================================================
# Candidate lookups
# =============================================================================


class TestLookups:
    """Tests for candidate lookups."""

    @pytest.mark.asyncio
    async def test_stale_lookup_discarded(self, make_surface):
        store = DelayedStore(seed_entities())
        store.hold_searches = True
        listener = RecordingListener()
        surface = make_surface(store, listener=listener)

        surface.type_text("[[Al")
        await pump()
        session = surface.active_session
        assert len(store.search_gates) == 3

        store.search_gates[2].set()
        await pump()
        assert [c.id for c in session.candidates] == ["note_42", "note_7"]

        store.search_gates[0].set()
        store.search_gates[1].set()
        await surface.settle()

        assert [c.id for c in session.candidates] == ["note_42", "note_7"]
        delivered = [e for e in listener.events if e[0] == "candidates"]
        assert len(delivered) == 1

    @pytest.mark.asyncio
    async def test_self_link_excluded(self, surface):
        surface.type_text("[[Week")
        await surface.settle()
        assert surface.active_session.candidates == []

    @pytest.mark.asyncio
    async def test_self_link_allowed(self, make_surface, store):
        surface = make_surface(store, options=EngineOptions(allow_self_links=True))
        surface.type_text("[[Week")
        await surface.settle()
        assert [c.id for c in surface.active_session.candidates] == ["note_1"]

    @pytest.mark.asyncio
    async def test_min_lookup_length(self, make_surface, store):
        surface = make_surface(store, options=EngineOptions(min_lookup_length=2))
        surface.type_text("@A")
        await surface.settle()
        assert surface.active_session.candidates == []

        surface.type_text("l")
        await surface.settle()
        assert [c.id for c in surface.active_session.candidates] == ["contact_alice"]

    @pytest.mark.asyncio
    async def test_failed_lookup_clears_pending(self, make_surface):
        store = FailingStore(seed_entities(), fail_saves=False, fail_searches=True)
        surface = make_surface(store)
        surface.type_text("@Al")
        await surface.settle()

        session = surface.active_session
        assert session.is_open
        assert session.pending is False
        assert session.candidates == []

    @pytest.mark.asyncio
    async def test_failed_lookup_keeps_previous_candidates(self, make_surface):
        store = FailingStore(seed_entities(), fail_saves=False)
        surface = make_surface(store)
        surface.type_text("@Al")
        await surface.settle()
        assert [c.id for c in surface.active_session.candidates] == ["contact_alice"]

        store.fail_searches = True
        surface.type_text("i")
        await surface.settle()

        session = surface.active_session
        assert session.query == "Ali"
        assert session.pending is False
        assert [c.id for c in session.candidates] == ["contact_alice"]

    @pytest.mark.asyncio
    async def test_refresh_candidates(self, surface):
        surface.type_text("#q")
        candidates = await surface.refresh_candidates()
        assert [c.id for c in candidates] == ["topic_q3"]


# =============================================================================
# Commits
# =============================================================================


class TestCommitFailures:
    """Failed commits leave the raw text in place."""

    @pytest.mark.asyncio
    async def test_save_failure_rolls_back(self, make_surface):
        store = FailingStore(seed_entities())
        surface = make_surface(store)
        surface.type_text("Met @Ali")
        session = surface.active_session

        with pytest.raises(StoreWriteError):
            await surface.select("contact_alice")

        assert surface.text == "Met @Ali"
        assert surface.cursor == len("Met @Ali")
        assert session.close_reason is CloseReason.CANCELLED
        assert surface.sessions == {}
        assert surface.index.backlinks_of("contact_alice") == []
        assert store.save_attempts == 1

    @pytest.mark.asyncio
    async def test_create_failure_keeps_text(self, make_surface):
        store = FailingStore(seed_entities(), fail_saves=False, fail_creates=True)
        surface = make_surface(store)
        surface.type_text("@Zed")

        with pytest.raises(StoreWriteError):
            await surface.create_new()

        assert surface.text == "@Zed"
        assert surface.history[0].is_closed
        assert store.count(EntityKind.CONTACT) == 1

    @pytest.mark.asyncio
    async def test_unknown_selection(self, surface):
        surface.type_text("[[x")
        with pytest.raises(EntityNotFoundError):
            await surface.select("note_missing")
        assert surface.text == "[[x"

    @pytest.mark.asyncio
    async def test_dispatch_records_errors(self, make_surface):
        store = FailingStore(seed_entities())
        surface = make_surface(store)

        await surface.feed([TextInput("@Bob"), CreateNew()])

        assert surface.text == "@Bob"
        assert len(surface.errors) == 1
        assert isinstance(surface.errors[0], StoreWriteError)

    @pytest.mark.asyncio
    async def test_autosave_off_skips_store(self, make_surface):
        store = FailingStore(seed_entities())
        surface = make_surface(store, autosave=False)
        surface.type_text("@Alice")

        reference = await surface.select("contact_alice")

        assert reference.target_id == "contact_alice"
        assert store.save_attempts == 0
        assert surface.text == "@[Alice Smith](contact:contact_alice)"


class TestCommitRaces:
    """Edits that race an in-flight commit."""

    @pytest.mark.asyncio
    async def test_cancel_while_resolving_discards_result(self, make_surface):
        store = DelayedStore(seed_entities())
        store.create_gate = asyncio.Event()
        surface = make_surface(store)
        surface.type_text("@Zed")

        commit = asyncio.ensure_future(surface.create_new())
        await pump()
        assert surface.active_session.phase is CommitPhase.RESOLVING

        surface.cancel()
        store.create_gate.set()

        assert await commit is None
        assert surface.text == "@Zed"
        # the entity created on the way stays and is reused later
        assert store.count(EntityKind.CONTACT) == 2

    @pytest.mark.asyncio
    async def test_edit_inside_span_discards_result(self, make_surface):
        store = DelayedStore(seed_entities())
        store.create_gate = asyncio.Event()
        surface = make_surface(store)
        surface.type_text("@Zed")

        commit = asyncio.ensure_future(surface.create_new())
        await pump()
        surface.backspace()
        store.create_gate.set()

        assert await commit is None
        assert surface.text == "@Ze"
        assert surface.history[0].close_reason is CloseReason.CANCELLED

    @pytest.mark.asyncio
    async def test_typing_after_span_keeps_commit(self, make_surface):
        store = DelayedStore(seed_entities())
        store.create_gate = asyncio.Event()
        surface = make_surface(store)
        surface.type_text("@Zed")

        commit = asyncio.ensure_future(surface.create_new())
        await pump()
        surface.type_text("!")
        store.create_gate.set()

        reference = await commit
        assert surface.text == f"@[Zed](contact:{reference.target_id})!"
        assert surface.cursor == len(surface.text)

    @pytest.mark.asyncio
    async def test_cancel_ignored_while_saving(self, make_surface):
        store = DelayedStore(seed_entities())
        store.save_gate = asyncio.Event()
        surface = make_surface(store)
        surface.type_text("@Alice")

        commit = asyncio.ensure_future(surface.select("contact_alice"))
        await pump()
        session = surface.active_session
        assert session.phase is CommitPhase.SAVING

        surface.cancel()
        assert session.is_open

        store.save_gate.set()
        reference = await commit
        assert reference.target_id == "contact_alice"
        assert session.close_reason is CloseReason.COMMITTED

    @pytest.mark.asyncio
    async def test_teardown_while_saving_finishes_commit(self, make_surface):
        store = DelayedStore(seed_entities())
        store.save_gate = asyncio.Event()
        surface = make_surface(store)
        surface.type_text("@Alice")

        commit = asyncio.ensure_future(surface.select("contact_alice"))
        await pump()
        session = surface.active_session
        assert session.phase is CommitPhase.SAVING

        surface.teardown()
        assert session.is_open

        store.save_gate.set()
        reference = await commit

        assert reference.target_id == "contact_alice"
        assert session.close_reason is CloseReason.COMMITTED
        assert surface.sessions == {}
        note = await store.get_entity(EntityKind.NOTE, "note_1")
        assert note.content == "@[Alice Smith](contact:contact_alice)"
        backlinks = surface.index.backlinks_of("contact_alice")
        assert [b.source_note_id for b in backlinks] == ["note_1"]

    @pytest.mark.asyncio
    async def test_teardown_while_saving_then_save_fails(self, make_surface):
        store = DelayedStore(seed_entities())
        store.save_gate = asyncio.Event()
        store.fail_saves = True
        surface = make_surface(store)
        surface.type_text("@Alice")

        commit = asyncio.ensure_future(surface.select("contact_alice"))
        await pump()
        session = surface.active_session
        surface.teardown()
        store.save_gate.set()

        with pytest.raises(StoreWriteError):
            await commit

        assert surface.text == "@Alice"
        assert session.close_reason is CloseReason.CANCELLED
        assert surface.sessions == {}
        assert surface.index.backlinks_of("contact_alice") == []


# =============================================================================
# Editing
# =============================================================================


class TestEditing:
    """Tests for plain editing operations."""

    def test_atomic_marker_delete(self, make_surface, store):
        surface = make_surface(store, content="see [[note_42|Alice 1:1]]")
        surface.backspace()
        assert surface.text == "see "
        assert surface.cursor == 4

    def test_character_delete_when_not_atomic(self, make_surface, store):
        surface = make_surface(
            store,
            content="see [[note_42|Alice 1:1]]",
            options=EngineOptions(atomic_marker_delete=False),
        )
        surface.backspace()
        assert surface.text == "see [[note_42|Alice 1:1]"

    def test_backspace_at_start(self, surface):
        surface.backspace()
        assert surface.text == ""

    def test_move_cursor_clamps(self, surface):
        surface.type_text("abc")
        surface.move_cursor(99)
        assert surface.cursor == 3
        surface.move_cursor(-5)
        assert surface.cursor == 0

    def test_insert_mid_text(self, make_surface, store):
        surface = make_surface(store, content="ab")
        surface.move_cursor(1)
        surface.type_text("X")
        assert surface.text == "aXb"
        assert surface.cursor == 2

    @pytest.mark.asyncio
    async def test_save(self, surface, store, index):
        surface.type_text("plain [[note_42|Alice 1:1]]")
        await surface.save()

        note = await store.get_entity(EntityKind.NOTE, "note_1")
        assert note.content == surface.text
        assert [b.source_note_id for b in index.backlinks_of("note_42")] == ["note_1"]

    @pytest.mark.asyncio
    async def test_open_loads_content(self, store):
        surface = await EditingSurface.open("note_42", store)
        assert surface.text == "Career goals and feedback."
        assert surface.cursor == len(surface.text)
        assert surface.title == "Alice 1:1"

    @pytest.mark.asyncio
    async def test_open_missing_note(self, store):
        with pytest.raises(EntityNotFoundError):
            await EditingSurface.open("note_missing", store)


class TestTeardown:
    """Tests for tearing the surface down."""

    def test_teardown_cancels_sessions(self, surface):
        surface.type_text("@Al")
        session = surface.active_session
        surface.teardown()

        assert session.close_reason is CloseReason.CANCELLED
        assert surface.sessions == {}

    def test_no_edits_after_teardown(self, surface):
        surface.teardown()
        with pytest.raises(InvalidTransitionError):
            surface.type_text("x")

    @pytest.mark.asyncio
    async def test_dispatch_after_teardown_is_recorded(self, surface):
        surface.teardown()
        await surface.dispatch(Backspace())
        assert isinstance(surface.errors[0], InvalidTransitionError)


class TestListener:
    """Tests for listener callbacks."""

    @pytest.mark.asyncio
    async def test_callback_sequence(self, make_surface, store):
        listener = RecordingListener()
        surface = make_surface(store, listener=listener)

        surface.type_text("@Al")
        await surface.settle()
        await surface.select("contact_alice")
        surface.type_text(" #x")
        await surface.dispatch(Cancel())

        kinds = [event[0] for event in listener.events]
        assert kinds[0] == "trigger"
        assert ("query", ReferenceKind.MENTION, "Al") in listener.events
        assert ("commit", ReferenceKind.MENTION, "contact_alice") in listener.events
        assert kinds[-1] == "cancel"


# =============================================================================
# Keyboard adapter
# =============================================================================


class TestKeyboardAdapter:
    """Tests for key translation."""

    @pytest.fixture
    def adapter(self, surface):
        return KeyboardAdapter(surface)

    async def type_keys(self, adapter, keys):
        for key in keys:
            await adapter.press(key)

    @pytest.mark.asyncio
    async def test_arrow_and_enter_select(self, adapter, surface):
        await self.type_keys(adapter, "[[Ali")
        await surface.settle()

        await adapter.press("ArrowDown")
        assert adapter.highlighted == 1
        await adapter.press("Enter")

        assert surface.text == "[[note_7|Alice onboarding]]"

    @pytest.mark.asyncio
    async def test_create_row(self, adapter, surface, store):
        await self.type_keys(adapter, "[[Ali")
        await surface.settle()

        for _ in range(5):
            await adapter.press("ArrowDown")
        assert adapter.highlighted == 2

        await adapter.press("Tab")
        (reference,) = surface.references
        note = await store.get_entity(EntityKind.NOTE, reference.target_id)
        assert note.title == "Ali"

    @pytest.mark.asyncio
    async def test_escape_cancels(self, adapter, surface):
        await self.type_keys(adapter, "@Bo")
        session = surface.active_session
        await adapter.press("Escape")
        assert session.close_reason is CloseReason.CANCELLED

    @pytest.mark.asyncio
    async def test_enter_without_session_inserts_newline(self, adapter, surface):
        await self.type_keys(adapter, "hi")
        await adapter.press("Enter")
        assert surface.text == "hi\n"

    def test_translate(self, adapter, surface):
        assert adapter.translate("x") == [TextInput("x")]
        assert adapter.translate("Backspace") == [Backspace()]
        assert adapter.translate("Escape") == []
        assert adapter.translate("F5") == []
