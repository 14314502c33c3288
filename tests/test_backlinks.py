"""Tests for the backlink index and context snippets."""

import pytest

from refgraph.config.settings import EngineOptions
from refgraph.notes import BacklinkIndex, InMemoryEntityStore, Note
from refgraph.notes.backlinks import ELLIPSIS, make_snippet
from refgraph.notes.markers import extract, extract_spans


def expected_sources(notes, target_id):
    """Brute-force backlink sources straight from content."""
    return {
        note.id
        for note in notes.values()
        if any(ref.target_id == target_id for ref in extract(note.content))
    }


class TestMakeSnippet:
    """Tests for the snippet window."""

    def test_whole_note_fits(self):
        content = "Career chat with [[note_42|Alice 1:1]] today."
        spans = extract_spans(content)
        text, highlight = make_snippet(content, spans, spans[0], radius=40)

        assert text == "Career chat with Alice 1:1 today."
        assert text[highlight[0]:highlight[1]] == "Alice 1:1"

    def test_truncation_marks(self):
        content = "aaaaaaaaaa [[n1|X]] bbbbbbbbbb"
        spans = extract_spans(content)
        text, highlight = make_snippet(content, spans, spans[0], radius=5)

        assert text == f"{ELLIPSIS}aaaa X bbbb{ELLIPSIS}"
        assert text[highlight[0]:highlight[1]] == "X"

    def test_edge_inside_other_marker_snaps_inward(self):
        content = "[[n2|Other]] see [[n1|Y]]"
        spans = extract_spans(content)
        focus = spans[1]
        text, highlight = make_snippet(content, spans, focus, radius=8)

        assert text == f"{ELLIPSIS}see Y"
        assert "Other" not in text
        assert text[highlight[0]:highlight[1]] == "Y"

    def test_other_markers_shown_in_display_form(self):
        content = "with @[Bob](contact:c1) and [[n1|Plan]]"
        spans = extract_spans(content)
        text, _ = make_snippet(content, spans, spans[1], radius=40)
        assert text == "with @Bob and Plan"

    def test_whitespace_collapses(self):
        content = "one\n\n  two [[n1|Z]]"
        spans = extract_spans(content)
        text, _ = make_snippet(content, spans, spans[0], radius=40)
        assert text == "one two Z"


class TestBacklinkIndex:
    """Tests for BacklinkIndex."""

    @pytest.fixture
    def notes(self):
        return {
            "n_a": Note(id="n_a", title="Beta notes", content="See [[n_t|Target]]."),
            "n_b": Note(
                id="n_b",
                title="alpha notes",
                content="[[n_t|Target]] and again [[n_t|Target]]",
            ),
            "n_c": Note(id="n_c", title="Gamma", content="nothing here"),
            "n_t": Note(id="n_t", title="Target", content="@[Bob](contact:c_1)"),
        }

    @pytest.fixture
    def index(self, notes):
        index = BacklinkIndex(EngineOptions())
        index.rebuild(notes.values())
        return index

    def test_backlinks_sorted_by_title(self, index):
        backlinks = index.backlinks_of("n_t")
        assert [b.source_note_id for b in backlinks] == ["n_b", "n_a"]

    def test_one_entry_per_source(self, index):
        backlinks = index.backlinks_of("n_t")
        by_source = {b.source_note_id: b for b in backlinks}
        assert by_source["n_b"].occurrences == 2
        assert by_source["n_a"].occurrences == 1
        assert by_source["n_a"].source_title == "Beta notes"

    def test_unknown_target(self, index):
        assert index.backlinks_of("nope") == []

    def test_removing_marker_drops_backlink(self, index, notes):
        note = notes["n_a"]
        note.content = "See Target."
        index.index_note(note)

        assert [b.source_note_id for b in index.backlinks_of("n_t")] == ["n_b"]

    def test_remove_note(self, index):
        assert index.remove_note("n_b") is True
        assert index.remove_note("n_b") is False
        assert "n_b" not in index
        assert [b.source_note_id for b in index.backlinks_of("n_t")] == ["n_a"]

    def test_outgoing(self, index):
        refs = index.outgoing("n_b")
        assert [r.target_id for r in refs] == ["n_t", "n_t"]
        assert index.outgoing("missing") == []

    def test_targets(self, index):
        assert set(index.targets()) == {"n_t", "c_1"}

    def test_consistency_over_mutations(self, index, notes):
        """The index always agrees with a brute-force scan."""
        edits = [
            ("n_c", "now links [[n_t|Target]] and @[Bob](contact:c_1)"),
            ("n_a", ""),
            ("n_b", "[[n_c|Gamma]]"),
            ("n_t", "self [[n_t|Target]]"),
            ("n_c", "[[broken|"),
            ("n_a", "#[ops](topic:t_1) [[n_c|Gamma]]"),
        ]
        for note_id, content in edits:
            notes[note_id].content = content
            index.index_note(notes[note_id])

            for target in ["n_a", "n_b", "n_c", "n_t", "c_1", "t_1"]:
                got = {b.source_note_id for b in index.backlinks_of(target)}
                assert got == expected_sources(notes, target)

    def test_graph(self, index):
        graph = index.graph()
        node_ids = {n["id"] for n in graph["nodes"]}
        assert {"n_a", "n_b", "n_c", "n_t", "c_1"} <= node_ids

        edges = {(e["source"], e["target"]): e for e in graph["edges"]}
        assert edges[("n_b", "n_t")]["count"] == 2
        assert edges[("n_t", "c_1")]["kind"] == "mention"

    def test_len(self, index):
        assert len(index) == 4


class TestIndexWithStore:
    """Tests that load from an entity store."""

    @pytest.mark.asyncio
    async def test_refresh_and_dangling(self):
        store = InMemoryEntityStore(
            [
                Note(id="n1", title="One", content="[[n2|Two]] [[gone|Gone]]"),
                Note(id="n2", title="Two", content=""),
            ]
        )
        index = BacklinkIndex()
        await index.refresh(store)

        assert len(index) == 2
        assert [b.source_note_id for b in index.backlinks_of("n2")] == ["n1"]

        dangling = await index.dangling(store)
        assert [r.target_id for r in dangling] == ["gone"]
