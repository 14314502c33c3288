"""
Reference Markers Module

Renders references into the typed markers stored in note content and scans
content back into references.

Marker forms::

    [[<target_id>|<display>]]             wiki link to a note
    @[<display>](contact:<target_id>)     contact mention
    #[<display>](topic:<target_id>)       topic tag

Inside ``<display>`` the characters ``\\ [ ] | ( )`` are backslash-escaped.
"""

from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

from ..core.errors import MalformedMarkerError
from .models import (
    ContactRef,
    Reference,
    ReferenceKind,
    TopicRef,
    WikiLinkRef,
    make_reference,
)

DEFAULT_MAX_MARKER_LENGTH = 512

ID_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_.:-"
)
ESCAPABLE = frozenset("\\[]|()")

_SCHEMES = {
    ReferenceKind.MENTION: "contact",
    ReferenceKind.HASHTAG: "topic",
}
_PREFIXES = {
    "@": ReferenceKind.MENTION,
    "#": ReferenceKind.HASHTAG,
}


@dataclass(frozen=True)
class MarkerSpan:
    """A reference together with the raw span it occupies."""

    reference: Reference
    start: int
    end: int


# =============================================================================
# Rendering
# =============================================================================


def escape_display(text: str) -> str:
    return "".join("\\" + ch if ch in ESCAPABLE else ch for ch in text)


def _check_renderable(ref: Reference) -> None:
    if not ref.target_id or any(ch not in ID_CHARS for ch in ref.target_id):
        raise ValueError(f"Invalid target id: {ref.target_id!r}")
    if not ref.display_text or "\n" in ref.display_text or "\r" in ref.display_text:
        raise ValueError(f"Invalid display text: {ref.display_text!r}")


def render_reference(ref: Reference) -> str:
    """Render a single reference to its marker text."""
    _check_renderable(ref)
    display = escape_display(ref.display_text)

    if isinstance(ref, WikiLinkRef):
        return f"[[{ref.target_id}|{display}]]"
    if isinstance(ref, ContactRef):
        return f"@[{display}](contact:{ref.target_id})"
    if isinstance(ref, TopicRef):
        return f"#[{display}](topic:{ref.target_id})"
    raise TypeError(f"Unknown reference type: {type(ref).__name__}")


def render(references: Sequence[Reference]) -> str:
    """
    Lay references out at their declared positions.

    Gaps between markers are filled with spaces.

    Raises:
        ValueError: If two markers would overlap
    """
    parts: List[str] = []
    cursor = 0
    for ref in references:
        if ref.position < cursor:
            raise ValueError(
                f"Reference at {ref.position} overlaps previous marker ending at {cursor}"
            )
        marker = render_reference(ref)
        parts.append(" " * (ref.position - cursor))
        parts.append(marker)
        cursor = ref.position + len(marker)
    return "".join(parts)


def display_form(ref: Reference) -> str:
    """How a reference reads in plain text."""
    if isinstance(ref, WikiLinkRef):
        return ref.display_text
    if isinstance(ref, ContactRef):
        return f"@{ref.display_text}"
    if isinstance(ref, TopicRef):
        return f"#{ref.display_text}"
    raise TypeError(f"Unknown reference type: {type(ref).__name__}")


# =============================================================================
# Scanning
# =============================================================================


class _Scanner:
    """Single left-to-right pass over note content."""

    def __init__(self, content: str, source_note_id: str, max_length: int):
        self.content = content
        self.source_note_id = source_note_id
        self.max_length = max_length
        self.size = len(content)

    def spans(self) -> Iterator[MarkerSpan]:
        content = self.content
        i = 0
        while i < self.size:
            ch = content[i]
            span: Optional[MarkerSpan] = None
            attempted = False

            if ch == "[" and content.startswith("[[", i):
                attempted = True
                span = self._wiki(i)
            elif ch in _PREFIXES and content.startswith("[", i + 1):
                attempted = True
                span = self._bracketed(i, _PREFIXES[ch])

            if span is not None:
                yield span
                i = span.end
                continue

            if attempted:
                MalformedMarkerError(
                    detail=f"Skipping malformed marker at offset {i}",
                    context={"offset": i, "source_note_id": self.source_note_id},
                ).log()
            i += 1

    def _limit(self, start: int) -> int:
        return min(self.size, start + self.max_length)

    def _read_id(self, j: int, limit: int) -> int:
        while j < limit and self.content[j] in ID_CHARS:
            j += 1
        return j

    def _read_display(self, j: int, limit: int):
        """Read escaped display text up to an unescaped ``]``."""
        content = self.content
        chars: List[str] = []
        while j < limit:
            ch = content[j]
            if ch == "\\":
                if j + 1 >= limit or content[j + 1] not in ESCAPABLE:
                    return None, j
                chars.append(content[j + 1])
                j += 2
            elif ch == "]":
                return "".join(chars), j
            elif ch in "[\n\r":
                return None, j
            else:
                chars.append(ch)
                j += 1
        return None, j

    def _wiki(self, start: int) -> Optional[MarkerSpan]:
        limit = self._limit(start)
        j = start + 2
        id_end = self._read_id(j, limit)
        if id_end == j or id_end >= limit or self.content[id_end] != "|":
            return None
        target_id = self.content[j:id_end]

        display, k = self._read_display(id_end + 1, limit)
        if not display or not self.content.startswith("]]", k) or k + 2 > limit:
            return None

        ref = make_reference(
            ReferenceKind.WIKI_LINK, target_id, display, self.source_note_id, start
        )
        return MarkerSpan(ref, start, k + 2)

    def _bracketed(self, start: int, kind: ReferenceKind) -> Optional[MarkerSpan]:
        limit = self._limit(start)
        display, k = self._read_display(start + 2, limit)
        if not display:
            return None

        opener = f"]({_SCHEMES[kind]}:"
        if not self.content.startswith(opener, k):
            return None
        j = k + len(opener)
        id_end = self._read_id(j, limit)
        if id_end == j or id_end >= limit or self.content[id_end] != ")":
            return None

        ref = make_reference(
            kind, self.content[j:id_end], display, self.source_note_id, start
        )
        return MarkerSpan(ref, start, id_end + 1)


def extract_spans(
    content: str,
    source_note_id: str = "",
    max_marker_length: int = DEFAULT_MAX_MARKER_LENGTH,
) -> List[MarkerSpan]:
    """Scan content into references with their raw spans."""
    if not content:
        return []
    return list(_Scanner(content, source_note_id, max_marker_length).spans())


def extract(
    content: str,
    source_note_id: str = "",
    max_marker_length: int = DEFAULT_MAX_MARKER_LENGTH,
) -> List[Reference]:
    """
    Extract the ordered list of references embedded in content.

    Pure and linear in the length of ``content``. Malformed or unterminated
    markers are skipped.

    Args:
        content: Note content
        source_note_id: Id stamped on each returned reference
        max_marker_length: Longest marker considered

    Returns:
        References ordered by position
    """
    return [
        span.reference
        for span in extract_spans(content, source_note_id, max_marker_length)
    ]


def find_reference_at(
    content: str,
    offset: int,
    max_marker_length: int = DEFAULT_MAX_MARKER_LENGTH,
) -> Optional[MarkerSpan]:
    """Return the marker that ends exactly at ``offset``, if any."""
    for span in extract_spans(content[:offset], "", max_marker_length):
        if span.end == offset:
            return span
    return None


def plain_text(content: str, max_marker_length: int = DEFAULT_MAX_MARKER_LENGTH) -> str:
    """Content with every marker replaced by its display form."""
    parts: List[str] = []
    cursor = 0
    for span in extract_spans(content, "", max_marker_length):
        parts.append(content[cursor:span.start])
        parts.append(display_form(span.reference))
        cursor = span.end
    parts.append(content[cursor:])
    return "".join(parts)
