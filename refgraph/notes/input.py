"""
Input Events Module

Logical input events consumed by the editing surface, and a keyboard
adapter that turns raw key names into those events.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Union

from .models import ReferenceKind

if TYPE_CHECKING:
    from .editor import EditingSurface


@dataclass(frozen=True)
class TextInput:
    """Characters typed at the cursor."""

    text: str


@dataclass(frozen=True)
class Backspace:
    """Delete backwards from the cursor."""


@dataclass(frozen=True)
class CursorMove:
    """Move the cursor to an absolute offset."""

    position: int


@dataclass(frozen=True)
class SelectCandidate:
    """Commit an existing entity."""

    entity_id: str
    kind: Optional[ReferenceKind] = None


@dataclass(frozen=True)
class CreateNew:
    """Commit by creating (or reusing) an entity named after the query."""

    kind: Optional[ReferenceKind] = None
    text: Optional[str] = None


@dataclass(frozen=True)
class Cancel:
    """Escape out of a suggestion session."""

    kind: Optional[ReferenceKind] = None


@dataclass(frozen=True)
class TearDown:
    """The editing surface is going away."""


InputEvent = Union[
    TextInput, Backspace, CursorMove, SelectCandidate, CreateNew, Cancel, TearDown
]


class KeyboardAdapter:
    """
    Translate raw key presses into logical input events.

    Keeps the highlighted row of the active session's suggestion list. The
    row one past the last candidate is the "create new" action.
    """

    def __init__(self, surface: "EditingSurface"):
        self.surface = surface
        self.highlighted = 0

    def translate(self, key: str) -> List[InputEvent]:
        """
        Map a key name (DOM ``KeyboardEvent.key`` style) to events.

        Unknown named keys map to nothing.
        """
        session = self.surface.active_session

        if key == "Escape":
            return [Cancel(session.kind)] if session else []
        if key == "Backspace":
            return [Backspace()]
        if key == "ArrowLeft":
            return [CursorMove(max(0, self.surface.cursor - 1))]
        if key == "ArrowRight":
            return [CursorMove(self.surface.cursor + 1)]
        if key == "Home":
            return [CursorMove(0)]
        if key == "End":
            return [CursorMove(len(self.surface.text))]

        if key in ("ArrowDown", "ArrowUp"):
            if session is None:
                return []
            last = len(session.candidates)
            step = 1 if key == "ArrowDown" else -1
            self.highlighted = min(max(self.highlighted + step, 0), last)
            return []

        if key in ("Enter", "Tab"):
            if session is None:
                return [TextInput("\n" if key == "Enter" else "\t")]
            events = self._accept(session)
            self.highlighted = 0
            return events

        if len(key) == 1:
            self.highlighted = 0
            return [TextInput(key)]

        return []

    def _accept(self, session) -> List[InputEvent]:
        if self.highlighted < len(session.candidates):
            entity = session.candidates[self.highlighted]
            return [SelectCandidate(entity.id, session.kind)]
        if session.query.strip():
            return [CreateNew(session.kind)]
        return []

    async def press(self, key: str) -> None:
        """Translate a key and dispatch the resulting events."""
        for event in self.translate(key):
            await self.surface.dispatch(event)
