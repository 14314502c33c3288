"""
Suggestion Sessions Module

The per-kind authoring state machine:

    IDLE --trigger--> COMPOSING(kind, anchor, query) --commit--> CLOSED(COMMITTED)
                         |   ^                        \\-cancel-> CLOSED(CANCELLED)
                         \\---/ query updates

CLOSED is terminal. While COMPOSING a session may have a candidate lookup
outstanding (``pending``) and, once a commit starts, moves through the
RESOLVING and SAVING commit phases before closing.
"""

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple, Union

from ..core.errors import InvalidTransitionError, ValidationError
from .models import Entity, Reference, ReferenceKind

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    COMPOSING = "composing"
    CLOSED = "closed"


class CloseReason(Enum):
    COMMITTED = "committed"
    CANCELLED = "cancelled"


class CommitPhase(Enum):
    NONE = "none"
    RESOLVING = "resolving"  # waiting on the resolver; cancel still allowed
    SAVING = "saving"  # marker spliced in; waiting on the note save


@dataclass(frozen=True)
class Selection:
    """Pick an existing entity from the candidate list."""

    entity_id: str


@dataclass(frozen=True)
class CreateRequest:
    """Create (or reuse) an entity named ``text``; defaults to the query."""

    text: Optional[str] = None


CommitRequest = Union[Selection, CreateRequest]


class SuggestionSession:
    """
    One authoring session for one reference kind.

    The editing surface drives it through ``on_trigger_detected``,
    ``on_query_changed``, ``on_commit`` and ``on_cancel``.
    """

    def __init__(self, kind: ReferenceKind, session_id: Optional[str] = None):
        self.kind = kind
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.state = SessionState.IDLE
        self.close_reason: Optional[CloseReason] = None
        self.anchor: Optional[int] = None
        self.query = ""
        self.candidates: List[Entity] = []
        self.pending = False
        self.phase = CommitPhase.NONE
        self.request: Optional[CommitRequest] = None
        self.reference: Optional[Reference] = None
        # (start, end, expected text) of the span a commit will replace
        self.commit_span: Optional[Tuple[int, int, Optional[str]]] = None
        self.history: List[SessionState] = [SessionState.IDLE]
        self._lookup_seq = 0

    def __repr__(self) -> str:
        return (
            f"SuggestionSession({self.kind.value}, state={self.state.value}, "
            f"anchor={self.anchor}, query={self.query!r})"
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.COMPOSING

    @property
    def is_closed(self) -> bool:
        return self.state is SessionState.CLOSED

    @property
    def committing(self) -> bool:
        return self.phase is not CommitPhase.NONE

    @property
    def trigger_end(self) -> int:
        """Offset just past the trigger characters."""
        if self.anchor is None:
            raise InvalidTransitionError(detail="Session has no anchor")
        return self.anchor + len(self.kind.trigger)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def _move(self, state: SessionState) -> None:
        self.state = state
        self.history.append(state)

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            raise InvalidTransitionError(
                detail=f"{self.kind.value} session is {self.state.value}",
                context={"session_id": self.session_id},
            )

    def on_trigger_detected(self, kind: ReferenceKind, anchor: int) -> None:
        """IDLE -> COMPOSING(kind, anchor, "")."""
        self._require(SessionState.IDLE)
        if kind is not self.kind:
            raise ValidationError(
                detail=f"Trigger for {kind.value} sent to a {self.kind.value} session"
            )
        self.anchor = anchor
        self.query = ""
        self._move(SessionState.COMPOSING)
        logger.debug(f"Composing {kind.value} at {anchor}")

    def on_query_changed(self, text: str) -> None:
        """COMPOSING -> COMPOSING with a new query."""
        self._require(SessionState.COMPOSING)
        self.query = text
        self.history.append(SessionState.COMPOSING)

    def begin_lookup(self) -> int:
        """Mark a candidate lookup outstanding and return its sequence number."""
        self._require(SessionState.COMPOSING)
        self._lookup_seq += 1
        self.pending = True
        return self._lookup_seq

    def apply_candidates(self, seq: int, candidates: List[Entity]) -> bool:
        """
        Install lookup results unless they are stale.

        Results are stale when a newer lookup was issued or the session has
        closed. Stale results are dropped.
        """
        if self.is_closed or seq != self._lookup_seq:
            logger.debug(
                "Discarding stale candidates",
                extra={"ctx_session_id": self.session_id, "ctx_seq": seq},
            )
            return False
        self.candidates = list(candidates)
        self.pending = False
        return True

    def abandon_lookup(self, seq: int) -> bool:
        """Clear ``pending`` for a failed lookup; candidates are kept."""
        if self.is_closed or seq != self._lookup_seq:
            return False
        self.pending = False
        return True

    def on_commit(self, request: CommitRequest) -> None:
        """Start committing; the session stays COMPOSING until it closes."""
        self._require(SessionState.COMPOSING)
        if self.committing:
            raise InvalidTransitionError(detail="Commit already in progress")
        self.request = request
        self.phase = CommitPhase.RESOLVING

    def mark_saving(self) -> None:
        self._require(SessionState.COMPOSING)
        self.phase = CommitPhase.SAVING

    def complete_commit(self, reference: Reference) -> None:
        """COMPOSING -> CLOSED(COMMITTED)."""
        self._require(SessionState.COMPOSING)
        self.reference = reference
        self.phase = CommitPhase.NONE
        self.pending = False
        self.close_reason = CloseReason.COMMITTED
        self._move(SessionState.CLOSED)
        logger.debug(f"Committed {self.kind.value} -> {reference.target_id}")

    def on_cancel(self, reason: str = "cancelled", force: bool = False) -> bool:
        """
        -> CLOSED(CANCELLED).

        A session whose marker is already spliced in (SAVING) ignores
        ordinary cancels; the editing surface passes ``force`` when rolling
        the commit back.

        Returns:
            True if the session closed
        """
        self._require(SessionState.IDLE, SessionState.COMPOSING)
        if self.phase is CommitPhase.SAVING and not force:
            logger.debug(f"Ignoring cancel of {self.kind.value} session while saving")
            return False
        self.phase = CommitPhase.NONE
        self.pending = False
        self.close_reason = CloseReason.CANCELLED
        self._move(SessionState.CLOSED)
        logger.debug(f"Cancelled {self.kind.value} session: {reason}")
        return True
