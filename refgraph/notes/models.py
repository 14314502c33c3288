"""
Note Models Module

Entities (notes, contacts, topics), the reference tagged union embedded in
note content, and derived backlinks.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntityKind(Enum):
    """Kinds of entities a reference can point at."""

    NOTE = "note"
    CONTACT = "contact"
    TOPIC = "topic"


class ReferenceKind(Enum):
    """Kinds of inline references."""

    WIKI_LINK = "wiki_link"  # [[Note]]
    MENTION = "mention"  # @Contact
    HASHTAG = "hashtag"  # #topic

    @property
    def entity_kind(self) -> EntityKind:
        return _ENTITY_KINDS[self]

    @property
    def trigger(self) -> str:
        return _TRIGGERS[self]

    @classmethod
    def for_entity(cls, entity_kind: EntityKind) -> "ReferenceKind":
        for kind, target in _ENTITY_KINDS.items():
            if target is entity_kind:
                return kind
        raise ValueError(f"No reference kind targets {entity_kind}")


_ENTITY_KINDS = {
    ReferenceKind.WIKI_LINK: EntityKind.NOTE,
    ReferenceKind.MENTION: EntityKind.CONTACT,
    ReferenceKind.HASHTAG: EntityKind.TOPIC,
}

_TRIGGERS = {
    ReferenceKind.WIKI_LINK: "[[",
    ReferenceKind.MENTION: "@",
    ReferenceKind.HASHTAG: "#",
}


def normalize_slug(label: str) -> str:
    """Lower-case, hyphenated form of a topic label."""
    slug = label.strip().lower()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    return re.sub(r"-+", "-", slug)


# =============================================================================
# Entities
# =============================================================================


@dataclass
class Note:
    """A note. The only entity whose content can hold references."""

    id: str
    title: str
    content: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    kind = EntityKind.NOTE

    @property
    def display_text(self) -> str:
        return self.title

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "title": self.title,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class Contact:
    """A person that can be @mentioned."""

    id: str
    full_name: str
    email: str = ""
    company: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    kind = EntityKind.CONTACT

    @property
    def display_text(self) -> str:
        return self.full_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "full_name": self.full_name,
            "email": self.email,
            "company": self.company,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class Topic:
    """A topic that can be #tagged."""

    id: str
    label: str
    slug: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    kind = EntityKind.TOPIC

    def __post_init__(self):
        if not self.slug:
            self.slug = normalize_slug(self.label)

    @property
    def display_text(self) -> str:
        return self.label

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "label": self.label,
            "slug": self.slug,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


Entity = Union[Note, Contact, Topic]


# =============================================================================
# References
# =============================================================================


@dataclass(frozen=True)
class WikiLinkRef:
    """``[[note]]`` link to another note."""

    target_id: str
    display_text: str
    source_note_id: str = ""
    position: int = 0

    @property
    def kind(self) -> ReferenceKind:
        return ReferenceKind.WIKI_LINK


@dataclass(frozen=True)
class ContactRef:
    """``@contact`` mention."""

    target_id: str
    display_text: str
    source_note_id: str = ""
    position: int = 0

    @property
    def kind(self) -> ReferenceKind:
        return ReferenceKind.MENTION


@dataclass(frozen=True)
class TopicRef:
    """``#topic`` tag."""

    target_id: str
    display_text: str
    source_note_id: str = ""
    position: int = 0

    @property
    def kind(self) -> ReferenceKind:
        return ReferenceKind.HASHTAG


Reference = Union[WikiLinkRef, ContactRef, TopicRef]

_REFERENCE_CLASSES = {
    ReferenceKind.WIKI_LINK: WikiLinkRef,
    ReferenceKind.MENTION: ContactRef,
    ReferenceKind.HASHTAG: TopicRef,
}


def make_reference(
    kind: ReferenceKind,
    target_id: str,
    display_text: str,
    source_note_id: str = "",
    position: int = 0,
) -> Reference:
    """Build the reference variant for ``kind``."""
    return _REFERENCE_CLASSES[kind](
        target_id=target_id,
        display_text=display_text,
        source_note_id=source_note_id,
        position=position,
    )


def reference_to_dict(ref: Reference) -> Dict[str, Any]:
    return {
        "kind": ref.kind.value,
        "target_id": ref.target_id,
        "display_text": ref.display_text,
        "source_note_id": ref.source_note_id,
        "position": ref.position,
    }


# =============================================================================
# Backlinks
# =============================================================================


@dataclass(frozen=True)
class Backlink:
    """A note referencing a target, with surrounding context."""

    target_id: str
    source_note_id: str
    source_title: str
    context_snippet: str
    highlight: Optional[Tuple[int, int]] = None
    occurrences: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_id": self.target_id,
            "source_note_id": self.source_note_id,
            "source_title": self.source_title,
            "context_snippet": self.context_snippet,
            "highlight": list(self.highlight) if self.highlight else None,
            "occurrences": self.occurrences,
        }
