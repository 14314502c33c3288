"""
Shared test fixtures for the refgraph test suite.
"""

import pytest

from doubles import DelayedStore, FailingStore, seed_entities
from refgraph.config.settings import EngineOptions
from refgraph.notes import BacklinkIndex, EditingSurface, EntityResolver, InMemoryEntityStore


@pytest.fixture
def options():
    """Default engine options."""
    return EngineOptions()


@pytest.fixture
def store():
    """In-memory store seeded with a few notes, a contact and a topic."""
    return InMemoryEntityStore(seed_entities())


@pytest.fixture
def failing_store():
    """Store whose note saves fail."""
    return FailingStore(seed_entities())


@pytest.fixture
def delayed_store():
    """Store whose searches and saves can be held open."""
    return DelayedStore(seed_entities())


@pytest.fixture
def resolver(store):
    return EntityResolver(store)


@pytest.fixture
def index(options):
    return BacklinkIndex(options)


@pytest.fixture
def surface(store, index, options):
    """Editing surface on the empty note_1, sharing the store and index."""
    return EditingSurface(
        "note_1",
        store,
        resolver=EntityResolver(store),
        index=index,
        title="Weekly review",
        options=options,
    )


@pytest.fixture
def make_surface(options):
    """Factory for surfaces over an arbitrary store."""

    def _make(store, note_id="note_1", content="", **kwargs):
        kwargs.setdefault("options", options)
        kwargs.setdefault("index", BacklinkIndex(kwargs["options"]))
        return EditingSurface(
            note_id,
            store,
            resolver=EntityResolver(store),
            content=content,
            **kwargs,
        )

    return _make
