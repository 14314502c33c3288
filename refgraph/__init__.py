"""
refgraph - reference graph engine for a notes editor.

Inline references (wiki links, contact mentions, topic hashtags) embedded in
note text, the backlink index derived from them, and the authoring flow that
turns typed triggers into committed markers.
"""

from .config.settings import EngineOptions, load_options, load_settings
from .core.errors import ErrorCodes, RefgraphError
from .notes import (
    BacklinkIndex,
    EditingSurface,
    EntityKind,
    EntityResolver,
    InMemoryEntityStore,
    ReferenceKind,
    RefGraph,
    SqliteEntityStore,
)

__version__ = "0.1.0"

__all__ = [
    "RefGraph",
    "EditingSurface",
    "BacklinkIndex",
    "EntityResolver",
    "InMemoryEntityStore",
    "SqliteEntityStore",
    "EntityKind",
    "ReferenceKind",
    "EngineOptions",
    "load_options",
    "load_settings",
    "ErrorCodes",
    "RefgraphError",
]
