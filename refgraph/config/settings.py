"""
Refgraph Settings

Engine options and logging settings, loaded from an optional YAML file with
``REFGRAPH_*`` environment overrides.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

ENV_PREFIX = "REFGRAPH_"
DEFAULT_CONFIG_FILE = Path.home() / ".refgraph" / "refgraph.yaml"


# =============================================================================
# Pydantic Models - Settings Types
# =============================================================================


class EngineOptions(BaseModel):
    """
    Options for a reference graph engine instance.

    One engine configured through these flags replaces the separate editor
    variants (wiki-only, mention-only, full).
    """

    enable_wiki_links: bool = Field(default=True, description="Allow [[ note links")
    enable_mentions: bool = Field(default=True, description="Allow @ contact mentions")
    enable_hashtags: bool = Field(default=True, description="Allow # topic tags")
    candidate_limit: int = Field(default=8, ge=1, le=50, description="Suggestions shown per query")
    snippet_radius: int = Field(default=40, ge=0, le=1000, description="Characters of context on each side of a backlink")
    max_marker_length: int = Field(default=512, ge=16, le=8192, description="Longest marker the extractor will scan")
    atomic_marker_delete: bool = Field(default=True, description="Backspace removes a whole marker")
    allow_self_links: bool = Field(default=False, description="Suggest the note being edited")
    min_lookup_length: int = Field(default=0, ge=0, description="Query length before candidate lookups start")


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    json_format: bool = Field(default=False, description="Emit JSON structured logs")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")


class RefgraphSettings(BaseModel):
    """Top-level settings document."""

    options: EngineOptions = Field(default_factory=EngineOptions)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database_path: Optional[str] = Field(
        default=None, description="SQLite store path; in-memory store when unset"
    )


# =============================================================================
# Loading
# =============================================================================


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Failed to load config %s: %s. Using defaults.", path, e)
        return {}


def _env_overrides(environ: Dict[str, str]) -> Dict[str, Any]:
    """Collect REFGRAPH_<FIELD> and REFGRAPH_LOG_<FIELD> variables."""
    options: Dict[str, Any] = {}
    log: Dict[str, Any] = {}
    top: Dict[str, Any] = {}

    for name in EngineOptions.model_fields:
        key = f"{ENV_PREFIX}{name.upper()}"
        if key in environ:
            options[name] = environ[key]

    for name in LoggingSettings.model_fields:
        key = f"{ENV_PREFIX}LOG_{name.upper()}"
        if key in environ:
            log[name] = environ[key]

    if f"{ENV_PREFIX}DATABASE_PATH" in environ:
        top["database_path"] = environ[f"{ENV_PREFIX}DATABASE_PATH"]

    if options:
        top["options"] = options
    if log:
        top["logging"] = log
    return top


def _merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(
    path: Optional[str | Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> RefgraphSettings:
    """
    Load settings from YAML and the environment.

    Args:
        path: YAML file; defaults to ``REFGRAPH_CONFIG`` or ~/.refgraph/refgraph.yaml
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Validated settings
    """
    environ = dict(os.environ if environ is None else environ)
    if path is None:
        path = environ.get(f"{ENV_PREFIX}CONFIG", DEFAULT_CONFIG_FILE)

    data = _merge(_read_yaml(Path(path)), _env_overrides(environ))
    settings = RefgraphSettings(**data)
    logger.debug("Loaded settings from %s", path)
    return settings


def load_options(
    path: Optional[str | Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> EngineOptions:
    """Load only the engine options."""
    return load_settings(path, environ).options
