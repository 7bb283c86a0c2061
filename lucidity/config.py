"""Load and validate .lucidity/config.yaml."""

from __future__ import annotations

import copy
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml


# Default config values
DEFAULTS: dict[str, Any] = {
    "agent": "agent",
    "paths": {
        "tree": ".lucidity/tree.json",
        "cursor": ".lucidity/cursor.yaml",
        "briefing": ".lucidity/briefing.md",
        "transcript": ".lucidity/transcripts/agent.log",
    },
    "ingest": {
        "format": "auto",
        "commit_mode": "cursor",
        "dedup": True,
        "max_input_chars": 10_000,
    },
    "compaction": {
        "summary": 3600,
        "oneliner": 86_400,
        "tag": 604_800,
    },
    "prune": {
        "max_orphan_age": 604_800,
    },
    "briefing": {
        "max_tokens": 4000,
        "chars_per_token": 4,
    },
    "summarizer": {
        "backend": "command",
        "command": None,
        "model": "haiku",
        "api_model": "claude-sonnet-4-20250514",
        "max_tokens": 1024,
        "timeout": 30,
    },
    "curator": {
        "interval": 300,
        "shutdown_grace": 30,
        "watch_transcript": True,
    },
}

REQUIRED_PATH_KEYS = {"tree", "cursor", "briefing", "transcript"}
COMMIT_MODES = ("cursor", "marker")
SUMMARIZER_BACKENDS = ("command", "anthropic", "truncate")


class ConfigError(Exception):
    """Raised when config is invalid or missing."""


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into base recursively. Override wins on conflicts."""
    result = base.copy()
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _require_number(section: str, key: str, value: Any, minimum: float = 0) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{section}.{key}' must be a number, got {value!r}")
    if value < minimum:
        raise ConfigError(f"'{section}.{key}' must be >= {minimum}, got {value}")


def _validate(config: dict) -> None:
    """Validate required fields in config."""
    from lucidity.ingest.formats import ADAPTERS

    paths = config.get("paths")
    if not isinstance(paths, dict):
        raise ConfigError("'paths' must be a mapping")
    missing = REQUIRED_PATH_KEYS - set(paths.keys())
    if missing:
        raise ConfigError(f"'paths' missing required keys: {sorted(missing)}")

    ingest = config.get("ingest", {})
    if ingest.get("commit_mode") not in COMMIT_MODES:
        raise ConfigError(
            f"Unsupported commit_mode '{ingest.get('commit_mode')}'. "
            f"Built-in: {', '.join(COMMIT_MODES)}."
        )
    fmt = ingest.get("format", "auto")
    if fmt != "auto" and fmt not in ADAPTERS:
        raise ConfigError(
            f"Unsupported transcript format '{fmt}'. "
            f"Built-in: auto, {', '.join(sorted(ADAPTERS))}."
        )
    _require_number("ingest", "max_input_chars", ingest.get("max_input_chars"), 1)

    compaction = config.get("compaction")
    if not isinstance(compaction, dict):
        raise ConfigError("'compaction' must be a mapping")
    for level in ("summary", "oneliner", "tag"):
        _require_number("compaction", level, compaction.get(level))

    _require_number("prune", "max_orphan_age", config.get("prune", {}).get("max_orphan_age"))

    briefing = config.get("briefing", {})
    _require_number("briefing", "max_tokens", briefing.get("max_tokens"), 1)
    _require_number("briefing", "chars_per_token", briefing.get("chars_per_token"), 1)

    summarizer = config.get("summarizer", {})
    if summarizer.get("backend") not in SUMMARIZER_BACKENDS:
        raise ConfigError(
            f"Unsupported summarizer backend '{summarizer.get('backend')}'. "
            f"Built-in: {', '.join(SUMMARIZER_BACKENDS)}."
        )
    _require_number("summarizer", "timeout", summarizer.get("timeout"), 1)
    _require_number("summarizer", "max_tokens", summarizer.get("max_tokens"), 1)

    curator = config.get("curator", {})
    _require_number("curator", "interval", curator.get("interval"), 1)
    _require_number("curator", "shutdown_grace", curator.get("shutdown_grace"))


def default_config() -> dict:
    """A fresh, independent copy of DEFAULTS."""
    return copy.deepcopy(DEFAULTS)


def load_config(project_root: Path | None = None, allow_missing: bool = False) -> dict:
    """Load config from .lucidity/config.yaml under project_root.

    Falls back to cwd if project_root is None. Merges with DEFAULTS
    so callers always get a full config dict. With ``allow_missing``,
    a missing file yields the defaults instead of an error (boot path).
    """
    root = Path(project_root) if project_root else Path.cwd()
    config_path = root / ".lucidity" / "config.yaml"

    if not config_path.exists():
        if allow_missing:
            return default_config()
        raise ConfigError(f"Config not found: {config_path}")

    with open(config_path) as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigError(f"Config is not valid YAML: {exc}") from exc

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Config must be a YAML mapping, got {type(raw).__name__}")

    config = _deep_merge(default_config(), raw)
    _validate(config)
    return config


def resolve_paths(config: dict, project_root: Path) -> dict[str, Path]:
    """Resolve tree/cursor/briefing/transcript paths relative to project_root.

    ``~`` is expanded; absolute paths are kept as-is.
    """
    return {
        key: project_root / Path(rel).expanduser()
        for key, rel in config["paths"].items()
    }


def compaction_thresholds(config: dict) -> dict[str, timedelta]:
    """Per-level compaction ages as timedeltas."""
    return {
        level: timedelta(seconds=config["compaction"][level])
        for level in ("summary", "oneliner", "tag")
    }


def max_orphan_age(config: dict) -> timedelta:
    return timedelta(seconds=config["prune"]["max_orphan_age"])
