"""Snapshot persistence for the memory tree.

The snapshot is a single JSON document ``{nodes, spine, version}``. Writes
go to ``<path>.tmp`` and are renamed over the canonical path, so a reader
sees either the previous snapshot or the new one, never a partial file.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from lucidity.errors import InvalidTransitionError, SnapshotDecodeError, StoreWriteError
from lucidity.tree.model import SNAPSHOT_VERSION, Tree

log = logging.getLogger(__name__)

TRANSCRIPT_SUFFIXES = (".log", ".jsonl")


def write_text_atomic(path: Path, text: str) -> None:
    """Write *text* to *path* via a temp file and ``os.replace``.

    Raises:
        StoreWriteError: If the write, fsync, or rename fails. The previous
            file at *path* is left as it was.
    """
    path = Path(path)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, path)
    except OSError as exc:
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            pass
        except OSError:
            log.warning("Could not remove temp file %s", tmp_path)
        raise StoreWriteError(f"failed to write {path}: {exc}") from exc


def save_tree(tree: Tree, path: Path) -> None:
    """Serialize *tree* and atomically replace the snapshot at *path*."""
    payload = json.dumps(tree.to_dict(), indent=2, ensure_ascii=False)
    write_text_atomic(Path(path), payload + "\n")


def _upgrade_legacy(raw: dict[str, Any]) -> dict[str, Any]:
    """Rename v1 keys (``trunk``, ``summary_level``) to their current names."""
    if "spine" not in raw and "trunk" in raw:
        raw = {**raw, "spine": raw["trunk"]}
    nodes = raw.get("nodes")
    if isinstance(nodes, dict):
        upgraded = {}
        for nid, node in nodes.items():
            if isinstance(node, dict) and "compression_level" not in node and "summary_level" in node:
                node = {**node, "compression_level": node["summary_level"]}
            upgraded[nid] = node
        raw = {**raw, "nodes": upgraded}
    return raw


def load_tree(path: Path) -> Tree | None:
    """Load a snapshot.

    Returns:
        The tree, or None if no snapshot exists at *path*.

    Raises:
        SnapshotDecodeError: If the file exists but is not a readable snapshot.
    """
    path = Path(path)
    if not path.exists():
        return None

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SnapshotDecodeError(f"cannot read snapshot {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise SnapshotDecodeError(
            f"snapshot {path} must be a JSON object, got {type(raw).__name__}"
        )

    raw = _upgrade_legacy(raw)
    version = raw.get("version", 1)
    if not isinstance(version, int) or version > SNAPSHOT_VERSION:
        raise SnapshotDecodeError(
            f"snapshot {path} has unsupported version {version!r} "
            f"(this build reads up to {SNAPSHOT_VERSION})"
        )
    if not isinstance(raw.get("nodes"), dict) or not isinstance(raw.get("spine"), list):
        raise SnapshotDecodeError(f"snapshot {path} is missing 'nodes' or 'spine'")

    try:
        tree = Tree.from_dict(raw)
    except (KeyError, TypeError, ValueError, AttributeError, InvalidTransitionError) as exc:
        raise SnapshotDecodeError(f"snapshot {path} has a malformed node: {exc}") from exc

    if version < SNAPSHOT_VERSION:
        log.info("Upgraded snapshot %s from version %d to %d", path, version, SNAPSHOT_VERSION)
        tree.version = SNAPSHOT_VERSION
    return tree


def store_stats(tree_path: Path, transcript_dir: Path | None = None) -> dict[str, Any]:
    """Sizes and counts for the snapshot and transcript logs."""
    tree_path = Path(tree_path)
    stats: dict[str, Any] = {
        "tree_exists": tree_path.exists(),
        "tree_size_bytes": 0,
        "node_count": 0,
        "spine_count": 0,
        "transcript_count": 0,
        "transcript_total_bytes": 0,
    }

    if stats["tree_exists"]:
        stats["tree_size_bytes"] = tree_path.stat().st_size
        try:
            tree = load_tree(tree_path)
        except SnapshotDecodeError as exc:
            log.warning("Stats: %s", exc)
            tree = None
        if tree is not None:
            stats["node_count"] = len(tree.nodes)
            stats["spine_count"] = len(tree.spine)

    if transcript_dir is not None and Path(transcript_dir).is_dir():
        logs = sorted(
            p for p in Path(transcript_dir).iterdir()
            if p.is_file() and p.suffix in TRANSCRIPT_SUFFIXES
        )
        stats["transcript_count"] = len(logs)
        stats["transcript_total_bytes"] = sum(p.stat().st_size for p in logs)

    return stats
