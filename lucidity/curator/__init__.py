"""Curator process: periodic curation passes over one agent's memory.

Entry point: :func:`run_curator` runs passes in the foreground until a
shutdown signal, then one final pass bounded by the configured grace period.
:func:`get_status` returns current store state for CLI display.
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from pathlib import Path
from typing import Any

import yaml

from lucidity.config import resolve_paths
from lucidity.curator.curation import Curator, PassResult
from lucidity.curator.watcher import TranscriptWatcher
from lucidity.errors import SnapshotDecodeError
from lucidity.store import load_tree, store_stats
from lucidity.tree.model import tree_stats

log = logging.getLogger(__name__)

__all__ = ["Curator", "PassResult", "get_status", "run_curator"]


def _log_pass(result: PassResult) -> None:
    log.info(
        "Pass: ingested=%s compressed=%d failed=%d deferred=%d pruned=%d saved=%s",
        result.ingested_node or "-",
        len(result.compressed),
        len(result.failed),
        result.deferred,
        len(result.pruned),
        result.saved,
    )


def run_curator(config: dict[str, Any], project_root: Path) -> None:
    """Run the curator loop in the foreground.

    The loop:
    1. Loads the snapshot (or starts empty) and restores the ingestion offset
    2. Runs a curation pass every ``curator.interval`` seconds, earlier when
       the transcript is written to
    3. On SIGINT/SIGTERM/SIGHUP, runs a final pass bounded by
       ``curator.shutdown_grace`` and exits
    """
    curator_cfg = config["curator"]
    interval = int(curator_cfg["interval"])
    grace = float(curator_cfg["shutdown_grace"])

    curator = Curator(config, project_root)
    curator.load()

    wake = threading.Event()
    watcher: TranscriptWatcher | None = None
    if curator_cfg.get("watch_transcript", True):
        watcher = TranscriptWatcher(curator.paths["transcript"], wake.set)
        if not watcher.start():
            watcher = None

    # --- Signal handling ---
    running = True

    def _shutdown(signum: int, frame: object) -> None:
        nonlocal running
        log.info("Received signal %d, shutting down...", signum)
        running = False

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    if hasattr(signal, "SIGHUP"):
        signal.signal(signal.SIGHUP, _shutdown)

    log.info(
        "Curator started (interval=%ds, briefing=%s, tree=%s)",
        interval, curator.paths["briefing"], curator.paths["tree"],
    )

    # --- Main loop ---
    while running:
        wake.clear()
        try:
            _log_pass(curator.run_pass())
        except Exception:
            log.exception("Error in curation pass")

        # Sleep in small increments to allow clean shutdown
        for _ in range(interval):
            if not running or wake.is_set():
                break
            time.sleep(1)

    # --- Final pass ---
    try:
        _log_pass(curator.run_pass(deadline=time.monotonic() + grace))
        log.info("Final curation complete")
    except Exception:
        log.exception("Error during shutdown curation")

    if watcher:
        watcher.stop()
    log.info("Curator stopped")


def get_status(config: dict[str, Any], project_root: Path) -> dict[str, Any]:
    """Get current store state for CLI display."""
    paths = resolve_paths(config, project_root)
    info: dict[str, Any] = {
        "paths": {key: str(p) for key, p in paths.items()},
        "store": store_stats(paths["tree"], paths["transcript"].parent),
        "briefing_exists": paths["briefing"].exists(),
        "cursor": None,
        "tree": None,
    }

    try:
        tree = load_tree(paths["tree"])
    except SnapshotDecodeError as exc:
        info["error"] = str(exc)
        tree = None
    if tree is not None:
        info["tree"] = tree_stats(tree)

    if paths["cursor"].exists():
        try:
            cursor = yaml.safe_load(paths["cursor"].read_text())
        except (OSError, yaml.YAMLError):
            cursor = None
        if isinstance(cursor, dict):
            info["cursor"] = cursor

    return info
