"""One curation pass: ingest → compact → prune → render → persist.

:class:`Curator` owns the tree handle and the ingestion tracker for one
agent. Its only entry point is :meth:`Curator.run_pass`; scheduling is left
to :func:`lucidity.curator.run_curator` or an external supervisor.

Failure policy within a pass:

- summarizer failures are logged; the node keeps its state and is selected
  again next pass (root digests fall back to truncation instead)
- briefing, snapshot and cursor write failures are logged; the next pass
  retries them
- ``NodeNotFoundError`` / ``InvalidTransitionError`` propagate
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from lucidity.briefing import write_briefing
from lucidity.config import compaction_thresholds, max_orphan_age, resolve_paths
from lucidity.errors import SnapshotDecodeError, StoreWriteError, SummarizationError
from lucidity.ingest.tracker import IngestionTracker
from lucidity.store import load_tree, save_tree
from lucidity.summarize import Summarizer, TruncatingSummarizer, get_summarizer
from lucidity.tree.compaction import CompactionTarget, compaction_targets
from lucidity.tree.model import Tree, append_spine_node, compress, create_tree, utcnow
from lucidity.tree.prune import prune_orphans

log = logging.getLogger(__name__)


@dataclass
class PassResult:
    """What a single curation pass did."""

    ingested_node: str | None = None
    compressed: list[CompactionTarget] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    deferred: int = 0
    pruned: list[str] = field(default_factory=list)
    briefing_chars: int = 0
    briefing_written: bool = False
    saved: bool = False
    committed: bool = False


class Curator:
    """Curates one agent's memory tree.

    Parameters
    ----------
    config:
        Lucidity config dict.
    project_root:
        Root that relative config paths resolve against.
    summarizer:
        Backend for digests and compression. Defaults to the configured one.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        config: dict[str, Any],
        project_root: Path,
        summarizer: Summarizer | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config
        self._paths = resolve_paths(config, project_root)
        self._summarizer = summarizer or get_summarizer(config, project_root)
        self._fallback = TruncatingSummarizer()
        self._clock = clock
        self._thresholds = compaction_thresholds(config)
        self._max_orphan_age = max_orphan_age(config)

        ingest = config["ingest"]
        self._max_input_chars = ingest["max_input_chars"]
        self.tracker = IngestionTracker(
            self._paths["transcript"],
            self._paths["cursor"],
            commit_mode=ingest["commit_mode"],
            source_format=ingest["format"],
            dedup=ingest["dedup"],
        )
        self.tree: Tree = create_tree()

    @property
    def paths(self) -> dict[str, Path]:
        return self._paths

    def load(self) -> Tree:
        """Load the snapshot (or start empty) and restore the ingestion offset."""
        try:
            tree = load_tree(self._paths["tree"])
        except SnapshotDecodeError as exc:
            log.warning("Snapshot unreadable, starting with an empty tree: %s", exc)
            tree = None

        if tree is None:
            log.info("No existing tree found, creating a new one")
            tree = create_tree()
        else:
            log.info("Loaded tree: %d nodes, %d spine entries", len(tree.nodes), len(tree.spine))
        self.tree = tree

        offset = self.tracker.restore()
        if offset:
            log.info("Restored ingestion offset: %d", offset)
        return tree

    def run_pass(self, deadline: float | None = None) -> PassResult:
        """Run one full curation pass.

        Args:
            deadline: ``time.monotonic()`` value after which remaining
                compressions are deferred to the next pass (shutdown grace).
        """
        now = self._clock()
        result = PassResult()
        log.info("Curation pass starting...")

        self._ingest(result, now)
        self._compact(result, now, deadline)

        result.pruned = prune_orphans(self.tree, self._max_orphan_age, now)
        if result.pruned:
            log.info("Pruned %d orphan node(s)", len(result.pruned))

        self._render(result)
        self._persist(result)

        log.info(
            "Curation pass complete: %d nodes, %d spine entries",
            len(self.tree.nodes), len(self.tree.spine),
        )
        return result

    def _ingest(self, result: PassResult, now: datetime) -> None:
        try:
            delta = self.tracker.read_delta()
        except OSError as exc:
            log.error("Failed to read transcript: %s", exc)
            return
        if delta is None:
            return

        text = delta.text
        if len(text) > self._max_input_chars:
            text = text[-self._max_input_chars:]

        try:
            digest = self._summarizer.summarize(text, "root")
        except SummarizationError as exc:
            log.warning("Digest failed, using raw truncation: %s", exc)
            digest = self._fallback.summarize(text, "root")

        node = append_spine_node(self.tree, digest, now)
        self.tracker.stage(node.id, delta.new_offset)
        result.ingested_node = node.id
        log.info("Added spine node %s", node.id)

    def _compact(self, result: PassResult, now: datetime, deadline: float | None) -> None:
        targets = compaction_targets(self.tree, self._thresholds, now)
        for i, target in enumerate(targets):
            if deadline is not None and time.monotonic() > deadline:
                result.deferred = len(targets) - i
                log.info("Grace period over, deferring %d compression(s)", result.deferred)
                return

            content = self.tree.get(target.node_id).content
            try:
                replacement = self._summarizer.summarize(content, target.to_level)
            except SummarizationError as exc:
                log.warning("Compression failed for %s: %s", target.node_id, exc)
                result.failed.append(target.node_id)
                continue

            compress(self.tree, target.node_id, replacement, target.to_level, now)
            result.compressed.append(target)
            log.info(
                "Compressed %s: %s → %s", target.node_id, target.from_level, target.to_level,
            )

    def _render(self, result: PassResult) -> None:
        briefing = self._config["briefing"]
        try:
            text = write_briefing(
                self.tree,
                self._paths["briefing"],
                max_tokens=briefing["max_tokens"],
                chars_per_token=briefing["chars_per_token"],
            )
        except StoreWriteError as exc:
            log.error("Failed to write briefing: %s", exc)
            return
        result.briefing_chars = len(text)
        result.briefing_written = True

    def _persist(self, result: PassResult) -> None:
        try:
            save_tree(self.tree, self._paths["tree"])
        except StoreWriteError as exc:
            log.error("Failed to save tree: %s", exc)
            return
        result.saved = True

        # Offset is committed strictly after the snapshot that absorbed it
        try:
            result.committed = self.tracker.commit()
        except StoreWriteError as exc:
            log.error("Failed to commit ingestion offset: %s", exc)
