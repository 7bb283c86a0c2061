"""Age-based selection of spine nodes due for the next compression step.

Selection is a pure query: it never touches the tree. The caller obtains
replacement text from a summarizer and applies it with
:func:`lucidity.tree.model.compress`. Until that happens the same targets
come back on every call, so a failed summarization is simply retried on the
next pass.

Only spine nodes age. Branch nodes keep their detail until the pruner
removes them.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping

from lucidity.tree.model import Tree, next_level, utcnow

# Age past which a node moves into the keyed level
DEFAULT_THRESHOLDS: dict[str, timedelta] = {
    "summary": timedelta(hours=1),
    "oneliner": timedelta(days=1),
    "tag": timedelta(weeks=1),
}


@dataclass(frozen=True)
class CompactionTarget:
    node_id: str
    from_level: str
    to_level: str


def compaction_targets(
    tree: Tree,
    thresholds: Mapping[str, timedelta] | None = None,
    now: datetime | None = None,
) -> list[CompactionTarget]:
    """List spine nodes whose age exceeds the threshold for their next level.

    Each node yields at most one target, for the single next ladder step,
    in spine order. Nodes already at ``tag`` yield nothing.

    Args:
        tree: Tree to inspect. Not modified.
        thresholds: Per-level overrides merged over :data:`DEFAULT_THRESHOLDS`.
        now: Reference time; defaults to the current UTC time.
    """
    limits = {**DEFAULT_THRESHOLDS, **(thresholds or {})}
    ref = now or utcnow()
    targets: list[CompactionTarget] = []

    for node in tree.spine_nodes():
        to_level = next_level(node.compression_level)
        if to_level is None:
            continue
        if node.age(ref) > limits[to_level]:
            targets.append(CompactionTarget(node.id, node.compression_level, to_level))

    return targets
