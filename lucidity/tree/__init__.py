"""Memory tree: data model, compaction selection, and orphan pruning."""

from lucidity.tree.compaction import (
    DEFAULT_THRESHOLDS,
    CompactionTarget,
    compaction_targets,
)
from lucidity.tree.model import (
    LEVELS,
    Link,
    Node,
    Tree,
    add_branch,
    append_spine_node,
    compress,
    create_tree,
    level_index,
    next_level,
    tree_stats,
)
from lucidity.tree.prune import DEFAULT_MAX_ORPHAN_AGE, prune_orphans, reachable_ids

__all__ = [
    "DEFAULT_MAX_ORPHAN_AGE",
    "DEFAULT_THRESHOLDS",
    "LEVELS",
    "CompactionTarget",
    "Link",
    "Node",
    "Tree",
    "add_branch",
    "append_spine_node",
    "compaction_targets",
    "compress",
    "create_tree",
    "level_index",
    "next_level",
    "prune_orphans",
    "reachable_ids",
    "tree_stats",
]
