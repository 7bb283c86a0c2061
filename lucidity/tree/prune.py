"""Mark-and-sweep eviction of aged nodes that nothing links to."""

from __future__ import annotations

from datetime import datetime, timedelta

from lucidity.tree.model import Tree, utcnow

DEFAULT_MAX_ORPHAN_AGE = timedelta(days=7)


def reachable_ids(tree: Tree) -> set[str]:
    """Spine ids plus every link target held by any node.

    A plain union over the link lists, so link cycles need no special care.
    """
    reachable = set(tree.spine)
    for node in tree.nodes.values():
        reachable.update(link.target_id for link in node.links)
    return reachable


def prune_orphans(
    tree: Tree,
    max_orphan_age: timedelta = DEFAULT_MAX_ORPHAN_AGE,
    now: datetime | None = None,
) -> list[str]:
    """Delete unreachable nodes older than *max_orphan_age*.

    Spine nodes and link targets are never removed, whatever their age.
    A zero threshold removes every currently unreachable node.

    Returns:
        Ids of removed nodes, in node-map order.
    """
    if max_orphan_age < timedelta(0):
        raise ValueError(f"max_orphan_age must be non-negative, got {max_orphan_age}")

    ref = now or utcnow()
    reachable = reachable_ids(tree)
    doomed = [
        nid for nid, node in tree.nodes.items()
        if nid not in reachable and (not max_orphan_age or node.age(ref) > max_orphan_age)
    ]
    for nid in doomed:
        del tree.nodes[nid]
    return doomed
