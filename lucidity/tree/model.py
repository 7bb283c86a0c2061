"""Memory tree: a temporal spine of session nodes with associative branches.

The spine is the newest-first list of primary nodes, one per ingested
transcript delta. Branches hang off spine nodes (or other branches) through
labelled links and hold topical deep-dives. Every node carries a
compression level on a one-way ladder::

    full -> summary -> oneliner -> tag

All operations take the tree explicitly and mutate it in place; there is
no module-level "current tree".
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from lucidity.errors import InvalidTransitionError, NodeNotFoundError

# Compression ladder, least to most compressed
LEVELS: tuple[str, ...] = ("full", "summary", "oneliner", "tag")

SNAPSHOT_VERSION = 2


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_id() -> str:
    """Return a random 16-hex-char node id."""
    return secrets.token_hex(8)


def level_index(level: str) -> int:
    """Position of *level* on the compression ladder.

    Raises:
        InvalidTransitionError: If *level* is not a known level.
    """
    try:
        return LEVELS.index(level)
    except ValueError:
        raise InvalidTransitionError(
            f"unknown compression level '{level}'; expected one of {list(LEVELS)}"
        ) from None


def next_level(level: str) -> str | None:
    """The single next step after *level*, or None at the terminal level."""
    idx = level_index(level)
    if idx + 1 >= len(LEVELS):
        return None
    return LEVELS[idx + 1]


def format_ts(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat()


def parse_ts(raw: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``."""
    ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass
class Link:
    """A labelled edge from one node to another."""

    target_id: str
    label: str

    def to_dict(self) -> dict[str, str]:
        return {"target_id": self.target_id, "label": self.label}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Link:
        return cls(target_id=str(data["target_id"]), label=str(data.get("label", "")))


@dataclass
class Node:
    """A single memory node.

    Attributes:
        id: Opaque unique id.
        created_at: Creation time (UTC). Drives aging and pruning.
        updated_at: Last mutation time (UTC).
        depth: 0 for spine nodes, parent depth + 1 for branches.
        content: Text at the fidelity given by ``compression_level``.
        links: Ordered outgoing links; duplicate targets are allowed.
        compression_level: One of :data:`LEVELS`.
    """

    id: str
    created_at: datetime
    updated_at: datetime
    depth: int = 0
    content: str = ""
    links: list[Link] = field(default_factory=list)
    compression_level: str = "full"

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or utcnow()) - self.created_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "created_at": format_ts(self.created_at),
            "updated_at": format_ts(self.updated_at),
            "depth": self.depth,
            "content": self.content,
            "links": [link.to_dict() for link in self.links],
            "compression_level": self.compression_level,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Node:
        level = data.get("compression_level", "full")
        level_index(level)
        created = parse_ts(data["created_at"])
        return cls(
            id=str(data["id"]),
            created_at=created,
            updated_at=parse_ts(data["updated_at"]) if data.get("updated_at") else created,
            depth=int(data.get("depth", 0)),
            content=str(data.get("content", "")),
            links=[Link.from_dict(link) for link in data.get("links", [])],
            compression_level=level,
        )


@dataclass
class Tree:
    """Node map plus the newest-first spine."""

    nodes: dict[str, Node] = field(default_factory=dict)
    spine: list[str] = field(default_factory=list)
    version: int = SNAPSHOT_VERSION

    def get(self, node_id: str) -> Node:
        node = self.nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def head(self) -> Node | None:
        """The most recently ingested spine node, if any."""
        for node in self.spine_nodes():
            return node
        return None

    def spine_nodes(self) -> list[Node]:
        """Spine nodes in spine order, skipping ids missing from the node map."""
        return [self.nodes[nid] for nid in self.spine if nid in self.nodes]

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": {nid: node.to_dict() for nid, node in self.nodes.items()},
            "spine": list(self.spine),
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Tree:
        nodes = {nid: Node.from_dict(raw) for nid, raw in data["nodes"].items()}
        return cls(
            nodes=nodes,
            spine=[str(nid) for nid in data["spine"]],
            version=int(data.get("version", SNAPSHOT_VERSION)),
        )


def create_tree() -> Tree:
    """Return an empty tree at the current snapshot version."""
    return Tree()


def _new_node(content: str, depth: int, now: datetime | None) -> Node:
    ts = now or utcnow()
    return Node(id=make_id(), created_at=ts, updated_at=ts, depth=depth, content=content)


def append_spine_node(tree: Tree, content: str, now: datetime | None = None) -> Node:
    """Create a full-detail spine node and make it the spine head."""
    node = _new_node(content, 0, now)
    tree.nodes[node.id] = node
    tree.spine.insert(0, node.id)
    return node


def add_branch(
    tree: Tree,
    parent_id: str,
    content: str,
    label: str,
    now: datetime | None = None,
) -> Node:
    """Attach a new full-detail branch node to *parent_id*.

    Raises:
        NodeNotFoundError: If the parent is absent. The tree is untouched.
    """
    parent = tree.get(parent_id)
    node = _new_node(content, parent.depth + 1, now)
    tree.nodes[node.id] = node
    parent.links.append(Link(target_id=node.id, label=label))
    parent.updated_at = node.created_at
    return node


def compress(
    tree: Tree,
    node_id: str,
    new_content: str,
    target_level: str,
    now: datetime | None = None,
) -> Node:
    """Replace a node's content with a more compressed rendition.

    The target must sit strictly above the node's current level; the node
    never re-expands.

    Raises:
        NodeNotFoundError: If *node_id* is absent.
        InvalidTransitionError: If *target_level* is unknown or not strictly
            higher than the current level. The node is untouched.
    """
    node = tree.get(node_id)
    current = level_index(node.compression_level)
    target = level_index(target_level)
    if target <= current:
        raise InvalidTransitionError(
            f"cannot compress {node.compression_level} to {target_level}: "
            "level must strictly increase"
        )

    node.content = new_content
    node.compression_level = target_level
    node.updated_at = now or utcnow()
    return node


def tree_stats(tree: Tree) -> dict[str, Any]:
    """Counts for logging and ``lucidity status``."""
    by_level = {level: 0 for level in LEVELS}
    for node in tree.nodes.values():
        by_level[node.compression_level] = by_level.get(node.compression_level, 0) + 1
    return {
        "node_count": len(tree.nodes),
        "spine_count": len(tree.spine),
        "branch_count": sum(1 for n in tree.nodes.values() if n.depth > 0),
        "levels": by_level,
    }
