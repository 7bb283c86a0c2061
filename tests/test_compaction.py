"""Tests for lucidity.tree.compaction."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from lucidity.tree.compaction import DEFAULT_THRESHOLDS, CompactionTarget, compaction_targets
from lucidity.tree.model import Node, Tree, add_branch, append_spine_node, compress, create_tree

NOW = datetime(2025, 3, 1, tzinfo=timezone.utc)


def _spine_node(tree: Tree, nid: str, level: str, age: timedelta) -> Node:
    ts = NOW - age
    node = Node(id=nid, created_at=ts, updated_at=ts, compression_level=level, content=nid)
    tree.nodes[nid] = node
    tree.spine.append(nid)
    return node


class TestDefaults:
    def test_thresholds(self) -> None:
        assert DEFAULT_THRESHOLDS == {
            "summary": timedelta(hours=1),
            "oneliner": timedelta(days=1),
            "tag": timedelta(weeks=1),
        }


class TestCompactionTargets:
    def test_mixed_spine(self) -> None:
        tree = create_tree()
        _spine_node(tree, "N3", "full", timedelta(hours=2))
        _spine_node(tree, "N2", "summary", timedelta(days=2))
        _spine_node(tree, "N1", "tag", timedelta(days=10))

        assert compaction_targets(tree, now=NOW) == [
            CompactionTarget("N3", "full", "summary"),
            CompactionTarget("N2", "summary", "oneliner"),
        ]

    def test_young_node_not_selected(self) -> None:
        tree = create_tree()
        _spine_node(tree, "fresh", "full", timedelta(minutes=30))
        assert compaction_targets(tree, now=NOW) == []

    def test_exactly_at_threshold_not_selected(self) -> None:
        tree = create_tree()
        _spine_node(tree, "edge", "full", timedelta(hours=1))
        assert compaction_targets(tree, now=NOW) == []

    def test_single_step_even_when_very_old(self) -> None:
        tree = create_tree()
        _spine_node(tree, "old", "full", timedelta(days=30))
        assert compaction_targets(tree, now=NOW) == [CompactionTarget("old", "full", "summary")]

    def test_branches_never_selected(self) -> None:
        tree = create_tree()
        root = append_spine_node(tree, "root", NOW - timedelta(minutes=1))
        add_branch(tree, root.id, "detail", "topic", NOW - timedelta(days=30))
        assert compaction_targets(tree, now=NOW) == []

    def test_override_thresholds(self) -> None:
        tree = create_tree()
        _spine_node(tree, "n", "full", timedelta(minutes=10))
        targets = compaction_targets(tree, {"summary": timedelta(minutes=5)}, now=NOW)
        assert targets == [CompactionTarget("n", "full", "summary")]

    def test_does_not_mutate(self) -> None:
        tree = create_tree()
        _spine_node(tree, "n", "full", timedelta(days=3))
        before = tree.to_dict()
        compaction_targets(tree, now=NOW)
        assert tree.to_dict() == before

    def test_repeated_until_applied(self) -> None:
        tree = create_tree()
        _spine_node(tree, "n", "full", timedelta(days=3))
        first = compaction_targets(tree, now=NOW)
        assert compaction_targets(tree, now=NOW) == first

        compress(tree, "n", "short", "summary", NOW)
        assert compaction_targets(tree, now=NOW) == [CompactionTarget("n", "summary", "oneliner")]

    def test_dangling_spine_id_skipped(self) -> None:
        tree = create_tree()
        tree.spine.append("ghost")
        assert compaction_targets(tree, now=NOW) == []
