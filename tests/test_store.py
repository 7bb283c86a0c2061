"""Tests for lucidity.store."""

from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from lucidity.errors import SnapshotDecodeError, StoreWriteError
from lucidity.store import load_tree, save_tree, store_stats, write_text_atomic
from lucidity.tree.model import add_branch, append_spine_node, compress, create_tree

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.fixture()
def tree_path(tmp_path: Path) -> Path:
    return tmp_path / ".lucidity" / "tree.json"


class TestWriteTextAtomic:
    def test_creates_parents(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b" / "out.md"
        write_text_atomic(target, "hello\n")
        assert target.read_text() == "hello\n"
        assert not (target.parent / "out.md.tmp").exists()

    def test_replace_failure_keeps_previous(self, tmp_path: Path) -> None:
        target = tmp_path / "out.md"
        target.write_text("old")
        with patch("lucidity.store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StoreWriteError, match="disk full"):
                write_text_atomic(target, "new")
        assert target.read_text() == "old"
        assert not (tmp_path / "out.md.tmp").exists()

    def test_store_write_error_is_oserror(self) -> None:
        assert issubclass(StoreWriteError, OSError)


class TestSaveLoad:
    def test_missing_returns_none(self, tree_path: Path) -> None:
        assert load_tree(tree_path) is None

    def test_round_trip(self, tree_path: Path) -> None:
        tree = create_tree()
        root = append_spine_node(tree, "root: ünïcode ✓", T0)
        add_branch(tree, root.id, "detail", "topic", T0)
        compress(tree, root.id, "short", "summary", T0)

        save_tree(tree, tree_path)
        assert load_tree(tree_path) == tree

    def test_json_layout(self, tree_path: Path) -> None:
        tree = create_tree()
        append_spine_node(tree, "x", T0)
        save_tree(tree, tree_path)
        raw = json.loads(tree_path.read_text())
        assert set(raw) == {"nodes", "spine", "version"}
        assert raw["version"] == 2
        assert tree_path.read_text().endswith("\n")

    def test_empty_tree(self, tree_path: Path) -> None:
        save_tree(create_tree(), tree_path)
        loaded = load_tree(tree_path)
        assert loaded is not None
        assert loaded.nodes == {}
        assert loaded.spine == []

    def test_save_overwrites(self, tree_path: Path) -> None:
        tree = create_tree()
        save_tree(tree, tree_path)
        append_spine_node(tree, "later", T0)
        save_tree(tree, tree_path)
        loaded = load_tree(tree_path)
        assert loaded is not None
        assert len(loaded.spine) == 1
        assert os.listdir(tree_path.parent) == ["tree.json"]


class TestLegacy:
    def test_upgrades_v1_keys(self, tree_path: Path) -> None:
        tree_path.parent.mkdir(parents=True)
        tree_path.write_text(json.dumps({
            "nodes": {
                "n1": {
                    "id": "n1",
                    "created_at": "2025-01-01T00:00:00Z",
                    "updated_at": "2025-01-01T00:00:00Z",
                    "depth": 0,
                    "content": "old",
                    "links": [],
                    "summary_level": "oneliner",
                },
            },
            "trunk": ["n1"],
            "version": 1,
        }))
        tree = load_tree(tree_path)
        assert tree is not None
        assert tree.spine == ["n1"]
        assert tree.nodes["n1"].compression_level == "oneliner"
        assert tree.version == 2

    def test_missing_version_is_v1(self, tree_path: Path) -> None:
        tree_path.parent.mkdir(parents=True)
        tree_path.write_text(json.dumps({"nodes": {}, "spine": []}))
        tree = load_tree(tree_path)
        assert tree is not None
        assert tree.version == 2


class TestDecodeErrors:
    @pytest.mark.parametrize(
        "payload",
        [
            "not json {",
            "[]",
            json.dumps({"nodes": {}, "spine": [], "version": 99}),
            json.dumps({"nodes": {}, "spine": [], "version": "2"}),
            json.dumps({"spine": [], "version": 2}),
            json.dumps({"nodes": {}, "version": 2}),
            json.dumps({"nodes": {"x": {"id": "x"}}, "spine": [], "version": 2}),
            json.dumps({
                "nodes": {"x": {"id": "x", "created_at": "2025-01-01T00:00:00Z",
                                "compression_level": "huge"}},
                "spine": ["x"],
                "version": 2,
            }),
        ],
        ids=["bad-json", "not-object", "future-version", "string-version",
             "no-nodes", "no-spine", "no-created-at", "bad-level"],
    )
    def test_raises(self, tree_path: Path, payload: str) -> None:
        tree_path.parent.mkdir(parents=True)
        tree_path.write_text(payload)
        with pytest.raises(SnapshotDecodeError):
            load_tree(tree_path)


class TestStoreStats:
    def test_counts(self, tmp_path: Path, tree_path: Path) -> None:
        tree = create_tree()
        append_spine_node(tree, "a", T0)
        save_tree(tree, tree_path)
        transcripts = tmp_path / "transcripts"
        transcripts.mkdir()
        (transcripts / "a.log").write_text("12345")
        (transcripts / "b.log").write_text("123")
        (transcripts / "notes.txt").write_text("ignored")

        stats = store_stats(tree_path, transcripts)

        assert stats["tree_exists"] is True
        assert stats["tree_size_bytes"] > 0
        assert stats["node_count"] == 1
        assert stats["spine_count"] == 1
        assert stats["transcript_count"] == 2
        assert stats["transcript_total_bytes"] == 8

    def test_counts_jsonl_logs(self, tmp_path: Path, tree_path: Path) -> None:
        transcripts = tmp_path / "transcripts"
        transcripts.mkdir()
        (transcripts / "agent.log").write_text("1234")
        (transcripts / "transcript-2025-01-01.jsonl").write_text("{}\n")
        (transcripts / "archive").mkdir()

        stats = store_stats(tree_path, transcripts)

        assert stats["transcript_count"] == 2
        assert stats["transcript_total_bytes"] == 7

    def test_nothing_yet(self, tree_path: Path) -> None:
        stats = store_stats(tree_path)
        assert stats["tree_exists"] is False
        assert stats["node_count"] == 0
