"""Tests for the curation pass and curator helpers."""

from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from lucidity.config import _deep_merge, default_config, resolve_paths
from lucidity.curator import Curator, get_status
from lucidity.errors import StoreWriteError, SummarizationError
from lucidity.store import load_tree, save_tree
from lucidity.summarize import Summarizer
from lucidity.tree.model import Node, append_spine_node, create_tree

T0 = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)


class FakeSummarizer(Summarizer):
    """Deterministic summarizer that records calls and can be told to fail."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail_levels: set[str] = set()

    def summarize(self, content: str, level: str) -> str:
        self.calls.append((level, content))
        if level in self.fail_levels:
            raise SummarizationError(f"{level} unavailable")
        return f"{level}: {content[:30]}"


class Clock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture()
def config() -> dict:
    return default_config()


@pytest.fixture()
def paths(config: dict, tmp_path: Path) -> dict[str, Path]:
    return resolve_paths(config, tmp_path)


@pytest.fixture()
def transcript(paths: dict[str, Path]) -> Path:
    path = paths["transcript"]
    path.parent.mkdir(parents=True)
    path.write_text("")
    return path


@pytest.fixture()
def summarizer() -> FakeSummarizer:
    return FakeSummarizer()


@pytest.fixture()
def clock() -> Clock:
    return Clock(T0)


def _curator(config: dict, root: Path, summarizer: Summarizer, clock: Clock) -> Curator:
    curator = Curator(config, root, summarizer=summarizer, clock=clock)
    curator.load()
    return curator


def _append(path: Path, text: str) -> None:
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(text)


# ------------------------------------------------------------------
# Tests
# ------------------------------------------------------------------


class TestIngest:
    def test_new_transcript_becomes_spine_head(
        self, config, tmp_path, transcript, paths, summarizer, clock,
    ) -> None:
        _append(transcript, "alice: deploy the api\nbob: done\n")
        curator = _curator(config, tmp_path, summarizer, clock)

        result = curator.run_pass()

        assert result.ingested_node is not None
        head = curator.tree.head()
        assert head is not None
        assert head.id == result.ingested_node
        assert head.content == "root: alice: deploy the api\nbob: don"
        assert head.created_at == T0
        assert summarizer.calls == [("root", "alice: deploy the api\nbob: done")]

        assert result.saved and result.committed and result.briefing_written
        saved = load_tree(paths["tree"])
        assert saved is not None
        assert saved.spine == [head.id]
        assert "## current session" in paths["briefing"].read_text()
        assert yaml.safe_load(paths["cursor"].read_text())["node_id"] == head.id

    def test_nothing_new(self, config, tmp_path, transcript, summarizer, clock) -> None:
        curator = _curator(config, tmp_path, summarizer, clock)
        result = curator.run_pass()
        assert result.ingested_node is None
        assert result.committed is False
        assert result.saved is True
        assert curator.tree.nodes == {}

    def test_missing_transcript(self, config, tmp_path, summarizer, clock) -> None:
        curator = _curator(config, tmp_path, summarizer, clock)
        result = curator.run_pass()
        assert result.ingested_node is None
        assert result.briefing_written

    def test_each_delta_ingested_once(
        self, config, tmp_path, transcript, summarizer, clock,
    ) -> None:
        curator = _curator(config, tmp_path, summarizer, clock)
        _append(transcript, "one\n")
        first = curator.run_pass().ingested_node
        _append(transcript, "two\n")
        second = curator.run_pass().ingested_node

        assert curator.tree.spine == [second, first]
        assert [c for c in summarizer.calls if c[0] == "root"] == [("root", "one"), ("root", "two")]

    def test_input_capped_to_newest_chars(
        self, config, tmp_path, transcript, summarizer, clock,
    ) -> None:
        config = _deep_merge(config, {"ingest": {"max_input_chars": 5}})
        _append(transcript, "abcdefghij\n")
        _curator(config, tmp_path, summarizer, clock).run_pass()
        assert summarizer.calls[0] == ("root", "fghij")

    def test_root_failure_falls_back_to_truncation(
        self, config, tmp_path, transcript, summarizer, clock,
    ) -> None:
        summarizer.fail_levels.add("root")
        _append(transcript, "raw line\n")
        curator = _curator(config, tmp_path, summarizer, clock)

        result = curator.run_pass()

        assert result.ingested_node is not None
        assert curator.tree.get(result.ingested_node).content == "raw line"


class TestAtLeastOnce:
    def test_save_failure_rereads_delta(
        self, config, tmp_path, transcript, summarizer, clock,
    ) -> None:
        _append(transcript, "must not be lost\n")
        curator = _curator(config, tmp_path, summarizer, clock)

        with patch(
            "lucidity.curator.curation.save_tree",
            side_effect=StoreWriteError("disk full"),
        ):
            result = curator.run_pass()
        assert result.saved is False
        assert result.committed is False

        restarted = _curator(config, tmp_path, FakeSummarizer(), clock)
        again = restarted.run_pass()
        assert again.ingested_node is not None
        assert restarted.tree.get(again.ingested_node).content.endswith("must not be lost")

    def test_marker_mode_restart(
        self, config, tmp_path, transcript, summarizer, clock,
    ) -> None:
        config = _deep_merge(config, {"ingest": {"commit_mode": "marker"}})
        _append(transcript, "first\n")
        _curator(config, tmp_path, summarizer, clock).run_pass()
        assert "@@curated::" in transcript.read_text()

        _append(transcript, "second\n")
        restarted = _curator(config, tmp_path, FakeSummarizer(), clock)
        result = restarted.run_pass()
        assert restarted.tree.get(result.ingested_node).content == "root: second"
        assert len(restarted.tree.spine) == 2


class TestCompaction:
    def test_aged_head_compressed(
        self, config, tmp_path, transcript, summarizer, clock,
    ) -> None:
        _append(transcript, "session text\n")
        curator = _curator(config, tmp_path, summarizer, clock)
        node_id = curator.run_pass().ingested_node

        clock.advance(timedelta(hours=2))
        result = curator.run_pass()

        assert [(t.node_id, t.to_level) for t in result.compressed] == [(node_id, "summary")]
        node = curator.tree.get(node_id)
        assert node.compression_level == "summary"
        assert node.content == "summary: root: session text"

    def test_failure_retried_next_pass(
        self, config, tmp_path, transcript, summarizer, clock,
    ) -> None:
        _append(transcript, "session text\n")
        curator = _curator(config, tmp_path, summarizer, clock)
        node_id = curator.run_pass().ingested_node
        clock.advance(timedelta(hours=2))

        summarizer.fail_levels.add("summary")
        result = curator.run_pass()
        assert result.failed == [node_id]
        assert curator.tree.get(node_id).compression_level == "full"

        summarizer.fail_levels.clear()
        result = curator.run_pass()
        assert [t.node_id for t in result.compressed] == [node_id]

    def test_deadline_defers(
        self, config, tmp_path, transcript, summarizer, clock,
    ) -> None:
        _append(transcript, "session text\n")
        curator = _curator(config, tmp_path, summarizer, clock)
        node_id = curator.run_pass().ingested_node
        clock.advance(timedelta(hours=2))

        result = curator.run_pass(deadline=time.monotonic() - 1)

        assert result.deferred == 1
        assert result.compressed == []
        assert curator.tree.get(node_id).compression_level == "full"
        assert result.saved


class TestPrune:
    def test_old_orphan_removed(
        self, config, tmp_path, transcript, summarizer, clock, paths,
    ) -> None:
        tree = create_tree()
        append_spine_node(tree, "kept", T0)
        old = T0 - timedelta(days=30)
        tree.nodes["orphan"] = Node(id="orphan", created_at=old, updated_at=old, depth=1)
        save_tree(tree, paths["tree"])

        curator = _curator(config, tmp_path, summarizer, clock)
        result = curator.run_pass()

        assert result.pruned == ["orphan"]
        saved = load_tree(paths["tree"])
        assert saved is not None
        assert "orphan" not in saved.nodes


class TestLoad:
    def test_corrupt_snapshot_starts_empty(
        self, config, tmp_path, transcript, summarizer, clock, paths,
    ) -> None:
        paths["tree"].parent.mkdir(parents=True, exist_ok=True)
        paths["tree"].write_text("{ not json")
        curator = _curator(config, tmp_path, summarizer, clock)
        assert curator.tree.nodes == {}

        _append(transcript, "fresh\n")
        curator.run_pass()
        saved = load_tree(paths["tree"])
        assert saved is not None
        assert len(saved.spine) == 1


class TestGetStatus:
    def test_after_pass(self, config, tmp_path, transcript, summarizer, clock) -> None:
        _append(transcript, "hello\n")
        _curator(config, tmp_path, summarizer, clock).run_pass()

        info = get_status(config, tmp_path)

        assert info["store"]["tree_exists"] is True
        assert info["store"]["transcript_count"] == 1
        assert info["tree"]["spine_count"] == 1
        assert info["cursor"]["offset"] == 6
        assert info["briefing_exists"] is True
        assert "error" not in info

    def test_fresh_project(self, config, tmp_path) -> None:
        info = get_status(config, tmp_path)
        assert info["store"]["tree_exists"] is False
        assert info["tree"] is None
        assert info["cursor"] is None
        assert info["briefing_exists"] is False

    def test_corrupt_tree_reported(self, config, tmp_path, paths) -> None:
        paths["tree"].parent.mkdir(parents=True, exist_ok=True)
        paths["tree"].write_text("[]")
        info = get_status(config, tmp_path)
        assert "error" in info


# ------------------------------------------------------------------
# Watcher / run loop
# ------------------------------------------------------------------


class TestTranscriptWatcher:
    def test_handler_fires_for_transcript(self, tmp_path: Path) -> None:
        from watchdog.events import FileModifiedEvent

        from lucidity.curator.watcher import _TranscriptEventHandler

        target = tmp_path / "agent.log"
        target.write_text("x\n")
        fired: list[bool] = []
        handler = _TranscriptEventHandler(target.resolve(), lambda: fired.append(True))

        handler.on_modified(FileModifiedEvent(str(target)))
        assert fired == [True]

    def test_handler_ignores_other_files(self, tmp_path: Path) -> None:
        from watchdog.events import FileCreatedEvent

        from lucidity.curator.watcher import _TranscriptEventHandler

        fired: list[bool] = []
        handler = _TranscriptEventHandler(
            (tmp_path / "agent.log").resolve(), lambda: fired.append(True),
        )
        handler.on_created(FileCreatedEvent(str(tmp_path / "other.log")))
        assert fired == []

    def test_start_without_directory(self, tmp_path: Path) -> None:
        from lucidity.curator.watcher import TranscriptWatcher

        watcher = TranscriptWatcher(tmp_path / "missing" / "agent.log", lambda: None)
        assert watcher.start() is False
        watcher.stop()

    def test_start_and_stop(self, tmp_path: Path) -> None:
        from lucidity.curator.watcher import TranscriptWatcher

        watcher = TranscriptWatcher(tmp_path / "agent.log", lambda: None)
        assert watcher.start() is True
        watcher.stop()


class TestRunCurator:
    def test_runs_until_signalled_then_final_pass(
        self, config, tmp_path, transcript, paths,
    ) -> None:
        import signal

        from lucidity.curator import run_curator

        config = _deep_merge(config, {
            "summarizer": {"backend": "truncate"},
            "curator": {"interval": 5, "watch_transcript": False},
        })
        _append(transcript, "before start\n")

        handlers: dict[int, object] = {}

        def fake_signal(signum, handler):
            handlers[signum] = handler

        sleeps: list[int] = []

        def fake_sleep(seconds):
            sleeps.append(seconds)
            _append(transcript, "during run\n")
            handlers[signal.SIGTERM](signal.SIGTERM, None)

        with patch("lucidity.curator.signal.signal", side_effect=fake_signal), \
             patch("lucidity.curator.time.sleep", side_effect=fake_sleep):
            run_curator(config, tmp_path)

        assert signal.SIGINT in handlers
        assert sleeps == [1]
        tree = load_tree(paths["tree"])
        assert tree is not None
        # First pass ingests the initial line, the shutdown pass the later one
        assert len(tree.spine) == 2
        assert yaml.safe_load(paths["cursor"].read_text())["offset"] == transcript.stat().st_size
