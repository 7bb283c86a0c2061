"""CLI entry point for lucidity."""

from __future__ import annotations

import logging
from pathlib import Path

import click


# Default config template
CONFIG_TEMPLATE = """\
agent: agent

paths:
  tree: .lucidity/tree.json
  cursor: .lucidity/cursor.yaml
  briefing: .lucidity/briefing.md
  transcript: .lucidity/transcripts/agent.log

ingest:
  format: auto  # auto, agentchat, claude, claude-code, generic-jsonl, plain
  commit_mode: cursor  # cursor | marker
  dedup: true
  max_input_chars: 10000

compaction:  # seconds of age before a spine node enters each level
  summary: 3600
  oneliner: 86400
  tag: 604800

prune:
  max_orphan_age: 604800

briefing:
  max_tokens: 4000
  chars_per_token: 4

summarizer:
  backend: command  # command | anthropic | truncate
  command: null  # default: claude --print --model <model>
  model: haiku
  api_model: claude-sonnet-4-20250514  # anthropic backend, needs ANTHROPIC_API_KEY
  max_tokens: 1024
  timeout: 30

curator:
  interval: 300
  shutdown_grace: 30
  watch_transcript: true
"""

_PROJECT_ROOT = click.option(
    "--project-root",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    default=".",
    help="Project root directory (default: cwd).",
)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@click.group()
def cli() -> None:
    """Lucidity: bounded persistent memory for restarting agents."""


@cli.command()
@_PROJECT_ROOT
@click.option("--agent", default=None, help="Agent name (default: 'agent').")
def init(project_root: str, agent: str | None) -> None:
    """Initialize .lucidity/ directory with config and an empty transcript."""
    from lucidity.config import load_config, resolve_paths

    root = Path(project_root)
    lucidity_dir = root / ".lucidity"

    if lucidity_dir.exists():
        click.echo(f".lucidity/ already exists at {lucidity_dir}")
        raise SystemExit(1)

    lucidity_dir.mkdir(parents=True)
    config_path = lucidity_dir / "config.yaml"
    template = CONFIG_TEMPLATE
    if agent:
        template = template.replace("agent: agent\n", f"agent: {agent}\n", 1)
        template = template.replace("transcripts/agent.log", f"transcripts/{agent}.log", 1)
    config_path.write_text(template)
    click.echo(f"Created {config_path}")

    # Load config through the standard path to validate it
    config = load_config(root)
    transcript = resolve_paths(config, root)["transcript"]
    transcript.parent.mkdir(parents=True, exist_ok=True)
    transcript.touch()
    click.echo(f"Created {transcript}")

    click.echo("\nLucidity initialized. Edit .lucidity/config.yaml to customize paths.")


@cli.command()
@_PROJECT_ROOT
@click.option("--verbose", is_flag=True, help="Log at DEBUG level.")
def curate(project_root: str, verbose: bool) -> None:
    """Run a single curation pass."""
    from lucidity.config import load_config
    from lucidity.curator import Curator

    _configure_logging(verbose)

    root = Path(project_root)
    config = load_config(root)
    curator = Curator(config, root)
    curator.load()
    result = curator.run_pass()

    click.echo(f"Ingested: {result.ingested_node or 'nothing new'}")
    click.echo(f"Compressed: {len(result.compressed)}")
    for target in result.compressed:
        click.echo(f"  {target.node_id} {target.from_level} -> {target.to_level}")
    if result.failed:
        click.echo(f"Compression failures (retried next pass): {len(result.failed)}")
    click.echo(f"Pruned: {len(result.pruned)}")
    click.echo(f"Briefing: {result.briefing_chars:,} chars")

    if not result.saved:
        click.echo("Snapshot save failed; see log.")
        raise SystemExit(1)


@cli.command()
@_PROJECT_ROOT
@click.option("--verbose", is_flag=True, help="Log at DEBUG level.")
def run(project_root: str, verbose: bool) -> None:
    """Run the curator loop (foreground)."""
    from lucidity.config import load_config
    from lucidity.curator import run_curator

    _configure_logging(verbose)

    root = Path(project_root)
    config = load_config(root)
    click.echo(f"Starting lucidity curator for {root}...")
    run_curator(config, root)


@cli.command()
@_PROJECT_ROOT
@click.option(
    "--output",
    type=click.Path(dir_okay=False, resolve_path=True),
    default=None,
    help="Write the briefing here instead of paths.briefing.",
)
def boot(project_root: str, output: str | None) -> None:
    """Write the briefing from the saved tree. Never fails agent startup.

    No summarizer calls and no compression: load state, emit the briefing.
    """
    from lucidity.briefing import fallback_briefing, write_briefing
    from lucidity.config import ConfigError, default_config, load_config, resolve_paths
    from lucidity.errors import SnapshotDecodeError
    from lucidity.store import load_tree, write_text_atomic
    from lucidity.tree.model import create_tree

    root = Path(project_root)
    try:
        config = load_config(root, allow_missing=True)
    except ConfigError as exc:
        click.echo(f"Config error, using defaults: {exc}")
        config = default_config()

    paths = resolve_paths(config, root)
    target = Path(output) if output else paths["briefing"]

    try:
        try:
            tree = load_tree(paths["tree"])
        except SnapshotDecodeError as exc:
            click.echo(f"Tree load error: {exc}")
            tree = None

        if tree is None:
            click.echo("No existing tree; agent will boot without memory")
            tree = create_tree()
        else:
            click.echo(f"Loaded tree: {len(tree.nodes)} nodes, {len(tree.spine)} spine entries")

        text = write_briefing(
            tree,
            target,
            max_tokens=config["briefing"]["max_tokens"],
            chars_per_token=config["briefing"]["chars_per_token"],
        )
        click.echo(f"Wrote briefing ({len(text):,} chars) to {target}")
    except Exception as exc:
        click.echo(f"Boot failed: {exc}; writing minimal briefing", err=True)
        try:
            write_text_atomic(target, fallback_briefing(str(exc)))
        except OSError as write_exc:
            click.echo(f"Could not write fallback briefing: {write_exc}", err=True)


@cli.command()
@_PROJECT_ROOT
@click.option("--max-tokens", type=int, default=None, help="Override briefing.max_tokens.")
def render(project_root: str, max_tokens: int | None) -> None:
    """Print the briefing for the saved tree to stdout."""
    from lucidity.briefing import render_briefing
    from lucidity.config import load_config, resolve_paths
    from lucidity.errors import SnapshotDecodeError
    from lucidity.store import load_tree
    from lucidity.tree.model import create_tree

    root = Path(project_root)
    config = load_config(root)
    paths = resolve_paths(config, root)

    try:
        tree = load_tree(paths["tree"]) or create_tree()
    except SnapshotDecodeError as exc:
        raise click.ClickException(str(exc)) from exc

    briefing = config["briefing"]
    tokens = max_tokens if max_tokens is not None else briefing["max_tokens"]
    try:
        text = render_briefing(tree, tokens, briefing["chars_per_token"])
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(text, nl=not text.endswith("\n"))


@cli.command()
@_PROJECT_ROOT
def status(project_root: str) -> None:
    """Show tree, transcript, and ingestion cursor state."""
    from lucidity.config import load_config
    from lucidity.curator import get_status

    root = Path(project_root)
    config = load_config(root)
    info = get_status(config, root)

    store = info["store"]
    click.echo("Tree:")
    if store["tree_exists"]:
        click.echo(f"  Snapshot: {store['tree_size_bytes']:,} bytes")
    else:
        click.echo("  Snapshot: none")
    tree = info.get("tree")
    if tree:
        click.echo(f"  Nodes: {tree['node_count']} ({tree['branch_count']} branches)")
        click.echo(f"  Spine: {tree['spine_count']}")
        levels = ", ".join(f"{k}={v}" for k, v in tree["levels"].items())
        click.echo(f"  Levels: {levels}")

    click.echo("\nTranscripts:")
    click.echo(f"  Logs: {store['transcript_count']}")
    click.echo(f"  Bytes: {store['transcript_total_bytes']:,}")

    cursor = info.get("cursor")
    if cursor:
        click.echo("\nCursor:")
        click.echo(f"  Offset: {cursor.get('offset')}")
        click.echo(f"  Node: {cursor.get('node_id')}")
        click.echo(f"  Time: {cursor.get('updated_at')}")
    else:
        click.echo("\nNo cursor yet.")

    click.echo(f"\nBriefing: {'present' if info['briefing_exists'] else 'missing'}")

    if "error" in info:
        click.echo(f"\nError: {info['error']}")
        raise SystemExit(1)


@cli.command()
@_PROJECT_ROOT
@click.option("--to", "target", default=None, help="Record as a message sent to TARGET.")
@click.option("--event", is_flag=True, help="Record as a system event.")
@click.argument("text")
def capture(project_root: str, target: str | None, event: bool, text: str) -> None:
    """Append a line to the agent's transcript."""
    from lucidity.config import load_config, resolve_paths
    from lucidity.ingest.capture import TranscriptCapture

    root = Path(project_root)
    config = load_config(root)
    log_path = resolve_paths(config, root)["transcript"]
    cap = TranscriptCapture(log_path, config["agent"])

    if event:
        cap.record_event(text)
    else:
        cap.record_sent(target or "#log", text)
    click.echo(f"Appended to {log_path}")


@cli.command("message-log")
@_PROJECT_ROOT
@click.option(
    "--dir",
    "log_dir",
    type=click.Path(file_okay=False, resolve_path=True),
    default=None,
    help="Log directory (default: the transcript's directory).",
)
@click.option("--prefix", default=None, help="File name prefix (default: agent name).")
@click.option("--no-rotate", is_flag=True, help="Write one file instead of one per day.")
@click.argument("source", type=click.File("r"), default="-")
def message_log(
    project_root: str, log_dir: str | None, prefix: str | None, no_rotate: bool, source
) -> None:
    """Archive messages from SOURCE (default stdin) as JSONL, one per line.

    JSON objects are logged as messages; other lines are logged as content.
    """
    from lucidity.config import load_config, resolve_paths
    from lucidity.ingest.message_log import MessageLog

    _configure_logging(False)

    root = Path(project_root)
    config = load_config(root)
    target_dir = Path(log_dir) if log_dir else resolve_paths(config, root)["transcript"].parent
    mlog = MessageLog(target_dir, prefix or config["agent"], rotate=not no_rotate)

    try:
        for line in source:
            mlog.log_line(line)
    finally:
        mlog.close()

    stats = mlog.stats()
    click.echo(
        f"Logged {stats['messages_written']} messages ({stats['bytes_written']:,} bytes), "
        f"skipped {stats['skipped']}"
    )


@cli.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
def metadata(path: str) -> None:
    """Print agents, channels, and topics found in a JSONL message log."""
    import json

    from lucidity.ingest.message_log import extract_metadata

    with open(path, encoding="utf-8") as fh:
        meta = extract_metadata(fh)
    click.echo(json.dumps(meta, indent=2))


@cli.command()
@_PROJECT_ROOT
@click.option("--parent", required=True, help="Parent node id, or 'head' for the spine head.")
@click.option("--label", required=True, help="Topic label for the link.")
@click.argument("content")
def branch(project_root: str, parent: str, label: str, content: str) -> None:
    """Attach a branch node with CONTENT to an existing node.

    Edits the saved snapshot directly. A running 'lucidity run' curator
    keeps its own copy of the tree and overwrites the snapshot at its next
    pass, dropping this branch (last writer wins). Stop the curator first,
    or attach branches between passes of 'lucidity curate'.
    """
    from lucidity.config import load_config, resolve_paths
    from lucidity.errors import NodeNotFoundError, SnapshotDecodeError
    from lucidity.store import load_tree, save_tree
    from lucidity.tree.model import add_branch

    root = Path(project_root)
    config = load_config(root)
    tree_path = resolve_paths(config, root)["tree"]

    try:
        tree = load_tree(tree_path)
    except SnapshotDecodeError as exc:
        raise click.ClickException(str(exc)) from exc
    if tree is None:
        raise click.ClickException(f"No tree at {tree_path}. Run 'lucidity curate' first.")

    if parent == "head":
        head = tree.head()
        if head is None:
            raise click.ClickException("Tree has no spine head.")
        parent = head.id

    try:
        node = add_branch(tree, parent, content, label)
    except NodeNotFoundError as exc:
        raise click.ClickException(str(exc)) from exc

    save_tree(tree, tree_path)
    click.echo(f"Added branch {node.id} under {parent} ({label})")
