"""Deterministic, size-bounded briefing rendered from the memory tree.

The briefing is what the agent reads at boot. Layout::

    # memory

    ## current session

    <spine head content, never truncated>

    ### topics
    - @@seek(id=<branch id>)@@ <label>

    ## recent history

    - [<level>] <content>
      - @@seek(id=<branch id>)@@ <label>
    - ... (older history truncated)

The budget is ``max_tokens * chars_per_token`` characters of output. When
the whole document fits it is returned as is. Otherwise topic lines and
history entries are kept, in order, while the output so far plus the
closing newline stays within budget; the first one that does not fit is
replaced by :data:`TRUNCATION_MARKER` and rendering stops. Section headings
are charged together with the first entry under them, and an entry is never
emitted partially. A truncated briefing is therefore at most
``budget + len(TRUNCATION_MARKER) + 1`` characters, unless the header and
current session already fill the budget.
"""

from __future__ import annotations

import logging
from pathlib import Path

from lucidity.store import write_text_atomic
from lucidity.tree.model import Link, Node, Tree

log = logging.getLogger(__name__)

HEADER = "# memory"
TRUNCATION_MARKER = "- ... (older history truncated)"

DEFAULT_MAX_TOKENS = 4000
DEFAULT_CHARS_PER_TOKEN = 4


class _Budget:
    """Line accumulator that tracks the length of ``"\\n".join(lines)``."""

    def __init__(self, max_chars: int, lines: list[str]) -> None:
        self.max_chars = max_chars
        self.lines: list[str] = []
        self.size = -1
        self.extend(lines)

    def extend(self, block: list[str]) -> None:
        for line in block:
            self.size += len(line) + 1
            self.lines.append(line)

    def fits(self, block: list[str]) -> bool:
        # +1 for the newline that ends the document
        extra = sum(len(line) + 1 for line in block)
        return self.size + extra + 1 <= self.max_chars

    def truncate(self) -> str:
        self.extend([TRUNCATION_MARKER, ""])
        return "\n".join(self.lines)


def _seek(link: Link) -> str:
    return f"@@seek(id={link.target_id})@@ {link.label}"


def _blocks(head: Node, rest: list[Node]) -> list[list[str]]:
    """Budgeted units after the head, each heading folded into its first entry."""
    blocks: list[list[str]] = []

    topics = [f"- {_seek(link)}" for link in head.links]
    if topics:
        blocks.append(["### topics", topics[0]])
        blocks.extend([line] for line in topics[1:])

    entries = [
        [f"- [{node.compression_level}] {node.content}"]
        + [f"  - {_seek(link)}" for link in node.links]
        for node in rest
    ]
    if entries:
        lead = ([""] if topics else []) + ["## recent history", ""]
        blocks.append(lead + entries[0])
        blocks.extend(entries[1:])

    return blocks


def render_briefing(
    tree: Tree,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
) -> str:
    """Render *tree* as briefing text within ``max_tokens * chars_per_token`` chars.

    The same tree and budget always produce identical output. An empty tree
    renders as the header alone.
    """
    if max_tokens <= 0 or chars_per_token <= 0:
        raise ValueError(
            f"briefing budget must be positive (max_tokens={max_tokens}, "
            f"chars_per_token={chars_per_token})"
        )
    max_chars = max_tokens * chars_per_token

    spine = tree.spine_nodes()
    if not spine:
        return f"{HEADER}\n"

    head, rest = spine[0], spine[1:]
    fixed = [HEADER, "", "## current session", "", head.content, ""]
    blocks = _blocks(head, rest)

    lines = list(fixed)
    for block in blocks:
        lines.extend(block)
    if blocks:
        lines.append("")
    text = "\n".join(lines)
    if len(text) <= max_chars:
        return text

    out = _Budget(max_chars, fixed)
    for block in blocks:
        if not out.fits(block):
            break
        out.extend(block)
    # Every block fitting would mean the full text fit as well
    return out.truncate()


def write_briefing(
    tree: Tree,
    path: Path,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
) -> str:
    """Render and atomically write the briefing. Returns the rendered text."""
    text = render_briefing(tree, max_tokens, chars_per_token)
    write_text_atomic(Path(path), text)
    log.info("Wrote briefing (%d chars) to %s", len(text), path)
    return text


def fallback_briefing(reason: str) -> str:
    """Minimal standalone briefing used when the tree cannot be rendered."""
    return f"{HEADER}\n\nmemory unavailable: {reason}\nno previous memory available.\n"
