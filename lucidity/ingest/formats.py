"""Transcript line adapters: normalize mixed-format logs to plain lines.

A transcript may interleave several record shapes. Each line is offered to
a prioritized list of adapters; the first whose predicate matches renders it
into one normalized text line, or drops it (``None``). Plain text is the
guaranteed fallback, so no line is ever rejected.

Built-in adapters, in priority order:

- curated-marker: ``@@curated::<id>@@`` ingestion bookmarks (dropped)
- agentchat: ``{from, to, content, ts}`` chat messages
- claude: bare ``{role, content}`` messages
- claude-code: Claude Code conversation logs ``{type, message: {role, content}}``
- claude-code-meta: Claude Code bookkeeping records (dropped)
- generic-jsonl: any other ``{type, message}`` record
- plain: everything else, passed through
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from lucidity.tree.model import parse_ts

MARKER_PREFIX = "@@curated::"
MARKER_SUFFIX = "@@"

# Long tool output and file reads are cut to keep transcripts manageable
MAX_MESSAGE_CHARS = 2000
_RESULT_PREVIEW_CHARS = 200


def _parse_json(line: str) -> Any:
    try:
        return json.loads(line)
    except (json.JSONDecodeError, ValueError):
        return None


def _iso(ts: Any) -> str:
    """Best-effort ISO rendering of epoch seconds/millis or ISO strings."""
    if isinstance(ts, bool):
        return str(ts)
    if isinstance(ts, (int, float)):
        seconds = ts / 1000 if ts > 1e11 else ts
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
        except (OverflowError, OSError, ValueError):
            return str(ts)
    if isinstance(ts, str) and ts:
        try:
            return parse_ts(ts).astimezone(timezone.utc).isoformat()
        except ValueError:
            return ts
    return ""


def _prefixed(ts: Any, body: str) -> str:
    stamp = _iso(ts) if ts else ""
    return f"[{stamp}] {body}" if stamp else body


class LineAdapter(ABC):
    """Base class for transcript line adapters."""

    name: str = ""

    @abstractmethod
    def matches(self, line: str, obj: Any) -> bool:
        """Whether this adapter handles *line* (*obj* is its parsed JSON or None)."""

    @abstractmethod
    def render(self, line: str, obj: Any) -> str | None:
        """Normalized text for the line, or None to drop it."""


class CuratedMarkerAdapter(LineAdapter):
    name = "curated-marker"

    def matches(self, line: str, obj: Any) -> bool:
        return line.startswith(MARKER_PREFIX) and line.endswith(MARKER_SUFFIX)

    def render(self, line: str, obj: Any) -> str | None:
        return None


class AgentchatAdapter(LineAdapter):
    name = "agentchat"

    def matches(self, line: str, obj: Any) -> bool:
        return isinstance(obj, dict) and bool(obj.get("from") and obj.get("to") and obj.get("content"))

    def render(self, line: str, obj: Any) -> str | None:
        sender = obj.get("from_name") or obj.get("from") or "unknown"
        target = obj.get("to") or ""
        return _prefixed(obj.get("ts"), f"{sender} → {target}: {obj['content']}")


class ClaudeAdapter(LineAdapter):
    name = "claude"

    def matches(self, line: str, obj: Any) -> bool:
        return isinstance(obj, dict) and bool(obj.get("role") and obj.get("content"))

    def render(self, line: str, obj: Any) -> str | None:
        content = obj["content"]
        if not isinstance(content, str):
            content = json.dumps(content)
        return f"[{obj['role']}] {content}"


class ClaudeCodeAdapter(LineAdapter):
    name = "claude-code"

    def matches(self, line: str, obj: Any) -> bool:
        return (
            isinstance(obj, dict)
            and isinstance(obj.get("message"), dict)
            and bool(obj["message"].get("role"))
        )

    def render(self, line: str, obj: Any) -> str | None:
        message = obj["message"]
        content = message.get("content")

        if isinstance(content, str):
            text = content
        elif isinstance(content, list):
            parts: list[str] = []
            for block in content:
                if not isinstance(block, dict):
                    continue
                kind = block.get("type")
                if kind == "text" and block.get("text"):
                    parts.append(block["text"])
                elif kind == "tool_use" and block.get("name"):
                    parts.append(f"[tool: {block['name']}]")
                elif kind == "tool_result":
                    result = block.get("content")
                    if not isinstance(result, str):
                        result = "(error)" if block.get("is_error") else "(result)"
                    parts.append(f"[result: {result[:_RESULT_PREVIEW_CHARS]}]")
            text = " ".join(parts)
        else:
            text = json.dumps(content)

        if not text or not text.strip():
            return None
        if len(text) > MAX_MESSAGE_CHARS:
            text = text[:MAX_MESSAGE_CHARS] + "..."
        return _prefixed(obj.get("timestamp"), f"[{message['role']}] {text}")


class ClaudeCodeMetaAdapter(LineAdapter):
    """Queue operations, summaries and other records without a message."""

    name = "claude-code-meta"

    def matches(self, line: str, obj: Any) -> bool:
        return isinstance(obj, dict) and bool(obj.get("type") and obj.get("sessionId")) and not obj.get("message")

    def render(self, line: str, obj: Any) -> str | None:
        return None


class GenericJsonlAdapter(LineAdapter):
    name = "generic-jsonl"

    def matches(self, line: str, obj: Any) -> bool:
        return isinstance(obj, dict) and bool(obj.get("type") and obj.get("message"))

    def render(self, line: str, obj: Any) -> str | None:
        message = obj.get("message") or obj.get("content") or json.dumps(obj)
        if not isinstance(message, str):
            message = json.dumps(message)
        return _prefixed(obj.get("timestamp") or obj.get("ts"), f"[{obj.get('type', 'msg')}] {message}")


class PlainTextAdapter(LineAdapter):
    name = "plain"

    def matches(self, line: str, obj: Any) -> bool:
        return True

    def render(self, line: str, obj: Any) -> str | None:
        return line


# Detection order matters: earlier adapters win
DETECTION_ORDER: tuple[LineAdapter, ...] = (
    CuratedMarkerAdapter(),
    AgentchatAdapter(),
    ClaudeAdapter(),
    ClaudeCodeAdapter(),
    ClaudeCodeMetaAdapter(),
    GenericJsonlAdapter(),
    PlainTextAdapter(),
)

ADAPTERS: dict[str, LineAdapter] = {adapter.name: adapter for adapter in DETECTION_ORDER}

_MARKER_ADAPTER = ADAPTERS["curated-marker"]
_PLAIN_ADAPTER = ADAPTERS["plain"]


def get_adapter(format_name: str) -> LineAdapter:
    """Get an adapter instance by format name.

    Raises:
        ValueError: If format_name is not a known adapter.
    """
    adapter = ADAPTERS.get(format_name)
    if adapter is None:
        raise ValueError(
            f"Unknown transcript format '{format_name}'. "
            f"Available: {sorted(ADAPTERS.keys())}"
        )
    return adapter


def detect_format(line: str) -> str:
    """Name of the first adapter whose predicate matches *line*."""
    obj = _parse_json(line)
    for adapter in DETECTION_ORDER:
        if adapter.matches(line, obj):
            return adapter.name
    return _PLAIN_ADAPTER.name


def classify(line: str, format_name: str = "auto") -> tuple[str, str | None]:
    """Return ``(format, normalized_text_or_None)`` for a single line.

    With a forced *format_name*, lines the adapter cannot render fall back
    to plain text. Ingestion markers are dropped in every mode.
    """
    obj = _parse_json(line)
    if _MARKER_ADAPTER.matches(line, obj):
        return _MARKER_ADAPTER.name, None

    if format_name == "auto":
        adapter = next(a for a in DETECTION_ORDER if a.matches(line, obj))
    else:
        adapter = get_adapter(format_name)

    try:
        return adapter.name, adapter.render(line, obj)
    except (KeyError, TypeError, AttributeError):
        return _PLAIN_ADAPTER.name, line


def normalize_lines(
    raw: str,
    format_name: str = "auto",
    dedup: bool = True,
    max_lines: int = 0,
) -> list[str]:
    """Normalize a raw transcript chunk into text lines.

    Blank lines and dropped records are skipped. With *dedup*, a line equal
    to the previously kept line is dropped. *max_lines* > 0 keeps only the
    newest lines.
    """
    out: list[str] = []
    last: str | None = None
    for line in raw.split("\n"):
        line = line.rstrip("\r")
        if not line.strip():
            continue
        _, text = classify(line, format_name)
        if text is None:
            continue
        if dedup and text == last:
            continue
        last = text
        out.append(text)
    if max_lines > 0:
        out = out[-max_lines:]
    return out


def normalize_text(raw: str, format_name: str = "auto", dedup: bool = True, max_lines: int = 0) -> str:
    return "\n".join(normalize_lines(raw, format_name, dedup, max_lines))
