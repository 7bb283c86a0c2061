"""Append-only transcript capture for an agent's message stream.

Called from the agent's listen loop::

    capture = TranscriptCapture(log_path, "god")
    capture.record(messages)          # incoming messages
    capture.record_sent("#general", text)
    capture.record_event("restart")

Each record becomes one ``[<timestamp>] <line>`` line. The log is only ever
appended to; the curator reads it through :mod:`lucidity.ingest.tracker`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from lucidity.tree.model import format_ts, utcnow

log = logging.getLogger(__name__)


def _one_line(text: str) -> str:
    return " ".join(str(text).splitlines())


class TranscriptCapture:
    """Writes an agent's conversation to its transcript log.

    Parameters
    ----------
    log_path:
        Transcript file; parent directories are created on first write.
    agent_name:
        Name the agent sends under. Incoming messages from this name are
        echoes of our own sends and are skipped.
    """

    def __init__(self, log_path: Path, agent_name: str) -> None:
        self._log_path = Path(log_path)
        self._agent_name = agent_name
        self._message_count = 0
        self._last_capture_at: datetime | None = None

    def _append(self, line: str) -> None:
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._log_path, "a", encoding="utf-8") as fh:
            fh.write(f"[{format_ts(utcnow())}] {line}\n")

    def record(self, messages: Iterable[dict[str, Any]] | None) -> int:
        """Record incoming messages (``{from, from_name, to, content}``).

        Returns the number of lines written.
        """
        recorded = 0
        for msg in messages or []:
            if msg.get("from_name") == self._agent_name:
                continue
            sender = msg.get("from_name") or msg.get("from") or "unknown"
            target = msg.get("to") or "#unknown"
            self._append(f"{target} <{sender}> {_one_line(msg.get('content', ''))}")
            recorded += 1

        if recorded:
            self._message_count += recorded
            self._last_capture_at = utcnow()
        return recorded

    def record_sent(self, target: str, content: str) -> None:
        """Record a message this agent sent."""
        self._append(f"{target} <{self._agent_name}> {_one_line(content)}")
        self._message_count += 1
        self._last_capture_at = utcnow()

    def record_event(self, event: str) -> None:
        """Record a system event (restart, error, ...)."""
        self._append(f"[event] {_one_line(event)}")

    def stats(self) -> dict[str, Any]:
        return {
            "agent_name": self._agent_name,
            "message_count": self._message_count,
            "last_capture_at": format_ts(self._last_capture_at) if self._last_capture_at else None,
        }
