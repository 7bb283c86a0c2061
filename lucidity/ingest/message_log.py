"""Raw message archive: one JSON object per line, rotated daily.

Where :class:`~lucidity.ingest.capture.TranscriptCapture` writes the
curated ``[ts] line`` transcript, :class:`MessageLog` keeps the messages as
received (``from``, ``from_name``, ``to``, ``content``, ``ts``) in
``<prefix>-YYYY-MM-DD.jsonl`` files, or a single ``<prefix>.jsonl`` with
rotation off. The agentchat line adapter reads these files directly, so a
non-rotating log can serve as the curator's transcript.
"""

from __future__ import annotations

import json
import logging
import re
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable

from lucidity.tree.model import utcnow

log = logging.getLogger(__name__)

MAX_LINE_BYTES = 64 * 1024
MAX_TOPICS = 20

_TOPIC_RE = re.compile(r"`([^`]+)`|#(\w+)")


def _epoch_ms(ts: datetime) -> int:
    return int(ts.timestamp() * 1000)


class MessageLog:
    """Append-only JSONL logger for incoming agent messages.

    Parameters
    ----------
    log_dir:
        Directory holding the log files; created on first write.
    prefix:
        File name prefix.
    rotate:
        Start a new file each UTC day.
    clock:
        Returns the current time; used for rotation and ``_logged`` stamps.
    """

    def __init__(
        self,
        log_dir: Path,
        prefix: str = "transcript",
        rotate: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._log_dir = Path(log_dir)
        self._prefix = prefix
        self._rotate = rotate
        self._clock = clock
        self._fh = None
        self._current_date = ""
        self._current_path: Path | None = None
        self.bytes_written = 0
        self.messages_written = 0
        self.skipped = 0

    def path_for(self, date: str) -> Path:
        if self._rotate:
            return self._log_dir / f"{self._prefix}-{date}.jsonl"
        return self._log_dir / f"{self._prefix}.jsonl"

    def current_path(self) -> Path:
        """Path the next message would be written to."""
        return self.path_for(self._clock().strftime("%Y-%m-%d"))

    def all_paths(self) -> list[Path]:
        """Every log file for this prefix, oldest first."""
        if not self._log_dir.is_dir():
            return []
        return sorted(self._log_dir.glob(f"{self._prefix}*.jsonl"))

    def _open(self) -> None:
        date = self._clock().strftime("%Y-%m-%d")
        if self._fh is not None and date == self._current_date:
            return
        self.close()
        self._current_date = date
        self._current_path = self.path_for(date)
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._fh = open(self._current_path, "a", encoding="utf-8")
        log.info("Logging messages to %s", self._current_path)

    def log(self, msg: dict[str, Any]) -> bool:
        """Append *msg*. Returns False if it was skipped as oversized.

        Raises:
            OSError: If the line could not be written. The file is reopened
                on the next call.
        """
        now = self._clock()
        line = json.dumps({
            "from": msg.get("from") or None,
            "from_name": msg.get("from_name") or None,
            "to": msg.get("to") or None,
            "content": msg.get("content") or "",
            "ts": msg.get("ts") or _epoch_ms(now),
            "_logged": _epoch_ms(now),
        }) + "\n"
        size = len(line.encode("utf-8"))
        if size > MAX_LINE_BYTES:
            log.warning("Skipping oversized message (%d bytes)", size)
            self.skipped += 1
            return False

        self._open()
        try:
            self._fh.write(line)
            self._fh.flush()
        except OSError:
            self.close()
            raise
        self.bytes_written += size
        self.messages_written += 1
        return True

    def log_line(self, raw: str) -> bool:
        """Log one input line: a JSON message, or plain text wrapped as content."""
        text = raw.strip()
        if not text:
            return False
        try:
            msg = json.loads(text)
        except json.JSONDecodeError:
            msg = None
        if not isinstance(msg, dict):
            msg = {"content": text}
        return self.log(msg)

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            self._current_date = ""

    def stats(self) -> dict[str, Any]:
        return {
            "current_path": str(self._current_path) if self._current_path else None,
            "bytes_written": self.bytes_written,
            "messages_written": self.messages_written,
            "skipped": self.skipped,
            "log_dir": str(self._log_dir),
            "all_files": [str(p) for p in self.all_paths()],
        }


def extract_metadata(lines: Iterable[str]) -> dict[str, Any]:
    """Summarize who spoke where and what about in agentchat JSONL lines.

    Lines that are not JSON messages with ``from`` and ``content`` are
    ignored. Topics are backticked code references and ``#hashtags``,
    most frequent first (ties keep first-seen order).

    Returns:
        ``{"message_count", "agents", "topics"}``, where ``agents`` maps
        sender id to name, first/last ``ts``, message count and the
        ``#channels`` it posted to.
    """
    agents: dict[str, dict[str, Any]] = {}
    topics: Counter[str] = Counter()
    message_count = 0

    for line in lines:
        if not line.strip():
            continue
        try:
            msg = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(msg, dict) or not msg.get("from") or not msg.get("content"):
            continue

        message_count += 1
        sender = msg["from"]
        agent = agents.setdefault(sender, {
            "id": sender,
            "name": msg.get("from_name") or sender,
            "first_seen": msg.get("ts"),
            "last_seen": msg.get("ts"),
            "message_count": 0,
            "channels": [],
        })
        agent["last_seen"] = msg.get("ts")
        agent["message_count"] += 1
        target = msg.get("to")
        if isinstance(target, str) and target.startswith("#") and target not in agent["channels"]:
            agent["channels"].append(target)

        for code, tag in _TOPIC_RE.findall(str(msg["content"])):
            topics[code or tag] += 1

    return {
        "message_count": message_count,
        "agents": agents,
        "topics": [word for word, _ in topics.most_common(MAX_TOPICS)],
    }
