"""Resumable, at-least-once consumption of an append-only transcript.

The tracker reads whatever was appended after its offset, hands the
normalized text to the curator, and commits the new offset only after the
curator has saved the tree snapshot. A crash anywhere before the commit
means the same bytes are read again on restart, so content may be ingested
twice but is never skipped.

Two commit modes:

``cursor`` (default)
    The offset lives in a small YAML cursor file written atomically next to
    the tree snapshot. The transcript is never written to.
``marker``
    A ``@@curated::<node id>@<offset>@@`` line is appended to the transcript
    itself. On restart the last marker in the stream gives the offset.

When no cursor file exists, the last in-stream marker is used as the
resume point in either mode.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path

import yaml

from lucidity.errors import StoreWriteError
from lucidity.ingest.formats import MARKER_PREFIX, MARKER_SUFFIX, normalize_text
from lucidity.store import write_text_atomic
from lucidity.tree.model import format_ts, utcnow

log = logging.getLogger(__name__)

_MARKER_RE = re.compile(
    re.escape(MARKER_PREFIX) + r"([0-9A-Za-z_-]+)(?:@(\d+))?" + re.escape(MARKER_SUFFIX)
)


@dataclass
class SourceRead:
    """Result of one read from the source stream."""

    text: str
    bytes_consumed: int
    new_offset: int


def make_marker(node_id: str, offset: int | None = None) -> str:
    if offset is None:
        return f"{MARKER_PREFIX}{node_id}{MARKER_SUFFIX}"
    return f"{MARKER_PREFIX}{node_id}@{offset}{MARKER_SUFFIX}"


def read_source(
    path: Path,
    offset: int,
    format_name: str = "auto",
    dedup: bool = True,
) -> SourceRead:
    """Read complete lines appended to *path* after *offset*.

    A trailing line without its newline is left for the next read. An
    offset past the end of the file means the log was truncated or rotated;
    reading restarts from 0.
    """
    path = Path(path)
    if not path.exists():
        return SourceRead("", 0, offset)

    size = path.stat().st_size
    if offset < 0 or offset > size:
        log.warning(
            "Offset %d is beyond %s (%d bytes); log truncated or rotated, restarting at 0",
            offset, path, size,
        )
        offset = 0
    if size == offset:
        return SourceRead("", 0, offset)

    with open(path, "rb") as fh:
        fh.seek(offset)
        data = fh.read(size - offset)

    end = data.rfind(b"\n")
    if end == -1:
        return SourceRead("", 0, offset)
    data = data[: end + 1]

    text = normalize_text(data.decode("utf-8", errors="replace"), format_name, dedup)
    return SourceRead(text, len(data), offset + len(data))


def find_last_marker(path: Path) -> tuple[str, int] | None:
    """Locate the last ingestion marker in *path*.

    Returns:
        ``(node_id, resume_offset)``, or None if the stream has no marker.
        Markers carrying an explicit offset resume there; bare legacy
        markers resume just past the marker line.
    """
    path = Path(path)
    if not path.exists():
        return None

    text = path.read_bytes().decode("utf-8", errors="replace")
    last: tuple[str, int] | None = None
    for m in _MARKER_RE.finditer(text):
        node_id, explicit = m.group(1), m.group(2)
        if explicit is not None:
            last = (node_id, int(explicit))
            continue
        line_end = m.end()
        if text[line_end:line_end + 1] == "\n":
            line_end += 1
        last = (node_id, len(text[:line_end].encode("utf-8")))
    return last


class IngestionTracker:
    """Tracks how far the transcript has been ingested.

    Parameters
    ----------
    source_path:
        Append-only transcript log.
    cursor_path:
        Cursor file used in ``cursor`` mode.
    commit_mode:
        ``cursor`` or ``marker``.
    source_format:
        Adapter name passed to :func:`lucidity.ingest.formats.normalize_text`.
    dedup:
        Drop consecutive duplicate lines.
    """

    def __init__(
        self,
        source_path: Path,
        cursor_path: Path,
        commit_mode: str = "cursor",
        source_format: str = "auto",
        dedup: bool = True,
    ) -> None:
        if commit_mode not in ("cursor", "marker"):
            raise ValueError(f"Unknown commit_mode '{commit_mode}'")
        self._source_path = Path(source_path)
        self._cursor_path = Path(cursor_path)
        self._commit_mode = commit_mode
        self._format = source_format
        self._dedup = dedup
        self._offset = 0
        self._staged: tuple[str, int] | None = None

    @property
    def offset(self) -> int:
        """Offset the next read starts from."""
        return self._offset

    @property
    def staged(self) -> tuple[str, int] | None:
        return self._staged

    def restore(self) -> int:
        """Recover the resume offset from the cursor file or the stream."""
        offset = self._read_cursor() if self._commit_mode == "cursor" else None
        if offset is None:
            marker = find_last_marker(self._source_path)
            if marker is not None:
                node_id, offset = marker
                log.info("Resuming after marker for node %s at offset %d", node_id[:8], offset)
        self._offset = offset or 0
        self._staged = None
        return self._offset

    def _read_cursor(self) -> int | None:
        if not self._cursor_path.exists():
            return None
        try:
            cursor = yaml.safe_load(self._cursor_path.read_text())
        except (OSError, yaml.YAMLError) as exc:
            log.warning("Ignoring unreadable cursor %s: %s", self._cursor_path, exc)
            return None
        if not isinstance(cursor, dict) or not isinstance(cursor.get("offset"), int):
            log.warning("Ignoring malformed cursor %s", self._cursor_path)
            return None
        if cursor.get("source") != str(self._source_path):
            log.warning(
                "Cursor %s belongs to %s, not %s; ignoring",
                self._cursor_path, cursor.get("source"), self._source_path,
            )
            return None
        return cursor["offset"]

    def read_delta(self) -> SourceRead | None:
        """Read new content after the current offset.

        Returns None when nothing new has been appended. Consumed bytes that
        normalize to no text (markers, metadata) advance the offset directly.
        """
        result = read_source(self._source_path, self._offset, self._format, self._dedup)
        if result.bytes_consumed == 0:
            if result.new_offset != self._offset:
                self._offset = result.new_offset
            return None
        if not result.text.strip():
            log.debug("Skipped %d bytes with no ingestible text", result.bytes_consumed)
            self._offset = result.new_offset
            return None
        log.info(
            "Read %d bytes of transcript (offset %d -> %d)",
            result.bytes_consumed, result.new_offset - result.bytes_consumed, result.new_offset,
        )
        return result

    def stage(self, node_id: str, new_offset: int) -> None:
        """Record that *node_id* absorbed the stream up to *new_offset*.

        The offset advances in memory immediately; :meth:`commit` makes it
        durable.
        """
        self._staged = (node_id, new_offset)
        self._offset = new_offset

    def commit(self) -> bool:
        """Durably record the staged offset.

        Call only after the tree snapshot containing the staged node has been
        saved. Returns False when nothing was staged.

        Raises:
            StoreWriteError: If the cursor or marker cannot be written. The
                staged offset is kept so a later commit can retry.
        """
        if self._staged is None:
            return False
        node_id, offset = self._staged

        if self._commit_mode == "cursor":
            payload = {
                "source": str(self._source_path),
                "offset": offset,
                "node_id": node_id,
                "updated_at": format_ts(utcnow()),
            }
            write_text_atomic(self._cursor_path, yaml.safe_dump(payload, sort_keys=True))
        else:
            try:
                with open(self._source_path, "a", encoding="utf-8") as fh:
                    fh.write(f"\n{make_marker(node_id, offset)}\n")
            except OSError as exc:
                raise StoreWriteError(
                    f"failed to append marker to {self._source_path}: {exc}"
                ) from exc
            log.info("Wrote ingestion marker for node %s", node_id[:8])

        self._staged = None
        return True
