"""Transcript ingestion: format adapters, resumable tracking, and capture."""

from lucidity.ingest.capture import TranscriptCapture
from lucidity.ingest.formats import detect_format, get_adapter, normalize_lines, normalize_text
from lucidity.ingest.message_log import MessageLog, extract_metadata
from lucidity.ingest.tracker import (
    IngestionTracker,
    SourceRead,
    find_last_marker,
    make_marker,
    read_source,
)

__all__ = [
    "IngestionTracker",
    "MessageLog",
    "SourceRead",
    "TranscriptCapture",
    "detect_format",
    "extract_metadata",
    "find_last_marker",
    "get_adapter",
    "make_marker",
    "normalize_lines",
    "normalize_text",
    "read_source",
]
