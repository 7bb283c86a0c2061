"""Wake the curator early when the transcript is written to.

A ``watchdog`` observer on the transcript's directory calls back on
create/modify events for the transcript file itself. The curator loop
still runs on its timer; the watcher only shortens the wait.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

log = logging.getLogger(__name__)


class _TranscriptEventHandler(FileSystemEventHandler):
    """Watchdog handler that calls back on writes to one file."""

    def __init__(self, target: Path, callback: Callable[[], None]) -> None:
        super().__init__()
        self._target = target
        self._callback = callback

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle(event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle(event)

    def _handle(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        if Path(str(event.src_path)).resolve() == self._target:
            self._callback()


class TranscriptWatcher:
    """Watchdog-based watcher for a single transcript file.

    Parameters
    ----------
    transcript_path:
        File to watch. Its parent directory must exist.
    callback:
        Called (from the observer thread) on each write.
    """

    def __init__(self, transcript_path: Path, callback: Callable[[], None]) -> None:
        self._path = Path(transcript_path).resolve()
        self._callback = callback
        self._observer: Observer | None = None

    def start(self) -> bool:
        """Start the observer. Returns False if there is nothing to watch."""
        watch_dir = self._path.parent
        if not watch_dir.is_dir():
            log.warning("Transcript directory %s not found; not watching", watch_dir)
            return False

        handler = _TranscriptEventHandler(self._path, self._callback)
        self._observer = Observer()
        self._observer.schedule(handler, str(watch_dir), recursive=False)
        self._observer.daemon = True
        self._observer.start()
        log.info("Watching: %s", self._path)
        return True

    def stop(self) -> None:
        """Stop the observer."""
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None
