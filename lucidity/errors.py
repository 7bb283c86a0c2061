"""Exception hierarchy shared by the tree, store, and curator layers.

``NodeNotFoundError`` and ``InvalidTransitionError`` signal contract
violations and always propagate to the caller. ``SummarizationError`` and
``StoreWriteError`` are expected steady-state failures that the curator
logs and retries on its next pass. ``SnapshotDecodeError`` is raised by
:func:`lucidity.store.load_tree`; the curator treats it as "no prior state".
"""

from __future__ import annotations


class LucidityError(Exception):
    """Base class for all lucidity errors."""


class NodeNotFoundError(LucidityError, KeyError):
    """Raised when an operation references a node id absent from the tree."""

    def __init__(self, node_id: str) -> None:
        super().__init__(node_id)
        self.node_id = node_id

    def __str__(self) -> str:
        return f"node {self.node_id} not found"


class InvalidTransitionError(LucidityError, ValueError):
    """Raised when a compression does not move strictly up the ladder."""


class SnapshotDecodeError(LucidityError):
    """Raised when a tree snapshot exists but cannot be decoded."""


class SummarizationError(LucidityError):
    """Raised when the external summarizer fails (timeout, transport, exit code)."""


class StoreWriteError(LucidityError, OSError):
    """Raised when writing or renaming a snapshot/briefing/cursor file fails."""
