"""
Queue error taxonomy.

- ConflictError: item is not in the status the transition expects
- QueueValidationError: malformed request, rejected before any mutation
- NotFoundError: ids absent from the store
- UpstreamUnavailableError: scoring / candidate source could not be reached

Routers translate these into HTTP status codes; services never retry.
"""
from __future__ import annotations


class QueueError(Exception):
    """Base class for queue domain errors."""
    pass


class ConflictError(QueueError):
    """Raised when a transition targets items in the wrong status."""

    def __init__(self, message: str, *, item_ids: list[str] | None = None, current: dict[str, str] | None = None):
        super().__init__(message)
        self.item_ids = item_ids or []
        self.current = current or {}


class QueueValidationError(QueueError):
    """Raised for malformed input (empty reason, non-positive max_items...)."""
    pass


class NotFoundError(QueueError):
    """Raised when referenced ids do not exist."""

    def __init__(self, message: str, *, item_ids: list[str] | None = None):
        super().__init__(message)
        self.item_ids = item_ids or []


class UpstreamUnavailableError(QueueError):
    """Raised when an external scoring or candidate service fails."""
    pass
