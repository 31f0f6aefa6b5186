"""Exceptions raised by the runner matching engine and review queue."""

from typing import Optional


class MalformedInputError(ValueError):
    """Raised when a raw result record cannot be matched at all (missing name or race)."""

    def __init__(self, reason: str, source_result_id: Optional[str] = None):
        self.reason = reason
        self.source_result_id = source_result_id
        super().__init__(reason)


class ReviewEntryNotFoundError(ValueError):
    """Raised when a review entry id does not exist."""

    def __init__(self, entry_id: int):
        self.entry_id = entry_id
        super().__init__(f"Review entry {entry_id} not found")


class ReviewConflictError(RuntimeError):
    """
    Raised when a review entry is resolved after someone else resolved it.

    The first resolution wins; callers should refresh the entry and act
    on its current state.
    """

    def __init__(self, entry_id: int, status: str):
        self.entry_id = entry_id
        self.status = status
        super().__init__(f"Review entry {entry_id} is no longer pending (status={status})")


class SnapshotDecodeError(ValueError):
    """Raised when a review entry's raw payload has no known schema."""
