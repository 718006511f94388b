"""Lifecycle of a single stream aggregation."""

from enum import Enum


class StreamState(str, Enum):
    """States of a stream run. Transitions only move forward."""

    PENDING = "pending"  # created, not started
    ITERATING = "iterating"
    COMPLETED = "completed"
    FAILED = "failed"  # source or callback raised
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """True for completed, failed and cancelled."""
        return self in (StreamState.COMPLETED, StreamState.FAILED, StreamState.CANCELLED)
