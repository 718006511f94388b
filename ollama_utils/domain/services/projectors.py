"""Projectors - pick the user-relevant payload out of a stream chunk.

A projector returns None for chunks that carry nothing worth surfacing; the
aggregator consumes such chunks without passing them on.
"""

from typing import Any, Callable, TypeVar

T = TypeVar("T")
R = TypeVar("R")

Projector = Callable[[T], R | None]


def identity(chunk: T) -> T | None:
    """Pass the chunk through. A None chunk stays None and is skipped."""
    return chunk


def chat_content(chunk: Any) -> str | None:
    """Text of a chat chunk, or None when the chunk has no message content."""
    message = getattr(chunk, "message", None) if chunk is not None else None
    if message is None:
        return None
    content = getattr(message, "content", None)
    return content or None


def generate_response(chunk: Any) -> str | None:
    """Response text of a generate chunk, or None when empty."""
    if chunk is None:
        return None
    return getattr(chunk, "response", None) or None
