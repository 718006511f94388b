"""Streaming aggregation - drive a chunk source, project, call back, collect.

StreamAggregator is the channel form: an async iterator over projected
values. collect() is the callback-plus-list convenience on top of it, and
run_streaming() schedules collect() as a deferred computation.
"""

import asyncio
import logging
from contextlib import aclosing
from typing import Any, AsyncIterable, AsyncIterator, Callable, Generic, TypeVar

from ollama_utils.application.streaming.scheduler import Handle, Scheduler, cancel_scope, schedule
from ollama_utils.domain.entities.cancellation import CancellationToken
from ollama_utils.domain.entities.stream_state import StreamState
from ollama_utils.domain.services.projectors import Projector, identity

logger = logging.getLogger(__name__)
T = TypeVar("T")
R = TypeVar("R")

SourceFactory = Callable[[], AsyncIterable[T]]
ChunkCallback = Callable[[R], None]


class StreamConsumedError(RuntimeError):
    """Aggregator iterated more than once."""


class StreamAggregator(Generic[T, R]):
    """Single-use adapter from a chunk source to projected values.

    Args:
        source: Zero-argument factory returning the chunk stream. Called when
            iteration starts, so the request is made on whatever task
            consumes the aggregator.
        projector: Maps a chunk to the value to surface, or None to skip it.
        cancel: Optional token, checked before every chunk. While waiting on
            the source, cancellation interrupts the wait.
        label: Name used in log records.

    Faults from the source or the projector propagate unchanged. Nothing
    produced before a fault or a cancellation is returned.
    """

    def __init__(
        self,
        source: SourceFactory[T],
        projector: Projector[T, R] = identity,
        cancel: CancellationToken | None = None,
        label: str = "stream",
    ) -> None:
        self._source = source
        self._projector = projector
        self._cancel = cancel
        self.label = label
        self._state = StreamState.PENDING
        self._chunks_received = 0
        self._values_emitted = 0

    @property
    def state(self) -> StreamState:
        """Current lifecycle state."""
        return self._state

    @property
    def chunks_received(self) -> int:
        """Chunks read from the source, including skipped ones."""
        return self._chunks_received

    @property
    def values_emitted(self) -> int:
        """Chunks that survived projection."""
        return self._values_emitted

    def __aiter__(self) -> AsyncIterator[R]:
        if self._state is not StreamState.PENDING:
            raise StreamConsumedError(f"Stream '{self.label}' was already consumed ({self._state.value})")
        self._state = StreamState.ITERATING
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[R]:
        cancel = self._cancel
        iterator: AsyncIterator[T] | None = None
        logger.debug("Stream '%s' started", self.label)
        try:
            if cancel is not None:
                cancel.raise_if_cancelled()
            iterator = aiter(self._source())
            while True:
                if cancel is not None:
                    cancel.raise_if_cancelled()
                try:
                    # Only the wait on the source is interruptible.
                    with cancel_scope(cancel):
                        chunk = await anext(iterator)
                except StopAsyncIteration:
                    break
                self._chunks_received += 1
                value = self._projector(chunk)
                if value is None:
                    continue
                self._values_emitted += 1
                yield value
        except asyncio.CancelledError:
            self._state = StreamState.CANCELLED
            logger.info(
                "Stream '%s' cancelled after %d chunks: %s",
                self.label,
                self._chunks_received,
                cancel.reason if cancel is not None and cancel.cancelled else "task cancelled",
            )
            raise
        except GeneratorExit:
            # Consumer stopped early; collect() marks callback faults itself.
            if not self._state.is_terminal:
                self._state = StreamState.CANCELLED
            raise
        except Exception:
            self._state = StreamState.FAILED
            logger.warning(
                "Stream '%s' failed after %d chunks",
                self.label,
                self._chunks_received,
                exc_info=True,
            )
            raise
        else:
            self._state = StreamState.COMPLETED
            logger.debug(
                "Stream '%s' completed: %d chunks, %d values",
                self.label,
                self._chunks_received,
                self._values_emitted,
            )
        finally:
            if iterator is not None:
                await close_source(iterator)

    async def collect(self, on_chunk: ChunkCallback[R] | None = None) -> list[R]:
        """Consume the stream, calling on_chunk per value; return all values in order.

        on_chunk runs synchronously; the next chunk is not requested until it
        returns. If it raises, iteration stops and the error propagates.
        """
        results: list[R] = []
        async with aclosing(self.__aiter__()) as stream:
            async for value in stream:
                if on_chunk is not None:
                    try:
                        on_chunk(value)
                    except Exception:
                        self._state = StreamState.FAILED
                        logger.warning(
                            "Stream '%s' callback failed after %d chunks",
                            self.label,
                            self._chunks_received,
                            exc_info=True,
                        )
                        raise
                results.append(value)
        return results


async def close_source(iterator: Any) -> None:
    """Close an async generator source; plain iterators have nothing to close."""
    aclose = getattr(iterator, "aclose", None)
    if aclose is not None:
        await aclose()


def run_streaming(
    source: SourceFactory[T],
    on_chunk: ChunkCallback[R] | None = None,
    projector: Projector[T, R] = identity,
    cancel: CancellationToken | None = None,
    scheduler: Scheduler | None = None,
    label: str = "stream",
) -> Handle:
    """Aggregate a stream as a deferred computation.

    Returns the scheduler's handle (asyncio.Task by default, a
    concurrent.futures.Future with BackgroundLoop) resolving to the ordered
    list of projected values. The handle fails with the original error on a
    source or callback fault and ends cancelled when *cancel* fires.
    """
    aggregator: StreamAggregator[T, R] = StreamAggregator(source, projector, cancel, label)
    return schedule(aggregator.collect(on_chunk), scheduler)
