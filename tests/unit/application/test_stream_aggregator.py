"""Tests for StreamAggregator and run_streaming."""

import asyncio
from contextlib import aclosing

import pytest

from ollama_utils.application.streaming import (
    StreamAggregator,
    StreamConsumedError,
    run_streaming,
)
from ollama_utils.domain.entities.cancellation import CancellationToken
from ollama_utils.domain.entities.stream_state import StreamState
from ollama_utils.domain.services.projectors import chat_content, identity
from tests.fakes import chat_chunk


def source_of(items, fail_after=None, closed=None):
    """Factory for an async generator over items; optionally raise after N chunks."""

    async def gen():
        try:
            for i, item in enumerate(items):
                if fail_after is not None and i == fail_after:
                    raise RuntimeError("boom")
                await asyncio.sleep(0)
                yield item
            if fail_after is not None and fail_after >= len(items):
                raise RuntimeError("boom")
        finally:
            if closed is not None:
                closed.append(True)

    return gen


def blocking_source(first, reached, closed):
    """Yield *first*, then wait forever."""

    async def gen():
        try:
            yield first
            reached.set()
            await asyncio.Event().wait()
            yield "never"
        finally:
            closed.append(True)

    return gen


class TestCollect:
    """Tests for StreamAggregator.collect."""

    @pytest.mark.asyncio
    async def test_skips_none_chunks(self):
        """['a', None, 'b'] with identity -> callback a, b; result [a, b]."""
        seen = []
        aggregator = StreamAggregator(source_of(["a", None, "b"]), identity)

        result = await aggregator.collect(seen.append)

        assert result == ["a", "b"]
        assert seen == ["a", "b"]
        assert aggregator.state is StreamState.COMPLETED
        assert aggregator.chunks_received == 3
        assert aggregator.values_emitted == 2

    @pytest.mark.asyncio
    async def test_chat_projection(self):
        """Only the chunk with content is surfaced."""
        chunks = [chat_chunk(None), chat_chunk("hello"), chat_chunk("", done=True)]
        seen = []

        result = await StreamAggregator(source_of(chunks), chat_content).collect(seen.append)

        assert result == ["hello"]
        assert seen == ["hello"]

    @pytest.mark.asyncio
    async def test_order_preserved(self):
        """Result order equals arrival order."""
        items = [str(i) for i in range(50)]
        result = await StreamAggregator(source_of(items)).collect()
        assert result == items

    @pytest.mark.asyncio
    async def test_callback_runs_before_next_chunk(self):
        """The next chunk is not requested until the callback returns."""
        log = []

        async def gen():
            for item in ["a", "b"]:
                log.append(f"produce {item}")
                yield item

        await StreamAggregator(lambda: gen()).collect(lambda v: log.append(f"consume {v}"))

        assert log == ["produce a", "consume a", "produce b", "consume b"]

    @pytest.mark.asyncio
    async def test_empty_source(self):
        """Empty source completes with an empty list and no callbacks."""
        seen = []
        result = await StreamAggregator(source_of([])).collect(seen.append)
        assert result == []
        assert seen == []

    @pytest.mark.asyncio
    async def test_no_callback(self):
        """on_chunk is optional."""
        assert await StreamAggregator(source_of([1, 2])).collect() == [1, 2]

    @pytest.mark.asyncio
    async def test_source_fault_propagates(self):
        """Fault after one chunk fails the run with that fault."""
        seen = []
        aggregator = StreamAggregator(source_of(["a", "b"], fail_after=1))

        with pytest.raises(RuntimeError, match="boom"):
            await aggregator.collect(seen.append)

        assert seen == ["a"]
        assert aggregator.state is StreamState.FAILED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fail_after", [0, 1, 3])
    async def test_source_fault_any_position(self, fail_after):
        """A fault fails the run regardless of how many chunks came first."""
        with pytest.raises(RuntimeError):
            await StreamAggregator(source_of(["a", "b", "c"], fail_after=fail_after)).collect()

    @pytest.mark.asyncio
    async def test_callback_fault_propagates_and_closes_source(self):
        """Callback error aborts iteration and closes the source."""
        closed = []
        seen = []

        def on_chunk(value):
            seen.append(value)
            raise ValueError("bad callback")

        aggregator = StreamAggregator(source_of(["a", "b"], closed=closed))
        with pytest.raises(ValueError, match="bad callback"):
            await aggregator.collect(on_chunk)

        assert seen == ["a"]
        assert closed == [True]
        assert aggregator.state is StreamState.FAILED

    @pytest.mark.asyncio
    async def test_projector_fault_propagates(self):
        """Projector errors propagate like source faults."""

        def projector(chunk):
            raise KeyError(chunk)

        with pytest.raises(KeyError):
            await StreamAggregator(source_of(["a"]), projector).collect()

    @pytest.mark.asyncio
    async def test_single_use(self):
        """Second collect raises StreamConsumedError."""
        aggregator = StreamAggregator(source_of(["a"]))
        await aggregator.collect()

        with pytest.raises(StreamConsumedError):
            await aggregator.collect()
        assert aggregator.state is StreamState.COMPLETED

    @pytest.mark.asyncio
    async def test_idempotent_against_deterministic_source(self):
        """Two runs over the same factory yield identical results."""
        factory = source_of(["x", None, "y", "z"])
        first = await StreamAggregator(factory).collect()
        second = await StreamAggregator(factory).collect()
        assert first == second == ["x", "y", "z"]


class TestChannel:
    """Tests for the async-iterator form."""

    @pytest.mark.asyncio
    async def test_async_iteration(self):
        """Aggregator iterates projected values."""
        values = [v async for v in StreamAggregator(source_of(["a", None, "b"]))]
        assert values == ["a", "b"]

    @pytest.mark.asyncio
    async def test_early_stop_closes_source(self):
        """Stopping early closes the source and marks the run cancelled."""
        closed = []
        aggregator = StreamAggregator(source_of(["a", "b", "c"], closed=closed))

        async with aclosing(aggregator.__aiter__()) as stream:
            async for value in stream:
                assert value == "a"
                break

        assert closed == [True]
        assert aggregator.state is StreamState.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_between_values_leaves_consumer_awaits_alone(self):
        """Cancelling while the consumer holds a value does not cancel its own awaits."""
        token = CancellationToken()
        closed = []
        stream = StreamAggregator(source_of(["a", "b"], closed=closed), cancel=token).__aiter__()

        assert await anext(stream) == "a"
        token.cancel("stop stream")
        await asyncio.sleep(0.01)

        with pytest.raises(asyncio.CancelledError):
            await anext(stream)
        assert closed == [True]

    def test_source_not_called_before_iteration(self):
        """The source factory runs only when iteration starts."""
        calls = []

        def factory():
            calls.append(1)
            return source_of([])()

        StreamAggregator(factory)
        assert calls == []


class TestCancellation:
    """Cancellation through CancellationToken."""

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self):
        """Token cancelled up front: cancelled outcome, no source call, no callbacks."""
        token = CancellationToken()
        token.cancel("not needed")
        calls = []
        seen = []

        def factory():
            calls.append(1)
            return source_of(["a"])()

        task = run_streaming(factory, seen.append, cancel=token)
        with pytest.raises(asyncio.CancelledError):
            await task

        assert task.cancelled()
        assert calls == []
        assert seen == []

    @pytest.mark.asyncio
    async def test_cancel_from_callback(self):
        """Cancel requested inside the callback stops before the next chunk."""
        token = CancellationToken()
        seen = []
        closed = []

        def on_chunk(value):
            seen.append(value)
            token.cancel("enough")

        aggregator = StreamAggregator(source_of(["a", "b", "c"], closed=closed), cancel=token)
        with pytest.raises(asyncio.CancelledError):
            await aggregator.collect(on_chunk)

        assert seen == ["a"]
        assert closed == [True]
        assert aggregator.state is StreamState.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_while_waiting_on_source(self):
        """Cancel interrupts a run blocked on the next chunk."""
        token = CancellationToken()
        reached = asyncio.Event()
        closed = []
        seen = []

        task = run_streaming(blocking_source("a", reached, closed), seen.append, cancel=token)
        await reached.wait()
        await asyncio.sleep(0)
        token.cancel("user abort")

        with pytest.raises(asyncio.CancelledError):
            await task

        assert task.cancelled()
        assert seen == ["a"]
        assert closed == [True]

    @pytest.mark.asyncio
    async def test_completed_run_ignores_later_cancel(self):
        """Cancelling after completion does not affect the result."""
        token = CancellationToken()
        task = run_streaming(source_of(["a"]), cancel=token)
        assert await task == ["a"]

        token.cancel()
        await asyncio.sleep(0)
        assert task.result() == ["a"]

    @pytest.mark.asyncio
    async def test_callback_fault_wins_over_concurrent_cancel(self):
        """A callback that cancels and then raises fails the run with its error."""
        token = CancellationToken()

        def on_chunk(value):
            token.cancel("racing")
            raise ValueError("callback failed")

        task = run_streaming(source_of(["a", "b"]), on_chunk, cancel=token)
        with pytest.raises(ValueError, match="callback failed"):
            await task
        assert not task.cancelled()


class TestRunStreaming:
    """Tests for run_streaming scheduling."""

    @pytest.mark.asyncio
    async def test_returns_task(self):
        """Default scheduler returns an asyncio.Task on the running loop."""
        seen = []
        task = run_streaming(source_of(["a", "b"]), seen.append)

        assert isinstance(task, asyncio.Task)
        assert await task == ["a", "b"]
        assert seen == ["a", "b"]

    @pytest.mark.asyncio
    async def test_custom_scheduler(self):
        """A caller-supplied scheduler receives the coroutine."""
        scheduled = []

        def scheduler(coro):
            scheduled.append(coro)
            return asyncio.ensure_future(coro)

        result = await run_streaming(source_of([1, 2]), scheduler=scheduler)

        assert result == [1, 2]
        assert len(scheduled) == 1

    @pytest.mark.asyncio
    async def test_fault_rejects_task(self):
        """Source fault after one chunk rejects the task; no result produced."""
        seen = []
        task = run_streaming(source_of(["a", "b"], fail_after=1), seen.append)

        with pytest.raises(RuntimeError, match="boom"):
            await task
        assert seen == ["a"]

    @pytest.mark.asyncio
    async def test_concurrent_runs_are_independent(self):
        """Two runs in flight do not share results."""
        t1 = run_streaming(source_of(["a1", "a2"]))
        t2 = run_streaming(source_of(["b1", "b2", "b3"]))

        r1, r2 = await asyncio.gather(t1, t2)
        assert r1 == ["a1", "a2"]
        assert r2 == ["b1", "b2", "b3"]

    def test_without_loop_or_scheduler_raises(self):
        """Synchronous callers must supply a scheduler."""
        with pytest.raises(RuntimeError, match="BackgroundLoop"):
            run_streaming(source_of(["a"]))
