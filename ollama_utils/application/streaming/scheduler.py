"""Schedulers - where a stream run executes.

A scheduler takes a coroutine and returns a handle the caller can await,
cancel or discard. Two are provided:

- loop_scheduler: a task on the running event loop (async callers);
- BackgroundLoop: an event loop on a daemon thread (synchronous hosts),
  returning concurrent.futures.Future.
"""

import asyncio
import concurrent.futures
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Coroutine, Iterator, TypeVar, Union

from ollama_utils.domain.entities.cancellation import CancellationToken

logger = logging.getLogger(__name__)
R = TypeVar("R")

# Handle returned to the caller: await it (asyncio) or call .result() (thread).
Handle = Union["asyncio.Future[Any]", "concurrent.futures.Future[Any]"]
Scheduler = Callable[[Coroutine[Any, Any, Any]], Handle]


def loop_scheduler(coro: Coroutine[Any, Any, R]) -> "asyncio.Task[R]":
    """Run coro as a task on the running event loop.

    Raises:
        RuntimeError: If called outside an event loop.

    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        coro.close()
        raise RuntimeError(
            "No running event loop; pass a BackgroundLoop as scheduler from synchronous code"
        ) from None
    return loop.create_task(coro)


def schedule(coro: Coroutine[Any, Any, R], scheduler: Scheduler | None = None) -> Handle:
    """Hand coro to scheduler (default: the running loop) and return its handle."""
    return (scheduler or loop_scheduler)(coro)


@contextmanager
def cancel_scope(cancel: CancellationToken | None) -> Iterator[None]:
    """Cancel the current task if *cancel* fires while the block runs.

    Raises asyncio.CancelledError up front when the token is already
    cancelled. The request is delivered with call_soon_threadsafe, so the
    token may be cancelled from any thread; it lands at the task's next
    suspension point and is dropped once the block has exited.
    """
    if cancel is None:
        yield
        return

    cancel.raise_if_cancelled()
    loop = asyncio.get_running_loop()
    task = asyncio.current_task()
    active = True

    def _deliver() -> None:
        if active and task is not None and not task.done():
            task.cancel(cancel.reason)

    def _on_cancel() -> None:
        if not loop.is_closed():
            loop.call_soon_threadsafe(_deliver)

    unregister = cancel.register(_on_cancel)
    try:
        yield
    finally:
        active = False
        unregister()


class BackgroundLoop:
    """Event loop running on a daemon thread.

    Lets synchronous code start stream runs without blocking: submit()
    returns a concurrent.futures.Future right away. Instances are callable,
    so one can be passed wherever a scheduler is expected.

    Usage:
        with BackgroundLoop() as loop:
            future = pull_model(service, "llama3", print, scheduler=loop)
            statuses = future.result()
    """

    def __init__(self, name: str = "ollama-utils-loop") -> None:
        self._name = name
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        """True between start() and stop()."""
        return self._loop is not None and self._loop.is_running()

    def start(self) -> "BackgroundLoop":
        """Start the loop thread (idempotent)."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return self
            loop = asyncio.new_event_loop()
            ready = threading.Event()
            thread = threading.Thread(
                target=self._run,
                args=(loop, ready),
                name=self._name,
                daemon=True,
            )
            thread.start()
            ready.wait()
            self._loop, self._thread = loop, thread
        logger.debug("Background loop '%s' started", self._name)
        return self

    @staticmethod
    def _run(loop: asyncio.AbstractEventLoop, ready: threading.Event) -> None:
        asyncio.set_event_loop(loop)
        loop.call_soon(ready.set)
        try:
            loop.run_forever()
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    def submit(self, coro: Coroutine[Any, Any, R]) -> "concurrent.futures.Future[R]":
        """Schedule coro on the loop thread.

        Raises:
            RuntimeError: If the loop is not running.

        """
        loop = self._loop
        if loop is None or not loop.is_running():
            coro.close()
            raise RuntimeError(f"Background loop '{self._name}' is not running")
        return asyncio.run_coroutine_threadsafe(coro, loop)

    __call__ = submit

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel pending work, stop the loop and join the thread."""
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None
        if loop is None or thread is None:
            return
        if threading.current_thread() is thread:
            raise RuntimeError("BackgroundLoop.stop() called from its own thread")

        async def _cancel_pending() -> None:
            current = asyncio.current_task()
            pending = [t for t in asyncio.all_tasks() if t is not current]
            for t in pending:
                t.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        try:
            asyncio.run_coroutine_threadsafe(_cancel_pending(), loop).result(timeout)
        except concurrent.futures.TimeoutError:
            logger.warning("Background loop '%s': pending tasks did not stop in %ss", self._name, timeout)
        loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout)
        logger.debug("Background loop '%s' stopped", self._name)

    def __enter__(self) -> "BackgroundLoop":
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.stop()
