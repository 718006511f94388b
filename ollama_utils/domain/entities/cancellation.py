"""Cooperative cancellation signal shared between a caller and running streams."""

import asyncio
import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancellation flag with callback registration.

    The token is owned by the caller and only observed by streams. A host
    thread may cancel work that runs on a background event loop, so state is
    guarded by a threading lock rather than an asyncio primitive.

    Usage:
        token = CancellationToken()
        handle = chat(service, request, on_response, cancel=token)
        ...
        token.cancel("user closed the window")
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        """True once cancel() has been called."""
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by caller") -> None:
        """Signal cancellation and run registered callbacks once.

        Raises:
            ValueError: If reason is empty.

        """
        if not reason.strip():
            raise ValueError("Cancellation reason cannot be empty")

        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []

        logger.debug("Cancellation requested: %s", reason)
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.warning("Cancellation callback %r failed", callback, exc_info=True)

    def raise_if_cancelled(self) -> None:
        """Raise asyncio.CancelledError if the token has been cancelled."""
        if self._event.is_set():
            raise asyncio.CancelledError(self.reason)

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run callback on cancellation; returns a function that unregisters it.

        If the token is already cancelled the callback runs immediately.
        Callbacks run on the thread that calls cancel().
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return lambda: self._unregister(callback)
        callback()
        return lambda: None

    def _unregister(self, callback: Callable[[], None]) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass
