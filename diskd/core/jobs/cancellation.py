from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from threading import Event, RLock

logger = logging.getLogger(__name__)


class CancelToken:
    """Push-based, irreversible cancellation signal.

    Callbacks registered with :meth:`connect` run synchronously in the thread
    that calls :meth:`cancel`. Consumers bound to an event loop are expected to
    hop onto their own loop from the callback.
    """

    def __init__(self) -> None:
        self._evt = Event()
        self._lock = RLock()
        self._ids = itertools.count(1)
        self._callbacks: dict[int, Callable[[], None]] = {}

    def cancel(self) -> None:
        with self._lock:
            if self._evt.is_set():
                return
            self._evt.set()
            callbacks = list(self._callbacks.values())
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")

    def is_cancelled(self) -> bool:
        return self._evt.is_set()

    def connect(self, callback: Callable[[], None]) -> int:
        """Subscribe ``callback``; it runs right away if already cancelled.

        Returns a handler id for :meth:`disconnect`, or ``0`` when the callback
        already ran and nothing was registered.
        """
        with self._lock:
            if not self._evt.is_set():
                handler_id = next(self._ids)
                self._callbacks[handler_id] = callback
                return handler_id
        callback()
        return 0

    def disconnect(self, handler_id: int) -> None:
        if handler_id <= 0:
            return
        with self._lock:
            self._callbacks.pop(handler_id, None)
