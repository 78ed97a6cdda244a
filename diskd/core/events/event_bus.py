from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from threading import RLock
from typing import TypeVar, cast

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Subscription:
    event_type: type[object]
    handler: Callable[[object], None]


TEvent = TypeVar("TEvent")


class EventBus:
    """Synchronous, in-process event bus for job notifications.

    Jobs publish from their owning event loop, so handlers run on that loop's
    thread. A failing handler is logged and never stops delivery to the
    remaining handlers or unwinds into the publishing job.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._subs: defaultdict[type[object], list[Callable[[object], None]]] = defaultdict(list)

    def subscribe(
        self, event_type: type[TEvent], handler: Callable[[TEvent], None]
    ) -> Subscription:
        def _wrapped(event: object) -> None:
            handler(cast(TEvent, event))

        with self._lock:
            self._subs[event_type].append(_wrapped)
        return Subscription(event_type=event_type, handler=_wrapped)

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            handlers = self._subs.get(subscription.event_type)
            if handlers and subscription.handler in handlers:
                handlers.remove(subscription.handler)

    def has_subscribers(self, event_type: type[object]) -> bool:
        with self._lock:
            return bool(self._subs.get(event_type))

    def publish(self, event: object) -> None:
        with self._lock:
            handlers = list(self._subs.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(
                    "Event handler failed",
                    extra={
                        "event_type": type(event).__name__,
                        "job_id": getattr(event, "job_id", None),
                    },
                )

    def clear(self) -> None:
        with self._lock:
            self._subs.clear()
