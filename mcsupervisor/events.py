"""In-process event fan-out with disposable subscription tokens."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger("mcsupervisor.events")

Listener = Callable[[Any], None]


class Subscription:
    """Handle returned by EventEmitter.subscribe.

    Usable as a context manager so the listener is removed on every exit path::

        with events.subscribe("log", on_log):
            await processor.start_following()
            ...
    """

    def __init__(self, emitter: EventEmitter, event: str, listener: Listener) -> None:
        self._emitter = emitter
        self.event = event
        self.listener = listener
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def dispose(self) -> None:
        if self._active:
            self._emitter._remove(self)
            self._active = False

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc: object) -> None:
        self.dispose()


class EventEmitter:
    """Synchronous fan-out. A failing listener is logged and never breaks the emitter."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Subscription]] = defaultdict(list)

    def subscribe(self, event: str, listener: Listener) -> Subscription:
        sub = Subscription(self, event, listener)
        self._listeners[event].append(sub)
        return sub

    def emit(self, event: str, payload: Any = None) -> None:
        for sub in list(self._listeners.get(event, ())):
            try:
                sub.listener(payload)
            except Exception:
                logger.exception("Listener for %r failed", event)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def _remove(self, sub: Subscription) -> None:
        subs = self._listeners.get(sub.event)
        if subs and sub in subs:
            subs.remove(sub)
