"""Minimal synchronous event emitter."""

import logging
from typing import Callable, Generic, List, TypeVar

logger = logging.getLogger("comfy_desktop.install")

T = TypeVar("T")


class EventEmitter(Generic[T]):
    """Delivers each published value to every subscriber, in subscription order."""

    def __init__(self):
        self._handlers: List[Callable[[T], None]] = []

    def subscribe(self, handler: Callable[[T], None]) -> Callable[[], None]:
        """Add a handler. Returns a callable that unsubscribes it."""
        self._handlers.append(handler)
        return lambda: self.unsubscribe(handler)

    def unsubscribe(self, handler: Callable[[T], None]) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def emit(self, value: T) -> None:
        for handler in list(self._handlers):
            handler(value)
