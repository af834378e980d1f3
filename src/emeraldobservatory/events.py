"""Synchronous event bus for session state changes."""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, TypeVar

from emeraldobservatory.models import SessionState

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventKind(str, Enum):
    """What changed in the session aggregate."""

    SNAPSHOT = "snapshot"  # Initial delivery on subscribe
    LOCATION = "location"
    CLOCK = "clock"
    MODE = "mode"
    ASTRONOMY = "astronomy"
    ECLIPSES = "eclipses"
    GPS = "gps"
    ERROR = "error"


@dataclass(frozen=True)
class SessionEvent:
    kind: EventKind
    state: SessionState


class EventBus(Generic[T]):
    """Ordered list of handlers. Publishing never reorders or skips a handler."""

    def __init__(self) -> None:
        self._handlers: list[Callable[[T], None]] = []

    def __len__(self) -> int:
        return len(self._handlers)

    def subscribe(
        self, handler: Callable[[T], None], initial: T | None = None
    ) -> Callable[[], None]:
        """Register handler, optionally delivering ``initial`` to it right away.

        Returns:
            A function that removes this registration. Calling it twice is harmless.
        """
        self._handlers.append(handler)
        if initial is not None:
            handler(initial)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, payload: T) -> None:
        # Snapshot the list so handlers may unsubscribe while being called
        for handler in list(self._handlers):
            handler(payload)

    def clear(self) -> None:
        self._handlers.clear()
