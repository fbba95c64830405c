import logging
from typing import Any, Callable, Literal

import msgspec

log = logging.getLogger("ok_duino.events")

EventKind = Literal["connected", "ready", "data", "error", "closed"]


class SessionEvent(msgspec.Struct, frozen=True):
    """One notification from a Session to its listeners"""

    kind: EventKind
    data: Any = None


Listener = Callable[[SessionEvent], None]


class EventSource:
    """Delivers events to registered listeners, in registration order"""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def __iadd__(self, listener: Listener) -> "EventSource":
        return self.add(listener)

    def __isub__(self, listener: Listener) -> "EventSource":
        return self.remove(listener)

    def __len__(self) -> int:
        return len(self._listeners)

    def add(self, listener: Listener) -> "EventSource":
        self._listeners.append(listener)
        return self

    def remove(self, listener: Listener) -> "EventSource":
        if listener in self._listeners:
            self._listeners.remove(listener)
        return self

    def listeners(self) -> tuple[Listener, ...]:
        return tuple(self._listeners)

    def fire(self, kind: EventKind, data: Any = None) -> SessionEvent:
        event = SessionEvent(kind=kind, data=data)
        log.debug("Event %s (%d listeners)", kind, len(self._listeners))
        for listener in tuple(self._listeners):
            listener(event)
        return event
