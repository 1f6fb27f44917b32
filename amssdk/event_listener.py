"""Listeners that hand events from the event stream to registered handlers."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Callable, Sequence

__all__ = ["EventTarget", "EventListener"]

EventHandler = Callable[[Any], object]


@dataclass(eq=False)
class EventTarget:
    """A registered handler together with the event types it wants."""

    function: EventHandler
    types: list[str] | None

    def matches(self, message_type: str) -> bool:
        """Tell whether an event of the given type goes to this target."""
        if self.types is None:
            return True
        return message_type in self.types or "all" in self.types


class EventListener:
    """A subscription to the event stream.

    on_disconnect, if given, is called with the listener when it is disconnected.
    """

    def __init__(self, on_disconnect: Callable[[EventListener], object] | None = None) -> None:
        self._on_disconnect = on_disconnect
        self._targets: list[EventTarget] = []
        self._lock = threading.Lock()
        self._done = threading.Event()
        self.disconnected = False
        self.err: BaseException | None = None

    def add_handler(
        self, types: Sequence[str] | None, function: EventHandler | None
    ) -> EventTarget:
        """Register a function called for every event of the given types (None for all)."""
        if function is None:
            raise ValueError("A valid function must be provided")
        target = EventTarget(function, list(types) if types is not None else None)
        with self._lock:
            self._targets.append(target)
        return target

    def remove_handler(self, target: EventTarget | None) -> None:
        """Unregister a target returned by add_handler."""
        if target is None:
            raise ValueError("A valid event target must be provided")
        with self._lock:
            for index, entry in enumerate(self._targets):
                if entry is target:
                    del self._targets[index]
                    return
        raise ValueError("Couldn't find this function and event types combination")

    def disconnect(self) -> None:
        """Stop listening; does nothing when already disconnected."""
        if self.disconnected:
            return
        if self._on_disconnect is not None:
            self._on_disconnect(self)
        self.err = None
        self.disconnected = True
        self._done.set()

    def wait(self, timeout: float | None = None) -> None:
        """Block until the listener is disconnected.

        Raises the error that ended the stream, if any, and TimeoutError
        when the timeout passes first.
        """
        if not self._done.wait(timeout):
            raise TimeoutError("event listener still active")
        if self.err is not None:
            raise self.err

    def is_active(self) -> bool:
        """Tell whether the listener is still connected."""
        return not self._done.is_set()

    def dispatch(self, message: Any) -> list[threading.Thread]:
        """Hand an event to every matching handler, each in its own thread.

        Messages that are not objects with a string "type" are ignored.
        Returns the started threads.
        """
        if not isinstance(message, dict):
            return []
        message_type = message.get("type")
        if not isinstance(message_type, str):
            return []
        with self._lock:
            targets = [t for t in self._targets if t.matches(message_type)]
        threads = []
        for target in targets:
            thread = threading.Thread(target=target.function, args=(message,), daemon=True)
            thread.start()
            threads.append(thread)
        return threads

    def fail(self, err: BaseException) -> None:
        """Mark the listener as ended by the given error."""
        self.err = err
        self.disconnected = True
        self._done.set()