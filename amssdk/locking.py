"""A non-blocking lock."""

from __future__ import annotations

import threading

__all__ = ["Locker"]


class Locker:
    """Lock that is only taken when nobody holds it at the time of the call."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locked = False

    def try_lock(self) -> bool:
        """Take the lock if it is free and tell whether that succeeded."""
        with self._guard:
            if self._locked:
                return False
            self._locked = True
            return True

    def unlock(self) -> None:
        """Release the lock; releasing a free lock does nothing."""
        with self._guard:
            self._locked = False