"""Undo a sequence of operations unless the whole sequence succeeded."""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Callable

__all__ = ["Reverter"]

_log = logging.getLogger(__name__)

RevertFunc = Callable[[], object]


class Reverter:
    """Collects revert functions and runs them in reverse order on finish.

    Use it as a context manager and call defuse() once everything succeeded::

        with Reverter() as reverter:
            do_operation()
            reverter.add(revert_operation)
            do_other_operation()
            reverter.defuse()
    """

    def __init__(self) -> None:
        self._need_revert = True
        self._reverters: list[RevertFunc] = []

    def add(self, *args: RevertFunc) -> None:
        """Register revert functions to run on finish unless defused."""
        self._reverters.extend(args)

    def defuse(self) -> None:
        """Prevent the registered revert functions from running."""
        self._need_revert = False

    def finish(self) -> None:
        """Run all revert functions, newest first, unless defused.

        Failures are logged and do not stop the remaining functions.
        """
        if not self._need_revert:
            return
        for revert in reversed(self._reverters):
            try:
                revert()
            except Exception as exc:  # noqa: BLE001 - every revert must get its turn
                _log.error("Failed to revert: %s", exc)

    def __enter__(self) -> Reverter:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        self.finish()
        return False