"""Stream wrappers."""

from __future__ import annotations

import queue
from typing import IO

__all__ = ["BufferedReader"]


class BufferedReader:
    """Reader that reports the size of every read to a queue."""

    def __init__(self, reader: IO[bytes], sizes: queue.Queue | None = None) -> None:
        self.reader = reader
        self.sizes = sizes

    def read(self, size: int = -1) -> bytes:
        """Read from the wrapped stream and put the number of bytes read on the queue."""
        data = self.reader.read(size)
        if self.sizes is not None:
            self.sizes.put(float(len(data)))
        return data