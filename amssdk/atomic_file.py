"""Files whose content only appears at the target path once committed."""

from __future__ import annotations

import os
import tempfile
from types import TracebackType

__all__ = ["AtomicFile", "write_file_atomic"]


class AtomicFile:
    """A temporary file next to its target, moved into place by commit().

    Used as a context manager, an uncommitted file is discarded on exit.
    """

    def __init__(self, target_path: str, mode: int = 0o644) -> None:
        directory = os.path.dirname(target_path) or "."
        fd, name = tempfile.mkstemp(dir=directory, prefix=os.path.basename(target_path))
        try:
            os.chmod(name, mode)
        except OSError:
            os.close(fd)
            os.remove(name)
            raise
        self._file = os.fdopen(fd, "wb")
        self.name = name
        self.target_path = target_path
        self.committed = False
        self._cancelled = False

    def write(self, data: bytes) -> int:
        """Write data to the temporary file and return the number of bytes written."""
        return self._file.write(data)

    def commit(self) -> None:
        """Flush the content to disk and move the file to its target path."""
        self._file.flush()
        os.fsync(self._file.fileno())
        self._file.close()
        os.replace(self.name, self.target_path)
        self.committed = True

    def cancel(self) -> None:
        """Discard all changes; raises RuntimeError once committed."""
        if self.committed:
            raise RuntimeError("cannot cancel as already committed")
        self._file.close()
        os.remove(self.name)
        self._cancelled = True

    def __enter__(self) -> AtomicFile:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if not self.committed and not self._cancelled:
            self.cancel()
        return False


def write_file_atomic(target_path: str, content: bytes, mode: int = 0o644) -> None:
    """Write content to target_path so that readers never see a partial file."""
    with AtomicFile(target_path, mode) as handle:
        written = handle.write(content)
        if written != len(content):
            raise OSError(f"failed to write full content to file at path {target_path}")
        handle.commit()