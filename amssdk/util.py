"""General purpose helpers for files, sizes, randomness and small conversions."""

from __future__ import annotations

import base64
import hashlib
import os
import re
import secrets
import shutil
import stat
import struct
import subprocess
import sys
import threading
import zipfile
from collections import Counter
from typing import IO, Any, Iterator, Sequence
from urllib.parse import urlsplit, urlunsplit

import yaml

from amssdk.errors import AbortedError

__all__ = [
    "KB",
    "MB",
    "GB",
    "VALID_ACTIVITY_NAME_PATTERN",
    "CancelableReader",
    "var_path",
    "get_owner_mode",
    "file_copy",
    "file_move",
    "list_files_in_dir",
    "dir_copy",
    "path_exists",
    "parse_byte_size_string",
    "get_byte_size_string",
    "load_from_file",
    "value_or_default",
    "create_zip",
    "create_bzip2_tarball",
    "get_file_size",
    "running_as_snap",
    "generate_random_bytes",
    "generate_random_string",
    "random_crypto_string",
    "set_size",
    "generate_fingerprint_for_file",
    "generate_fingerprint",
    "strip_user_password_from_url",
    "compare_slices_ordered",
    "compare_slices_unordered",
    "image_arch_to_node_arch",
    "node_arch_to_image_arch",
    "binary_endian",
]

KB = 1024
MB = KB * 1024
GB = MB * 1024

VALID_ACTIVITY_NAME_PATTERN = (
    r"(^([A-Za-z]{1}[A-Za-z\d_]*\.){2,}|^(\.){1})[A-Za-z][A-Za-z\d_]*$"
)

_DEFAULT_VAR_DIR = "/var/lib/ams"
_INTEGER_RE = re.compile(r"[+-]?[0-9]+")
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1
_SIZE_MULTIPLIERS = {
    "kB": KB,
    "MB": MB,
    "GB": GB,
    "TB": GB * 1024,
    "PB": GB * 1024**2,
    "EB": GB * 1024**3,
}
_SIZE_UNITS = ("kB", "MB", "GB", "TB", "PB", "EB")
_IMAGE_TO_NODE_ARCH = {"arm64": "aarch64", "amd64": "x86_64"}
_NODE_TO_IMAGE_ARCH = {"aarch64": "arm64", "x86_64": "amd64"}
_CHUNK_SIZE = 64 * 1024


def var_path(*args: str) -> str:
    """Join the given elements below the state directory and ensure the parent exists.

    The state directory is $SNAP_COMMON, then $AMS_DIR, then /var/lib/ams.
    """
    var_dir = _DEFAULT_VAR_DIR
    for env_name in ("SNAP_COMMON", "AMS_DIR"):
        candidate = os.environ.get(env_name, "")
        if candidate:
            var_dir = candidate
            break

    joined = "/".join(part for part in (var_dir, *args) if part)
    result = os.path.normpath(joined) if joined else ""
    try:
        os.makedirs(os.path.dirname(result), mode=0o755, exist_ok=True)
    except OSError:
        pass
    return result


def get_owner_mode(stat_result: os.stat_result) -> tuple[int, int, int]:
    """Return (mode, uid, gid) of the given stat result."""
    return stat_result.st_mode, stat_result.st_uid, stat_result.st_gid


def file_copy(source: str, dest: str) -> None:
    """Copy a file, overwriting the target if it exists.

    Outside a snap the owner of the source is carried over to the copy.
    """
    with open(source, "rb") as src:
        info = os.fstat(src.fileno())
        with open(dest, "wb") as dst:
            shutil.copyfileobj(src, dst, _CHUNK_SIZE)
            dst.flush()
            if not running_as_snap() and hasattr(os, "fchown"):
                _, uid, gid = get_owner_mode(info)
                os.fchown(dst.fileno(), uid, gid)


def file_move(old_path: str, new_path: str) -> None:
    """Move a file by renaming it, falling back to copy and remove."""
    try:
        os.rename(old_path, new_path)
        return
    except OSError:
        pass

    file_copy(old_path, new_path)
    try:
        os.remove(old_path)
    except OSError:
        pass


def _is_dir_no_follow(path: str) -> bool:
    return stat.S_ISDIR(os.lstat(path).st_mode)


def list_files_in_dir(dir_path: str, recursive: bool = False) -> list[str]:
    """List the entries of a directory sorted by name, descending into subdirectories if asked.

    The contents of a subdirectory come before the subdirectory itself.
    """
    result: list[str] = []
    for name in sorted(os.listdir(dir_path)):
        full = os.path.join(dir_path, name)
        if recursive and _is_dir_no_follow(full):
            result.extend(list_files_in_dir(full, True))
        result.append(full)
    return result


def dir_copy(source: str, dest: str) -> None:
    """Copy a directory tree recursively, skipping symbolic links."""
    src = os.path.normpath(source)
    dst = os.path.normpath(dest)

    info = os.stat(src)
    if not stat.S_ISDIR(info.st_mode):
        raise NotADirectoryError("source is not a directory")
    if os.path.exists(dst):
        raise FileExistsError("destination already exists")

    os.makedirs(dst, mode=stat.S_IMODE(info.st_mode))

    with os.scandir(src) as scan:
        entries = sorted(scan, key=lambda entry: entry.name)

    for entry in entries:
        src_path = os.path.join(src, entry.name)
        dst_path = os.path.join(dst, entry.name)
        if entry.is_dir(follow_symlinks=False):
            dir_copy(src_path, dst_path)
        elif entry.is_symlink():
            continue
        else:
            file_copy(src_path, dst_path)


def path_exists(name: str) -> bool:
    """Tell whether the path exists, without following a final symbolic link."""
    try:
        os.lstat(name)
    except FileNotFoundError:
        return False
    except OSError:
        return True
    return True


def parse_byte_size_string(value: str) -> int:
    """Parse a size such as "200kB" or "5GB" into a number of bytes. "" is 0.

    Raises ValueError on malformed input or an unsupported suffix.
    """
    if value == "":
        return 0

    suffix_len = 2
    last = value[-1]
    if last.isascii() and last.isdigit():
        suffix_len = 0
    elif len(value) >= 2 and last == "B" and value[-2].isascii() and value[-2].isdigit():
        suffix_len = 1
    elif value.endswith(" bytes"):
        suffix_len = 6
    elif len(value) < 3:
        raise ValueError(f"Invalid value: {value}")

    cut = len(value) - suffix_len
    suffix = value[cut:]
    number = value[:cut]

    if not _INTEGER_RE.fullmatch(number):
        raise ValueError(f"Invalid integer: {value}")
    amount = int(number)
    if not _INT64_MIN <= amount <= _INT64_MAX:
        raise ValueError(f"Invalid integer: {value}")
    if amount < 0:
        raise ValueError(f"Invalid value: {amount}")

    if suffix_len != 2:
        return amount

    try:
        multiplier = _SIZE_MULTIPLIERS[suffix]
    except KeyError:
        raise ValueError(f"Unsupported suffix: {suffix}") from None
    return amount * multiplier


def get_byte_size_string(value: int, precision: int) -> str:
    """Format a number of bytes with the largest fitting unit."""
    if value < 1024:
        return f"{value}B"

    amount = float(value)
    for unit in _SIZE_UNITS:
        amount /= 1024
        if amount < 1024:
            return f"{amount:.{precision}f}{unit}"
    return f"{amount:.{precision}f}EB"


def load_from_file(config_path: str) -> Any:
    """Load and return the YAML document stored at the given path."""
    with open(config_path, "rb") as handle:
        return yaml.safe_load(handle)


def value_or_default(value: str, default_value: str) -> str:
    """Return value when it is non-empty, otherwise default_value."""
    return value if value else default_value


def _walk(base: str, rel: str) -> Iterator[tuple[str, str, bool]]:
    full = os.path.join(base, rel)
    is_dir = _is_dir_no_follow(full)
    yield rel, full, is_dir
    if is_dir:
        for name in sorted(os.listdir(full)):
            yield from _walk(base, os.path.normpath(os.path.join(rel, name)))


def create_zip(working_dir: str, output_path: str, content: Sequence[str]) -> None:
    """Create a zip archive of the given paths, relative to working_dir.

    output_path is also taken relative to working_dir unless absolute.
    """
    target = os.path.join(working_dir, output_path)
    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for item in content:
            for rel, full, is_dir in _walk(working_dir, item):
                if is_dir:
                    info = zipfile.ZipInfo.from_file(full, arcname=rel)
                    archive.writestr(info, b"")
                else:
                    archive.write(full, arcname=rel)


def create_bzip2_tarball(working_dir: str, output_path: str, content: Sequence[str]) -> None:
    """Create a bzip2 compressed tarball of the given paths using tar."""
    args = ["tar", "cfj", output_path, "-C", working_dir, *content]
    subprocess.run(args, check=True)


def get_file_size(path: str) -> int:
    """Return the size in bytes of the file at the given path."""
    return os.stat(path).st_size


def running_as_snap() -> bool:
    """Tell whether the process runs inside a snap."""
    return "SNAP" in os.environ


def generate_random_bytes(n: int) -> bytes:
    """Return n securely generated random bytes."""
    return secrets.token_bytes(n)


def generate_random_string(n: int) -> str:
    """Return n random bytes encoded as URL-safe, padded base64."""
    return base64.urlsafe_b64encode(generate_random_bytes(n)).decode("ascii")


def random_crypto_string() -> str:
    """Return 32 random bytes encoded as hexadecimal."""
    return secrets.token_bytes(32).hex()


def set_size(fd: int, width: int, height: int) -> None:
    """Set the window size of the terminal behind the given file descriptor."""
    import fcntl
    import termios

    dimensions = struct.pack("HHHH", height & 0xFFFF, width & 0xFFFF, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, dimensions)


def generate_fingerprint_for_file(path: str) -> str:
    """Return the SHA-256 hex digest of the file at the given path."""
    with open(path, "rb") as handle:
        return generate_fingerprint(handle)


def generate_fingerprint(reader: IO[bytes]) -> str:
    """Return the SHA-256 hex digest of a seekable stream, rewinding it before and after."""
    reader.seek(0)
    hasher = hashlib.sha256()
    for chunk in iter(lambda: reader.read(_CHUNK_SIZE), b""):
        hasher.update(chunk)
    reader.seek(0)
    return hasher.hexdigest()


def strip_user_password_from_url(value: str) -> str:
    """Mask the user and password of a URL; return "invalid" if it cannot be parsed."""
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in value):
        return "invalid"
    try:
        parts = urlsplit(value)
    except ValueError:
        return "invalid"
    if "@" in parts.netloc:
        host = parts.netloc.rpartition("@")[2]
        parts = parts._replace(netloc=f"xxx:xxx@{host}")
    return urlunsplit(parts)


def compare_slices_ordered(a: Sequence[Any], b: Sequence[Any]) -> bool:
    """Tell whether both sequences hold equal elements in the same order."""
    return len(a) == len(b) and all(x == y for x, y in zip(a, b))


def compare_slices_unordered(a: Sequence[Any], b: Sequence[Any]) -> bool:
    """Tell whether both sequences hold equal elements, in any order."""
    return len(a) == len(b) and Counter(a) == Counter(b)


def image_arch_to_node_arch(arch: str) -> str:
    """Map an image architecture name to a machine architecture name."""
    return _IMAGE_TO_NODE_ARCH.get(arch, "unknown")


def node_arch_to_image_arch(arch: str) -> str:
    """Map a machine architecture name to an image architecture name."""
    return _NODE_TO_IMAGE_ARCH.get(arch, "unknown")


def binary_endian() -> str:
    """Return the native byte order as "little" or "big"."""
    return sys.byteorder


class CancelableReader:
    """Reader that refuses to read once the given event has been set."""

    def __init__(self, other: IO[bytes], cancelled: threading.Event) -> None:
        self._other = other
        self._cancelled = cancelled

    def read(self, size: int = -1) -> bytes:
        """Read from the wrapped stream unless cancelled."""
        if self._cancelled.is_set():
            raise AbortedError("context canceled")
        return self._other.read(size)