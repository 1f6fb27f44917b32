"""Interactive questions on the terminal."""

from __future__ import annotations

import io
import os
import sys
from typing import TextIO

__all__ = ["ask_for_bool", "ask_for_password"]

_YES = ("yes", "y")
_NO = ("no", "n")


def _read_answer(default_answer: str) -> tuple[str, bool]:
    line = sys.stdin.readline()
    answer = line.removesuffix("\n").strip()
    return (answer or default_answer), line == ""


def ask_for_bool(question: str, default_answer: str = "") -> bool:
    """Ask a yes/no question until a valid answer is given.

    Raises EOFError when input ends without a valid answer.
    """
    while True:
        sys.stdout.write(question)
        sys.stdout.flush()
        answer, at_eof = _read_answer(default_answer)
        lowered = answer.lower()
        if lowered in _YES:
            return True
        if lowered in _NO:
            return False
        sys.stderr.write("Invalid input, try again.\n\n")
        if at_eof:
            raise EOFError("no valid answer before end of input")


def _read_password(stream: TextIO) -> str:
    try:
        fd = stream.fileno()
    except (AttributeError, OSError, io.UnsupportedOperation):
        fd = None

    if fd is not None and os.isatty(fd):
        try:
            import termios
        except ImportError:
            termios = None
        if termios is not None:
            old = termios.tcgetattr(fd)
            new = termios.tcgetattr(fd)
            new[3] &= ~termios.ECHO
            termios.tcsetattr(fd, termios.TCSAFLUSH, new)
            try:
                line = stream.readline()
            finally:
                termios.tcsetattr(fd, termios.TCSAFLUSH, old)
            return line.rstrip("\r\n")

    return stream.readline().rstrip("\r\n")


def ask_for_password(question: str) -> str:
    """Ask for a password without echoing it; return "" if it cannot be read."""
    sys.stdout.write(question)
    sys.stdout.flush()
    try:
        entered = _read_password(sys.stdin)
    except OSError:
        entered = ""
    sys.stdout.write("\n")
    sys.stdout.flush()
    return entered