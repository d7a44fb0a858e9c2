"""Helper utilities for the arkki backup tool."""
from __future__ import annotations

import os
import socket
import string
from datetime import date
from pathlib import Path
from typing import Iterable, Optional

SAFE_CHARACTERS = frozenset(string.ascii_letters + string.digits + "-_,.=@/+:%")
_SAFE_BYTES = frozenset(ord(char) for char in SAFE_CHARACTERS)


def shell_escape(raw: str) -> str:
    """Return *raw* as a single shell word that expands back to *raw*.

    Characters from :data:`SAFE_CHARACTERS` are kept, everything else is
    prefixed with a backslash. A newline is quoted instead, since a
    backslash-newline pair is a line continuation.

    Decodable text is escaped per character, so ``é`` becomes ``\\é``
    rather than one backslash per UTF-8 byte as :func:`shell_escape_bytes`
    would produce; both read back the same in a shell. Text carrying
    undecodable filesystem bytes (``surrogateescape``) is escaped byte-wise
    and decoded back the same way.
    """

    try:
        raw.encode("utf-8")
    except UnicodeEncodeError:
        return os.fsdecode(shell_escape_bytes(os.fsencode(raw)))

    escaped = []
    for char in raw:
        if char in SAFE_CHARACTERS:
            escaped.append(char)
        elif char == "\n":
            escaped.append("'\n'")
        else:
            escaped.append("\\" + char)
    return "".join(escaped)


def shell_escape_bytes(raw: bytes) -> bytes:
    """Byte-wise version of :func:`shell_escape`."""

    escaped = bytearray()
    for value in raw:
        if value in _SAFE_BYTES:
            escaped.append(value)
        elif value == 0x0A:
            escaped.extend(b"'\n'")
        else:
            escaped.append(0x5C)
            escaped.append(value)
    return bytes(escaped)


def render_command(argv: Iterable[str]) -> str:
    return " ".join(shell_escape(arg) for arg in argv)


def datestamp(day: Optional[date] = None) -> str:
    day = day or date.today()
    return day.strftime("%Y-%m-%d")


def short_hostname() -> str:
    return socket.gethostname().split(".")[0] or "localhost"


def ensure_directory(path: Path) -> Path:
    """Create *path* if it does not exist and return it."""

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


__all__ = [
    "SAFE_CHARACTERS",
    "shell_escape",
    "shell_escape_bytes",
    "render_command",
    "datestamp",
    "short_hostname",
    "ensure_directory",
]
