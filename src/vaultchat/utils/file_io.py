"""Reading and saving vault notes.

Notes arrive from editors on every platform: reads honour a byte-order mark,
fall back from UTF-8 to Latin-1 and hand back ``\\n`` line endings. Saves go
through a sibling temp file and ``os.replace``, keeping the permissions of the
note being replaced.
"""

from __future__ import annotations

import codecs
import os
import stat
import tempfile
from pathlib import Path

__all__ = ["decode_note", "read_text", "write_text"]

# UTF-32 marks first: the UTF-16 LE mark is a prefix of the UTF-32 LE one.
_BYTE_ORDER_MARKS: tuple[tuple[bytes, str], ...] = (
    (codecs.BOM_UTF32_LE, "utf-32"),
    (codecs.BOM_UTF32_BE, "utf-32"),
    (codecs.BOM_UTF8, "utf-8-sig"),
    (codecs.BOM_UTF16_LE, "utf-16"),
    (codecs.BOM_UTF16_BE, "utf-16"),
)


def decode_note(raw: bytes, *, errors: str = "strict") -> str:
    """Decode note bytes; text without a byte-order mark is UTF-8, else Latin-1."""

    for mark, codec in _BYTE_ORDER_MARKS:
        if raw.startswith(mark):
            return raw.decode(codec, errors=errors)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def read_text(path: Path | str, *, errors: str = "strict", normalize_newlines: bool = True) -> str:
    """Read a note from disk."""

    text = decode_note(Path(path).read_bytes(), errors=errors)
    return _unix_newlines(text) if normalize_newlines else text


def write_text(path: Path | str, content: str, *, encoding: str = "utf-8", atomic: bool = True) -> Path:
    """Save ``content`` with ``\\n`` line endings, replacing the note atomically by default."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    data = _unix_newlines(content).encode(encoding)
    if not atomic:
        target.write_bytes(data)
        return target

    previous_mode = stat.S_IMODE(target.stat().st_mode) if target.exists() else None
    handle = tempfile.NamedTemporaryFile(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp", delete=False)
    staged = Path(handle.name)
    try:
        with handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        if previous_mode is not None:
            os.chmod(staged, previous_mode)
        os.replace(staged, target)
    except OSError:
        staged.unlink(missing_ok=True)
        raise
    return target


def _unix_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n") if "\r" in text else text
