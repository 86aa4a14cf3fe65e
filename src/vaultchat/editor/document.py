"""Document surfaces the streaming sink writes into."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from ..utils.file_io import read_text, write_text

__all__ = ["SelectionRange", "EditorAdapter", "TextDocument", "MarkdownFileDocument"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SelectionRange:
    """Current selection as absolute character offsets."""

    start: int = 0
    end: int = 0

    def as_tuple(self) -> tuple[int, int]:
        return (self.start, self.end)

    @property
    def is_empty(self) -> bool:
        return self.start == self.end


@runtime_checkable
class EditorAdapter(Protocol):
    """Minimal editing surface; offsets are absolute character positions."""

    def get_cursor(self) -> int:
        ...

    def insert_text_at(self, position: int, text: str) -> int:
        """Insert ``text`` at ``position`` and return the offset just past it."""
        ...

    def get_current_selection(self) -> SelectionRange:
        ...


@dataclass(slots=True)
class TextDocument:
    """In-memory text buffer with a cursor, usable as an :class:`EditorAdapter`."""

    text: str = ""
    selection: SelectionRange = field(default_factory=SelectionRange)
    dirty: bool = False
    version_id: int = 1

    def __post_init__(self) -> None:
        self.set_cursor(min(self.selection.end, len(self.text)))

    def get_cursor(self) -> int:
        return self.selection.end

    def set_cursor(self, position: int) -> None:
        clamped = self._clamp(position)
        self.selection = SelectionRange(clamped, clamped)

    def select(self, start: int, end: int) -> None:
        low, high = sorted((self._clamp(start), self._clamp(end)))
        self.selection = SelectionRange(low, high)

    def get_current_selection(self) -> SelectionRange:
        return SelectionRange(self.selection.start, self.selection.end)

    def insert_text_at(self, position: int, text: str) -> int:
        offset = self._clamp(position)
        self.text = self.text[:offset] + text + self.text[offset:]
        end = offset + len(text)
        if self.selection.end >= offset:
            self.selection = SelectionRange(
                self.selection.start + len(text) if self.selection.start >= offset else self.selection.start,
                self.selection.end + len(text),
            )
        self._touch()
        return end

    def replace_range(self, start: int, end: int, text: str) -> None:
        """Replace ``[start, end)``; used for edits that do not come from the sink."""

        low, high = sorted((self._clamp(start), self._clamp(end)))
        self.text = self.text[:low] + text + self.text[high:]
        self.set_cursor(low + len(text))
        self._touch()

    def append(self, text: str) -> int:
        return self.insert_text_at(len(self.text), text)

    def _clamp(self, position: int) -> int:
        return max(0, min(int(position), len(self.text)))

    def _touch(self) -> None:
        self.dirty = True
        self.version_id += 1


class MarkdownFileDocument(TextDocument):
    """A :class:`TextDocument` loaded from, and saved back to, a note on disk."""

    __slots__ = ("path",)

    def __init__(self, path: Path | str) -> None:
        target = Path(path).expanduser()
        text = read_text(target) if target.exists() else ""
        super().__init__(text=text)
        self.path = target
        self.set_cursor(len(text))

    def save(self) -> Path:
        written = write_text(self.path, self.text)
        self.dirty = False
        LOGGER.debug("Saved %s (%d chars)", self.path, len(self.text))
        return written
