"""Buffered, cancellable writer that streams model text into a document.

Deltas are buffered and flushed on a fixed cadence rather than per token.
Regular flushes stop at the last complete line so the document never receives
half a line mid-stream; the remainder is written once the buffer grows past
``max_buffer`` or the stream finishes. After :meth:`StreamingResponseSink.cancel`
nothing else reaches the document.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterable, Callable

from ...editor.document import EditorAdapter
from .cancellation import CancellationToken

__all__ = [
    "InsertMode",
    "StreamState",
    "StreamingResponseSink",
    "DEFAULT_FLUSH_INTERVAL",
    "MAX_BUFFER_SIZE",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_FLUSH_INTERVAL = 0.05
MAX_BUFFER_SIZE = 10_000


class InsertMode(str, Enum):
    """Where each flush lands in the document."""

    CURSOR = "cursor"
    TRACKED = "tracked"

    @classmethod
    def coerce(cls, value: InsertMode | str) -> InsertMode:
        if isinstance(value, InsertMode):
            return value
        return cls(str(value).strip().lower())


@dataclass(slots=True, frozen=True)
class StreamState:
    """Snapshot of the sink's private state."""

    cursor_position: int
    buffered_text: str
    cancelled: bool


class StreamingResponseSink:
    """Consumes text deltas from one model call and writes them to ``editor``."""

    def __init__(
        self,
        editor: EditorAdapter,
        *,
        mode: InsertMode | str = InsertMode.TRACKED,
        position: int | None = None,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        max_buffer: int = MAX_BUFFER_SIZE,
        token: CancellationToken | None = None,
    ) -> None:
        if flush_interval <= 0:
            raise ValueError("flush_interval must be positive")
        self._editor = editor
        self._mode = InsertMode.coerce(mode)
        self._position = editor.get_cursor() if position is None else int(position)
        self._flush_interval = flush_interval
        self._max_buffer = max(1, int(max_buffer))
        self._buffer = ""
        self._received: list[str] = []
        self._written = 0
        self._flushes = 0
        self._cancelled = False
        self._finished = False
        self._flush_task: asyncio.Task[None] | None = None
        self._abort_callbacks: list[Callable[[], None]] = []
        self._token = token
        self._unregister: Callable[[], None] | None = None
        if token is not None:
            self._unregister = token.add_callback(lambda _reason: self.cancel())

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def mode(self) -> InsertMode:
        return self._mode

    @property
    def position(self) -> int:
        return self._position

    @property
    def buffered_text(self) -> str:
        return self._buffer

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def written_chars(self) -> int:
        return self._written

    @property
    def flush_count(self) -> int:
        return self._flushes

    @property
    def text(self) -> str:
        """Everything received so far, whether flushed or still buffered."""
        return "".join(self._received)

    @property
    def state(self) -> StreamState:
        return StreamState(cursor_position=self._position, buffered_text=self._buffer, cancelled=self._cancelled)

    # ------------------------------------------------------------------
    # Buffering
    # ------------------------------------------------------------------
    def append(self, text: str) -> None:
        if self._cancelled or self._finished or not text:
            return
        self._received.append(text)
        self._buffer += text

    def flush(self) -> int:
        """Write buffered text up to the last newline; returns characters written."""

        if self._cancelled or not self._buffer:
            return 0
        if len(self._buffer) > self._max_buffer:
            return self.force_flush()
        last_newline = self._buffer.rfind("\n")
        if last_newline == -1:
            return 0
        chunk = self._buffer[: last_newline + 1]
        self._buffer = self._buffer[last_newline + 1 :]
        return self._write(chunk)

    def force_flush(self) -> int:
        """Write the whole buffer regardless of line boundaries."""

        if self._cancelled or not self._buffer:
            return 0
        chunk, self._buffer = self._buffer, ""
        return self._write(chunk)

    def write_now(self, text: str) -> int:
        """Insert ``text`` immediately, after anything already buffered."""

        if self._cancelled or not text:
            return 0
        self.force_flush()
        return self._write(text)

    def _write(self, chunk: str) -> int:
        if self._mode is InsertMode.CURSOR:
            target = self._editor.get_cursor()
        else:
            target = self._position
        self._position = self._editor.insert_text_at(target, chunk)
        self._written += len(chunk)
        self._flushes += 1
        return len(chunk)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Begin periodic flushing on the running event loop."""

        if self._flush_task is None and not self._cancelled and not self._finished:
            self._flush_task = asyncio.create_task(self._flush_loop())

    async def _flush_loop(self) -> None:
        while not self._cancelled:
            await asyncio.sleep(self._flush_interval)
            if self._cancelled:
                break
            self.flush()

    async def finish(self) -> int:
        """Stop the flush loop and drain the remaining buffer."""

        await self._stop_flush_task()
        if self._cancelled or self._finished:
            return 0
        self._finished = True
        drained = self.force_flush()
        self._release_token()
        return drained

    def cancel(self) -> bool:
        """Stop writing immediately, drop the buffer and abort the producer."""

        if self._cancelled:
            return False
        self._cancelled = True
        dropped = len(self._buffer)
        self._buffer = ""
        self._cancel_flush_task()
        LOGGER.debug("Streaming sink cancelled after %d chars (%d buffered chars dropped)", self._written, dropped)
        callbacks, self._abort_callbacks = self._abort_callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:  # pragma: no cover - abort hooks must not block cancellation
                LOGGER.exception("Streaming abort callback failed")
        if self._token is not None:
            self._token.cancel("stream cancelled")
        self._release_token()
        return True

    def on_abort(self, callback: Callable[[], None]) -> None:
        """Register a hook that aborts the producer when the sink is cancelled."""

        if self._cancelled:
            callback()
            return
        self._abort_callbacks.append(callback)

    async def consume(self, deltas: AsyncIterable[str]) -> str:
        """Stream ``deltas`` into the document and return the full text received."""

        self.start()
        completed = False
        try:
            async for delta in deltas:
                if self._cancelled:
                    break
                self.append(delta)
            completed = True
        finally:
            if self._cancelled or not completed:
                self._cancel_flush_task()
        if not self._cancelled:
            await self.finish()
        return self.text

    def _cancel_flush_task(self) -> None:
        task, self._flush_task = self._flush_task, None
        if task is not None and not task.done():
            task.cancel()

    async def _stop_flush_task(self) -> None:
        task, self._flush_task = self._flush_task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _release_token(self) -> None:
        if self._unregister is not None:
            self._unregister()
            self._unregister = None
