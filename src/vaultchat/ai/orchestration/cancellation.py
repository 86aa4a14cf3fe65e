"""Cooperative cancellation shared by every stage of a turn."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from .errors import TransportAborted

__all__ = ["CancellationToken", "run_until_cancelled"]

LOGGER = logging.getLogger(__name__)

CancelCallback = Callable[[str | None], None]
ResultT = TypeVar("ResultT")


class CancellationToken:
    """One-shot cancellation flag with callbacks.

    The token is checked at every suspension point. Callbacks let owners of
    in-flight work (approval prompts, model streams, flush loops) abort it
    immediately instead of waiting for the next check.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[CancelCallback] = []
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> bool:
        """Fire the token; returns ``False`` when it was already cancelled."""

        if self._cancelled:
            return False
        self._cancelled = True
        self._reason = reason
        if self._event is not None:
            self._event.set()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(reason)
            except Exception:  # pragma: no cover - callbacks must not block cancellation
                LOGGER.exception("Cancellation callback failed")
        return True

    def add_callback(self, callback: CancelCallback) -> Callable[[], None]:
        """Register ``callback``; runs immediately if the token already fired.

        Returns a function that unregisters the callback.
        """

        if self._cancelled:
            callback(self._reason)
            return lambda: None
        self._callbacks.append(callback)

        def _remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _remove

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise TransportAborted(self._reason)

    async def wait(self) -> str | None:
        """Suspend until the token fires and return the reason."""

        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        await self._event.wait()
        return self._reason


async def run_until_cancelled(awaitable: Awaitable[ResultT], token: CancellationToken | None) -> ResultT:
    """Await ``awaitable`` as a task that the token can abort.

    When the token fires the task is cancelled (closing any transport it holds)
    and :class:`TransportAborted` is raised. Cancelling the caller cancels the
    inner task too and propagates as usual.
    """

    task = asyncio.ensure_future(awaitable)
    unregister = token.add_callback(lambda _reason: task.cancel()) if token is not None else None
    try:
        await asyncio.wait({task})
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if unregister is not None:
            unregister()
    if task.cancelled():
        raise TransportAborted(token.reason if token is not None else None)
    return task.result()
