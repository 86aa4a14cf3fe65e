"""Terminal surfaces for approval prompts and notifications."""

from __future__ import annotations

import asyncio
import logging
import queue
import sys
import threading
from typing import Callable, TextIO

from .ai.orchestration.approval import ExecutePrompt, ResultsPrompt
from .ai.orchestration.types import ExecuteApprovalDecision, ResultsApprovalDecision

__all__ = ["ConsoleApprovalUI", "ConsoleNotificationService"]

LOGGER = logging.getLogger(__name__)

_YES = {"y", "yes"}
_NO = {"n", "no", "d", "deny"}
_CANCEL = {"c", "cancel", "q", "quit"}
_RESULTS_HELP = (
    "Commands: numbers toggle items (e.g. '1 3'), 'a' selects all, 'n' selects none, "
    "Enter or 'y' releases the selection, 'c' cancels the tool call."
)


class _PromptReader:
    """One daemon thread that reads answers for whichever prompt is current.

    A blocking read cannot be interrupted, so a read that outlives its prompt
    (gate timeout, cancelled turn) stays pending and its line goes to the next
    prompt instead of starting a second read. Lines that arrive while no prompt
    is waiting are dropped.
    """

    def __init__(self, input_func: Callable[[str], str]) -> None:
        self._input = input_func
        self._requests: queue.SimpleQueue[tuple[str, asyncio.AbstractEventLoop]] = queue.SimpleQueue()
        self._thread: threading.Thread | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._reading = False
        self._waiter: asyncio.Future[str | None] | None = None

    async def read(self, text: str, echo: Callable[[str], None]) -> str | None:
        """Return the next answer, or ``None`` once input is closed."""
        loop = asyncio.get_running_loop()
        if self._loop is not loop:
            self._loop = loop
            self._reading = False
        waiter: asyncio.Future[str | None] = loop.create_future()
        self._waiter = waiter
        if self._reading:
            echo(text)
        else:
            self._reading = True
            self._start()
            self._requests.put((text, loop))
        try:
            return await waiter
        finally:
            if self._waiter is waiter:
                self._waiter = None

    def _start(self) -> None:
        if self._thread is None:
            self._thread = threading.Thread(target=self._run, name="vaultchat-prompt", daemon=True)
            self._thread.start()

    def _run(self) -> None:
        while True:
            text, loop = self._requests.get()
            answer: str | None = None
            error: Exception | None = None
            try:
                answer = self._input(text)
            except EOFError:
                answer = None
            except Exception as exc:  # delivered to the waiting prompt
                error = exc
            try:
                loop.call_soon_threadsafe(self._deliver, loop, answer, error)
            except RuntimeError:
                LOGGER.debug("Dropped console answer; event loop is closed")

    def _deliver(
        self,
        loop: asyncio.AbstractEventLoop,
        answer: str | None,
        error: Exception | None,
    ) -> None:
        if loop is not self._loop:
            return
        self._reading = False
        waiter = self._waiter
        if waiter is None or waiter.done():
            LOGGER.debug("Discarded console answer with no prompt waiting")
            return
        if error is not None:
            waiter.set_exception(error)
        else:
            waiter.set_result(answer)


class ConsoleApprovalUI:
    """Prompts on the terminal; only one prompt is shown at a time."""

    def __init__(
        self,
        *,
        input_func: Callable[[str], str] = input,
        output: TextIO | None = None,
    ) -> None:
        self._reader = _PromptReader(input_func)
        self._output = output
        self._lock = asyncio.Lock()

    @property
    def output(self) -> TextIO:
        return self._output or sys.stdout

    async def present_execute(self, prompt: ExecutePrompt) -> ExecuteApprovalDecision | None:
        async with self._lock:
            self._print("")
            self._print(f"The assistant wants to run: {prompt.description}")
            while True:
                answer = await self._ask("Allow? [y]es / [n]o: ")
                if answer is None:
                    return None
                if answer in _YES:
                    return ExecuteApprovalDecision.approve()
                if answer in _NO or answer in _CANCEL or not answer:
                    return ExecuteApprovalDecision.deny()
                self._print("Please answer 'y' or 'n'.")

    async def present_results(self, prompt: ResultsPrompt) -> ResultsApprovalDecision | None:
        async with self._lock:
            self._print("")
            self._print(f"Results for {prompt.description}")
            if prompt.is_empty:
                self._print(f"  {prompt.message or 'No results.'}")
                answer = await self._ask("[Enter] continue / [c]ancel: ")
                if answer is None or answer in _CANCEL:
                    return ResultsApprovalDecision.deny()
                return ResultsApprovalDecision.approve(())
            if prompt.total_count > len(prompt.candidates):
                self._print(f"  Showing {len(prompt.candidates)} of {prompt.total_count} matches.")
            selector = prompt.selector
            ids = selector.ids
            while True:
                self._render_candidates(prompt)
                answer = await self._ask("Release selected? [y] / toggle numbers / [a]ll / [n]one / [c]ancel: ")
                if answer is None:
                    return None
                if answer in _CANCEL:
                    return ResultsApprovalDecision.deny()
                if not answer or answer in _YES:
                    return ResultsApprovalDecision.approve(selector.selected_ids())
                if answer in {"a", "all"}:
                    selector.select_all()
                    continue
                if answer in {"n", "none"}:
                    selector.deselect_all()
                    continue
                indexes = _parse_indexes(answer, len(ids))
                if indexes is None:
                    self._print(_RESULTS_HELP)
                    continue
                for index in indexes:
                    selector.toggle(ids[index])

    def _render_candidates(self, prompt: ResultsPrompt) -> None:
        for number, candidate in enumerate(prompt.candidates, start=1):
            mark = "x" if prompt.selector.is_selected(candidate.id) else " "
            self._print(f"  [{mark}] {number}. {candidate.title}")
            if candidate.preview:
                self._print(f"        {candidate.preview}")

    async def _ask(self, text: str) -> str | None:
        answer = await self._reader.read(text, self._echo)
        if answer is None:
            LOGGER.debug("Approval prompt closed without an answer")
            return None
        return answer.strip().lower()

    def _echo(self, text: str) -> None:
        self.output.write(text)
        self.output.flush()

    def _print(self, text: str) -> None:
        self.output.write(text + "\n")
        self.output.flush()


def _parse_indexes(answer: str, count: int) -> list[int] | None:
    indexes: list[int] = []
    for token in answer.replace(",", " ").split():
        if not token.isdigit():
            return None
        number = int(token)
        if not 1 <= number <= count:
            return None
        indexes.append(number - 1)
    return indexes or None


class ConsoleNotificationService:
    """Writes notifications to stderr and mirrors them into the log."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def info(self, message: str) -> None:
        LOGGER.info(message)
        self._emit("info", message)

    def warning(self, message: str) -> None:
        LOGGER.warning(message)
        self._emit("warning", message)

    def error(self, message: str) -> None:
        LOGGER.error(message)
        self._emit("error", message)

    def _emit(self, level: str, message: str) -> None:
        stream = self._stream or sys.stderr
        stream.write(f"[{level}] {message}\n")
        stream.flush()
