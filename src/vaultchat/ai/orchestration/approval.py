"""Human approval gates for tool execution and result release.

The gate presents a decision request through an :class:`ApprovalUI` and
resolves exactly once. Dismissing the prompt, a UI failure, a timeout or a
cancelled turn all resolve as a denial; nothing ever resolves as an implicit
approval.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Protocol, Sequence, TypeVar, runtime_checkable

from .cancellation import CancellationToken
from .selector import ResultSelector
from .types import CandidateResult, ExecuteApprovalDecision, ResultsApprovalDecision, ToolRequest

__all__ = [
    "PendingApproval",
    "ExecutePrompt",
    "ResultsPrompt",
    "ApprovalUI",
    "ApprovalGate",
]

LOGGER = logging.getLogger(__name__)

DecisionT = TypeVar("DecisionT")


# -----------------------------------------------------------------------------
# Resolve-once slot
# -----------------------------------------------------------------------------


class PendingApproval(Generic[DecisionT]):
    """A decision slot that accepts exactly one resolution.

    ``cancel``/``close`` resolve the slot with its denial value. Any call after
    the first resolution is ignored and reports ``False``.
    """

    def __init__(self, denial: DecisionT) -> None:
        self._denial = denial
        self._future: asyncio.Future[DecisionT] = asyncio.get_running_loop().create_future()

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def denial(self) -> DecisionT:
        return self._denial

    def resolve(self, decision: DecisionT) -> bool:
        if self._future.done():
            LOGGER.debug("Ignoring duplicate approval resolution")
            return False
        self._future.set_result(decision)
        return True

    def cancel(self) -> bool:
        return self.resolve(self._denial)

    def close(self) -> bool:
        """Resolve as a denial when the prompt surface is dismissed."""
        return self.cancel()

    def result(self) -> DecisionT:
        return self._future.result()

    async def wait(self) -> DecisionT:
        return await asyncio.shield(self._future)


# -----------------------------------------------------------------------------
# Prompts handed to the UI
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ExecutePrompt:
    """Intent and parameters of a tool call awaiting permission to run."""

    request: ToolRequest
    description: str
    pending: PendingApproval[ExecuteApprovalDecision]

    def approve(self) -> bool:
        return self.pending.resolve(ExecuteApprovalDecision.approve())

    def deny(self) -> bool:
        return self.pending.cancel()


@dataclass(slots=True)
class ResultsPrompt:
    """Computed candidates awaiting a per-item release decision.

    ``candidates`` is lent read-only; the user's choices live in ``selector``.
    """

    request: ToolRequest
    description: str
    candidates: tuple[CandidateResult, ...]
    selector: ResultSelector
    pending: PendingApproval[ResultsApprovalDecision]
    total_count: int = 0
    message: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.candidates

    def approve_selected(self) -> bool:
        return self.pending.resolve(ResultsApprovalDecision.approve(self.selector.selected_ids()))

    def deny(self) -> bool:
        return self.pending.cancel()


@runtime_checkable
class ApprovalUI(Protocol):
    """Rendering surface for approval prompts.

    Each method returns the user's decision, or ``None`` when the prompt was
    dismissed without an explicit choice. Implementations may also resolve the
    prompt's ``pending`` slot directly.
    """

    async def present_execute(self, prompt: ExecutePrompt) -> ExecuteApprovalDecision | None:
        ...

    async def present_results(self, prompt: ResultsPrompt) -> ResultsApprovalDecision | None:
        ...


# -----------------------------------------------------------------------------
# Gate
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ApprovalGate:
    """Blocking request/response primitive in front of the approval UI."""

    ui: ApprovalUI
    timeout: float | None = None
    _presented: int = field(default=0, init=False)

    @property
    def presented_count(self) -> int:
        return self._presented

    async def request_execute(
        self,
        request: ToolRequest,
        *,
        token: CancellationToken | None = None,
    ) -> ExecuteApprovalDecision:
        """Ask whether ``request`` may run at all."""

        pending: PendingApproval[ExecuteApprovalDecision] = PendingApproval(ExecuteApprovalDecision.deny())
        prompt = ExecutePrompt(request=request, description=request.describe(), pending=pending)
        return await self._present(self.ui.present_execute, prompt, pending, token, label="execute")

    async def request_results(
        self,
        request: ToolRequest,
        candidates: Sequence[CandidateResult],
        *,
        token: CancellationToken | None = None,
        total_count: int | None = None,
        message: str | None = None,
    ) -> ResultsApprovalDecision:
        """Ask which of ``candidates`` may be released to the model."""

        items = tuple(candidates)
        pending: PendingApproval[ResultsApprovalDecision] = PendingApproval(ResultsApprovalDecision.deny())
        prompt = ResultsPrompt(
            request=request,
            description=request.describe(),
            candidates=items,
            selector=ResultSelector.from_candidates(items),
            pending=pending,
            total_count=len(items) if total_count is None else total_count,
            message=message,
        )
        decision = await self._present(self.ui.present_results, prompt, pending, token, label="results")
        if not decision.approved:
            return decision
        known = {candidate.id for candidate in items}
        unknown = decision.released_ids - known
        if unknown:
            LOGGER.warning(
                "Approval UI released %d unknown id(s) for call %s; ignoring them",
                len(unknown),
                request.call_id,
            )
        return ResultsApprovalDecision.approve(decision.released_ids & known)

    async def _present(
        self,
        present: Callable[..., Awaitable[DecisionT | None]],
        prompt: ExecutePrompt | ResultsPrompt,
        pending: PendingApproval[DecisionT],
        token: CancellationToken | None,
        *,
        label: str,
    ) -> DecisionT:
        call_id = prompt.request.call_id
        if token is not None and token.cancelled:
            LOGGER.debug("Skipping %s gate for %s; turn already cancelled", label, call_id)
            return pending.denial

        self._presented += 1
        ui_task = asyncio.create_task(present(prompt))
        ui_task.add_done_callback(lambda task: self._on_ui_done(task, pending, label, call_id))
        unregister = token.add_callback(lambda _reason: pending.cancel()) if token is not None else None
        try:
            if self.timeout is not None and self.timeout > 0:
                try:
                    decision = await asyncio.wait_for(pending.wait(), timeout=self.timeout)
                except asyncio.TimeoutError:
                    LOGGER.info("%s approval for %s timed out after %.1fs", label.capitalize(), call_id, self.timeout)
                    pending.cancel()
                    decision = pending.result()
            else:
                decision = await pending.wait()
        finally:
            if unregister is not None:
                unregister()
            if not ui_task.done():
                ui_task.cancel()

        if token is not None and token.cancelled:
            return pending.denial
        return decision

    @staticmethod
    def _on_ui_done(
        task: asyncio.Task[DecisionT | None],
        pending: PendingApproval[DecisionT],
        label: str,
        call_id: str,
    ) -> None:
        if task.cancelled():
            pending.cancel()
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.warning("%s approval UI failed for %s: %s", label.capitalize(), call_id, exc)
            pending.cancel()
            return
        decision = task.result()
        if decision is None:
            pending.close()
        else:
            pending.resolve(decision)
