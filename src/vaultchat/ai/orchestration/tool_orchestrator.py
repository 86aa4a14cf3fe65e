"""Approval state machine for a single tool call.

Each call walks ``Requested -> PendingExecuteApproval -> Executing ->
PendingResultsApproval`` and ends in exactly one of ``Released``, ``Denied`` or
``Failed``. Raw candidate data leaves this module only for ids the user
released on the results gate.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Sequence

from ..tools.base import CapabilityExecutor, ExecutionLimits, ExecutionResult
from ..tools.errors import ErrorCode, ExecutionError, ExecutionTimeoutError
from ..tools.registry import CapabilityRegistry
from ...services.notifications import LoggingNotificationService, NotificationService
from .approval import ApprovalGate
from .cancellation import CancellationToken, run_until_cancelled
from .errors import TransportAborted, UserCancelled
from .types import CandidateResult, OrchestrationState, ParsedToolCall, ToolOutcome, ToolRequest

__all__ = [
    "ExecutionLimiter",
    "OrchestrationRecord",
    "ToolOrchestrator",
    "DEFAULT_EXECUTION_TIMEOUT",
    "ZERO_RESULTS_MESSAGE",
    "NONE_SELECTED_MESSAGE",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_EXECUTION_TIMEOUT = 30.0
ZERO_RESULTS_MESSAGE = "No results found. Try different search terms."
NONE_SELECTED_MESSAGE = "Results were found, but none were approved for sharing."


# -----------------------------------------------------------------------------
# Shared limiter
# -----------------------------------------------------------------------------


class ExecutionLimiter:
    """Counting limiter bounding concurrent executor calls across orchestrators."""

    def __init__(self, max_concurrent: int = 2) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._max = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._active = 0
        self._peak = 0

    @property
    def max_concurrent(self) -> int:
        return self._max

    @property
    def active(self) -> int:
        return self._active

    @property
    def peak(self) -> int:
        return self._peak

    @contextlib.asynccontextmanager
    async def slot(self, token: CancellationToken | None = None) -> AsyncIterator[None]:
        await run_until_cancelled(self._semaphore.acquire(), token)
        self._active += 1
        self._peak = max(self._peak, self._active)
        try:
            yield
        finally:
            self._active -= 1
            self._semaphore.release()


# -----------------------------------------------------------------------------
# Records
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class OrchestrationRecord:
    """Outcome of one call plus the states it passed through."""

    call_id: str
    request: ToolRequest | None
    outcome: ToolOutcome
    states: list[OrchestrationState] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def final_state(self) -> OrchestrationState:
        return self.states[-1]


class _StateTracker:
    __slots__ = ("call_id", "states")

    def __init__(self, call_id: str) -> None:
        self.call_id = call_id
        self.states: list[OrchestrationState] = []

    def enter(self, state: OrchestrationState) -> None:
        if self.states and self.states[-1].is_terminal:
            raise RuntimeError(f"Call {self.call_id} already reached {self.states[-1].value}")
        self.states.append(state)
        LOGGER.debug("Tool call %s -> %s", self.call_id, state.value)

    @property
    def current(self) -> OrchestrationState | None:
        return self.states[-1] if self.states else None


# -----------------------------------------------------------------------------
# Orchestrator
# -----------------------------------------------------------------------------


class ToolOrchestrator:
    """Drives tool requests through both approval gates and the executor."""

    def __init__(
        self,
        registry: CapabilityRegistry,
        gate: ApprovalGate,
        *,
        limits: ExecutionLimits | None = None,
        limiter: ExecutionLimiter | None = None,
        notifier: NotificationService | None = None,
        execution_timeout: float | None = DEFAULT_EXECUTION_TIMEOUT,
        secrets: Sequence[str | None] = (),
    ) -> None:
        self._registry = registry
        self._gate = gate
        self._limits = (limits or ExecutionLimits()).clamped()
        self._limiter = limiter or ExecutionLimiter()
        self._notifier = notifier or LoggingNotificationService()
        self._execution_timeout = execution_timeout
        self._secrets = tuple(secrets)

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    @property
    def limiter(self) -> ExecutionLimiter:
        return self._limiter

    @property
    def limits(self) -> ExecutionLimits:
        return self._limits

    async def run_call(self, call: ParsedToolCall, *, token: CancellationToken | None = None) -> OrchestrationRecord:
        """Build a request from a raw model call and run it.

        Calls that cannot be parsed fail immediately, without showing any gate.
        """

        try:
            request = self._registry.build_request(call)
        except ExecutionError as exc:
            LOGGER.warning("Rejected tool call %s (%s): %s", call.call_id, call.name, exc)
            outcome = ToolOutcome.failed(
                call.call_id,
                None,
                error_code=exc.kind,
                message=exc.sanitized_message(secrets=self._secrets),
                failure=exc.to_dict(secrets=self._secrets),
            )
            self._notifier.error(f"Tool call rejected: {outcome.message}")
            return OrchestrationRecord(
                call_id=call.call_id,
                request=None,
                outcome=outcome,
                states=[OrchestrationState.REQUESTED, OrchestrationState.FAILED],
            )
        return await self.run(request, token=token)

    async def run(self, request: ToolRequest, *, token: CancellationToken | None = None) -> OrchestrationRecord:
        """Take ``request`` to a terminal state and return its outcome."""

        started = time.perf_counter()
        tracker = _StateTracker(request.call_id)
        tracker.enter(OrchestrationState.REQUESTED)
        try:
            outcome = await self._drive(request, tracker, token)
        except UserCancelled as exc:
            outcome = self._deny(request, tracker, stage=exc.stage)
        except TransportAborted:
            LOGGER.info("Tool call %s aborted while %s", request.call_id, tracker.current.value if tracker.current else "idle")
            tracker.enter(OrchestrationState.DENIED)
            outcome = ToolOutcome.cancelled(request.call_id, request.kind)
        return OrchestrationRecord(
            call_id=request.call_id,
            request=request,
            outcome=outcome,
            states=tracker.states,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )

    async def _drive(
        self,
        request: ToolRequest,
        tracker: _StateTracker,
        token: CancellationToken | None,
    ) -> ToolOutcome:
        tracker.enter(OrchestrationState.PENDING_EXECUTE_APPROVAL)
        _check(token)
        execute_decision = await self._gate.request_execute(request, token=token)
        _check(token)
        if not execute_decision.approved:
            raise UserCancelled(request.call_id, stage="execute")

        tracker.enter(OrchestrationState.EXECUTING)
        try:
            executor = self._registry.get(request.kind)
            result = await self._execute(executor, request, token)
        except ExecutionError as exc:
            return self._fail(request, tracker, exc)
        except (TransportAborted, asyncio.CancelledError):
            raise
        except Exception:
            LOGGER.exception("Unexpected failure while executing tool call %s", request.call_id)
            return self._fail(
                request,
                tracker,
                ExecutionError(kind=ErrorCode.INTERNAL, message=f"{request.kind.label} failed unexpectedly"),
            )
        _check(token)

        tracker.enter(OrchestrationState.PENDING_RESULTS_APPROVAL)
        candidates = result.candidates
        results_decision = await self._gate.request_results(
            request,
            candidates,
            token=token,
            total_count=result.total_count,
            message=ZERO_RESULTS_MESSAGE if not candidates else None,
        )
        _check(token)
        if not results_decision.approved:
            raise UserCancelled(request.call_id, stage="results")

        released = _release(candidates, results_decision.released_ids)
        tracker.enter(OrchestrationState.RELEASED)
        if not candidates:
            message = ZERO_RESULTS_MESSAGE
        elif not released:
            message = NONE_SELECTED_MESSAGE
        else:
            message = None
        LOGGER.info(
            "Tool call %s released %d of %d candidate(s) (%d total matches)",
            request.call_id,
            len(released),
            len(candidates),
            result.total_count,
        )
        return ToolOutcome.released_from(
            request,
            released,
            total_count=result.total_count,
            returned_count=result.returned_count,
            message=message,
            unavailable=result.unavailable,
        )

    async def _execute(
        self,
        executor: CapabilityExecutor,
        request: ToolRequest,
        token: CancellationToken | None,
    ) -> ExecutionResult:
        async with self._limiter.slot(token):
            _check(token)
            work = executor.run(request.params, limits=self._limits, token=token)
            timeout = self._execution_timeout
            if timeout is not None and timeout > 0:
                work = asyncio.wait_for(work, timeout=timeout)
            try:
                return await run_until_cancelled(work, token)
            except asyncio.TimeoutError as exc:
                raise ExecutionTimeoutError(
                    message=f"{request.kind.label} timed out after {timeout:g}s",
                    timeout_seconds=timeout,
                ) from exc

    def _deny(self, request: ToolRequest, tracker: _StateTracker, *, stage: str) -> ToolOutcome:
        tracker.enter(OrchestrationState.DENIED)
        LOGGER.info("Tool call %s denied at %s gate", request.call_id, stage)
        self._notifier.warning(f"Tool execution cancelled: {request.kind.value}")
        return ToolOutcome.cancelled(request.call_id, request.kind)

    def _fail(self, request: ToolRequest, tracker: _StateTracker, exc: ExecutionError) -> ToolOutcome:
        tracker.enter(OrchestrationState.FAILED)
        message = exc.sanitized_message(secrets=self._secrets)
        LOGGER.warning("Tool call %s failed [%s]: %s", request.call_id, exc.kind, message)
        self._notifier.error(f"{request.kind.label} failed: {message}")
        return ToolOutcome.failed(
            request.call_id,
            request.kind,
            error_code=exc.kind,
            message=message,
            failure=exc.to_dict(secrets=self._secrets),
        )


def _check(token: CancellationToken | None) -> None:
    if token is not None:
        token.raise_if_cancelled()


def _release(candidates: Sequence[CandidateResult], released_ids: frozenset[str]) -> tuple[CandidateResult, ...]:
    return tuple(candidate for candidate in candidates if candidate.id in released_ids)
