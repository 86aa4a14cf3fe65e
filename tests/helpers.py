"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Iterable, Mapping, Sequence

from vaultchat.ai.client import AIStreamEvent
from vaultchat.ai.orchestration.approval import ExecutePrompt, ResultsPrompt
from vaultchat.ai.orchestration.cancellation import CancellationToken
from vaultchat.ai.orchestration.types import (
    CandidateResult,
    ExecuteApprovalDecision,
    ResultsApprovalDecision,
    ToolKind,
)
from vaultchat.ai.tools.base import CapabilityExecutor, ExecutionLimits, ExecutionResult
from vaultchat.ai.tools.errors import ExecutionError


# =============================================================================
# Approval UI
# =============================================================================


class ScriptedApprovalUI:
    """Approval UI stub answering prompts from fixed policies.

    ``release`` is ``"all"`` (release whatever the selector holds), ``None``
    (deny the results gate), an iterable of ids, or a callable receiving the
    prompt and returning ids.
    """

    def __init__(
        self,
        *,
        approve_execute: bool | None = True,
        release: Any = "all",
        hold_execute: bool = False,
        hold_results: bool = False,
    ) -> None:
        self.approve_execute = approve_execute
        self.release = release
        self.hold_execute = hold_execute
        self.hold_results = hold_results
        self.execute_prompts: list[ExecutePrompt] = []
        self.results_prompts: list[ResultsPrompt] = []
        self.shown = asyncio.Event()

    async def present_execute(self, prompt: ExecutePrompt) -> ExecuteApprovalDecision | None:
        self.execute_prompts.append(prompt)
        self.shown.set()
        if self.hold_execute:
            await asyncio.Event().wait()
        if self.approve_execute is None:
            return None
        return ExecuteApprovalDecision(approved=self.approve_execute)

    async def present_results(self, prompt: ResultsPrompt) -> ResultsApprovalDecision | None:
        self.results_prompts.append(prompt)
        self.shown.set()
        if self.hold_results:
            await asyncio.Event().wait()
        if self.release is None:
            return ResultsApprovalDecision.deny()
        if self.release == "all":
            return ResultsApprovalDecision.approve(prompt.selector.selected_ids())
        if callable(self.release):
            return ResultsApprovalDecision.approve(self.release(prompt))
        return ResultsApprovalDecision.approve(self.release)


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def warning(self, message: str) -> None:
        self.messages.append(("warning", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    def of(self, level: str) -> list[str]:
        return [message for lvl, message in self.messages if lvl == level]


# =============================================================================
# Executors
# =============================================================================


def make_candidates(count: int, *, kind: ToolKind = ToolKind.CORPUS_SEARCH, prefix: str = "note") -> list[CandidateResult]:
    return [
        CandidateResult(
            id=f"{prefix}-{index}.md",
            title=f"{prefix.title()} {index}",
            preview=f"preview {index}",
            raw={"path": f"{prefix}-{index}.md", "content": f"secret body {index}"},
            kind=kind,
        )
        for index in range(count)
    ]


@dataclass
class FakeExecutor(CapabilityExecutor):
    """Executor returning ``count`` canned candidates and recording every call."""

    kind: ClassVar[ToolKind] = ToolKind.CORPUS_SEARCH

    count: int = 3
    error: ExecutionError | None = None
    delay: float = 0.0
    gate: asyncio.Event | None = None
    calls: list[dict[str, Any]] = field(default_factory=list)
    limits_seen: list[ExecutionLimits] = field(default_factory=list)

    async def execute(
        self,
        params: Mapping[str, Any],
        *,
        limits: ExecutionLimits,
        token: CancellationToken | None = None,
    ) -> ExecutionResult:
        self.calls.append(dict(params))
        self.limits_seen.append(limits)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        candidates = make_candidates(self.count, kind=self.kind)
        return ExecutionResult(candidates=tuple(candidates), total_count=self.count)


@dataclass
class FakeWebExecutor(FakeExecutor):
    kind: ClassVar[ToolKind] = ToolKind.WEB_SEARCH


# =============================================================================
# Model client
# =============================================================================


def text_events(*chunks: str) -> list[AIStreamEvent]:
    return [AIStreamEvent(type="content.delta", content=chunk) for chunk in chunks]


def tool_call_events(
    name: str,
    arguments: Mapping[str, Any] | str,
    *,
    call_id: str | None,
    index: int = 0,
) -> list[AIStreamEvent]:
    payload = arguments if isinstance(arguments, str) else json.dumps(arguments)
    middle = max(1, len(payload) // 2)
    return [
        AIStreamEvent(
            type="tool_calls.function.arguments.delta",
            tool_name=name,
            tool_index=index,
            arguments_delta=payload[:middle],
            tool_call_id=call_id,
        ),
        AIStreamEvent(
            type="tool_calls.function.arguments.delta",
            tool_name=name,
            tool_index=index,
            arguments_delta=payload[middle:],
        ),
        AIStreamEvent(
            type="tool_calls.function.arguments.done",
            tool_name=name,
            tool_index=index,
            tool_arguments=payload,
            tool_call_id=call_id,
        ),
    ]


class ScriptedModelClient:
    """Model client stub replaying one scripted stream per call.

    A script entry is a list of events, an exception raised before any event,
    or an ``("events", exc)`` tuple that raises after streaming the events.
    Entries past the end of the script repeat the last one.
    """

    def __init__(self, scripts: Iterable[Any], *, hang_after: int | None = None, delay: float = 0.0) -> None:
        self._scripts = list(scripts)
        self.calls: list[dict[str, Any]] = []
        self.hang_after = hang_after
        self.delay = delay
        self.closed = 0
        self.first_delta = asyncio.Event()

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def stream_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ):
        index = len(self.calls)
        self.calls.append({"messages": [dict(message) for message in messages], "tools": tools})
        script = self._scripts[min(index, len(self._scripts) - 1)]
        failure: BaseException | None = None
        if isinstance(script, BaseException):
            raise script
        if isinstance(script, tuple):
            script, failure = script
        try:
            for position, event in enumerate(script):
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield event
                if event.type == "content.delta":
                    self.first_delta.set()
                if self.hang_after is not None and position + 1 >= self.hang_after:
                    await asyncio.Event().wait()
            if failure is not None:
                raise failure
        finally:
            self.closed += 1
