"""Core type definitions for the tool approval pipeline.

This module defines the immutable dataclasses that flow between the turn
coordinator, the tool orchestrator, the approval gate and the executors. All
request/decision/outcome types are frozen so they can be shared safely across
concurrently running orchestrations.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Literal, Mapping, Sequence

from openai.types.chat import ChatCompletionMessageParam

__all__ = [
    # Model interaction types
    "Message",
    "ParsedToolCall",
    "ModelResponse",
    # Tool pipeline types
    "ToolKind",
    "ToolRequest",
    "CandidateResult",
    "ExecuteApprovalDecision",
    "ResultsApprovalDecision",
    "OutcomeStatus",
    "ToolOutcome",
    # State machines
    "OrchestrationState",
    "TurnState",
    "TurnResult",
]


# -----------------------------------------------------------------------------
# Message Type
# -----------------------------------------------------------------------------

MessageRole = Literal["system", "user", "assistant", "tool"]


@dataclass(slots=True, frozen=True)
class Message:
    """Immutable chat message exchanged with the model.

    Attributes:
        role: The role of the message sender.
        content: The text content of the message.
        name: Optional name for tool messages.
        tool_call_id: ID linking a tool result to its call.
        tool_calls: Tool calls made by the assistant.
    """

    role: MessageRole
    content: str
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: tuple[Mapping[str, Any], ...] | None = None

    def to_chat_param(self) -> ChatCompletionMessageParam:
        """Convert to OpenAI's ChatCompletionMessageParam format."""
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name is not None:
            payload["name"] = self.name
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.tool_calls is not None:
            payload["tool_calls"] = [dict(call) for call in self.tool_calls]
        return payload  # type: ignore[return-value]

    @classmethod
    def from_chat_param(cls, param: Mapping[str, Any]) -> Message:
        """Create a Message from OpenAI's ChatCompletionMessageParam format."""
        tool_calls = param.get("tool_calls")
        if tool_calls is not None:
            tool_calls = tuple(tool_calls)
        return cls(
            role=param.get("role", "user"),  # type: ignore[arg-type]
            content=str(param.get("content") or ""),
            name=param.get("name"),
            tool_call_id=param.get("tool_call_id"),
            tool_calls=tool_calls,
        )

    @classmethod
    def system(cls, content: str) -> Message:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(role="user", content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: Sequence[Mapping[str, Any]] | None = None) -> Message:
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
        )

    @classmethod
    def tool(cls, content: str, tool_call_id: str, name: str | None = None) -> Message:
        return cls(role="tool", content=content, tool_call_id=tool_call_id, name=name)


@dataclass(slots=True, frozen=True)
class ParsedToolCall:
    """A tool call reconstructed from the model's streamed response.

    Attributes:
        call_id: Unique identifier for this call.
        name: Name of the tool to call.
        arguments: Arguments as a JSON string.
        index: Position in the tool_calls array.
    """

    call_id: str
    name: str
    arguments: str
    index: int = 0

    def to_chat_param(self) -> dict[str, Any]:
        return {
            "id": self.call_id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments or "{}"},
        }


@dataclass(slots=True, frozen=True)
class ModelResponse:
    """Aggregated response of one model call."""

    text: str
    tool_calls: tuple[ParsedToolCall, ...] = ()
    finish_reason: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    def to_message(self) -> Message:
        """Assistant message echoing this response back into the history."""
        calls = [call.to_chat_param() for call in self.tool_calls]
        return Message.assistant(self.text, tool_calls=calls or None)


# -----------------------------------------------------------------------------
# Tool Requests and Results
# -----------------------------------------------------------------------------


class ToolKind(str, Enum):
    """The fixed set of capabilities the model may request."""

    CORPUS_SEARCH = "vault_search"
    WEB_SEARCH = "web_search"
    FILE_READ = "file_read"

    @classmethod
    def from_name(cls, name: str) -> ToolKind:
        """Resolve a tool function name; raises ``ValueError`` when unknown."""
        return cls((name or "").strip())

    @property
    def label(self) -> str:
        return _KIND_LABELS[self]


_KIND_LABELS = {
    ToolKind.CORPUS_SEARCH: "Vault search",
    ToolKind.WEB_SEARCH: "Web search",
    ToolKind.FILE_READ: "File read",
}


@dataclass(slots=True, frozen=True)
class ToolRequest:
    """A tool call emitted by the model, consumed exactly once by an orchestrator."""

    call_id: str
    kind: ToolKind
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.call_id:
            raise ValueError("ToolRequest requires a call_id")
        frozen = MappingProxyType(copy.deepcopy(dict(self.params)))
        object.__setattr__(self, "params", frozen)

    def describe(self) -> str:
        """Human-readable summary shown on the execute gate."""
        parts = []
        for key, value in self.params.items():
            if isinstance(value, (list, tuple)):
                rendered = ", ".join(str(item) for item in value)
            else:
                rendered = str(value)
            parts.append(f"{key}: {rendered}")
        summary = "; ".join(parts) if parts else "no parameters"
        return f"{self.kind.label} ({summary})"


@dataclass(slots=True, frozen=True)
class CandidateResult:
    """One item produced by an executor, shown to the user before release.

    Attributes:
        id: Path or URL, unique within one call's result set.
        title: Basename or page title.
        preview: Bounded excerpt for the approval UI; never sent to the model.
        raw: Full payload; serialized toward the model only once released.
        kind: Tool kind that produced the candidate.
    """

    id: str
    title: str
    preview: str
    raw: Mapping[str, Any]
    kind: ToolKind

    def __post_init__(self) -> None:
        object.__setattr__(self, "raw", MappingProxyType(dict(self.raw)))

    def release_payload(self) -> dict[str, Any]:
        """Payload sent to the model: the raw record tagged with its id."""
        payload = {"id": self.id}
        payload.update(copy.deepcopy(dict(self.raw)))
        return payload


# -----------------------------------------------------------------------------
# Decisions
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ExecuteApprovalDecision:
    """Whether a tool may run at all."""

    approved: bool

    @classmethod
    def approve(cls) -> ExecuteApprovalDecision:
        return cls(approved=True)

    @classmethod
    def deny(cls) -> ExecuteApprovalDecision:
        return cls(approved=False)


@dataclass(slots=True, frozen=True)
class ResultsApprovalDecision:
    """Which candidates may be released; a denial never carries ids."""

    approved: bool
    released_ids: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        ids = frozenset(self.released_ids) if self.approved else frozenset()
        object.__setattr__(self, "released_ids", ids)

    @classmethod
    def approve(cls, released_ids: Iterable[str]) -> ResultsApprovalDecision:
        return cls(approved=True, released_ids=frozenset(released_ids))

    @classmethod
    def deny(cls) -> ResultsApprovalDecision:
        return cls(approved=False)


# -----------------------------------------------------------------------------
# Outcomes
# -----------------------------------------------------------------------------

OutcomeStatus = Literal["released", "cancelled", "failed"]

CANCELLED_MESSAGE = "Tool call cancelled by user."


@dataclass(slots=True, frozen=True)
class ToolOutcome:
    """The only artifact of a tool call that crosses the trust boundary."""

    call_id: str
    kind: ToolKind | None
    status: OutcomeStatus
    released: tuple[CandidateResult, ...] = ()
    error_code: str | None = None
    message: str | None = None
    total_count: int = 0
    returned_count: int = 0
    failure: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    unavailable: tuple[Mapping[str, str], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "failure", MappingProxyType(dict(self.failure)))
        object.__setattr__(
            self, "unavailable", tuple(MappingProxyType(dict(item)) for item in self.unavailable)
        )

    @classmethod
    def released_from(
        cls,
        request: ToolRequest,
        released: Sequence[CandidateResult],
        *,
        total_count: int,
        returned_count: int,
        message: str | None = None,
        unavailable: Iterable[Mapping[str, str]] = (),
    ) -> ToolOutcome:
        return cls(
            call_id=request.call_id,
            kind=request.kind,
            status="released",
            released=tuple(released),
            message=message,
            total_count=total_count,
            returned_count=returned_count,
            unavailable=tuple(unavailable),
        )

    @classmethod
    def cancelled(cls, call_id: str, kind: ToolKind | None = None) -> ToolOutcome:
        return cls(call_id=call_id, kind=kind, status="cancelled", message=CANCELLED_MESSAGE)

    @classmethod
    def failed(
        cls,
        call_id: str,
        kind: ToolKind | None,
        *,
        error_code: str,
        message: str,
        failure: Mapping[str, Any] | None = None,
    ) -> ToolOutcome:
        """Failure marker; ``failure`` holds the error's serialized extras (suggestion, path...)."""
        return cls(
            call_id=call_id,
            kind=kind,
            status="failed",
            error_code=error_code,
            message=message,
            failure=failure or {},
        )

    @property
    def tool_name(self) -> str:
        return self.kind.value if self.kind is not None else "unknown"

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready payload for the ``tool`` message of this call."""
        payload: dict[str, Any] = {"call_id": self.call_id, "tool": self.tool_name, "status": self.status}
        if self.status == "released":
            payload["results"] = [candidate.release_payload() for candidate in self.released]
            payload["total_count"] = self.total_count
            payload["returned_count"] = self.returned_count
            payload["released_count"] = len(self.released)
            if self.unavailable:
                payload["unavailable"] = [dict(item) for item in self.unavailable]
            if self.message:
                payload["message"] = self.message
        elif self.status == "cancelled":
            payload["cancelled"] = True
            payload["message"] = self.message or CANCELLED_MESSAGE
        else:
            failed = dict(self.failure)
            failed["error"] = self.error_code or "InternalError"
            failed["message"] = self.message or ""
            payload["failed"] = failed
        return payload


# -----------------------------------------------------------------------------
# State Machines
# -----------------------------------------------------------------------------


class OrchestrationState(str, Enum):
    REQUESTED = "requested"
    PENDING_EXECUTE_APPROVAL = "pending_execute_approval"
    EXECUTING = "executing"
    PENDING_RESULTS_APPROVAL = "pending_results_approval"
    RELEASED = "released"
    DENIED = "denied"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_ORCHESTRATION_STATES


_TERMINAL_ORCHESTRATION_STATES = frozenset(
    {OrchestrationState.RELEASED, OrchestrationState.DENIED, OrchestrationState.FAILED}
)


class TurnState(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    STREAMING_TEXT = "streaming_text"
    HANDLING_TOOL_CALLS = "handling_tool_calls"
    DONE = "done"
    CANCELLED = "cancelled"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in (TurnState.DONE, TurnState.CANCELLED, TurnState.ERRORED)


@dataclass(slots=True, frozen=True)
class TurnResult:
    """Final record of one coordinated turn."""

    status: TurnState
    text: str = ""
    rounds: int = 0
    outcomes: tuple[ToolOutcome, ...] = ()
    error: BaseException | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is TurnState.DONE
