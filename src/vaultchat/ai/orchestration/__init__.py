"""Approval pipeline primitives.

The tool orchestrator and turn coordinator live in
:mod:`.tool_orchestrator` and :mod:`.coordinator`; they are imported from
there directly because the tool executors depend on this package.
"""

from .approval import ApprovalGate, ApprovalUI, ExecutePrompt, PendingApproval, ResultsPrompt
from .cancellation import CancellationToken, run_until_cancelled
from .errors import (
    ModelCallError,
    OrchestrationError,
    ProtocolViolationError,
    RoundLimitExceeded,
    TransportAborted,
    TurnInProgressError,
    UserCancelled,
)
from .model_events import ModelClient, ModelEventAggregator, StreamEvent, TextDelta, ToolCallRequest
from .selector import ResultSelector
from .streaming import InsertMode, StreamingResponseSink, StreamState
from .types import (
    CandidateResult,
    ExecuteApprovalDecision,
    Message,
    ModelResponse,
    OrchestrationState,
    ParsedToolCall,
    ResultsApprovalDecision,
    ToolKind,
    ToolOutcome,
    ToolRequest,
    TurnResult,
    TurnState,
)

__all__ = [
    "ApprovalGate",
    "ApprovalUI",
    "CancellationToken",
    "CandidateResult",
    "ExecuteApprovalDecision",
    "ExecutePrompt",
    "InsertMode",
    "Message",
    "ModelCallError",
    "ModelClient",
    "ModelEventAggregator",
    "ModelResponse",
    "OrchestrationError",
    "OrchestrationState",
    "ParsedToolCall",
    "PendingApproval",
    "ProtocolViolationError",
    "ResultSelector",
    "ResultsApprovalDecision",
    "ResultsPrompt",
    "RoundLimitExceeded",
    "StreamEvent",
    "StreamState",
    "StreamingResponseSink",
    "TextDelta",
    "ToolCallRequest",
    "ToolKind",
    "ToolOutcome",
    "ToolRequest",
    "TransportAborted",
    "TurnInProgressError",
    "TurnResult",
    "TurnState",
    "UserCancelled",
    "run_until_cancelled",
]
