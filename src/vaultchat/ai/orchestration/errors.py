"""Turn-level exceptions raised by the orchestration layer."""

from __future__ import annotations

__all__ = [
    "OrchestrationError",
    "UserCancelled",
    "TransportAborted",
    "RoundLimitExceeded",
    "ProtocolViolationError",
    "ModelCallError",
    "TurnInProgressError",
]


class OrchestrationError(Exception):
    """Base class for errors raised while driving a chat turn."""


class UserCancelled(OrchestrationError):
    """Raised when the user denies an approval gate.

    Denials are an expected path and are never logged as errors.
    """

    def __init__(self, call_id: str, *, stage: str) -> None:
        self.call_id = call_id
        self.stage = stage
        super().__init__(f"Tool call '{call_id}' denied at the {stage} gate")


class TransportAborted(OrchestrationError):
    """Raised at a suspension point once the turn's cancellation token fired."""

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or "Operation aborted")
        self.reason = reason


class RoundLimitExceeded(OrchestrationError):
    """Raised when the model keeps requesting tools past the configured round limit."""

    def __init__(self, limit: int, *, rounds: int | None = None) -> None:
        self.limit = limit
        self.rounds = rounds if rounds is not None else limit + 1
        super().__init__(f"Tool round limit exceeded ({limit} rounds allowed)")


class ProtocolViolationError(OrchestrationError):
    """Raised when the model reuses a tool call id that was resolved in an earlier round."""

    def __init__(self, call_id: str) -> None:
        self.call_id = call_id
        super().__init__(f"Tool call id '{call_id}' was already resolved in a previous round")


class ModelCallError(OrchestrationError):
    """Wraps a failure of the model request itself; the message is already sanitized."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TurnInProgressError(OrchestrationError):
    """Raised when a new turn is started while another one is still active."""
