"""Standardized error types for capability executors.

Every executor failure is raised as an :class:`ExecutionError` subclass. The
orchestrator converts it into a structured ``failed`` outcome through
:meth:`ExecutionError.to_dict`: the error kind, a sanitized message, and a
suggestion the model can act on. ``details`` are never serialized.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar

from ...utils.sanitize import sanitize_error_message

__all__ = [
    "ErrorCode",
    "ExecutionError",
    "PathDeniedError",
    "FileNotFoundToolError",
    "CorpusReadError",
    "NetworkError",
    "ProviderUnavailableError",
    "InvalidParametersError",
    "UnknownToolError",
    "ExecutionTimeoutError",
]


# -----------------------------------------------------------------------------
# Error Code Constants
# -----------------------------------------------------------------------------

class ErrorCode:
    """Constants for the ``kind`` reported in failed tool outcomes."""

    PATH_DENIED = "PathDenied"
    FILE_NOT_FOUND = "FileNotFound"
    CORPUS_UNREADABLE = "CorpusUnreadable"
    NETWORK = "NetworkError"
    PROVIDER_UNAVAILABLE = "ProviderUnavailable"
    INVALID_PARAMETERS = "InvalidParameters"
    UNKNOWN_TOOL = "UnknownTool"
    TIMEOUT = "Timeout"
    INTERNAL = "InternalError"


# -----------------------------------------------------------------------------
# Base Error Class
# -----------------------------------------------------------------------------

@dataclass
class ExecutionError(Exception):
    """Base exception class for capability failures.

    Attributes:
        kind: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured error information (never sent verbatim).
        suggestion: Actionable guidance for the model.
    """

    kind: str = ErrorCode.INTERNAL
    message: str = "Tool execution failed"
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = ""

    severity: ClassVar[str] = "error"

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def sanitized_message(self, *, secrets: tuple[str | None, ...] = ()) -> str:
        return sanitize_error_message(self.message, secrets=secrets)

    def to_dict(self, *, secrets: tuple[str | None, ...] = ()) -> dict[str, Any]:
        """Serialize to the ``failed`` marker fed back to the model."""

        result: dict[str, Any] = {
            "error": self.kind,
            "message": self.sanitized_message(secrets=secrets),
        }
        if self.suggestion:
            result["suggestion"] = self.suggestion
        return result

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


# -----------------------------------------------------------------------------
# Filesystem Errors
# -----------------------------------------------------------------------------

@dataclass
class PathDeniedError(ExecutionError):
    """Raised when a requested path is absolute or escapes the permitted root."""

    kind: str = field(default=ErrorCode.PATH_DENIED)
    message: str = field(default="Path is outside the permitted vault root")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Use vault-relative paths returned by vault_search")

    path: str | None = field(default=None)

    def to_dict(self, *, secrets: tuple[str | None, ...] = ()) -> dict[str, Any]:
        result = super().to_dict(secrets=secrets)
        if self.path is not None:
            result["path"] = self.path
        return result


@dataclass
class FileNotFoundToolError(ExecutionError):
    """Raised when a requested file does not exist inside the vault."""

    kind: str = field(default=ErrorCode.FILE_NOT_FOUND)
    message: str = field(default="File not found")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Search the vault first and use one of the returned paths")

    path: str | None = field(default=None)

    def to_dict(self, *, secrets: tuple[str | None, ...] = ()) -> dict[str, Any]:
        result = super().to_dict(secrets=secrets)
        if self.path is not None:
            result["path"] = self.path
        return result


@dataclass
class CorpusReadError(ExecutionError):
    """Raised when the corpus or a file inside it cannot be read."""

    kind: str = field(default=ErrorCode.CORPUS_UNREADABLE)
    message: str = field(default="The document corpus could not be read")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="")


# -----------------------------------------------------------------------------
# Network Errors
# -----------------------------------------------------------------------------

@dataclass
class NetworkError(ExecutionError):
    """Raised when a remote search provider cannot be reached or rejects the request."""

    kind: str = field(default=ErrorCode.NETWORK)
    message: str = field(default="Web search request failed")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Try again later or answer without web results")

    status_code: int | None = field(default=None)

    def to_dict(self, *, secrets: tuple[str | None, ...] = ()) -> dict[str, Any]:
        result = super().to_dict(secrets=secrets)
        if self.status_code is not None:
            result["status_code"] = self.status_code
        return result


@dataclass
class ProviderUnavailableError(ExecutionError):
    """Raised when a capability is requested but its provider is not configured."""

    kind: str = field(default=ErrorCode.PROVIDER_UNAVAILABLE)
    message: str = field(default="Search provider is not configured")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Answer without this tool")


# -----------------------------------------------------------------------------
# Request Errors
# -----------------------------------------------------------------------------

@dataclass
class InvalidParametersError(ExecutionError):
    """Raised when tool arguments are missing or malformed."""

    kind: str = field(default=ErrorCode.INVALID_PARAMETERS)
    message: str = field(default="Invalid tool parameters")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Check the tool schema and retry with valid arguments")

    parameter: str | None = field(default=None)

    def to_dict(self, *, secrets: tuple[str | None, ...] = ()) -> dict[str, Any]:
        result = super().to_dict(secrets=secrets)
        if self.parameter is not None:
            result["parameter"] = self.parameter
        return result


@dataclass
class UnknownToolError(ExecutionError):
    """Raised when the model names a tool that is not registered."""

    kind: str = field(default=ErrorCode.UNKNOWN_TOOL)
    message: str = field(default="Unknown tool")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Only call the tools listed in the request")

    tool_name: str | None = field(default=None)

    def to_dict(self, *, secrets: tuple[str | None, ...] = ()) -> dict[str, Any]:
        result = super().to_dict(secrets=secrets)
        if self.tool_name is not None:
            result["tool"] = self.tool_name
        return result


@dataclass
class ExecutionTimeoutError(ExecutionError):
    """Raised when an executor exceeds its time budget."""

    kind: str = field(default=ErrorCode.TIMEOUT)
    message: str = field(default="Tool execution timed out")
    details: dict[str, Any] = field(default_factory=dict)
    suggestion: str = field(default="Retry with a narrower request")

    timeout_seconds: float | None = field(default=None)
