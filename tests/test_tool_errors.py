"""Tests for the executor error types."""

from __future__ import annotations

import pytest

from vaultchat.ai.tools.errors import (
    CorpusReadError,
    ErrorCode,
    ExecutionError,
    ExecutionTimeoutError,
    FileNotFoundToolError,
    InvalidParametersError,
    NetworkError,
    PathDeniedError,
    ProviderUnavailableError,
    UnknownToolError,
)


class TestErrorCode:
    """Tests for ErrorCode constants."""

    def test_kinds_reported_to_the_model(self) -> None:
        assert ErrorCode.PATH_DENIED == "PathDenied"
        assert ErrorCode.NETWORK == "NetworkError"
        assert ErrorCode.CORPUS_UNREADABLE == "CorpusUnreadable"
        assert ErrorCode.INTERNAL == "InternalError"


class TestExecutionError:
    """Tests for the base ExecutionError class."""

    def test_defaults(self) -> None:
        error = ExecutionError()

        assert error.kind == ErrorCode.INTERNAL
        assert str(error) == "[InternalError] Tool execution failed"

    def test_is_raisable(self) -> None:
        with pytest.raises(ExecutionError) as excinfo:
            raise ExecutionError(message="boom")

        assert excinfo.value.message == "boom"

    def test_to_dict_sanitizes_message(self) -> None:
        error = ExecutionError(message="GET https://x.example/?api_key=abc123 returned 500 (token sk-abcdefghijkl)")

        payload = error.to_dict(secrets=("abc123",))

        assert "abc123" not in payload["message"]
        assert "sk-abcdefghijkl" not in payload["message"]
        assert payload["error"] == ErrorCode.INTERNAL

    def test_details_are_never_serialized(self) -> None:
        error = ExecutionError(message="failed", details={"raw": "secret body"})

        assert "details" not in error.to_dict()


class TestSpecificErrors:
    """Each subclass carries its own kind plus optional context fields."""

    @pytest.mark.parametrize(
        ("error", "kind"),
        [
            (PathDeniedError(), ErrorCode.PATH_DENIED),
            (FileNotFoundToolError(), ErrorCode.FILE_NOT_FOUND),
            (CorpusReadError(), ErrorCode.CORPUS_UNREADABLE),
            (NetworkError(), ErrorCode.NETWORK),
            (ProviderUnavailableError(), ErrorCode.PROVIDER_UNAVAILABLE),
            (InvalidParametersError(), ErrorCode.INVALID_PARAMETERS),
            (UnknownToolError(), ErrorCode.UNKNOWN_TOOL),
            (ExecutionTimeoutError(), ErrorCode.TIMEOUT),
        ],
    )
    def test_kind(self, error: ExecutionError, kind: str) -> None:
        assert error.kind == kind
        assert isinstance(error, ExecutionError)

    def test_path_denied_includes_path(self) -> None:
        payload = PathDeniedError(path="../../etc/passwd").to_dict()

        assert payload["path"] == "../../etc/passwd"
        assert payload["suggestion"]

    def test_network_error_includes_status(self) -> None:
        assert NetworkError(status_code=503).to_dict()["status_code"] == 503
        assert "status_code" not in NetworkError().to_dict()

    def test_invalid_parameters_names_parameter(self) -> None:
        assert InvalidParametersError(parameter="query").to_dict()["parameter"] == "query"

    def test_unknown_tool_names_tool(self) -> None:
        assert UnknownToolError(tool_name="shell_exec").to_dict()["tool"] == "shell_exec"
