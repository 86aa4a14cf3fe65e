"""Tests for the multi-round turn coordinator.

Tests cover:
- Text-only turns stream into the document and finish DONE
- Tool rounds feed tool messages back into the history
- Round limit and duplicate call id protocol failures
- Cancellation mid-stream and mid-approval
- Model error reporting with secrets scrubbed
- The single active turn slot
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from vaultchat.ai.orchestration.approval import ApprovalGate
from vaultchat.ai.orchestration.coordinator import TurnConfig, TurnCoordinator, TurnSlot, describe_model_error
from vaultchat.ai.orchestration.errors import (
    ModelCallError,
    ProtocolViolationError,
    RoundLimitExceeded,
    TurnInProgressError,
)
from vaultchat.ai.orchestration.tool_orchestrator import ToolOrchestrator
from vaultchat.ai.orchestration.types import Message, TurnState
from vaultchat.ai.tools.registry import CapabilityRegistry
from vaultchat.editor.document import TextDocument

from tests.helpers import (
    FakeExecutor,
    RecordingNotifier,
    ScriptedApprovalUI,
    ScriptedModelClient,
    text_events,
    tool_call_events,
)


MESSAGES = [Message.system("You are helpful."), Message.user("What do my notes say about tomatoes?")]


def _coordinator(client, orchestrator, notifier=None, **config) -> TurnCoordinator:
    config.setdefault("flush_interval", 0.01)
    return TurnCoordinator(
        client,
        orchestrator,
        config=TurnConfig(**config),
        notifier=notifier or RecordingNotifier(),
        secrets=("sk-test-secret-value",),
    )


def _document(text: str = "# Note\n") -> TextDocument:
    document = TextDocument(text=text)
    document.set_cursor(len(text))
    return document


def _search_call(call_id: str | None, index: int = 0):
    return tool_call_events("vault_search", {"query": "tomatoes"}, call_id=call_id, index=index)


class _StatusError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code} with key sk-test-secret-value")
        self.status_code = status_code


# =============================================================================
# Completed turns
# =============================================================================


@pytest.mark.asyncio
async def test_text_only_turn_streams_and_finishes(orchestrator) -> None:
    client = ScriptedModelClient([text_events("Tomatoes ", "need sun.\n", "Water daily.")])
    document = _document()

    handle = _coordinator(client, orchestrator).start(MESSAGES, document)
    result = await handle

    assert result.status is TurnState.DONE
    assert result.text == "Tomatoes need sun.\nWater daily."
    assert document.text == "# Note\nTomatoes need sun.\nWater daily."
    assert handle.states == (TurnState.AWAITING_MODEL, TurnState.STREAMING_TEXT, TurnState.DONE)
    assert client.calls[0]["tools"][0]["function"]["name"] == "vault_search"


@pytest.mark.asyncio
async def test_tool_round_appends_tool_messages_and_calls_model_again(orchestrator, executor) -> None:
    client = ScriptedModelClient([_search_call("call_1"), text_events("Found three notes.\n")])
    document = _document()

    result = await _coordinator(client, orchestrator).run(MESSAGES, document)

    assert result.status is TurnState.DONE
    assert result.rounds == 1
    assert client.call_count == 2
    assert len(executor.calls) == 1
    second = client.calls[1]["messages"]
    assert second[-2]["role"] == "assistant"
    assert second[-2]["tool_calls"][0]["id"] == "call_1"
    assert second[-1]["role"] == "tool"
    assert second[-1]["tool_call_id"] == "call_1"
    payload = json.loads(second[-1]["content"])
    assert payload["status"] == "released"
    assert [item["id"] for item in payload["results"]] == ["note-0.md", "note-1.md", "note-2.md"]
    assert document.text.endswith("Found three notes.\n")


@pytest.mark.asyncio
async def test_denied_call_is_reported_back_as_cancelled(executor) -> None:
    orchestrator = ToolOrchestrator(CapabilityRegistry([executor]), ApprovalGate(ScriptedApprovalUI(approve_execute=False)))
    client = ScriptedModelClient([_search_call("call_1"), text_events("Okay, I will not search.")])

    result = await _coordinator(client, orchestrator).run(MESSAGES, _document())

    assert result.status is TurnState.DONE
    assert executor.calls == []
    tool_message = client.calls[1]["messages"][-1]
    assert json.loads(tool_message["content"])["cancelled"] is True
    assert result.outcomes[0].status == "cancelled"


@pytest.mark.asyncio
async def test_text_before_tool_calls_is_streamed(orchestrator) -> None:
    client = ScriptedModelClient(
        [text_events("Let me look.\n") + _search_call("call_1"), text_events("Here is what I found.\n")]
    )
    document = _document()

    await _coordinator(client, orchestrator).run(MESSAGES, document)

    assert document.text == "# Note\nLet me look.\nHere is what I found.\n"


@pytest.mark.asyncio
async def test_sequential_tools_keep_call_order(orchestrator, executor) -> None:
    client = ScriptedModelClient(
        [_search_call("call_a", index=0) + _search_call("call_b", index=1), text_events("Done.")]
    )

    result = await _coordinator(client, orchestrator, concurrent_tools=False).run(MESSAGES, _document())

    assert result.status is TurnState.DONE
    assert len(executor.calls) == 2
    tool_ids = [message["tool_call_id"] for message in client.calls[1]["messages"] if message["role"] == "tool"]
    assert tool_ids == ["call_a", "call_b"]


def test_start_requires_messages(orchestrator) -> None:
    coordinator = _coordinator(ScriptedModelClient([text_events("x")]), orchestrator)

    with pytest.raises(ValueError):
        coordinator.start([], _document())


def test_negative_round_limit_is_rejected() -> None:
    with pytest.raises(ValueError):
        TurnConfig(max_rounds=-1)


# =============================================================================
# Protocol failures
# =============================================================================


@pytest.mark.asyncio
async def test_round_limit_stops_before_extra_model_call(orchestrator, executor, notifier) -> None:
    client = ScriptedModelClient([_search_call(None)])

    result = await _coordinator(client, orchestrator, notifier, max_rounds=5).run(MESSAGES, _document())

    assert result.status is TurnState.ERRORED
    assert isinstance(result.error, RoundLimitExceeded)
    assert client.call_count == 6
    assert len(executor.calls) == 5
    assert notifier.of("error") == ["Tool round limit exceeded (5 rounds allowed)"]


@pytest.mark.asyncio
async def test_zero_round_limit_rejects_first_tool_call(orchestrator, executor) -> None:
    client = ScriptedModelClient([_search_call("call_1")])

    result = await _coordinator(client, orchestrator, max_rounds=0).run(MESSAGES, _document())

    assert isinstance(result.error, RoundLimitExceeded)
    assert client.call_count == 1
    assert executor.calls == []


@pytest.mark.asyncio
async def test_call_id_reused_across_rounds_fails_turn(orchestrator, executor) -> None:
    client = ScriptedModelClient([_search_call("dup"), _search_call("dup")])

    result = await _coordinator(client, orchestrator).run(MESSAGES, _document())

    assert result.status is TurnState.ERRORED
    assert isinstance(result.error, ProtocolViolationError)
    assert client.call_count == 2
    assert len(executor.calls) == 1


@pytest.mark.asyncio
async def test_duplicate_call_id_within_round_fails_turn(orchestrator, executor) -> None:
    client = ScriptedModelClient([_search_call("dup", index=0) + _search_call("dup", index=1)])

    result = await _coordinator(client, orchestrator).run(MESSAGES, _document())

    assert isinstance(result.error, ProtocolViolationError)
    assert executor.calls == []


# =============================================================================
# Model errors
# =============================================================================


@pytest.mark.asyncio
async def test_model_error_is_written_without_secrets(orchestrator, notifier) -> None:
    client = ScriptedModelClient([RuntimeError("upstream rejected sk-test-secret-value")])
    document = _document()

    result = await _coordinator(client, orchestrator, notifier).run(MESSAGES, document)

    assert result.status is TurnState.ERRORED
    assert isinstance(result.error, ModelCallError)
    assert document.text == "# Note\nError: upstream rejected [redacted]\n"
    assert "sk-test-secret-value" not in document.text
    assert notifier.of("error") == ["Model request failed: upstream rejected [redacted]"]


@pytest.mark.asyncio
async def test_error_after_partial_text_keeps_the_text(orchestrator) -> None:
    client = ScriptedModelClient([(text_events("Partial answer\n"), _StatusError(429))])
    document = _document()

    result = await _coordinator(client, orchestrator).run(MESSAGES, document)

    assert result.status is TurnState.ERRORED
    assert result.error.status_code == 429
    assert document.text == "# Note\nPartial answer\n\n\nError: Rate limit exceeded. Please wait and try again.\n"


def test_describe_model_error_maps_transport_failures() -> None:
    request = httpx.Request("POST", "https://api.example/v1/chat/completions")

    assert describe_model_error(httpx.ReadTimeout("slow", request=request)) == "Request timed out. Please try again."
    assert describe_model_error(asyncio.TimeoutError()) == "Request timed out. Please try again."
    assert describe_model_error(httpx.ConnectError("refused", request=request)).startswith("Network error")
    assert describe_model_error(_StatusError(401)).startswith("Authentication failed")
    assert describe_model_error(ValueError()) == "ValueError"


# =============================================================================
# Cancellation
# =============================================================================


@pytest.mark.asyncio
async def test_cancel_mid_stream_stops_all_writes(orchestrator) -> None:
    client = ScriptedModelClient([text_events("line one\n", "line two\n", "line three\n")], hang_after=1)
    document = _document()

    handle = _coordinator(client, orchestrator).start(MESSAGES, document)
    await asyncio.wait_for(client.first_delta.wait(), timeout=1)
    for _ in range(100):
        if "line one" in document.text:
            break
        await asyncio.sleep(0.01)
    assert handle.cancel() is True
    result = await asyncio.wait_for(handle.wait(), timeout=1)
    snapshot = document.text
    await asyncio.sleep(0.05)

    assert result.status is TurnState.CANCELLED
    assert document.text == snapshot
    assert "line two" not in document.text
    assert client.closed == 1
    assert handle.cancel() is False


@pytest.mark.asyncio
async def test_cancel_during_approval_skips_execution(executor) -> None:
    ui = ScriptedApprovalUI(hold_execute=True)
    orchestrator = ToolOrchestrator(CapabilityRegistry([executor]), ApprovalGate(ui))
    client = ScriptedModelClient([_search_call("call_1"), text_events("never")])

    handle = _coordinator(client, orchestrator).start(MESSAGES, _document())
    await asyncio.wait_for(ui.shown.wait(), timeout=1)
    handle.cancel()
    result = await asyncio.wait_for(handle.wait(), timeout=1)

    assert result.status is TurnState.CANCELLED
    assert executor.calls == []
    assert client.call_count == 1


@pytest.mark.asyncio
async def test_turn_slot_allows_one_active_turn(orchestrator) -> None:
    client = ScriptedModelClient([text_events("thinking\n", "more\n")], hang_after=1)
    coordinator = _coordinator(client, orchestrator)
    slot = TurnSlot()

    handle = slot.start(coordinator, MESSAGES, _document())
    assert slot.busy is True
    with pytest.raises(TurnInProgressError):
        slot.start(coordinator, MESSAGES, _document())

    assert slot.stop() is True
    result = await asyncio.wait_for(handle.wait(), timeout=1)

    assert result.status is TurnState.CANCELLED
    assert slot.busy is False
    assert slot.stop() is False
