"""Tests for the approval gate and its resolve-once slots."""

from __future__ import annotations

import asyncio

import pytest

from vaultchat.ai.orchestration.approval import ApprovalGate, ExecutePrompt, PendingApproval, ResultsPrompt
from vaultchat.ai.orchestration.cancellation import CancellationToken
from vaultchat.ai.orchestration.types import (
    ExecuteApprovalDecision,
    ResultsApprovalDecision,
    ToolKind,
    ToolRequest,
)

from tests.helpers import ScriptedApprovalUI, make_candidates


def _request(call_id: str = "call_1") -> ToolRequest:
    return ToolRequest(call_id=call_id, kind=ToolKind.CORPUS_SEARCH, params={"query": "tomatoes"})


class _FailingUI:
    async def present_execute(self, prompt: ExecutePrompt) -> ExecuteApprovalDecision | None:
        raise RuntimeError("surface crashed")

    async def present_results(self, prompt: ResultsPrompt) -> ResultsApprovalDecision | None:
        raise RuntimeError("surface crashed")


class _DirectResolveUI:
    """Resolves through the prompt slot and then tries a second, conflicting answer."""

    def __init__(self) -> None:
        self.second_attempt: bool | None = None

    async def present_execute(self, prompt: ExecutePrompt) -> ExecuteApprovalDecision | None:
        prompt.approve()
        self.second_attempt = prompt.deny()
        return ExecuteApprovalDecision.deny()

    async def present_results(self, prompt: ResultsPrompt) -> ResultsApprovalDecision | None:
        prompt.selector.deselect_all()
        prompt.selector.set(prompt.candidates[1].id, True)
        prompt.approve_selected()
        return None


@pytest.mark.asyncio
async def test_pending_approval_resolves_once() -> None:
    pending: PendingApproval[ExecuteApprovalDecision] = PendingApproval(ExecuteApprovalDecision.deny())

    assert pending.resolve(ExecuteApprovalDecision.approve()) is True
    assert pending.cancel() is False
    assert pending.resolve(ExecuteApprovalDecision.deny()) is False
    assert (await pending.wait()).approved is True


@pytest.mark.asyncio
async def test_close_resolves_as_denial() -> None:
    pending: PendingApproval[ResultsApprovalDecision] = PendingApproval(ResultsApprovalDecision.deny())

    pending.close()

    decision = await pending.wait()
    assert decision.approved is False
    assert decision.released_ids == frozenset()


@pytest.mark.asyncio
async def test_execute_gate_returns_ui_decision() -> None:
    ui = ScriptedApprovalUI(approve_execute=True)
    gate = ApprovalGate(ui)

    decision = await gate.request_execute(_request())

    assert decision.approved is True
    assert gate.presented_count == 1
    assert ui.execute_prompts[0].description == "Vault search (query: tomatoes)"


@pytest.mark.asyncio
async def test_dismissed_prompt_is_a_denial() -> None:
    gate = ApprovalGate(ScriptedApprovalUI(approve_execute=None))

    decision = await gate.request_execute(_request())

    assert decision.approved is False


@pytest.mark.asyncio
async def test_ui_failure_is_a_denial() -> None:
    gate = ApprovalGate(_FailingUI())

    execute = await gate.request_execute(_request())
    results = await gate.request_results(_request(), make_candidates(2))

    assert execute.approved is False
    assert results.approved is False


@pytest.mark.asyncio
async def test_first_resolution_wins() -> None:
    ui = _DirectResolveUI()
    gate = ApprovalGate(ui)

    decision = await gate.request_execute(_request())

    assert decision.approved is True
    assert ui.second_attempt is False


@pytest.mark.asyncio
async def test_results_gate_releases_selector_choice() -> None:
    gate = ApprovalGate(_DirectResolveUI())

    decision = await gate.request_results(_request(), make_candidates(3))

    assert decision.approved is True
    assert decision.released_ids == frozenset({"note-1.md"})


@pytest.mark.asyncio
async def test_results_gate_drops_unknown_ids() -> None:
    gate = ApprovalGate(ScriptedApprovalUI(release=["note-0.md", "../../etc/passwd"]))

    decision = await gate.request_results(_request(), make_candidates(2))

    assert decision.released_ids == frozenset({"note-0.md"})


@pytest.mark.asyncio
async def test_results_prompt_carries_counts_and_message() -> None:
    ui = ScriptedApprovalUI()
    gate = ApprovalGate(ui)

    await gate.request_results(_request(), [], total_count=0, message="No results found.")

    prompt = ui.results_prompts[0]
    assert prompt.is_empty
    assert prompt.message == "No results found."
    assert prompt.total_count == 0


@pytest.mark.asyncio
async def test_timeout_resolves_as_denial() -> None:
    gate = ApprovalGate(ScriptedApprovalUI(hold_execute=True), timeout=0.05)

    decision = await gate.request_execute(_request())

    assert decision.approved is False


@pytest.mark.asyncio
async def test_token_cancellation_unblocks_pending_gate() -> None:
    ui = ScriptedApprovalUI(hold_results=True)
    gate = ApprovalGate(ui)
    token = CancellationToken()

    waiter = asyncio.create_task(gate.request_results(_request(), make_candidates(2), token=token))
    await asyncio.wait_for(ui.shown.wait(), timeout=1)
    token.cancel("stopped")
    decision = await asyncio.wait_for(waiter, timeout=1)

    assert decision.approved is False
    assert decision.released_ids == frozenset()


@pytest.mark.asyncio
async def test_cancelled_token_skips_the_ui() -> None:
    ui = ScriptedApprovalUI()
    gate = ApprovalGate(ui)
    token = CancellationToken()
    token.cancel()

    decision = await gate.request_execute(_request(), token=token)

    assert decision.approved is False
    assert ui.execute_prompts == []
    assert gate.presented_count == 0
