"""Tests for the terminal approval prompts and notifications."""

from __future__ import annotations

import asyncio
import io
import queue
from typing import Iterable

import pytest

from vaultchat.ai.orchestration.approval import ApprovalGate
from vaultchat.ai.orchestration.types import ToolKind, ToolRequest
from vaultchat.console import ConsoleApprovalUI, ConsoleNotificationService

from tests.helpers import make_candidates


class _Answers:
    """Feeds scripted answers to ``input``; raises EOFError when exhausted."""

    def __init__(self, answers: Iterable[str]) -> None:
        self._answers = list(answers)
        self.prompts: list[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self._answers:
            raise EOFError
        return self._answers.pop(0)


def _gate(*answers: str) -> tuple[ApprovalGate, io.StringIO]:
    output = io.StringIO()
    return ApprovalGate(ConsoleApprovalUI(input_func=_Answers(answers), output=output)), output


def _request() -> ToolRequest:
    return ToolRequest(call_id="call_1", kind=ToolKind.CORPUS_SEARCH, params={"query": "tomatoes"})


@pytest.mark.asyncio
@pytest.mark.parametrize(("answer", "approved"), [("y", True), ("YES", True), ("n", False), ("", False), ("c", False)])
async def test_execute_prompt_answers(answer: str, approved: bool) -> None:
    gate, output = _gate(answer)

    decision = await gate.request_execute(_request())

    assert decision.approved is approved
    assert "Vault search (query: tomatoes)" in output.getvalue()


@pytest.mark.asyncio
async def test_execute_prompt_repeats_on_unknown_answer() -> None:
    gate, output = _gate("maybe", "y")

    decision = await gate.request_execute(_request())

    assert decision.approved is True
    assert "Please answer 'y' or 'n'." in output.getvalue()


@pytest.mark.asyncio
async def test_closed_stdin_denies() -> None:
    gate, _output = _gate()

    assert (await gate.request_execute(_request())).approved is False
    assert (await gate.request_results(_request(), make_candidates(2))).approved is False


@pytest.mark.asyncio
async def test_results_prompt_releases_everything_by_default() -> None:
    gate, output = _gate("")

    decision = await gate.request_results(_request(), make_candidates(3))

    assert decision.released_ids == frozenset({"note-0.md", "note-1.md", "note-2.md"})
    assert "[x] 1. Note 0" in output.getvalue()


@pytest.mark.asyncio
async def test_results_prompt_toggles_numbers() -> None:
    gate, _output = _gate("1 3", "y")

    decision = await gate.request_results(_request(), make_candidates(3))

    assert decision.released_ids == frozenset({"note-1.md"})


@pytest.mark.asyncio
async def test_results_prompt_none_then_all() -> None:
    gate, _output = _gate("n", "2", "")

    decision = await gate.request_results(_request(), make_candidates(3))

    assert decision.released_ids == frozenset({"note-1.md"})


@pytest.mark.asyncio
async def test_results_prompt_rejects_out_of_range_numbers() -> None:
    gate, output = _gate("9", "a", "y")

    decision = await gate.request_results(_request(), make_candidates(2))

    assert decision.released_ids == frozenset({"note-0.md", "note-1.md"})
    assert "Commands:" in output.getvalue()


@pytest.mark.asyncio
async def test_results_prompt_cancel_denies() -> None:
    gate, _output = _gate("c")

    decision = await gate.request_results(_request(), make_candidates(2))

    assert decision.approved is False
    assert decision.released_ids == frozenset()


@pytest.mark.asyncio
async def test_empty_results_show_message_and_continue() -> None:
    gate, output = _gate("")

    decision = await gate.request_results(_request(), [], total_count=0, message="No results found.")

    assert decision.approved is True
    assert decision.released_ids == frozenset()
    assert "No results found." in output.getvalue()


@pytest.mark.asyncio
async def test_truncated_results_show_match_count() -> None:
    gate, output = _gate("")

    await gate.request_results(_request(), make_candidates(2), total_count=15)

    assert "Showing 2 of 15 matches." in output.getvalue()


class _QueuedAnswers:
    """Blocks like a terminal until the test supplies a line."""

    def __init__(self) -> None:
        self.lines: queue.Queue[str] = queue.Queue()
        self.prompts: list[str] = []

    def __call__(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.lines.get(timeout=5)


@pytest.mark.asyncio
async def test_answer_after_timed_out_prompt_reaches_the_next_prompt() -> None:
    answers = _QueuedAnswers()
    output = io.StringIO()
    ui = ConsoleApprovalUI(input_func=answers, output=output)

    first = await ApprovalGate(ui, timeout=0.1).request_execute(_request())
    assert first.approved is False

    second_request = ToolRequest(call_id="call_2", kind=ToolKind.WEB_SEARCH, params={"query": "weather"})
    second = asyncio.create_task(ApprovalGate(ui).request_execute(second_request))
    await asyncio.sleep(0.05)
    answers.lines.put("y")

    decision = await asyncio.wait_for(second, timeout=2)

    assert decision.approved is True
    assert len(answers.prompts) == 1
    assert "Web search (query: weather)" in output.getvalue()
    assert output.getvalue().count("Allow? [y]es / [n]o: ") == 1


@pytest.mark.asyncio
async def test_answer_typed_between_prompts_is_discarded() -> None:
    answers = _QueuedAnswers()
    ui = ConsoleApprovalUI(input_func=answers, output=io.StringIO())

    assert (await ApprovalGate(ui, timeout=0.1).request_execute(_request())).approved is False
    answers.lines.put("y")
    await asyncio.sleep(0.1)

    second = asyncio.create_task(ApprovalGate(ui).request_execute(_request()))
    await asyncio.sleep(0.05)
    answers.lines.put("n")

    assert (await asyncio.wait_for(second, timeout=2)).approved is False
    assert len(answers.prompts) == 2


def test_notification_service_writes_level_prefix() -> None:
    stream = io.StringIO()
    service = ConsoleNotificationService(stream)

    service.warning("Tool execution cancelled: vault_search")
    service.error("Model request failed")

    assert stream.getvalue() == "[warning] Tool execution cancelled: vault_search\n[error] Model request failed\n"
