"""Tests for the cancellation token and run_until_cancelled."""

from __future__ import annotations

import asyncio

import pytest

from vaultchat.ai.orchestration.cancellation import CancellationToken, run_until_cancelled
from vaultchat.ai.orchestration.errors import TransportAborted


def test_cancel_fires_callbacks_once() -> None:
    token = CancellationToken()
    reasons: list[str | None] = []
    token.add_callback(reasons.append)

    assert token.cancel("stop") is True
    assert token.cancel("again") is False

    assert reasons == ["stop"]
    assert token.reason == "stop"


def test_callback_added_after_cancel_runs_immediately() -> None:
    token = CancellationToken()
    token.cancel("late")
    reasons: list[str | None] = []

    token.add_callback(reasons.append)

    assert reasons == ["late"]


def test_unregistered_callback_does_not_run() -> None:
    token = CancellationToken()
    reasons: list[str | None] = []
    remove = token.add_callback(reasons.append)

    remove()
    token.cancel()

    assert reasons == []


def test_raise_if_cancelled() -> None:
    token = CancellationToken()
    token.raise_if_cancelled()
    token.cancel("user")

    with pytest.raises(TransportAborted):
        token.raise_if_cancelled()


@pytest.mark.asyncio
async def test_wait_returns_reason() -> None:
    token = CancellationToken()

    waiter = asyncio.create_task(token.wait())
    await asyncio.sleep(0)
    token.cancel("done")

    assert await asyncio.wait_for(waiter, timeout=1) == "done"


@pytest.mark.asyncio
async def test_run_until_cancelled_returns_result() -> None:
    async def work() -> int:
        await asyncio.sleep(0)
        return 42

    assert await run_until_cancelled(work(), CancellationToken()) == 42
    assert await run_until_cancelled(work(), None) == 42


@pytest.mark.asyncio
async def test_run_until_cancelled_aborts_inner_task() -> None:
    token = CancellationToken()
    cleaned_up = asyncio.Event()

    async def work() -> None:
        try:
            await asyncio.Event().wait()
        finally:
            cleaned_up.set()

    runner = asyncio.create_task(run_until_cancelled(work(), token))
    await asyncio.sleep(0.01)
    token.cancel("user")

    with pytest.raises(TransportAborted):
        await asyncio.wait_for(runner, timeout=1)
    assert cleaned_up.is_set()


@pytest.mark.asyncio
async def test_run_until_cancelled_propagates_errors() -> None:
    async def work() -> None:
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        await run_until_cancelled(work(), CancellationToken())
