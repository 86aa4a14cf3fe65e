"""Multi-round turn driver.

A turn alternates between model calls and tool rounds until the model answers
with text only, the round limit trips, the model call fails, or the user stops
the turn through its :class:`TurnHandle`.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

import httpx
from openai import APIConnectionError, APITimeoutError

from ...editor.document import EditorAdapter
from ...services.notifications import LoggingNotificationService, NotificationService
from ...utils.sanitize import http_error_message, sanitize_error_message
from .cancellation import CancellationToken, run_until_cancelled
from .errors import (
    ModelCallError,
    ProtocolViolationError,
    RoundLimitExceeded,
    TransportAborted,
    TurnInProgressError,
)
from .model_events import ModelClient, TextDelta, ToolCallRequest, normalize_stream
from .streaming import DEFAULT_FLUSH_INTERVAL, MAX_BUFFER_SIZE, InsertMode, StreamingResponseSink
from .tool_orchestrator import OrchestrationRecord, ToolOrchestrator
from .types import Message, ModelResponse, ParsedToolCall, ToolOutcome, TurnResult, TurnState

__all__ = ["TurnConfig", "TurnHandle", "TurnCoordinator", "TurnSlot", "describe_model_error"]

LOGGER = logging.getLogger(__name__)

STOP_REASON = "stopped by user"


@dataclass(slots=True, frozen=True)
class TurnConfig:
    """Per-turn limits and streaming behaviour."""

    max_rounds: int = 8
    insert_mode: InsertMode = InsertMode.TRACKED
    flush_interval: float = DEFAULT_FLUSH_INTERVAL
    max_buffer: int = MAX_BUFFER_SIZE
    concurrent_tools: bool = True
    temperature: float | None = 0.2

    def __post_init__(self) -> None:
        if self.max_rounds < 0:
            raise ValueError("max_rounds must not be negative")
        object.__setattr__(self, "insert_mode", InsertMode.coerce(self.insert_mode))


# -----------------------------------------------------------------------------
# Handle
# -----------------------------------------------------------------------------


class TurnHandle:
    """Reference to one running turn; the stop command holds this, not a global."""

    def __init__(self, turn_id: str, token: CancellationToken, run: _TurnRun, task: asyncio.Task[TurnResult]) -> None:
        self.turn_id = turn_id
        self.token = token
        self._run = run
        self._task = task

    @property
    def state(self) -> TurnState:
        return self._run.state

    @property
    def states(self) -> tuple[TurnState, ...]:
        return tuple(self._run.states)

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self, reason: str = STOP_REASON) -> bool:
        """Request cooperative cancellation; returns ``False`` if already stopping or done."""

        if self._task.done():
            return False
        LOGGER.info("Turn %s cancellation requested: %s", self.turn_id, reason)
        return self.token.cancel(reason)

    async def wait(self) -> TurnResult:
        return await asyncio.shield(self._task)

    def __await__(self):
        return self.wait().__await__()

    def add_done_callback(self, callback: Callable[[TurnHandle], None]) -> None:
        self._task.add_done_callback(lambda _task: callback(self))

    async def aclose(self) -> None:
        """Cancel the turn and wait until it has fully unwound."""

        self.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task


# -----------------------------------------------------------------------------
# Coordinator
# -----------------------------------------------------------------------------


class TurnCoordinator:
    """Starts turns that route model tool calls through the tool orchestrator."""

    def __init__(
        self,
        client: ModelClient,
        orchestrator: ToolOrchestrator,
        *,
        config: TurnConfig | None = None,
        notifier: NotificationService | None = None,
        secrets: Sequence[str | None] = (),
    ) -> None:
        self._client = client
        self._orchestrator = orchestrator
        self._config = config or TurnConfig()
        self._notifier = notifier or LoggingNotificationService()
        self._secrets = tuple(secrets)

    @property
    def config(self) -> TurnConfig:
        return self._config

    def start(
        self,
        messages: Sequence[Message | Mapping[str, Any]],
        editor: EditorAdapter,
        *,
        position: int | None = None,
    ) -> TurnHandle:
        """Schedule a turn on the running loop and return its handle."""

        turn_id = uuid.uuid4().hex[:12]
        token = CancellationToken()
        history = [message if isinstance(message, Message) else Message.from_chat_param(message) for message in messages]
        if not history:
            raise ValueError("At least one message is required to start a turn")
        run = _TurnRun(
            turn_id=turn_id,
            client=self._client,
            orchestrator=self._orchestrator,
            config=self._config,
            notifier=self._notifier,
            secrets=self._secrets,
            token=token,
            editor=editor,
            history=history,
            position=editor.get_cursor() if position is None else position,
        )
        task = asyncio.create_task(run.execute(), name=f"vaultchat-turn-{turn_id}")
        return TurnHandle(turn_id, token, run, task)

    async def run(
        self,
        messages: Sequence[Message | Mapping[str, Any]],
        editor: EditorAdapter,
        *,
        position: int | None = None,
    ) -> TurnResult:
        return await self.start(messages, editor, position=position).wait()


@dataclass(slots=True)
class _TurnRun:
    turn_id: str
    client: ModelClient
    orchestrator: ToolOrchestrator
    config: TurnConfig
    notifier: NotificationService
    secrets: tuple[str | None, ...]
    token: CancellationToken
    editor: EditorAdapter
    history: list[Message]
    position: int
    states: list[TurnState] = field(default_factory=list)
    texts: list[str] = field(default_factory=list)
    outcomes: list[ToolOutcome] = field(default_factory=list)
    rounds: int = 0
    resolved_ids: set[str] = field(default_factory=set)
    sink: StreamingResponseSink | None = None

    @property
    def state(self) -> TurnState:
        return self.states[-1] if self.states else TurnState.AWAITING_MODEL

    def enter(self, state: TurnState) -> None:
        if self.states and self.states[-1] is state:
            return
        self.states.append(state)
        LOGGER.debug("Turn %s -> %s", self.turn_id, state.value)

    async def execute(self) -> TurnResult:
        try:
            while True:
                self.enter(TurnState.AWAITING_MODEL)
                self.token.raise_if_cancelled()
                response = await self._call_model()
                if not response.has_tool_calls:
                    return self._finish(TurnState.DONE)

                self.rounds += 1
                if self.rounds > self.config.max_rounds:
                    raise RoundLimitExceeded(self.config.max_rounds, rounds=self.rounds)
                self._check_call_ids(response.tool_calls)
                self.enter(TurnState.HANDLING_TOOL_CALLS)
                records = await self._run_tools(response.tool_calls)
                self.token.raise_if_cancelled()
                self._append_round(response, records)
        except TransportAborted:
            return self._finish(TurnState.CANCELLED)
        except asyncio.CancelledError:
            self.token.cancel(STOP_REASON)
            self.enter(TurnState.CANCELLED)
            raise
        except (RoundLimitExceeded, ProtocolViolationError) as exc:
            LOGGER.warning("Turn %s stopped: %s", self.turn_id, exc)
            self.notifier.error(str(exc))
            return self._finish(TurnState.ERRORED, error=exc)
        except Exception as exc:
            if self.token.cancelled:
                return self._finish(TurnState.CANCELLED)
            error = ModelCallError(
                describe_model_error(exc, secrets=self.secrets),
                status_code=getattr(exc, "status_code", None),
            )
            LOGGER.error("Turn %s model call failed: %s", self.turn_id, error.message)
            self._write_error(error.message)
            self.notifier.error(f"Model request failed: {error.message}")
            return self._finish(TurnState.ERRORED, error=error)

    async def _call_model(self) -> ModelResponse:
        sink = StreamingResponseSink(
            self.editor,
            mode=self.config.insert_mode,
            position=self.position,
            flush_interval=self.config.flush_interval,
            max_buffer=self.config.max_buffer,
            token=self.token,
        )
        self.sink = sink
        tool_calls: list[ParsedToolCall] = []
        tools = self.orchestrator.registry.tool_specs()
        payload = [message.to_chat_param() for message in self.history]

        async def _text_deltas():
            events = self.client.stream_chat(payload, tools=tools or None, temperature=self.config.temperature)
            async for event in normalize_stream(events):
                if isinstance(event, TextDelta):
                    self.enter(TurnState.STREAMING_TEXT)
                    yield event.text
                elif isinstance(event, ToolCallRequest):
                    tool_calls.append(event.call)

        try:
            text = await run_until_cancelled(sink.consume(_text_deltas()), self.token)
        finally:
            self.position = sink.position
        self.token.raise_if_cancelled()
        self.texts.append(text)
        LOGGER.debug(
            "Turn %s model call returned %d chars and %d tool call(s)",
            self.turn_id,
            len(text),
            len(tool_calls),
        )
        return ModelResponse(text=text, tool_calls=tuple(tool_calls))

    def _check_call_ids(self, calls: Sequence[ParsedToolCall]) -> None:
        seen: set[str] = set()
        for call in calls:
            if call.call_id in self.resolved_ids or call.call_id in seen:
                raise ProtocolViolationError(call.call_id)
            seen.add(call.call_id)

    async def _run_tools(self, calls: Sequence[ParsedToolCall]) -> list[OrchestrationRecord]:
        LOGGER.info("Turn %s round %d: %d tool call(s)", self.turn_id, self.rounds, len(calls))
        if self.config.concurrent_tools and len(calls) > 1:
            records = await asyncio.gather(*(self.orchestrator.run_call(call, token=self.token) for call in calls))
            return list(records)
        records: list[OrchestrationRecord] = []
        for call in calls:
            records.append(await self.orchestrator.run_call(call, token=self.token))
        return records

    def _append_round(self, response: ModelResponse, records: Sequence[OrchestrationRecord]) -> None:
        by_id = {record.call_id: record for record in records}
        self.history.append(response.to_message())
        for call in response.tool_calls:
            outcome = by_id[call.call_id].outcome
            self.outcomes.append(outcome)
            self.resolved_ids.add(call.call_id)
            content = json.dumps(outcome.to_payload(), ensure_ascii=False)
            self.history.append(Message.tool(content, tool_call_id=call.call_id, name=call.name))

    def _write_error(self, message: str) -> None:
        sink = self.sink
        if sink is None or sink.cancelled:
            return
        prefix = "" if not sink.written_chars and not sink.buffered_text else "\n\n"
        sink.write_now(f"{prefix}Error: {message}\n")
        self.position = sink.position

    def _finish(self, state: TurnState, *, error: BaseException | None = None) -> TurnResult:
        self.enter(state)
        LOGGER.info(
            "Turn %s finished: %s after %d tool round(s)",
            self.turn_id,
            state.value,
            self.rounds,
        )
        return TurnResult(
            status=state,
            text="".join(self.texts),
            rounds=self.rounds,
            outcomes=tuple(self.outcomes),
            error=error,
        )


def describe_model_error(exc: BaseException, *, secrets: Sequence[str | None] = ()) -> str:
    """Return a user-safe description of a model request failure."""

    if isinstance(exc, (APITimeoutError, httpx.TimeoutException, asyncio.TimeoutError)):
        return "Request timed out. Please try again."
    if isinstance(exc, (APIConnectionError, httpx.ConnectError)):
        return "Network error. Please check your connection and try again."
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return http_error_message(status)
    message = sanitize_error_message(exc, secrets=secrets)
    return message or type(exc).__name__


# -----------------------------------------------------------------------------
# Active turn slot
# -----------------------------------------------------------------------------


class TurnSlot:
    """Holds the single active turn so a stop command can reach it."""

    def __init__(self) -> None:
        self._active: TurnHandle | None = None

    @property
    def active(self) -> TurnHandle | None:
        if self._active is not None and self._active.done:
            self._active = None
        return self._active

    @property
    def busy(self) -> bool:
        return self.active is not None

    def start(
        self,
        coordinator: TurnCoordinator,
        messages: Sequence[Message | Mapping[str, Any]],
        editor: EditorAdapter,
        *,
        position: int | None = None,
    ) -> TurnHandle:
        if self.busy:
            raise TurnInProgressError("A turn is already streaming; stop it before starting another")
        handle = coordinator.start(messages, editor, position=position)
        self._active = handle
        handle.add_done_callback(self._clear)
        return handle

    def stop(self, reason: str = STOP_REASON) -> bool:
        handle = self.active
        if handle is None:
            return False
        return handle.cancel(reason)

    def _clear(self, handle: TurnHandle) -> None:
        if self._active is handle:
            self._active = None
