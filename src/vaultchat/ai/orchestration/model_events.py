"""Normalization of provider stream events into text deltas and tool call requests.

The coordinator only understands two event shapes: :class:`TextDelta` and
:class:`ToolCallRequest`. Provider adapters (the OpenAI-compatible
:class:`~vaultchat.ai.client.AIClient` here) emit :class:`StreamEvent` objects
that are folded into those shapes by :class:`ModelEventAggregator`.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, AsyncIterable, Mapping, Protocol, Sequence, Union, runtime_checkable

from .types import ModelResponse, ParsedToolCall

__all__ = [
    "StreamEvent",
    "ModelClient",
    "TextDelta",
    "ToolCallRequest",
    "ModelEvent",
    "ModelEventAggregator",
    "normalize_stream",
]


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class StreamEvent(Protocol):
    """Streaming event emitted by a model client.

    Attributes:
        type: Event type (e.g., "content.delta", "tool_calls.function.arguments.done").
        content: Text content for content events.
        tool_name: Name of the tool for tool call events.
        tool_index: Index of the tool call in the array.
        tool_arguments: Complete tool arguments (for .done events).
        arguments_delta: Incremental arguments (for .delta events).
        tool_call_id: ID of the tool call.
    """

    type: str
    content: str | None
    tool_name: str | None
    tool_index: int | None
    tool_arguments: str | None
    arguments_delta: str | None
    tool_call_id: str | None


@runtime_checkable
class ModelClient(Protocol):
    """Anything that can stream chat completions as :class:`StreamEvent` objects."""

    def stream_chat(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        tools: Sequence[Mapping[str, Any]] | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> AsyncIterator[StreamEvent]:
        ...


# -----------------------------------------------------------------------------
# Normalized events
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TextDelta:
    text: str


@dataclass(slots=True, frozen=True)
class ToolCallRequest:
    call: ParsedToolCall


ModelEvent = Union[TextDelta, ToolCallRequest]


class ModelEventAggregator:
    """Folds stream events into text deltas and, at the end, complete tool calls."""

    def __init__(self) -> None:
        self._content_parts: list[str] = []
        self._final_content: str | None = None
        self._tool_calls: dict[int, dict[str, Any]] = {}

    def feed(self, event: StreamEvent) -> TextDelta | None:
        """Consume one event; returns a :class:`TextDelta` for visible text."""

        event_type = event.type
        if event_type == "content.delta":
            if event.content:
                self._content_parts.append(event.content)
                return TextDelta(event.content)
            return None
        if event_type == "content.done":
            self._final_content = event.content
            return None
        if event_type in ("tool_calls.function.arguments.delta", "tool_calls.function.arguments.done"):
            index = event.tool_index if event.tool_index is not None else 0
            entry = self._tool_calls.setdefault(
                index,
                {"index": index, "id": "", "name": "", "arguments_parts": []},
            )
            if event.tool_name:
                entry["name"] = event.tool_name
            if event.tool_call_id:
                entry["id"] = event.tool_call_id
            if event_type.endswith(".delta"):
                if event.arguments_delta:
                    entry["arguments_parts"].append(event.arguments_delta)
            elif event.tool_arguments:
                # Complete arguments from the done event win over assembled parts.
                entry["arguments"] = event.tool_arguments
        return None

    @property
    def text(self) -> str:
        streamed = "".join(self._content_parts)
        if not streamed and self._final_content:
            return self._final_content
        return streamed

    def tool_calls(self) -> tuple[ParsedToolCall, ...]:
        calls: list[ParsedToolCall] = []
        for index in sorted(self._tool_calls):
            entry = self._tool_calls[index]
            arguments = entry.get("arguments")
            if arguments is None:
                arguments = "".join(entry["arguments_parts"])
            call_id = entry["id"] or f"call_{index}_{uuid.uuid4().hex[:8]}"
            calls.append(
                ParsedToolCall(
                    call_id=call_id,
                    name=entry["name"] or "unknown",
                    arguments=arguments or "{}",
                    index=index,
                )
            )
        return tuple(calls)

    def response(self) -> ModelResponse:
        return ModelResponse(text=self.text, tool_calls=self.tool_calls())


async def normalize_stream(events: AsyncIterable[StreamEvent]) -> AsyncIterator[ModelEvent]:
    """Yield text deltas as they arrive, then one request per completed tool call."""

    aggregator = ModelEventAggregator()
    async for event in events:
        delta = aggregator.feed(event)
        if delta is not None:
            yield delta
    for call in aggregator.tool_calls():
        yield ToolCallRequest(call)
