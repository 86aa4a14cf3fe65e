"""Capability registry: tool schemas for the model and executor lookup."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Mapping

import httpx

from ..orchestration.types import ParsedToolCall, ToolKind, ToolRequest
from .base import CapabilityExecutor, HARD_MAX_RESULTS
from .corpus_search import CorpusSearchExecutor, FileSystemCorpus
from .errors import InvalidParametersError, UnknownToolError
from .file_read import FileReadExecutor
from .web_search import (
    BraveSearchProvider,
    CustomSearchProvider,
    MAX_WEB_RESULTS,
    WebSearchExecutor,
    WebSearchProvider,
)

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from ...services.settings import Settings

__all__ = [
    "TOOL_DESCRIPTIONS",
    "CapabilityRegistry",
    "build_default_registry",
    "build_web_search_provider",
    "parse_tool_arguments",
]

LOGGER = logging.getLogger(__name__)

TOOL_DESCRIPTIONS: Mapping[ToolKind, str] = {
    ToolKind.CORPUS_SEARCH: (
        "Search the user's vault for notes by name or content. Returns note paths and, once the user "
        "approves them, their contents. Use this to find relevant notes before reading them."
    ),
    ToolKind.FILE_READ: (
        "Read the full contents of specific notes from the vault. The user will be asked to approve which "
        "files to share. Use the paths returned by vault_search."
    ),
    ToolKind.WEB_SEARCH: (
        "Search the web for information on a topic. Returns titles, URLs and snippets. The user will be "
        "asked to approve which results to share."
    ),
}

_TOOL_PARAMETERS: Mapping[ToolKind, Mapping[str, Any]] = {
    ToolKind.CORPUS_SEARCH: {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Keywords, topics or phrases to look for in note names and content.",
            },
            "limit": {
                "type": "integer",
                "minimum": 1,
                "maximum": HARD_MAX_RESULTS,
                "description": f"Maximum number of results. Default is 10, maximum is {HARD_MAX_RESULTS}.",
            },
            "scope": {
                "type": "string",
                "description": "Optional vault folder to restrict the search to.",
            },
        },
        "required": ["query"],
    },
    ToolKind.FILE_READ: {
        "type": "object",
        "properties": {
            "paths": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Vault-relative file paths to read, as returned by vault_search.",
            },
        },
        "required": ["paths"],
    },
    ToolKind.WEB_SEARCH: {
        "type": "object",
        "properties": {
            "query": {"type": "string", "description": "The search query to look up on the web."},
            "limit": {
                "type": "integer",
                "minimum": 1,
                "maximum": MAX_WEB_RESULTS,
                "description": f"Maximum number of results. Default is 5, maximum is {MAX_WEB_RESULTS}.",
            },
        },
        "required": ["query"],
    },
}


def parse_tool_arguments(arguments: str | Mapping[str, Any] | None) -> dict[str, Any]:
    """Parse tool arguments from a JSON string.

    Raises:
        InvalidParametersError: If arguments are not a JSON object.
    """

    if isinstance(arguments, Mapping):
        return dict(arguments)
    if not arguments or arguments.strip() in ("", "{}"):
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as exc:
        raise InvalidParametersError(message=f"Invalid JSON in tool arguments: {exc.msg}") from exc
    if not isinstance(parsed, dict):
        raise InvalidParametersError(message=f"Arguments must be a JSON object, got {type(parsed).__name__}")
    return parsed


class CapabilityRegistry:
    """Maps each :class:`ToolKind` to the executor that serves it."""

    def __init__(self, executors: Iterable[CapabilityExecutor] = (), *, enabled: bool = True) -> None:
        self._executors: dict[ToolKind, CapabilityExecutor] = {}
        self.enabled = enabled
        for executor in executors:
            self.register(executor)

    def register(self, executor: CapabilityExecutor) -> None:
        if executor.kind in self._executors:
            LOGGER.debug("Replacing executor for %s", executor.kind.value)
        self._executors[executor.kind] = executor

    def unregister(self, kind: ToolKind) -> None:
        self._executors.pop(kind, None)

    def get(self, kind: ToolKind) -> CapabilityExecutor:
        try:
            return self._executors[kind]
        except KeyError:
            raise UnknownToolError(message=f"Tool '{kind.value}' is not available", tool_name=kind.value) from None

    def has(self, kind: ToolKind) -> bool:
        return kind in self._executors

    @property
    def kinds(self) -> tuple[ToolKind, ...]:
        return tuple(self._executors)

    def tool_specs(self) -> list[dict[str, Any]]:
        """OpenAI function-tool schemas for every registered capability."""

        if not self.enabled:
            return []
        return [
            {
                "type": "function",
                "function": {
                    "name": kind.value,
                    "description": TOOL_DESCRIPTIONS[kind],
                    "parameters": json.loads(json.dumps(_TOOL_PARAMETERS[kind])),
                },
            }
            for kind in ToolKind
            if kind in self._executors
        ]

    def build_request(self, call: ParsedToolCall) -> ToolRequest:
        """Turn a model tool call into a validated :class:`ToolRequest`."""

        try:
            kind = ToolKind.from_name(call.name)
        except ValueError:
            raise UnknownToolError(message=f"Unknown tool '{call.name}'", tool_name=call.name) from None
        if not self.enabled or kind not in self._executors:
            raise UnknownToolError(message=f"Tool '{kind.value}' is not available", tool_name=kind.value)
        params = parse_tool_arguments(call.arguments)
        return ToolRequest(call_id=call.call_id, kind=kind, params=params)

    async def aclose(self) -> None:
        for executor in self._executors.values():
            close = getattr(executor, "aclose", None)
            if close is not None:
                await close()


def build_web_search_provider(
    settings: Settings,
    *,
    client: httpx.AsyncClient | None = None,
) -> WebSearchProvider | None:
    """Return the configured web search provider, or ``None`` when web search is off."""

    provider = (settings.web_search_provider or "").strip().lower()
    timeout = float(settings.request_timeout or 15.0)
    if provider == "brave":
        if not settings.web_search_api_key:
            LOGGER.info("Brave web search selected but no API key configured; web search disabled")
            return None
        return BraveSearchProvider(settings.web_search_api_key, client=client, timeout=timeout)
    if provider == "custom":
        if not settings.web_search_api_url:
            LOGGER.info("Custom web search selected but no endpoint configured; web search disabled")
            return None
        return CustomSearchProvider(
            settings.web_search_api_url,
            api_key=settings.web_search_api_key or None,
            client=client,
            timeout=timeout,
        )
    if provider not in {"", "none", "disabled"}:
        LOGGER.warning("Unknown web search provider '%s'; web search disabled", provider)
    return None


def build_default_registry(
    settings: Settings,
    *,
    vault_root: Path | str | None = None,
    current_document: Path | str | None = None,
    web_provider: WebSearchProvider | None = None,
) -> CapabilityRegistry:
    """Wire the vault, file and web executors from ``settings``."""

    root = Path(vault_root or settings.vault_root or Path.cwd()).expanduser()
    exclude = [current_document] if current_document else []
    registry = CapabilityRegistry(enabled=settings.enable_tool_calling)
    registry.register(CorpusSearchExecutor(FileSystemCorpus(root, exclude=exclude)))
    registry.register(FileReadExecutor(root))
    provider = web_provider or build_web_search_provider(settings)
    if provider is not None:
        registry.register(WebSearchExecutor(provider))
    LOGGER.debug(
        "Capability registry ready (root=%s, tools=%s, enabled=%s)",
        root,
        [kind.value for kind in registry.kinds],
        registry.enabled,
    )
    return registry
