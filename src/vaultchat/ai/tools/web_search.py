"""Web search capability backed by Brave Search or a custom JSON endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

import httpx

from ...utils.sanitize import http_error_message
from ..orchestration.cancellation import CancellationToken
from ..orchestration.types import CandidateResult, ToolKind
from .base import CapabilityExecutor, ExecutionLimits, ExecutionResult, build_preview, require_string
from .errors import NetworkError, ProviderUnavailableError

__all__ = [
    "WebHit",
    "WebSearchProvider",
    "BraveSearchProvider",
    "CustomSearchProvider",
    "WebSearchExecutor",
    "MAX_WEB_RESULTS",
    "DEFAULT_WEB_RESULTS",
    "BRAVE_SEARCH_URL",
]

LOGGER = logging.getLogger(__name__)

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
MAX_WEB_RESULTS = 10
DEFAULT_WEB_RESULTS = 5


@dataclass(slots=True, frozen=True)
class WebHit:
    title: str
    url: str
    snippet: str


@runtime_checkable
class WebSearchProvider(Protocol):
    """Remote search API returning at most ``cap`` hits."""

    name: str

    async def search(self, query: str, cap: int) -> Sequence[WebHit]:
        ...


class _HttpSearchProvider:
    """Shared request/response handling for JSON search APIs."""

    name = "http"

    def __init__(self, *, client: httpx.AsyncClient | None = None, timeout: float = 15.0) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def _get_json(self, url: str, *, params: Mapping[str, Any], headers: Mapping[str, str]) -> Any:
        try:
            response = await self._get_client().get(url, params=params, headers=headers)
        except httpx.TimeoutException as exc:
            raise NetworkError(message=f"{self.name} search timed out") from exc
        except httpx.HTTPError as exc:
            # The exception text may embed the request URL and its query string.
            raise NetworkError(message=f"{self.name} search request failed ({type(exc).__name__})") from exc
        if response.status_code >= 400:
            raise NetworkError(
                message=f"{self.name} search failed: {http_error_message(response.status_code)}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise NetworkError(message=f"{self.name} search returned an invalid response") from exc

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class BraveSearchProvider(_HttpSearchProvider):
    """Brave Search API (requires a subscription token)."""

    name = "Brave"

    def __init__(
        self,
        api_key: str,
        *,
        url: str = BRAVE_SEARCH_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ) -> None:
        super().__init__(client=client, timeout=timeout)
        self._api_key = api_key
        self._url = url

    async def search(self, query: str, cap: int) -> Sequence[WebHit]:
        if not self._api_key:
            raise ProviderUnavailableError(message="Brave Search API key is not configured")
        payload = await self._get_json(
            self._url,
            params={"q": query, "count": cap},
            headers={"Accept": "application/json", "X-Subscription-Token": self._api_key},
        )
        web = payload.get("web") if isinstance(payload, Mapping) else None
        results = web.get("results") if isinstance(web, Mapping) else None
        hits: list[WebHit] = []
        for item in results or []:
            if not isinstance(item, Mapping):
                continue
            hits.append(
                WebHit(
                    title=str(item.get("title") or "Untitled"),
                    url=str(item.get("url") or ""),
                    snippet=str(item.get("description") or ""),
                )
            )
        return hits


class CustomSearchProvider(_HttpSearchProvider):
    """User-defined endpoint returning ``{"results": [{title, url, snippet}]}``."""

    name = "Custom"

    def __init__(
        self,
        url: str,
        *,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ) -> None:
        super().__init__(client=client, timeout=timeout)
        self._url = url
        self._api_key = api_key

    async def search(self, query: str, cap: int) -> Sequence[WebHit]:
        if not self._url:
            raise ProviderUnavailableError(message="Custom search endpoint URL is not configured")
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        payload = await self._get_json(self._url, params={"q": query, "limit": cap}, headers=headers)
        results = payload.get("results") if isinstance(payload, Mapping) else None
        hits: list[WebHit] = []
        for item in (results or [])[:cap]:
            if not isinstance(item, Mapping):
                continue
            hits.append(
                WebHit(
                    title=str(item.get("title") or "Untitled"),
                    url=str(item.get("url") or item.get("link") or ""),
                    snippet=str(item.get("snippet") or item.get("description") or ""),
                )
            )
        return hits


class WebSearchExecutor(CapabilityExecutor):
    """Run a web search; each candidate is identified by its URL."""

    kind = ToolKind.WEB_SEARCH

    def __init__(self, provider: WebSearchProvider | None) -> None:
        self._provider = provider

    @property
    def provider(self) -> WebSearchProvider | None:
        return self._provider

    def validate(self, params: Mapping[str, Any]) -> None:
        require_string(params, "query")

    def effective_limits(self, params: Mapping[str, Any], limits: ExecutionLimits) -> ExecutionLimits:
        effective = super().effective_limits(params, limits)
        requested = params.get("limit")
        cap = DEFAULT_WEB_RESULTS if requested is None else MAX_WEB_RESULTS
        if effective.max_results > cap:
            return ExecutionLimits(max_results=cap, preview_chars=effective.preview_chars)
        return effective

    async def execute(
        self,
        params: Mapping[str, Any],
        *,
        limits: ExecutionLimits,
        token: CancellationToken | None = None,
    ) -> ExecutionResult:
        if self._provider is None:
            raise ProviderUnavailableError(message="Web search is not configured")
        query = require_string(params, "query")
        hits = await self._provider.search(query, limits.max_results)
        if token is not None:
            token.raise_if_cancelled()
        candidates: list[CandidateResult] = []
        seen: set[str] = set()
        for hit in hits:
            if not hit.url or hit.url in seen:
                continue
            seen.add(hit.url)
            candidates.append(
                CandidateResult(
                    id=hit.url,
                    title=hit.title,
                    preview=build_preview(hit.snippet, limits.preview_chars),
                    raw={"title": hit.title, "url": hit.url, "snippet": hit.snippet},
                    kind=self.kind,
                )
            )
        return ExecutionResult(candidates=tuple(candidates[: limits.max_results]), total_count=len(candidates))

    async def aclose(self) -> None:
        close = getattr(self._provider, "aclose", None)
        if close is not None:
            await close()
