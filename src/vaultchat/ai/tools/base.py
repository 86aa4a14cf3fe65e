"""Base classes for capability executors.

This module standardizes how executors validate parameters, enforce result and
preview caps, and report failures. Executors never talk to the model: they
return candidates that still have to pass the results approval gate.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, ClassVar, Mapping, Sequence

from ..orchestration.cancellation import CancellationToken
from ..orchestration.types import CandidateResult, ToolKind
from .errors import ExecutionError, InvalidParametersError

__all__ = [
    "DEFAULT_MAX_RESULTS",
    "DEFAULT_PREVIEW_CHARS",
    "HARD_MAX_RESULTS",
    "ExecutionLimits",
    "ExecutionResult",
    "CapabilityExecutor",
    "build_preview",
    "require_string",
    "optional_limit",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_RESULTS = 10
DEFAULT_PREVIEW_CHARS = 200
HARD_MAX_RESULTS = 50
_ELLIPSIS = "..."


@dataclass(slots=True, frozen=True)
class ExecutionLimits:
    """Caps applied to every executor, whatever its kind."""

    max_results: int = DEFAULT_MAX_RESULTS
    preview_chars: int = DEFAULT_PREVIEW_CHARS

    def clamped(self) -> ExecutionLimits:
        results = max(1, min(int(self.max_results), HARD_MAX_RESULTS))
        preview = max(0, int(self.preview_chars))
        if results == self.max_results and preview == self.preview_chars:
            return self
        return ExecutionLimits(max_results=results, preview_chars=preview)

    def with_requested_limit(self, requested: int | None) -> ExecutionLimits:
        """Apply a model-requested ``limit``; it can only lower the cap."""
        base = self.clamped()
        if requested is None or requested >= base.max_results:
            return base
        return replace(base, max_results=max(1, requested))


@dataclass(slots=True, frozen=True)
class ExecutionResult:
    """Candidates returned by an executor plus the true match count.

    ``unavailable`` lists requested items that could not be produced, as
    ``{"path", "error"}`` records built only from what the model itself asked for.
    """

    candidates: tuple[CandidateResult, ...] = ()
    total_count: int = 0
    unavailable: tuple[Mapping[str, str], ...] = ()

    @property
    def returned_count(self) -> int:
        return len(self.candidates)

    @property
    def truncated(self) -> bool:
        return self.total_count > self.returned_count


def build_preview(text: str, limit: int = DEFAULT_PREVIEW_CHARS) -> str:
    """Collapse whitespace and cut ``text`` so it never exceeds ``limit`` characters."""

    collapsed = " ".join((text or "").split())
    if len(collapsed) <= limit:
        return collapsed
    if limit <= len(_ELLIPSIS):
        return collapsed[:limit]
    return collapsed[: limit - len(_ELLIPSIS)].rstrip() + _ELLIPSIS


def require_string(params: Mapping[str, Any], name: str) -> str:
    value = params.get(name)
    if not isinstance(value, str) or not value.strip():
        raise InvalidParametersError(message=f"Parameter '{name}' must be a non-empty string", parameter=name)
    return value.strip()


def optional_limit(params: Mapping[str, Any], name: str = "limit") -> int | None:
    value = params.get(name)
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidParametersError(message=f"Parameter '{name}' must be an integer", parameter=name)
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise InvalidParametersError(message=f"Parameter '{name}' must be an integer", parameter=name) from exc
    if number < 1:
        raise InvalidParametersError(message=f"Parameter '{name}' must be positive", parameter=name)
    return number


class CapabilityExecutor(ABC):
    """Abstract base class for the fixed set of tool capabilities.

    Subclasses implement ``validate()`` and ``execute()``. Callers go through
    ``run()``, which validates, checks cancellation, and enforces the count and
    preview caps even if a subclass forgets to.
    """

    kind: ClassVar[ToolKind]

    def validate(self, params: Mapping[str, Any]) -> None:
        """Raise :class:`InvalidParametersError` when ``params`` are unusable."""

    @abstractmethod
    async def execute(
        self,
        params: Mapping[str, Any],
        *,
        limits: ExecutionLimits,
        token: CancellationToken | None = None,
    ) -> ExecutionResult:
        """Produce candidate results for validated ``params``."""

    def effective_limits(self, params: Mapping[str, Any], limits: ExecutionLimits) -> ExecutionLimits:
        return limits.with_requested_limit(optional_limit(params))

    async def run(
        self,
        params: Mapping[str, Any],
        *,
        limits: ExecutionLimits,
        token: CancellationToken | None = None,
    ) -> ExecutionResult:
        start_time = time.perf_counter()
        self.validate(params)
        effective = self.effective_limits(params, limits)
        if token is not None:
            token.raise_if_cancelled()
        try:
            result = await self.execute(params, limits=effective, token=token)
        except ExecutionError:
            raise
        except OSError as exc:
            raise ExecutionError(message=f"{self.kind.label} failed: {exc.strerror or exc}") from exc
        enforced = self._enforce_limits(result, effective)
        LOGGER.debug(
            "%s returned %d/%d candidate(s) in %.1fms",
            self.kind.value,
            enforced.returned_count,
            enforced.total_count,
            (time.perf_counter() - start_time) * 1000.0,
        )
        return enforced

    @staticmethod
    def _enforce_limits(result: ExecutionResult, limits: ExecutionLimits) -> ExecutionResult:
        candidates: Sequence[CandidateResult] = result.candidates[: limits.max_results]
        bounded = tuple(
            candidate
            if len(candidate.preview) <= limits.preview_chars
            else replace(candidate, preview=build_preview(candidate.preview, limits.preview_chars))
            for candidate in candidates
        )
        total = max(result.total_count, len(result.candidates))
        return ExecutionResult(candidates=bounded, total_count=total, unavailable=result.unavailable)
