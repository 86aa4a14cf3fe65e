"""Vault search capability: match notes by file name or content."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Protocol, Sequence, runtime_checkable

from ...utils.file_io import read_text
from ..orchestration.cancellation import CancellationToken
from ..orchestration.types import CandidateResult, ToolKind
from .base import CapabilityExecutor, ExecutionLimits, ExecutionResult, build_preview, require_string
from .errors import CorpusReadError, InvalidParametersError, PathDeniedError

__all__ = [
    "CorpusHit",
    "CorpusSearchResult",
    "CorpusProvider",
    "FileSystemCorpus",
    "CorpusSearchExecutor",
]

LOGGER = logging.getLogger(__name__)

DEFAULT_EXTENSIONS: tuple[str, ...] = (".md",)


@dataclass(slots=True, frozen=True)
class CorpusHit:
    """One matching document."""

    path: str
    title: str
    content: str
    matched_on: str = "content"


@dataclass(slots=True, frozen=True)
class CorpusSearchResult:
    hits: tuple[CorpusHit, ...]
    total: int


@runtime_checkable
class CorpusProvider(Protocol):
    """Read-only document corpus the search executor queries."""

    async def search(
        self,
        query: str,
        scope: str | None,
        cap: int,
        *,
        token: CancellationToken | None = None,
    ) -> CorpusSearchResult:
        ...


class FileSystemCorpus:
    """Corpus backed by a directory of text notes.

    Queries are split on whitespace and matched with OR semantics, first against
    the file name and then against the file content. Hidden directories and the
    excluded paths (typically the note being edited) are skipped.
    """

    def __init__(
        self,
        root: Path | str,
        *,
        extensions: Sequence[str] = DEFAULT_EXTENSIONS,
        exclude: Iterable[Path | str] = (),
    ) -> None:
        self._root = Path(root).expanduser().resolve()
        self._extensions = tuple(ext.lower() for ext in extensions)
        self._exclude = {self._normalize_exclusion(item) for item in exclude}

    @property
    def root(self) -> Path:
        return self._root

    def exclude(self, path: Path | str) -> None:
        self._exclude.add(self._normalize_exclusion(path))

    async def search(
        self,
        query: str,
        scope: str | None,
        cap: int,
        *,
        token: CancellationToken | None = None,
    ) -> CorpusSearchResult:
        words = [word for word in query.lower().split() if word]
        if not words:
            return CorpusSearchResult(hits=(), total=0)
        base = await asyncio.to_thread(self._resolve_scope, scope)
        if not self._root.is_dir():
            raise CorpusReadError(message=f"Vault root is not a readable directory: {self._root.name}")

        hits: list[CorpusHit] = []
        total = 0
        documents = await asyncio.to_thread(self._list_documents, base)
        for path in documents:
            if token is not None and token.cancelled:
                break
            relative = path.relative_to(self._root).as_posix()
            if relative in self._exclude:
                continue
            title = path.stem
            lowered_title = title.lower()
            if any(word in lowered_title for word in words):
                matched_on = "name"
                content = None
            else:
                content = await self._read(path)
                if content is None:
                    continue
                lowered = content.lower()
                if not any(word in lowered for word in words):
                    continue
                matched_on = "content"
            total += 1
            if len(hits) >= cap:
                continue
            if content is None:
                content = await self._read(path) or ""
            hits.append(CorpusHit(path=relative, title=title, content=content, matched_on=matched_on))
        return CorpusSearchResult(hits=tuple(hits), total=total)

    def _list_documents(self, base: Path) -> list[Path]:
        """Walk ``base`` in sorted order; runs in a worker thread."""
        documents: list[Path] = []
        try:
            for dirpath, dirnames, filenames in os.walk(base, onerror=self._raise_walk_error):
                dirnames[:] = sorted(name for name in dirnames if not name.startswith("."))
                documents.extend(
                    Path(dirpath) / filename
                    for filename in sorted(filenames)
                    if filename.lower().endswith(self._extensions)
                )
        except OSError as exc:
            raise CorpusReadError(message=f"Unable to list vault contents: {exc.strerror or exc}") from exc
        return documents

    @staticmethod
    def _raise_walk_error(exc: OSError) -> None:
        raise exc

    async def _read(self, path: Path) -> str | None:
        try:
            return await asyncio.to_thread(read_text, path, errors="replace")
        except OSError as exc:
            LOGGER.warning("Skipping unreadable note %s: %s", path.name, exc.strerror or exc)
            return None

    def _resolve_scope(self, scope: str | None) -> Path:
        if not scope or scope.strip() in {"", ".", "/"}:
            return self._root
        candidate = (self._root / scope.strip().lstrip("/\\")).resolve()
        if not candidate.is_relative_to(self._root):
            raise PathDeniedError(message="Search scope is outside the vault root", path=scope)
        if not candidate.is_dir():
            raise CorpusReadError(message=f"Folder not found: {scope}")
        return candidate

    def _normalize_exclusion(self, item: Path | str) -> str:
        path = Path(item).expanduser()
        if path.is_absolute():
            try:
                return path.resolve().relative_to(self._root).as_posix()
            except ValueError:
                return path.as_posix()
        return path.as_posix()


class CorpusSearchExecutor(CapabilityExecutor):
    """Search the private vault; raw results carry each note's full content."""

    kind = ToolKind.CORPUS_SEARCH

    def __init__(self, corpus: CorpusProvider) -> None:
        self._corpus = corpus

    def validate(self, params: Mapping[str, Any]) -> None:
        require_string(params, "query")
        scope = params.get("scope")
        if scope is not None and not isinstance(scope, str):
            raise InvalidParametersError(message="Parameter 'scope' must be a folder path", parameter="scope")

    async def execute(
        self,
        params: Mapping[str, Any],
        *,
        limits: ExecutionLimits,
        token: CancellationToken | None = None,
    ) -> ExecutionResult:
        query = require_string(params, "query")
        result = await self._corpus.search(query, params.get("scope"), limits.max_results, token=token)
        candidates = tuple(
            CandidateResult(
                id=hit.path,
                title=hit.title,
                preview=build_preview(_excerpt(hit.content, query), limits.preview_chars),
                raw={"path": hit.path, "title": hit.title, "content": hit.content},
                kind=self.kind,
            )
            for hit in result.hits[: limits.max_results]
        )
        return ExecutionResult(candidates=candidates, total_count=max(result.total, len(candidates)))


def _excerpt(content: str, query: str) -> str:
    """Start the preview shortly before the first query word, when present."""

    lowered = content.lower()
    positions = [lowered.find(word) for word in query.lower().split()]
    found = [position for position in positions if position >= 0]
    if not found:
        return content
    start = max(0, min(found) - 40)
    return content[start:]
