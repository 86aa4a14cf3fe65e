"""File read capability: load specific notes from inside the vault root."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import Any, Mapping

from ...utils.file_io import read_text
from ..orchestration.cancellation import CancellationToken
from ..orchestration.types import CandidateResult, ToolKind
from .base import CapabilityExecutor, ExecutionLimits, ExecutionResult, build_preview
from .errors import (
    CorpusReadError,
    ExecutionError,
    FileNotFoundToolError,
    InvalidParametersError,
    PathDeniedError,
)

__all__ = ["FileReadExecutor", "resolve_vault_path"]

LOGGER = logging.getLogger(__name__)

_PATH_KEYS = ("paths", "filePaths", "path")


def resolve_vault_path(root: Path, requested: str) -> Path:
    """Resolve ``requested`` against ``root`` or raise :class:`PathDeniedError`.

    Absolute paths, drive-qualified paths and anything that resolves outside the
    root (``..`` segments, symlinks) are rejected.
    """

    text = requested.strip()
    if not text:
        raise InvalidParametersError(message="File paths must be non-empty", parameter="paths")
    windows = PureWindowsPath(text)
    if PurePosixPath(text).is_absolute() or windows.is_absolute() or windows.drive or text.startswith(("\\", "~")):
        raise PathDeniedError(message="Absolute paths are not permitted", path=text)
    resolved_root = root.resolve()
    candidate = (resolved_root / text.replace("\\", "/")).resolve()
    if not candidate.is_relative_to(resolved_root):
        raise PathDeniedError(message="Path escapes the vault root", path=text)
    return candidate


class FileReadExecutor(CapabilityExecutor):
    """Read explicit vault-relative paths.

    Every path is validated before any file is opened, so a single denied path
    fails the whole call without reading anything. Missing or unreadable files
    are reported per path next to the files that could be read; the call only
    fails when none of them could.
    """

    kind = ToolKind.FILE_READ

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def validate(self, params: Mapping[str, Any]) -> None:
        self._requested_paths(params)

    def effective_limits(self, params: Mapping[str, Any], limits: ExecutionLimits) -> ExecutionLimits:
        return limits.clamped()

    async def execute(
        self,
        params: Mapping[str, Any],
        *,
        limits: ExecutionLimits,
        token: CancellationToken | None = None,
    ) -> ExecutionResult:
        requested = self._requested_paths(params)
        resolved = [(path, resolve_vault_path(self._root, path)) for path in requested]
        root = self._root.resolve()

        candidates: list[CandidateResult] = []
        failures: list[ExecutionError] = []
        seen: set[str] = set()
        for original, target in resolved:
            if token is not None:
                token.raise_if_cancelled()
            relative = target.relative_to(root).as_posix()
            if relative in seen:
                continue
            seen.add(relative)
            if len(candidates) >= limits.max_results:
                continue
            if not target.is_file():
                failures.append(FileNotFoundToolError(message=f"File not found: {original}", path=original))
                continue
            try:
                content = await asyncio.to_thread(read_text, target, errors="replace")
                size = target.stat().st_size
            except OSError as exc:
                LOGGER.warning("Unable to read %s: %s", relative, exc.strerror or exc)
                failures.append(CorpusReadError(message=f"Error reading file: {original}", details={"path": original}))
                continue
            candidates.append(
                CandidateResult(
                    id=relative,
                    title=target.name,
                    preview=build_preview(content, limits.preview_chars),
                    raw={"path": relative, "content": content, "size": size},
                    kind=self.kind,
                )
            )
        if failures and not candidates:
            raise failures[0]
        return ExecutionResult(
            candidates=tuple(candidates),
            total_count=len(seen) - len(failures),
            unavailable=tuple(_unavailable(error) for error in failures),
        )

    @staticmethod
    def _requested_paths(params: Mapping[str, Any]) -> list[str]:
        for key in _PATH_KEYS:
            if key not in params:
                continue
            value = params[key]
            if isinstance(value, str):
                values = [value]
            elif isinstance(value, (list, tuple)) and all(isinstance(item, str) for item in value):
                values = list(value)
            else:
                raise InvalidParametersError(message=f"Parameter '{key}' must be a list of paths", parameter=key)
            if not values:
                raise InvalidParametersError(message="At least one file path is required", parameter=key)
            return values
        raise InvalidParametersError(message="Parameter 'paths' is required", parameter="paths")


def _unavailable(error: ExecutionError) -> dict[str, str]:
    path = getattr(error, "path", None) or error.details.get("path", "")
    return {"path": path, "error": error.message}
