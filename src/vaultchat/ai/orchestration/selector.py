"""Per-item share flags backing the results approval gate."""

from __future__ import annotations

from typing import Iterable, Iterator

from .types import CandidateResult

__all__ = ["ResultSelector"]


class ResultSelector:
    """Ordered mapping of candidate id to a boolean "share" flag.

    Every candidate starts selected; the user deselects what must stay local.
    The selector never holds candidate data, only ids.
    """

    def __init__(self, ids: Iterable[str] = (), *, default: bool = True) -> None:
        self._flags: dict[str, bool] = {}
        for item_id in ids:
            if item_id in self._flags:
                raise ValueError(f"Duplicate candidate id: {item_id!r}")
            self._flags[item_id] = bool(default)

    @classmethod
    def from_candidates(cls, candidates: Iterable[CandidateResult], *, default: bool = True) -> ResultSelector:
        return cls((candidate.id for candidate in candidates), default=default)

    def __len__(self) -> int:
        return len(self._flags)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._flags

    def __iter__(self) -> Iterator[str]:
        return iter(self._flags)

    def __repr__(self) -> str:
        return f"ResultSelector(selected={self.selected_count}, total={len(self)})"

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(self._flags)

    @property
    def selected_count(self) -> int:
        return sum(1 for flag in self._flags.values() if flag)

    def select_all(self) -> None:
        for item_id in self._flags:
            self._flags[item_id] = True

    def deselect_all(self) -> None:
        for item_id in self._flags:
            self._flags[item_id] = False

    def toggle(self, item_id: str) -> bool:
        """Flip one flag and return its new value."""
        self._require(item_id)
        self._flags[item_id] = not self._flags[item_id]
        return self._flags[item_id]

    def set(self, item_id: str, selected: bool) -> None:
        self._require(item_id)
        self._flags[item_id] = bool(selected)

    def is_selected(self, item_id: str) -> bool:
        self._require(item_id)
        return self._flags[item_id]

    def selected_ids(self) -> tuple[str, ...]:
        return tuple(item_id for item_id, flag in self._flags.items() if flag)

    def as_dict(self) -> dict[str, bool]:
        return dict(self._flags)

    def _require(self, item_id: str) -> None:
        if item_id not in self._flags:
            raise KeyError(item_id)
