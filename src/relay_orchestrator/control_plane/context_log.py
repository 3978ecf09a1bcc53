"""Bounded rolling log of one-line job summaries shared across prompts."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable

from relay_orchestrator.constants import CONTEXT_WINDOW_ENTRIES

EMPTY_CONTEXT_TEXT = "No prior rolling task context."


class RollingContextLog:
    """Keep the most recent ``capacity`` entries, evicting oldest first."""

    __slots__ = ("_capacity", "_entries")

    def __init__(self, capacity: int = CONTEXT_WINDOW_ENTRIES, entries: Iterable[str] = ()) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = capacity
        self._entries: deque[str] = deque(entries, maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: str) -> None:
        self._entries.append(entry)

    def entries(self) -> list[str]:
        return list(self._entries)

    def replace(self, entries: Iterable[str]) -> None:
        """Swap in a saved history, keeping only its newest ``capacity`` entries."""
        self._entries = deque(entries, maxlen=self._capacity)

    def render(self) -> str:
        if not self._entries:
            return EMPTY_CONTEXT_TEXT
        return "\n".join(f"{index}. {entry}" for index, entry in enumerate(self._entries, start=1))


__all__ = ["EMPTY_CONTEXT_TEXT", "RollingContextLog"]
