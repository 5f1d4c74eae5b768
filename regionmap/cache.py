"""Explicit render cache shared between generation passes."""

from __future__ import annotations

from typing import Any, Callable, Hashable


class RenderCache:
    """Key -> value store without eviction.

    Entries live until `invalidate` is called. Keys must carry every parameter
    the cached value depends on, so a parameter change is a new key.
    """

    def __init__(self) -> None:
        self._entries: dict[Hashable, Any] = {}
        self.hits = 0
        self.misses = 0

    def get_or_create(self, key: Hashable, factory: Callable[[], Any]) -> Any:
        if key in self._entries:
            self.hits += 1
            return self._entries[key]
        self.misses += 1
        value = factory()
        self._entries[key] = value
        return value

    def get(self, key: Hashable, default: Any = None) -> Any:
        return self._entries.get(key, default)

    def invalidate(self, key: Hashable | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
