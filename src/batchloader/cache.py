"""
Cache maps holding the handles of one loader.
"""

from __future__ import annotations

import typing as t

if t.TYPE_CHECKING:
    from batchloader.handle import Handle


@t.runtime_checkable
class CacheMap(t.Protocol):
    """
    Minimal storage interface used by ``BatchLoader``.

    Implementations map a normalized cache key to the handle that owns its
    outcome. A shared store may be substituted for the in-process default as
    long as it keeps handle identity for entries it returns.
    """

    def get(self, key: t.Hashable) -> Handle | None: ...

    def set(self, key: t.Hashable, value: Handle) -> None: ...

    def delete(self, key: t.Hashable) -> None: ...

    def clear(self) -> None: ...


class InMemoryCacheMap:
    """
    Dictionary-backed cache map scoped to a single loader instance.
    """

    def __init__(self) -> None:
        self._entries: dict[t.Hashable, Handle] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: t.Hashable) -> Handle | None:
        """
        Return the handle stored for a cache key.

        Parameters
        ----------
        key : typing.Hashable
            Normalized cache key.

        Returns
        -------
        Handle | None
            Cached handle when present.
        """
        return self._entries.get(key)

    def set(self, key: t.Hashable, value: Handle) -> None:
        self._entries[key] = value

    def delete(self, key: t.Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()


def evict_if_owned(*, cache: CacheMap, handle: Handle) -> bool:
    """
    Delete a cache entry only when it still points at the given handle.

    Parameters
    ----------
    cache : CacheMap
        Cache map to update.
    handle : Handle
        Handle whose entry should go.

    Returns
    -------
    bool
        ``True`` when an entry was deleted.
    """
    if cache.get(handle.cache_key) is not handle:
        return False
    cache.delete(handle.cache_key)
    return True
