import asyncio
import weakref
from collections.abc import Hashable


class KeyedLocks:
    """One asyncio.Lock per key, created on first use.

    Locks are held weakly: an entry lives while some task holds or awaits it
    and disappears once nobody references it, so closed conversations and
    retired agents do not accumulate.

    Engine-wide acquisition order is queue key -> conversation -> agent.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[Hashable, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def get(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def __call__(self, key: Hashable) -> asyncio.Lock:
        return self.get(key)

    def __len__(self) -> int:
        return len(self._locks)
