from __future__ import annotations

import asyncio
import weakref


class EnvelopeLocks:
    """One ``asyncio.Lock`` per envelope id.

    Locks are weakly held: an entry disappears once no coroutine holds or
    waits on it, so the table never grows with the number of envelopes ever
    touched. Different envelopes never share a lock.
    """

    def __init__(self) -> None:
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def for_envelope(self, envelope_id: str) -> asyncio.Lock:
        lock = self._locks.get(envelope_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[envelope_id] = lock
        return lock

    def __len__(self) -> int:
        return len(self._locks)
