from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List


class KeyedLocks:
    """One asyncio.Lock per key, dropped again once nobody holds or waits on it."""

    def __init__(self) -> None:
        # key -> [lock, holders + waiters]
        self._entries: Dict[str, List] = {}

    def __len__(self) -> int:
        return len(self._entries)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = [asyncio.Lock(), 0]
            self._entries[key] = entry
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._entries[key]
