from __future__ import annotations
import asyncio
from typing import Dict


class TokenLocks:
    """
    One asyncio.Lock per token id, shared by the lifecycle manager and the
    reconciler so writes to a token's record and authority key are serialized.
    Reads do not take the lock.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, token_id: str) -> asyncio.Lock:
        lock = self._locks.get(token_id)
        if lock is None:
            lock = self._locks[token_id] = asyncio.Lock()
        return lock

    def locked(self, token_id: str) -> bool:
        lock = self._locks.get(token_id)
        return bool(lock and lock.locked())
