"""
Keyed Lock
Per-key mutual exclusion that fails fast instead of queuing
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable, List

from tokensniper.core.errors import ConcurrencyError
from tokensniper.core.logger import get_logger


logger = get_logger(__name__)


class KeyedLock:
    """
    Mapping from key to an asyncio.Lock, acquired without waiting

    A second acquire of a held key raises ConcurrencyError. Different keys
    never block each other. Locks for released keys are discarded so the map
    does not grow with every mint ever traded.

    Usage:
        locks = KeyedLock()
        async with locks.hold((wallet, mint)):
            ...  # at most one holder per (wallet, mint)
    """

    def __init__(self, name: str = "trade"):
        self.name = name
        self._locks: Dict[Hashable, asyncio.Lock] = {}

    def is_held(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def held_keys(self) -> List[Hashable]:
        return [key for key, lock in self._locks.items() if lock.locked()]

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """
        Hold the lock for a key for the duration of the block

        Raises:
            ConcurrencyError: If the key is already held
        """
        lock = self._locks.setdefault(key, asyncio.Lock())

        # No await between the check and the acquire, so this is atomic on the loop
        if lock.locked():
            logger.warning("keyed_lock_contended", lock=self.name, key=str(key))
            raise ConcurrencyError(f"{self.name} already in flight for {key}")

        await lock.acquire()
        try:
            yield
        finally:
            lock.release()
            if not lock.locked() and self._locks.get(key) is lock:
                del self._locks[key]
