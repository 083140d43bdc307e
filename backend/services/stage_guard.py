"""
Stage Guard - per-stage mutual exclusion

One asyncio.Lock per (order_id, stage_number). Different stages, and
different orders, never contend. Locks are created on demand and dropped
once nobody holds or waits on them, so the registry stays small and a
lock never outlives the event loop that used it.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, Tuple

from config import STAGE_LOCK_TIMEOUT_SECONDS
from services.production_errors import ConcurrencyTimeout

logger = logging.getLogger(__name__)

StageKey = Tuple[str, int]


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class StageGuard:
    def __init__(self, timeout: float = STAGE_LOCK_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._entries: Dict[StageKey, _Entry] = {}

    def _checkout(self, key: StageKey) -> _Entry:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.users += 1
        return entry

    def _checkin(self, key: StageKey, entry: _Entry) -> None:
        entry.users -= 1
        if entry.users == 0 and self._entries.get(key) is entry:
            del self._entries[key]

    def is_locked(self, order_id: str, stage_number: int) -> bool:
        entry = self._entries.get((order_id, stage_number))
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def hold(self, order_id: str, stage_number: int, timeout: float = None):
        """Hold the stage lock for the duration of the block.

        Raises ConcurrencyTimeout if the lock is not acquired within `timeout`.
        """
        key = (order_id, stage_number)
        wait = self.timeout if timeout is None else timeout
        entry = self._checkout(key)
        try:
            try:
                await asyncio.wait_for(entry.lock.acquire(), timeout=wait)
            except asyncio.TimeoutError:
                logger.warning(f"Stage lock timeout for {order_id} stage {stage_number} after {wait}s")
                raise ConcurrencyTimeout(
                    f"Stage {stage_number} of {order_id} is busy - try again"
                )
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)
