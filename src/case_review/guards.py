"""Per-code in-flight guard for mutating operations.

Each case code gets its own ``asyncio.Lock``. A second mutation for a code
whose lock is held fails fast with CaseBusyError instead of queueing, so
rapid repeated input never produces duplicate requests. Different codes
never contend.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from .errors import CaseBusyError

logger = logging.getLogger(__name__)


class BusyRegistry:
    """Mapping of case code -> lock for the mutation currently in flight.

    Entries are removed as soon as their mutation finishes, whether it
    succeeded, failed or was cancelled.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def is_busy(self, code: str) -> bool:
        lock = self._locks.get(code)
        return lock is not None and lock.locked()

    @property
    def busy_codes(self) -> frozenset[str]:
        return frozenset(code for code, lock in self._locks.items() if lock.locked())

    @asynccontextmanager
    async def hold(self, code: str) -> AsyncIterator[None]:
        """Hold *code* for the duration of the block.

        Raises:
            CaseBusyError: a mutation for *code* is already in flight
        """
        lock = self._locks.setdefault(code, asyncio.Lock())
        if lock.locked():
            logger.info("Rejected concurrent mutation", extra={"code": code})
            raise CaseBusyError(code)

        await lock.acquire()
        try:
            yield
        finally:
            lock.release()
            if self._locks.get(code) is lock:
                del self._locks[code]
