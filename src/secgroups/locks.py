"""Per-scope mutual exclusion for reconciliation runs.

Two runs over the same scope must never interleave their writes. This
registry serializes runs inside one process; running several processes
against the same scope needs a distributed lock (a database advisory lock
or a blob lease) in front of it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from .errors import SyncInProgressError

logger = logging.getLogger(__name__)


class ScopeLockRegistry:
    """Hands out one asyncio lock per scope key."""

    def __init__(self, timeout_seconds: float) -> None:
        """Initialize the registry.

        Args:
            timeout_seconds: How long to wait for a held scope lock.
        """
        self._timeout_seconds = timeout_seconds
        self._locks: dict[str, asyncio.Lock] = {}

    def is_locked(self, scope_key: str) -> bool:
        lock = self._locks.get(scope_key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, scope_key: str) -> AsyncIterator[None]:
        """Hold the lock for ``scope_key`` for the duration of the block.

        Raises:
            SyncInProgressError: If the lock cannot be acquired in time.
        """
        lock = self._locks.setdefault(scope_key, asyncio.Lock())
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self._timeout_seconds)
        except TimeoutError as e:
            logger.warning(
                "Timeout acquiring scope lock",
                extra={"scope_key": scope_key, "timeout_seconds": self._timeout_seconds},
            )
            raise SyncInProgressError(
                f"Another reconciliation run holds the lock for scope {scope_key}"
            ) from e

        logger.debug("Acquired scope lock", extra={"scope_key": scope_key})
        try:
            yield
        finally:
            lock.release()
            logger.debug("Released scope lock", extra={"scope_key": scope_key})
