"""Per-resource mutexes.

One ``threading.Lock`` per resource id, created on first use. Holding it
serializes admissions against the same resource inside this process; the
database row lock taken by the registry does the same across processes.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Hashable

from shared.domain.exceptions import LockTimeoutError

logger = logging.getLogger(__name__)


class ResourceLock:
    def __init__(self, resource_id: Hashable):
        self.resource_id = resource_id
        self._lock = threading.Lock()

    def acquire(self, timeout: float) -> "ResourceLock":
        """Wait at most ``timeout`` seconds for the lock."""
        if not self._lock.acquire(timeout=timeout):
            logger.warning(f"Timed out after {timeout}s waiting for resource {self.resource_id}")
            raise LockTimeoutError(details={"resource_id": self.resource_id})
        return self

    def release(self) -> None:
        self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()


class ResourceLockRegistry:
    """Maps resource ids to their ``ResourceLock``."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, ResourceLock] = {}

    def lock_for(self, resource_id: Hashable) -> ResourceLock:
        with self._guard:
            lock = self._locks.get(resource_id)
            if lock is None:
                lock = self._locks[resource_id] = ResourceLock(resource_id)
            return lock

    def acquire(self, resource_id: Hashable, timeout: float) -> ResourceLock:
        return self.lock_for(resource_id).acquire(timeout)


resource_locks = ResourceLockRegistry()
