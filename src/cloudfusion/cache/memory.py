"""In-process cache backend.

Entries live in a dictionary shared by every instance in the process and
expire on their own, so this layer never reports an entry as expired.
"""

import logging
import threading
import time
from typing import Any, Dict, Optional, Tuple

from .base import CacheStore, CorruptPayloadError
from .registry import register_backend

logger = logging.getLogger(__name__)


@register_backend("memory")
class MemoryCache(CacheStore):
    """Process-wide cache with native TTL.

    An ``expires`` of zero or less stores the entry without a TTL.
    """

    _entries: Dict[str, Tuple[bytes, Optional[float]]] = {}
    _lock = threading.Lock()

    def __init__(self, name: str, location: Any, expires: float, gzip: bool = True):
        super().__init__(name, None, expires, gzip)

    def _deadline(self) -> Optional[float]:
        return time.time() + self.expires if self.expires > 0 else None

    def _store(self, data: Any) -> bool:
        blob = self.encode(data)
        with self._lock:
            self._entries[self.id] = (blob, self._deadline())
        return True

    async def create(self, data: Any) -> bool:
        return self._store(data)

    async def read(self) -> Any:
        with self._lock:
            entry = self._entries.get(self.id)
            if entry is None:
                return None
            blob, deadline = entry
            if deadline is not None and time.time() >= deadline:
                del self._entries[self.id]
                return None
        try:
            return self.decode(blob)
        except CorruptPayloadError as e:
            await self.discard_corrupt(e)
            return None

    async def update(self, data: Any) -> bool:
        return self._store(data)

    async def delete(self) -> bool:
        with self._lock:
            return self._entries.pop(self.id, None) is not None

    async def is_expired(self) -> bool:
        return False

    async def timestamp(self) -> Optional[float]:
        return None

    async def reset(self) -> bool:
        return False

    async def acquire_lock(self) -> bool:
        with self._lock:
            lock_id = f"{self.id}.lock"
            if lock_id in self._entries:
                return False
            self._entries[lock_id] = (b"", None)
            return True

    async def release_lock(self) -> bool:
        with self._lock:
            self._entries.pop(f"{self.id}.lock", None)
        self.locked = False
        return True

    @classmethod
    def clear(cls) -> None:
        """Drop every entry held by this process."""
        with cls._lock:
            cls._entries.clear()
