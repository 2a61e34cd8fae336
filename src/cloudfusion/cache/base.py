"""Cache store abstraction and read-through orchestration.

Every backend binds one identity key at construction and exposes the
same seven coroutines. Payloads are pickled and, when ``gzip`` is set,
zlib-compressed before they reach the backend. A payload that cannot be
decoded is deleted and reported as a miss.
"""

import asyncio
import inspect
import logging
import pickle
import random
import time
import zlib
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Sequence

logger = logging.getLogger(__name__)

# Errors raised by pickle/zlib for truncated, foreign or tampered payloads
DECODE_ERRORS = (
    pickle.UnpicklingError,
    zlib.error,
    EOFError,
    AttributeError,
    ImportError,
    IndexError,
    TypeError,
    ValueError,
)


class CorruptPayloadError(Exception):
    """Raised internally when a stored payload cannot be decoded."""


class CacheStore(ABC):
    """Abstract base class for cache backends.

    :param name: Identity key of the cached entry
    :type name: str
    :param location: Backend-specific location (directory, DSN, servers)
    :type location: Any
    :param expires: Lifetime of the entry in seconds
    :type expires: float
    :param gzip: Compress payloads before storing them
    :type gzip: bool
    """

    backend_name = "base"

    def __init__(self, name: str, location: Any, expires: float, gzip: bool = True):
        self.name = name
        self.location = location
        self.expires = expires
        self.gzip = gzip
        self.id = name
        self.locked = False

    # -- serialization -----------------------------------------------------

    def encode(self, data: Any) -> bytes:
        """Serialize and optionally compress ``data``."""
        blob = pickle.dumps(data, protocol=pickle.HIGHEST_PROTOCOL)
        return zlib.compress(blob) if self.gzip else blob

    def decode(self, blob: bytes) -> Any:
        """Decompress and deserialize a stored payload.

        :raises CorruptPayloadError: If the payload cannot be decoded
        """
        try:
            raw = zlib.decompress(blob) if self.gzip else blob
            return pickle.loads(raw)
        except DECODE_ERRORS as e:
            raise CorruptPayloadError(str(e)) from e

    async def discard_corrupt(self, error: Exception) -> None:
        """Delete an undecodable entry so the next read is a clean miss."""
        logger.warning(
            f"Discarding corrupt {self.backend_name} cache entry {self.id}: {error}"
        )
        await self.delete()

    # -- storage contract --------------------------------------------------

    @abstractmethod
    async def create(self, data: Any) -> bool:
        """Store ``data`` for this key.

        :return: True if the entry was written
        """

    @abstractmethod
    async def read(self) -> Any:
        """Return the stored data, or None on a miss."""

    @abstractmethod
    async def update(self, data: Any) -> bool:
        """Overwrite the stored data."""

    @abstractmethod
    async def delete(self) -> bool:
        """Remove the entry."""

    @abstractmethod
    async def timestamp(self) -> Optional[float]:
        """Return when the entry was last written, or None."""

    @abstractmethod
    async def reset(self) -> bool:
        """Move the entry's timestamp to now without changing its data."""

    async def is_expired(self) -> bool:
        """Check whether the entry has outlived ``expires`` seconds.

        A missing timestamp counts as expired.
        """
        stamp = await self.timestamp()
        if stamp is None:
            return True
        return stamp + self.expires < time.time()

    # -- orchestration -----------------------------------------------------

    async def response_manager(
        self, callback: Callable[..., Any], params: Optional[Sequence[Any]] = None
    ) -> Any:
        """Serve from cache, refreshing through ``callback`` when needed.

        A hit that is still fresh is returned as is. An expired hit is
        replaced by the callback's result; if the callback returns
        something falsy the old entry's lifetime is extended and the old
        data is served again. A miss stores the callback's result when it
        is truthy. The callback may be a plain function or a coroutine.

        :param callback: Function that fetches fresh data
        :type callback: Callable[..., Any]
        :param params: Positional arguments for ``callback``
        :type params: Optional[Sequence[Any]]
        :return: Cached, refreshed or freshly created data
        :rtype: Any
        """
        if params is None:
            params = []
        elif not isinstance(params, (list, tuple)):
            params = [params]

        data = await self.read()
        if data:
            if await self.is_expired():
                data = await _call(callback, params)
                if data:
                    await self.update(data)
                else:
                    logger.info(f"Refresh failed for {self.id}, serving stale entry")
                    await self.reset()
                    data = await self.read()
        else:
            data = await _call(callback, params)
            if data:
                await self.create(data)
        return data

    # -- locking -----------------------------------------------------------

    async def acquire_lock(self) -> bool:
        """Try once to write this entry's lock marker.

        Backends without a conditional write report success.
        """
        return True

    async def release_lock(self) -> bool:
        """Remove this entry's lock marker."""
        self.locked = False
        return True

    async def lock_and_read(
        self,
        max_wait: float = 30.0,
        min_retry: float = 0.01,
        max_retry: float = 0.1,
    ) -> Any:
        """Acquire the entry's lock, then read it.

        Retries with a random delay between ``min_retry`` and ``max_retry``
        seconds. Once ``max_wait`` seconds have passed the read proceeds
        without the lock.

        :param max_wait: Ceiling on time spent waiting for the lock
        :type max_wait: float
        :param min_retry: Shortest sleep between attempts
        :type min_retry: float
        :param max_retry: Longest sleep between attempts
        :type max_retry: float
        :return: Stored data or None
        :rtype: Any
        """
        deadline = time.monotonic() + max_wait
        while True:
            if await self.acquire_lock():
                self.locked = True
                break
            if time.monotonic() >= deadline:
                logger.warning(
                    f"Lock wait for {self.id} exceeded {max_wait}s, reading unlocked"
                )
                break
            await asyncio.sleep(random.uniform(min_retry, max_retry))
        return await self.read()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.id!r}>"


async def _call(callback: Callable[..., Any], params: Sequence[Any]) -> Any:
    result = callback(*params)
    if inspect.isawaitable(result):
        result = await result
    return result
