"""Distributed cache backend backed by Redis.

The location is a list of servers::

    [{"host": "cache1.internal", "port": 6379}, {"host": "cache2.internal"}]

Keys are spread across the servers by CRC32. Redis expires entries on
its own, so this layer never reports an entry as expired.
"""

import asyncio
import logging
import zlib
from typing import Any, Dict, List, Optional, Tuple

from redis.asyncio import Redis
from redis.exceptions import RedisError

from ..exceptions import ConfigurationError
from .base import CacheStore, CorruptPayloadError
from .registry import register_backend

logger = logging.getLogger(__name__)

DEFAULT_PORT = 6379

# Lock markers outlive a crashed holder by at most this many seconds
LOCK_TTL = 30

_clients: Dict[Tuple[Optional[int], str, int], Redis] = {}


def parse_servers(location: Any) -> List[Tuple[str, int]]:
    """Normalize a server list into ``(host, port)`` pairs.

    :param location: List of mappings with ``host`` and optional ``port``
    :type location: Any
    :return: Server addresses in configuration order
    :rtype: List[Tuple[str, int]]
    :raises ConfigurationError: If no usable server is configured
    """
    servers = []
    for entry in location or []:
        if isinstance(entry, str):
            host, _, port = entry.partition(":")
            servers.append((host, int(port) if port else DEFAULT_PORT))
        elif isinstance(entry, dict) and entry.get("host"):
            servers.append((entry["host"], int(entry.get("port") or DEFAULT_PORT)))
    if not servers:
        raise ConfigurationError(
            "Distributed cache needs at least one server", setting="cache_location"
        )
    return servers


def get_client(host: str, port: int) -> Redis:
    """Return the shared client for one server on the running event loop.

    Connections belong to the loop that opened them, so each loop gets
    its own client.
    """
    try:
        loop_id = id(asyncio.get_running_loop())
    except RuntimeError:
        loop_id = None
    key = (loop_id, host, port)
    client = _clients.get(key)
    if client is None:
        client = Redis(host=host, port=port)
        _clients[key] = client
        logger.debug(f"Created Redis client for {host}:{port}")
    return client


async def close_clients() -> None:
    """Close every shared Redis client."""
    for (_, host, port), client in list(_clients.items()):
        try:
            await client.aclose()
        except (RedisError, RuntimeError) as e:
            logger.warning(f"Error closing Redis client {host}:{port}: {e}")
    _clients.clear()


@register_backend("distributed")
class DistributedCache(CacheStore):
    """Cache entries stored in one of several Redis servers."""

    def __init__(self, name: str, location: Any, expires: float, gzip: bool = True):
        super().__init__(name, location, expires, gzip)
        self.servers = parse_servers(location)

    @property
    def client(self) -> Redis:
        host, port = self.servers[zlib.crc32(self.id.encode("utf-8")) % len(self.servers)]
        return get_client(host, port)

    def _ttl_ms(self) -> Optional[int]:
        return int(self.expires * 1000) if self.expires > 0 else None

    async def create(self, data: Any) -> bool:
        try:
            return bool(await self.client.set(self.id, self.encode(data), px=self._ttl_ms()))
        except RedisError as e:
            logger.error(f"Failed to store cache key {self.id}: {e}")
            return False

    async def read(self) -> Any:
        try:
            blob = await self.client.get(self.id)
        except RedisError as e:
            logger.warning(f"Failed to read cache key {self.id}: {e}")
            return None
        if blob is None:
            return None
        try:
            return self.decode(blob)
        except CorruptPayloadError as e:
            await self.discard_corrupt(e)
            return None

    async def update(self, data: Any) -> bool:
        """Replace the stored value; a missing key is left missing."""
        try:
            return bool(
                await self.client.set(self.id, self.encode(data), px=self._ttl_ms(), xx=True)
            )
        except RedisError as e:
            logger.error(f"Failed to replace cache key {self.id}: {e}")
            return False

    async def delete(self) -> bool:
        try:
            return bool(await self.client.delete(self.id))
        except RedisError as e:
            logger.warning(f"Failed to delete cache key {self.id}: {e}")
            return False

    async def is_expired(self) -> bool:
        return False

    async def timestamp(self) -> Optional[float]:
        return None

    async def reset(self) -> bool:
        return False

    async def acquire_lock(self) -> bool:
        try:
            return bool(
                await self.client.set(f"{self.id}.lock", b"1", nx=True, ex=LOCK_TTL)
            )
        except RedisError as e:
            logger.warning(f"Failed to write lock key for {self.id}: {e}")
            return False

    async def release_lock(self) -> bool:
        self.locked = False
        try:
            return bool(await self.client.delete(f"{self.id}.lock"))
        except RedisError as e:
            logger.warning(f"Failed to release lock key for {self.id}: {e}")
            return False
