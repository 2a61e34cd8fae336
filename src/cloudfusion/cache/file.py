"""File system cache backend.

Each entry is ``<location>/<name>.cache``. The file's modification time is
the entry's timestamp, so ``reset`` is a touch. File I/O runs in a worker
thread.
"""

import asyncio
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Optional

from ..exceptions import CacheError
from .base import CacheStore, CorruptPayloadError
from .registry import register_backend

logger = logging.getLogger(__name__)


@register_backend("file")
class FileCache(CacheStore):
    """Cache entries stored as files in an existing, writable directory."""

    def __init__(self, name: str, location: Any, expires: float, gzip: bool = True):
        if not name:
            raise CacheError("File cache entries need a name", backend="file")
        super().__init__(name, str(location), expires, gzip)
        self.directory = Path(self.location)
        self.path = self.directory / f"{name}.cache"
        self.lock_path = self.directory / f"{name}.lock"
        self.id = str(self.path)

    def _write_temp(self, blob: bytes) -> Path:
        temp_path = self.directory / f".{self.name}.{uuid.uuid4().hex}.tmp"
        with open(temp_path, "wb") as f:
            f.write(blob)
        return temp_path

    def _create(self, blob: bytes) -> bool:
        if self.path.exists():
            return False
        if not self.directory.is_dir() or not os.access(self.directory, os.W_OK):
            logger.warning(f"Cache directory {self.directory} is missing or read-only")
            return False
        try:
            temp_path = self._write_temp(blob)
            try:
                # link() fails if the entry already exists
                os.link(temp_path, self.path)
            finally:
                temp_path.unlink()
            return True
        except FileExistsError:
            return False
        except OSError as e:
            logger.error(f"Failed to create cache file {self.path}: {e}")
            return False

    def _update(self, blob: bytes) -> bool:
        if not self.path.exists() or not os.access(self.path, os.W_OK):
            return False
        try:
            self._write_temp(blob).replace(self.path)
            return True
        except OSError as e:
            logger.error(f"Failed to update cache file {self.path}: {e}")
            return False

    def _read_bytes(self) -> Optional[bytes]:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Failed to read cache file {self.path}: {e}")
            return None

    def _delete(self) -> bool:
        try:
            self.path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to delete cache file {self.path}: {e}")
            return False

    def _touch(self) -> bool:
        if not self.path.exists():
            return False
        try:
            os.utime(self.path, None)
            return True
        except OSError as e:
            logger.warning(f"Failed to touch cache file {self.path}: {e}")
            return False

    def _mtime(self) -> Optional[float]:
        try:
            return self.path.stat().st_mtime
        except OSError:
            return None

    def _lock(self) -> bool:
        try:
            fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
        except FileExistsError:
            return False
        except OSError as e:
            logger.warning(f"Failed to create lock file {self.lock_path}: {e}")
            return False
        os.close(fd)
        return True

    def _unlock(self) -> bool:
        try:
            self.lock_path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Failed to remove lock file {self.lock_path}: {e}")
            return False

    async def create(self, data: Any) -> bool:
        """Write the entry unless it already exists."""
        return await asyncio.to_thread(self._create, self.encode(data))

    async def read(self) -> Any:
        blob = await asyncio.to_thread(self._read_bytes)
        if blob is None:
            return None
        try:
            return self.decode(blob)
        except CorruptPayloadError as e:
            await self.discard_corrupt(e)
            return None

    async def update(self, data: Any) -> bool:
        """Overwrite an existing entry; a missing entry is not created."""
        return await asyncio.to_thread(self._update, self.encode(data))

    async def delete(self) -> bool:
        return await asyncio.to_thread(self._delete)

    async def timestamp(self) -> Optional[float]:
        return await asyncio.to_thread(self._mtime)

    async def reset(self) -> bool:
        return await asyncio.to_thread(self._touch)

    async def acquire_lock(self) -> bool:
        return await asyncio.to_thread(self._lock)

    async def release_lock(self) -> bool:
        self.locked = False
        return await asyncio.to_thread(self._unlock)
