"""Pluggable response cache.

Importing this package registers every built-in backend:

- ``file``: one file per entry in a directory
- ``memory``: process-wide dictionary with TTL
- ``sql``: SQLAlchemy table selected by a ``pdo.`` DSN
- ``distributed``: Redis servers selected by a host/port list
"""

from .base import CacheStore
from .distributed import DistributedCache
from .file import FileCache
from .memory import MemoryCache
from .registry import CacheBackendRegistry, register_backend, resolve_backend
from .sql import SQLCache

__all__ = [
    "CacheStore",
    "CacheBackendRegistry",
    "register_backend",
    "resolve_backend",
    "FileCache",
    "MemoryCache",
    "SQLCache",
    "DistributedCache",
]
