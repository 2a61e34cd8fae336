"""Registration and selection of cache backends.

Backends register themselves with :func:`register_backend`. The runtime
turns a configured cache location into a backend class once, when the
cache is configured.

Examples
--------
.. code-block:: python

   from cloudfusion.cache.registry import CacheBackendRegistry

   backend = CacheBackendRegistry.for_location("/var/cache/aws")
   store = backend("my-key", "/var/cache/aws", expires=3600)
"""

import logging
from typing import Any, Dict, Optional, Type

from ..exceptions import ConfigurationError
from .base import CacheStore

logger = logging.getLogger(__name__)

MEMORY_TOKENS = ("apc", "xcache", "memory")
SQL_PREFIX = "pdo."


def resolve_backend(location: Any) -> str:
    """Map a cache location onto a backend name.

    - a list of host/port mappings selects ``distributed``
    - ``apc``, ``xcache`` or ``memory`` selects ``memory``
    - a ``pdo.`` prefixed DSN selects ``sql``
    - any other string is a directory for ``file``

    :param location: Configured cache location
    :type location: Any
    :return: Backend name
    :rtype: str
    :raises ConfigurationError: If the location is empty or of an unknown type
    """
    if isinstance(location, (list, tuple)):
        return "distributed"
    if not isinstance(location, str) or not location:
        raise ConfigurationError(
            f"Invalid cache location: {location!r}", setting="cache_location"
        )
    lowered = location.lower()
    if lowered in MEMORY_TOKENS:
        return "memory"
    if lowered.startswith(SQL_PREFIX):
        return "sql"
    return "file"


class CacheBackendRegistry:
    """Registry of cache backend classes keyed by name."""

    _backends: Dict[str, Type[CacheStore]] = {}

    @classmethod
    def register(cls, name: str, backend_class: Type[CacheStore]) -> None:
        """Register a backend class.

        :param name: Unique backend name
        :param backend_class: Backend class to register
        :raises ValueError: If the name is already registered
        """
        if name in cls._backends:
            raise ValueError(f"Cache backend '{name}' is already registered")
        cls._backends[name] = backend_class
        logger.debug(f"Registered cache backend: {name} -> {backend_class.__name__}")

    @classmethod
    def get_backend_class(cls, name: str) -> Optional[Type[CacheStore]]:
        """Return a registered backend class, or None."""
        return cls._backends.get(name)

    @classmethod
    def for_location(cls, location: Any) -> Type[CacheStore]:
        """Return the backend class that serves ``location``.

        :param location: Configured cache location
        :return: Backend class
        :raises ConfigurationError: If no backend is registered for it
        """
        name = resolve_backend(location)
        backend_class = cls.get_backend_class(name)
        if backend_class is None:
            available = ", ".join(cls._backends) or "none"
            raise ConfigurationError(
                f"No cache backend registered for '{name}'. "
                f"Available backends: {available}",
                setting="cache_location",
            )
        return backend_class

    @classmethod
    def create(
        cls, name: str, location: Any, expires: float, gzip: bool = True
    ) -> CacheStore:
        """Build a store for ``name`` in the backend selected by ``location``."""
        return cls.for_location(location)(name, location, expires, gzip)

    @classmethod
    def list_backends(cls) -> Dict[str, Type[CacheStore]]:
        """Return a copy of the registered backends."""
        return cls._backends.copy()


def register_backend(name: str):
    """Return a decorator that registers a cache backend class.

    .. code-block:: python

       @register_backend("memory")
       class MemoryCache(CacheStore):
           ...

    :param name: Backend name
    :return: Decorator function
    """

    def decorator(backend_class: Type[CacheStore]):
        backend_class.backend_name = name
        CacheBackendRegistry.register(name, backend_class)
        return backend_class

    return decorator
