"""CloudFusion: request signing, caching and batching core for AWS query APIs.

The package builds and signs AWS "query" style requests (Signature
Version 2 and 3), sends them through a shared ``httpx`` client, and can
route individual calls through a pluggable response cache or a batch
queue that executes requests concurrently.

:var __version__: Current package version
:type __version__: str
"""

__version__ = "2.3.0"

from .batch import BatchRequest
from .exceptions import (
    BatchRequestError,
    CacheError,
    CloudFusionError,
    ConfigurationError,
    TransportError,
)
from .runtime import Runtime

__all__ = [
    "__version__",
    "BatchRequest",
    "Runtime",
    "CloudFusionError",
    "ConfigurationError",
    "BatchRequestError",
    "TransportError",
    "CacheError",
]
