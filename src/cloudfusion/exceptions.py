"""Structured exception classes for CloudFusion.

Only programmer misconfiguration and transport-level faults are raised.
Cache misses and retryable HTTP statuses are ordinary return values.
"""

import json
from typing import Any, Dict, Optional


class CloudFusionError(Exception):
    """Base exception for all CloudFusion errors.

    :param message: Human-readable error message
    :param code: Optional error code for programmatic handling
    :param details: Optional dictionary containing additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize the exception with message, code, and details."""
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format.

        :return: Dictionary containing error code, message, and details
        """
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }

    def to_json(self) -> str:
        """Convert exception to JSON string.

        :return: JSON-encoded string representation of the exception
        """
        return json.dumps(self.to_dict())


class ConfigurationError(CloudFusionError):
    """Raised for configuration-related errors.

    Missing credentials, calling ``cache()`` before a cache location was
    configured, unknown operations and unknown cache backends all end up
    here. These are raised immediately at call time.

    :param message: Description of the configuration error
    :param setting: Optional name of the problematic setting
    """

    def __init__(self, message: str, setting: Optional[str] = None):
        """Initialize configuration error with message and optional setting."""
        details = {}
        if setting:
            details["setting"] = setting
        super().__init__(message=message, code="CONFIGURATION_ERROR", details=details)
        self.setting = setting


class BatchRequestError(ConfigurationError):
    """Raised when the batch API is used out of sequence.

    :param message: Description of the misuse
    """

    def __init__(self, message: str):
        """Initialize batch request error with message."""
        super().__init__(message)
        self.code = "BATCH_REQUEST_ERROR"


class TransportError(CloudFusionError):
    """Raised when a request fails below the HTTP layer.

    Connection, DNS, TLS and timeout failures are transport faults. Inside
    a batch, one transport fault fails the whole batch.

    :param message: Description of the transport failure
    :param url: Optional URL of the request that failed
    :param index: Optional position of the failed request within a batch
    :param original_error: Optional underlying exception
    """

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        index: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        """Initialize transport error with message and optional context."""
        details: Dict[str, Any] = {}
        if url:
            details["url"] = url
        if index is not None:
            details["index"] = index
        if original_error:
            details["original_error"] = str(original_error)
            details["error_type"] = type(original_error).__name__
        super().__init__(message=message, code="TRANSPORT_ERROR", details=details)
        self.url = url
        self.index = index
        self.original_error = original_error


class CacheError(CloudFusionError):
    """Raised for misuse of the cache layer.

    Backend I/O faults and corrupt payloads are never raised; they are
    reported as cache misses.

    :param message: Description of the cache error
    :param backend: Optional name of the cache backend
    """

    def __init__(self, message: str, backend: Optional[str] = None):
        """Initialize cache error with message and optional backend name."""
        details = {}
        if backend:
            details["backend"] = backend
        super().__init__(message=message, code="CACHE_ERROR", details=details)
