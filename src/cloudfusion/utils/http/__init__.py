"""HTTP utilities public API (barrel module).

This package provides:
- Shared HTTP client manager and helpers
- Prepared request and response envelope types
- Single and batched request transport
- Status-code retry with exponential backoff

Recommended import pattern for consumers:
    from cloudfusion.utils.http import Transport, PreparedRequest, retry_on_status
"""

from .client_manager import (
    HTTPClientManager,
    create_limits,
    create_timeout,
    get_http_client,
    http_client_manager,
)
from .request import (
    DEFAULT_OK_CODES,
    PreparedRequest,
    RequestDescriptor,
    ResponseEnvelope,
)
from .retry import RETRYABLE_STATUS_CODES, backoff_delay, retry_on_status
from .transport import Transport

__all__ = [
    "HTTPClientManager",
    "http_client_manager",
    "get_http_client",
    "create_timeout",
    "create_limits",
    "DEFAULT_OK_CODES",
    "PreparedRequest",
    "RequestDescriptor",
    "ResponseEnvelope",
    "RETRYABLE_STATUS_CODES",
    "backoff_delay",
    "retry_on_status",
    "Transport",
]
