"""Request and response value types shared by the transport and runtime.

A :class:`PreparedRequest` is the handle of a signed-but-unsent request.
Batch execution correlates responses with handles by object identity, so
prepared requests compare by identity only.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional

import httpx

DEFAULT_OK_CODES = (200, 201, 204, 206)


@dataclass(frozen=True)
class RequestDescriptor:
    """Logical description of one API call.

    :param operation: API action name, e.g. ``DescribeInstances``
    :param params: Caller-supplied parameters, possibly nested
    :param domain: Target endpoint, with or without scheme and path
    :param signature_version: 2 or 3
    :param transport_options: Per-request transport overrides
    """

    operation: str
    params: Mapping[str, Any] = field(default_factory=dict)
    domain: str = ""
    signature_version: int = 2
    transport_options: Mapping[str, Any] = field(default_factory=dict)

    def cache_fingerprint(self) -> Dict[str, Any]:
        """Return the parts of the call that identify it for caching.

        :return: Operation, parameters, domain and signature version
        :rtype: Dict[str, Any]
        """
        return {
            "operation": self.operation,
            "params": dict(self.params),
            "domain": self.domain,
            "signature_version": self.signature_version,
        }


@dataclass(eq=False)
class PreparedRequest:
    """A signed request ready to be handed to the transport.

    :param method: HTTP method
    :param url: Absolute request URL
    :param headers: Request headers including any signature headers
    :param body: Encoded request body
    :param descriptor: The call this request was built from
    :param string_to_sign: The exact string that was signed
    :param transport_options: Per-request transport overrides
    """

    method: str
    url: str
    headers: Dict[str, str]
    body: str
    descriptor: Optional[RequestDescriptor] = None
    string_to_sign: str = ""
    transport_options: Dict[str, Any] = field(default_factory=dict)


class ResponseEnvelope:
    """Status, headers and body of a completed request.

    The body starts out as text and may later be replaced with a parsed
    document. HTTP error statuses are never raised; check :meth:`is_ok`.

    :param header: Response headers (lower-case keys)
    :type header: Dict[str, Any]
    :param body: Response body
    :type body: Any
    :param status: HTTP status code
    :type status: Optional[int]
    """

    def __init__(self, header: Dict[str, Any], body: Any, status: Optional[int] = None):
        self.header = header
        self.body = body
        self.status = status

    @classmethod
    def from_httpx(cls, response: httpx.Response) -> "ResponseEnvelope":
        """Build an envelope from an ``httpx`` response.

        :param response: Completed response
        :type response: httpx.Response
        :return: Envelope with text body
        :rtype: ResponseEnvelope
        """
        header = {key.lower(): value for key, value in response.headers.items()}
        header["_info"] = {
            "url": str(response.request.url) if response.request else None,
            "http_code": response.status_code,
            "http_version": response.http_version,
        }
        return cls(header, response.text, response.status_code)

    @property
    def status_code(self) -> Optional[int]:
        return self.status

    def is_ok(self, codes: Iterable[int] = DEFAULT_OK_CODES) -> bool:
        """Check the status against a set of success codes.

        :param codes: Accepted status codes, or a single code
        :type codes: Iterable[int]
        :return: True if the status is one of ``codes``
        :rtype: bool
        """
        if isinstance(codes, int):
            return self.status == codes
        return self.status in tuple(codes)

    def is_server_error(self) -> bool:
        """Check if the response indicates a server error (5xx status code)."""
        return self.status is not None and 500 <= self.status < 600

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, ResponseEnvelope):
            return NotImplemented
        return (
            self.status == other.status
            and self.header == other.header
            and self.body == other.body
        )

    def __repr__(self) -> str:
        return f"<ResponseEnvelope status={self.status}>"
