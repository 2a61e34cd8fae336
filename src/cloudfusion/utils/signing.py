"""Canonical query construction and HMAC signing helpers.

The only bit-exact contract owned by this package lives here: how the
parameter map is sorted and escaped into the signable string, and how
the HMAC-SHA256 digest is encoded.

Keys are sorted byte-wise, so ``"B"`` sorts before ``"a"``. Keys and
values are escaped per RFC 3986 with ``~`` left as is.
"""

import base64
import binascii
import hashlib
import hmac
import random
import re
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import quote, urlsplit

from .complextype import ComplexType

RFC2616_FORMAT = "%a, %d %b %Y %H:%M:%S GMT"
ISO8601_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

SIGNATURE_METHOD = "HmacSHA256"

_BASE64_RE = re.compile(r"^[a-zA-Z0-9/\r\n+]*={0,2}$")


def encode_signature2(value: Any) -> str:
    """Escape a key or value per RFC 3986.

    :param value: Value to encode
    :type value: Any
    :return: Percent-encoded string
    :rtype: str
    """
    return quote(stringify(value), safe="~")


def stringify(value: Any) -> str:
    """Render a parameter value the way AWS query APIs expect it.

    :param value: Scalar parameter value
    :type value: Any
    :return: String form, booleans as ``true``/``false``
    :rtype: str
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


def flatten_params(params: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    """Flatten nested parameters to dotted keys with string values.

    :param params: Parameter map, possibly nested
    :type params: Optional[Mapping[str, Any]]
    :return: Flat parameter map
    :rtype: Dict[str, str]
    """
    if not params:
        return {}
    flat = ComplexType.map(dict(params))
    return {key: stringify(value) for key, value in flat.items()}


def sort_params(params: Mapping[str, str]) -> List[Tuple[str, str]]:
    """Sort parameters by the UTF-8 bytes of their keys.

    :param params: Flat parameter map
    :type params: Mapping[str, str]
    :return: Sorted key/value pairs
    :rtype: List[Tuple[str, str]]
    """
    return sorted(params.items(), key=lambda item: item[0].encode("utf-8"))


def to_signable_string(pairs: Iterable[Tuple[str, Any]]) -> str:
    """Join key/value pairs into the canonical signable string.

    :param pairs: Ordered key/value pairs
    :type pairs: Iterable[Tuple[str, Any]]
    :return: ``k=v&k=v`` with RFC 3986 escaping
    :rtype: str
    """
    return "&".join(f"{encode_signature2(k)}={encode_signature2(v)}" for k, v in pairs)


def to_query_string(pairs: Iterable[Tuple[str, Any]]) -> str:
    """Join key/value pairs into a request body or query string.

    :param pairs: Ordered key/value pairs
    :type pairs: Iterable[Tuple[str, Any]]
    :return: Encoded query string
    :rtype: str
    """
    return "&".join(
        f"{quote(stringify(k), safe='')}={quote(stringify(v), safe='')}"
        for k, v in pairs
    )


def canonical_query(params: Mapping[str, Any]) -> str:
    """Flatten, sort and encode parameters into the signable string.

    :param params: Parameter map
    :type params: Mapping[str, Any]
    :return: Canonical query string
    :rtype: str
    """
    return to_signable_string(sort_params(flatten_params(params)))


def hmac_sha256(secret_key: str, message: str) -> bytes:
    """Compute the raw HMAC-SHA256 digest.

    :param secret_key: Secret access key
    :type secret_key: str
    :param message: String to sign
    :type message: str
    :return: Raw digest bytes
    :rtype: bytes
    """
    return hmac.new(
        secret_key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256
    ).digest()


def sign(secret_key: str, string_to_sign: str) -> str:
    """Compute a base64-encoded HMAC-SHA256 signature.

    :param secret_key: Secret access key
    :type secret_key: str
    :param string_to_sign: String to sign
    :type string_to_sign: str
    :return: Base64 signature
    :rtype: str
    """
    return base64.b64encode(hmac_sha256(secret_key, string_to_sign)).decode("ascii")


def hex_to_base64(value: str) -> str:
    """Convert a hex digest into base64.

    :param value: Hexadecimal string
    :type value: str
    :return: Base64 encoding of the raw bytes
    :rtype: str
    """
    return base64.b64encode(binascii.unhexlify(value)).decode("ascii")


def is_base64(value: str) -> bool:
    """Check whether a string only contains base64 characters.

    :param value: String to check
    :type value: str
    :return: True if the string looks base64-encoded
    :rtype: bool
    """
    return bool(_BASE64_RE.match(value))


def generate_nonce() -> str:
    """Generate a random GUID-style nonce for Signature Version 3.

    :return: Upper-case hex nonce shaped like a version 4 UUID
    :rtype: str
    """
    return "%04X%04X-%04X-%04X-%04X-%04X%04X%04X" % (
        random.randint(0, 65535),
        random.randint(0, 65535),
        random.randint(0, 65535),
        random.randint(16384, 20479),
        random.randint(32768, 49151),
        random.randint(0, 65535),
        random.randint(0, 65535),
        random.randint(0, 65535),
    )


def format_rfc2616(timestamp: float) -> str:
    """Format a POSIX timestamp as an HTTP ``Date`` header value."""
    return time.strftime(RFC2616_FORMAT, time.gmtime(timestamp))


def format_iso8601(timestamp: float) -> str:
    """Format a POSIX timestamp as the v2 ``Timestamp`` parameter."""
    return time.strftime(ISO8601_FORMAT, time.gmtime(timestamp))


def split_domain(domain: str) -> Tuple[str, str]:
    """Derive the host header and request URI from a domain.

    The scheme is ignored, the host is lower-cased and the port is kept
    only when it is neither 80 nor 443.

    :param domain: Domain with optional scheme, port and path
    :type domain: str
    :return: ``(host_header, request_uri)``
    :rtype: Tuple[str, str]
    """
    bare = re.sub(r"^https?://", "", domain.strip(), flags=re.IGNORECASE)
    parts = urlsplit(f"//{bare}")
    host_header = (parts.hostname or "").lower()
    if parts.port and parts.port not in (80, 443):
        host_header += f":{parts.port}"
    request_uri = parts.path or "/"
    return host_header, request_uri


def string_to_sign_v2(host_header: str, request_uri: str, query: str) -> str:
    """Build the Signature Version 2 string to sign."""
    return f"POST\n{host_header}\n{request_uri}\n{query}"


def string_to_sign_v3(date: str, nonce: str) -> str:
    """Build the Signature Version 3 string to sign."""
    return date + nonce


def authorization_header_v3(access_key: str, signature: str) -> str:
    """Build the ``X-Amzn-Authorization`` header value."""
    return (
        f"AWS3-HTTPS AWSAccessKeyId={access_key},"
        f"Algorithm={SIGNATURE_METHOD},Signature={signature}"
    )
