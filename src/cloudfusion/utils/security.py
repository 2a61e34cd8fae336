"""Log redaction for signed requests.

A Signature Version 2 body carries the access key id and the HMAC
signature in clear text, and a Version 3 request carries both in the
``X-Amzn-Authorization`` header. Debug logging prints bodies and
headers, so everything logged through :func:`setup_secure_logging` is
passed through :func:`sanitize_string` first.
"""

import logging
import re
import sys
from typing import Any, Dict, Mapping

logger = logging.getLogger(__name__)

REDACTED = "<REDACTED>"

# Group 1 is kept, the value after it is replaced
SENSITIVE_PATTERNS = {
    "signature": re.compile(r"(Signature=)[^&,\s]+"),
    "access_key": re.compile(r"(AWSAccessKeyId=)[^&,\s]+"),
    "aws3_auth": re.compile(r"(AWS3-HTTPS\s+)[^\s'\"]+"),
    "secret_key": re.compile(
        r"((?:secret_key|SecretAccessKey)['\"]?\s*[:=]\s*['\"]?)[^&,\s'\"]+"
    ),
}

# Header values dropped wholesale, compared lower-case
SENSITIVE_HEADERS = frozenset(
    {
        "authorization",
        "x-amzn-authorization",
        "x-amz-security-token",
        "cookie",
        "set-cookie",
    }
)


def sanitize_string(value: str) -> str:
    """Replace signatures, access key ids and secrets in ``value``.

    :param value: Request body, URL or log message
    :type value: str
    :return: The text with sensitive values replaced by ``<REDACTED>``
    :rtype: str
    """
    if not value:
        return value
    for pattern in SENSITIVE_PATTERNS.values():
        value = pattern.sub(rf"\g<1>{REDACTED}", value)
    return value


def sanitize_headers(headers: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a redacted copy of request or response headers.

    Authorization-style headers keep only their length; other string
    values go through :func:`sanitize_string`.

    :param headers: Header mapping
    :type headers: Mapping[str, Any]
    :rtype: Dict[str, Any]
    """
    result: Dict[str, Any] = {}
    for name, value in (headers or {}).items():
        if name.lower() in SENSITIVE_HEADERS:
            result[name] = (
                f"<REDACTED:length={len(value)}>"
                if isinstance(value, str) and value
                else REDACTED
            )
        elif isinstance(value, str):
            result[name] = sanitize_string(value)
        else:
            result[name] = value
    return result


class SanitizingFormatter(logging.Formatter):
    """Formatter that redacts the fully merged log message."""

    def format(self, record: logging.LogRecord) -> str:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            message = str(record.msg)
        record.msg = sanitize_string(message)
        record.args = None
        return super().format(record)


_LOGGING_CONFIGURED = False


def setup_secure_logging(level: str = "INFO", force: bool = False) -> None:
    """Send root logging to stdout through a :class:`SanitizingFormatter`.

    Only the first call configures logging unless ``force`` is set.

    :param level: Level name, case-insensitive
    :type level: str
    :param force: Replace an earlier configuration
    :type force: bool
    """
    global _LOGGING_CONFIGURED

    if _LOGGING_CONFIGURED and not force:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        SanitizingFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    logging.basicConfig(level=level.upper(), handlers=[handler], force=True)

    # httpx logs every request URL at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    _LOGGING_CONFIGURED = True
    logger.debug(f"Logging configured at {level.upper()}")
