"""Status-code retry for signed requests.

AWS query endpoints answer transient overload with HTTP 500 or 503. The
decorated coroutine is called again after ``delay * backoff**n`` seconds
(100ms, 400ms, 1.6s, ... by default) until it returns another status or
``max_retries`` retries have been spent. The last response is returned
either way; nothing is raised for HTTP statuses.

The coroutine receives the retry number as its first argument so each
attempt can be re-signed with a fresh timestamp.
"""

import asyncio
import logging
from functools import wraps
from typing import Awaitable, Callable, Tuple

from .request import ResponseEnvelope

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = (500, 503)


def backoff_delay(retry_count: int, delay: float = 0.1, backoff: float = 4.0) -> float:
    """Return the sleep before retry number ``retry_count`` (0-based).

    :param retry_count: Retries already performed
    :type retry_count: int
    :param delay: Base delay in seconds
    :type delay: float
    :param backoff: Multiplier per retry
    :type backoff: float
    :return: Delay in seconds
    :rtype: float
    """
    return (backoff**retry_count) * delay


def retry_on_status(
    max_retries: int = 3,
    status_codes: Tuple[int, ...] = RETRYABLE_STATUS_CODES,
    delay: float = 0.1,
    backoff: float = 4.0,
) -> Callable[
    [Callable[..., Awaitable[ResponseEnvelope]]],
    Callable[..., Awaitable[ResponseEnvelope]],
]:
    """Create a decorator that retries on retryable HTTP statuses.

    The wrapped coroutine runs at most ``1 + max_retries`` times.

    :param max_retries: Retries after the first attempt
    :type max_retries: int
    :param status_codes: Statuses that trigger a retry
    :type status_codes: Tuple[int, ...]
    :param delay: Base delay in seconds
    :type delay: float
    :param backoff: Multiplier for delay on each retry
    :type backoff: float
    :return: Decorator for async functions returning a response
    """

    def decorator(
        func: Callable[..., Awaitable[ResponseEnvelope]],
    ) -> Callable[..., Awaitable[ResponseEnvelope]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> ResponseEnvelope:
            retry_count = 0
            while True:
                response = await func(retry_count, *args, **kwargs)
                if response.status not in status_codes:
                    return response
                if retry_count >= max_retries:
                    logger.warning(
                        f"Giving up after {retry_count} retries, "
                        f"last status {response.status}"
                    )
                    return response
                wait = backoff_delay(retry_count, delay, backoff)
                logger.info(
                    f"Status {response.status}, retry {retry_count + 1}/"
                    f"{max_retries} in {wait:.1f}s"
                )
                await asyncio.sleep(wait)
                retry_count += 1

        return wrapper

    return decorator
