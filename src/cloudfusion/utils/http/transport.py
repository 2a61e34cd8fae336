"""Single and batched request execution over ``httpx``.

Batches run on one event loop with a rolling concurrency window: up to
``limit`` requests are in flight, and each completion admits the next
queued request. Results come back in submission order. The first
transport-level fault aborts the whole batch; HTTP error statuses are
ordinary results.
"""

import asyncio
import logging
from collections import deque
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ...exceptions import TransportError
from ..security import sanitize_headers, sanitize_string
from .client_manager import create_timeout, get_http_client
from .request import PreparedRequest, ResponseEnvelope

logger = logging.getLogger(__name__)

# Options a caller may override per request
REQUEST_OPTIONS = ("timeout", "follow_redirects", "extensions")


class Transport:
    """Send prepared requests through a shared ``httpx.AsyncClient``.

    :param client: Explicit client to use instead of the shared one
    :type client: Optional[httpx.AsyncClient]
    :param proxy: Optional proxy URL
    :type proxy: Optional[str]
    :param connect_timeout: Connect timeout in seconds
    :type connect_timeout: float
    :param request_timeout: Overall ceiling in seconds
    :type request_timeout: float
    :param debug: Log full requests and responses at DEBUG level
    :type debug: bool
    :param verify: Verify TLS certificates
    :type verify: bool
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        proxy: Optional[str] = None,
        connect_timeout: float = 120.0,
        request_timeout: float = 5184000.0,
        debug: bool = False,
        verify: bool = True,
    ):
        self._client = client
        self.proxy = proxy
        self.connect_timeout = connect_timeout
        self.request_timeout = request_timeout
        self.debug = debug
        self.verify = verify

    async def get_client(self) -> httpx.AsyncClient:
        """Return the explicit client or a shared one for this configuration."""
        if self._client is not None:
            return self._client
        return await get_http_client(
            timeout=create_timeout(self.connect_timeout, self.request_timeout),
            proxy=self.proxy,
            verify=self.verify,
        )

    async def send_request(self, request: PreparedRequest) -> ResponseEnvelope:
        """Send one prepared request.

        :param request: Signed request
        :type request: PreparedRequest
        :return: Response envelope with a text body
        :rtype: ResponseEnvelope
        :raises TransportError: If the request fails below the HTTP layer,
            including redirect loops, undecodable bodies and invalid URLs
        """
        client = await self.get_client()
        headers = dict(request.headers)
        headers.update(request.transport_options.get("headers", {}))
        options: Dict[str, Any] = {
            name: request.transport_options[name]
            for name in REQUEST_OPTIONS
            if name in request.transport_options
        }

        if self.debug:
            logger.debug(
                "%s %s headers=%s body=%s",
                request.method,
                request.url,
                sanitize_headers(headers),
                sanitize_string(request.body),
            )

        try:
            response = await client.request(
                request.method,
                request.url,
                headers=headers,
                content=request.body,
                **options,
            )
        except (httpx.RequestError, httpx.InvalidURL) as e:
            logger.error(f"Transport failure for {request.method} {request.url}: {e}")
            raise TransportError(
                f"Request failed: {e}", url=request.url, original_error=e
            ) from e

        envelope = ResponseEnvelope.from_httpx(response)
        if self.debug:
            logger.debug("Response %s: %s", envelope.status, envelope.body)
        return envelope

    async def send_multi_request(
        self, handles: Sequence[PreparedRequest], limit: Optional[int] = -1
    ) -> List[ResponseEnvelope]:
        """Send several prepared requests concurrently.

        :param handles: Prepared requests in submission order
        :type handles: Sequence[PreparedRequest]
        :param limit: Maximum requests in flight; ``None`` or ``<= 0`` for all
        :type limit: Optional[int]
        :return: Responses in submission order
        :rtype: List[ResponseEnvelope]
        :raises TransportError: If any request fails at the transport level
        """
        handle_list = list(handles)
        if not handle_list:
            return []

        window = len(handle_list) if not limit or limit <= 0 else limit
        queue = deque(handle_list)
        active: Dict[asyncio.Task, PreparedRequest] = {}
        results: Dict[int, ResponseEnvelope] = {}

        def admit() -> None:
            handle = queue.popleft()
            active[asyncio.ensure_future(self.send_request(handle))] = handle

        while queue and len(active) < window:
            admit()

        try:
            while active:
                done, _ = await asyncio.wait(
                    list(active), return_when=asyncio.FIRST_COMPLETED
                )
                for task in done:
                    handle = active.pop(task)
                    index = _index_of(handle_list, handle)
                    try:
                        results[index] = task.result()
                    except TransportError as e:
                        logger.error(f"Aborting batch: request {index} failed")
                        raise TransportError(
                            f"Batch aborted, request {index} failed: {e.message}",
                            url=handle.url,
                            index=index,
                            original_error=e.original_error,
                        ) from e
                    if queue:
                        admit()
        finally:
            for task in active:
                task.cancel()
            if active:
                await asyncio.gather(*active, return_exceptions=True)

        logger.debug(f"Batch of {len(handle_list)} request(s) completed")
        return [results[index] for index in sorted(results)]


def _index_of(handles: Sequence[PreparedRequest], handle: PreparedRequest) -> int:
    """Find ``handle`` in ``handles`` by identity."""
    for index, candidate in enumerate(handles):
        if candidate is handle:
            return index
    raise ValueError("Completed request is not part of this batch")
