"""Batch queue for prepared requests.

Requests are queued by :meth:`cloudfusion.runtime.Runtime.authenticate`
while the batch flow is active and executed together by :meth:`send`.
A queue is meant to be filled and drained by one caller at a time.
"""

import logging
from typing import Iterator, List, Optional

from .utils.http import PreparedRequest, ResponseEnvelope, Transport

logger = logging.getLogger(__name__)


class BatchRequest:
    """Ordered queue of prepared requests sent concurrently.

    :param limit: Maximum requests in flight; falsy for no limit
    :type limit: Optional[int]
    """

    def __init__(self, limit: Optional[int] = None):
        self.queue: List[PreparedRequest] = []
        self.limit = limit if limit else -1

    def add(self, handle: PreparedRequest) -> "BatchRequest":
        """Append a prepared request to the queue.

        :param handle: Prepared request
        :type handle: PreparedRequest
        :return: This queue
        :rtype: BatchRequest
        """
        self.queue.append(handle)
        return self

    async def send(self, transport: Optional[Transport] = None) -> List[ResponseEnvelope]:
        """Send every queued request.

        The queue is left untouched; callers clear it when they are done.

        :param transport: Transport to send through
        :type transport: Optional[Transport]
        :return: Responses in queue order
        :rtype: List[ResponseEnvelope]
        :raises TransportError: If any request fails at the transport level
        """
        transport = transport or Transport()
        logger.debug(f"Sending batch of {len(self.queue)} request(s), limit {self.limit}")
        return await transport.send_multi_request(self.queue, limit=self.limit)

    def clear(self) -> None:
        """Empty the queue."""
        self.queue = []

    def __len__(self) -> int:
        return len(self.queue)

    def __iter__(self) -> Iterator[PreparedRequest]:
        return iter(self.queue)
