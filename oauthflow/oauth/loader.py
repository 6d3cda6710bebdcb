"""Authorized API requests.

``DataLoader`` sends arbitrary requests with the bearer token of an
``OAuth2`` instance. Requests that arrive while no usable token exists are
queued behind a single ``authorize()`` call and share its outcome. A 401
answer invalidates the access token and the request is retried once.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable

from .errors import OAuth2Error, RequestCancelled, UnauthorizedClient
from .orchestrator import OAuth2
from .request import WireRequest
from .transport import Transport, TransportResponse

logger = logging.getLogger(__name__)

ResponseCallback = Callable[[TransportResponse | None, OAuth2Error | None], None]


class DataLoader:
    """Sends requests that need an access token.

    Args:
        oauth2: The orchestrator providing tokens (not owned)
        transport: Transport for the API requests, defaults to the
            orchestrator's transport
        also_intercept_403: Treat 403 like 401, for APIs that answer
            expired tokens with 403
    """

    def __init__(
        self,
        oauth2: OAuth2,
        transport: Transport | None = None,
        also_intercept_403: bool = False,
    ):
        self.oauth2 = oauth2
        self.transport = transport or oauth2.transport
        self.also_intercept_403 = also_intercept_403

        self._authorizing = False
        self._queue: list[asyncio.Future[None]] = []

    @property
    def queued(self) -> int:
        """Number of requests waiting for the running authorization."""
        return len(self._queue)

    async def perform(
        self,
        request: WireRequest,
        callback: ResponseCallback | None = None,
    ) -> TransportResponse | None:
        """Send ``request`` with a bearer token, authorizing first if needed.

        Args:
            request: The API request, without an ``Authorization`` header
            callback: If given, receives ``(response, error)`` exactly once
                instead of the result being returned or raised

        Returns:
            The API response (None when a callback is given)

        Raises:
            OAuth2Error: If authorization fails, or ``UnauthorizedClient``
                if the API still rejects the token after one retry
        """
        try:
            response = await self._perform(request, retried=False)
        except OAuth2Error as e:
            if callback is None:
                raise
            callback(None, e)
            return None
        if callback is None:
            return response
        callback(response, None)
        return None

    def _is_unauthorized(self, status_code: int) -> bool:
        return status_code == 401 or (self.also_intercept_403 and status_code == 403)

    async def _perform(self, request: WireRequest, retried: bool) -> TransportResponse:
        if not self.oauth2.has_unexpired_access_token():
            await self._authorize_once()

        response = await self.transport.send(self.oauth2.sign(request))
        if not self._is_unauthorized(response.status_code):
            return response

        if retried:
            logger.debug(f"{request.url} rejected the new token as well")
            raise UnauthorizedClient()

        logger.debug(f"{request.url} answered {response.status_code}, clearing the access token")
        self.oauth2.clear_access_token()
        return await self._perform(request, retried=True)

    async def _authorize_once(self) -> None:
        """Wait for a usable token, running at most one ``authorize()`` at a time."""
        if self._authorizing:
            waiter = asyncio.get_running_loop().create_future()
            self._queue.append(waiter)
            await waiter
            return

        self._authorizing = True
        try:
            await self.oauth2.authorize()
        except asyncio.CancelledError:
            self._release(RequestCancelled())
            raise
        except OAuth2Error as e:
            self._release(e)
            raise
        self._release(None)

    def _release(self, error: OAuth2Error | None) -> None:
        waiters, self._queue = self._queue, []
        self._authorizing = False
        if waiters:
            logger.debug(f"Releasing {len(waiters)} queued request(s)")
        for waiter in waiters:
            if waiter.done():
                continue
            if error is None:
                waiter.set_result(None)
            else:
                waiter.set_exception(error)
