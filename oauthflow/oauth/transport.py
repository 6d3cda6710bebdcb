"""HTTP transport collaborator.

The engine only needs ``send(WireRequest) -> TransportResponse``. The
default implementation is backed by ``httpx.AsyncClient``; timeouts and
connection failures surface as ``NetworkError``.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from .errors import NetworkError, RequestCancelled
from .request import WireRequest

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20.0  # seconds


@dataclass
class TransportResponse:
    """Status, raw body and headers of an HTTP response."""

    status_code: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class Transport(Protocol):
    async def send(self, request: WireRequest) -> TransportResponse:
        ...


class HttpxTransport:
    """Transport over ``httpx.AsyncClient``.

    If no client is given, a short-lived one is created per request.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.http_client = http_client
        self.timeout = timeout

    async def send(self, request: WireRequest) -> TransportResponse:
        """Send a request.

        Raises:
            NetworkError: On timeouts and connection failures
            RequestCancelled: If the underlying client was closed mid-request
        """
        http = self.http_client or httpx.AsyncClient(timeout=self.timeout)
        should_close = self.http_client is None

        logger.debug(f"{request.method} {request.url}")
        try:
            response = await http.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body,
            )
        except httpx.TimeoutException as e:
            raise NetworkError(f"Request to {request.url} timed out") from e
        except httpx.RequestError as e:
            raise NetworkError(f"Request to {request.url} failed: {e}") from e
        except RuntimeError as e:
            # httpx raises RuntimeError when the client has been closed
            raise RequestCancelled(str(e)) from e
        finally:
            if should_close:
                await http.aclose()

        logger.debug(f"{request.method} {request.url} -> {response.status_code}")
        return TransportResponse(
            status_code=response.status_code,
            body=response.content,
            headers=dict(response.headers),
        )

    async def aclose(self) -> None:
        if self.http_client is not None:
            await self.http_client.aclose()
