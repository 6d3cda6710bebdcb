"""Presentation of the authorize URL and interception of the redirect.

``AuthorizationPresenter`` is the interface the ``OAuth2`` orchestrator
uses to show the authorize URL to the user and get back the URL the user
was redirected to. ``BrowserPresenter`` opens the system browser and
catches the redirect with ``LocalhostCallbackServer``, an ephemeral HTTP
server bound to the loopback redirect URI.

Only query-carrying redirects reach a server, so the implicit grant needs
``params_in_query`` to be used with ``BrowserPresenter``.
"""

import asyncio
import html
import logging
import webbrowser
from http import HTTPStatus
from typing import Any, Protocol
from urllib.parse import urlparse

from .errors import Generic, InvalidRedirectURL, UnableToOpenAuthorizeURL
from .request import LOOPBACK_HOSTS, params_from_query

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300  # seconds

PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{title}</title>
    <style>
        body {{ font-family: -apple-system, 'Segoe UI', sans-serif; margin: 15vh auto;
               max-width: 32em; text-align: center; color: #222; }}
        h1 {{ font-size: 1.4em; }}
        code {{ background: #f3f3f3; padding: 0.2em 0.4em; }}
    </style>
</head>
<body>
    <h1>{title}</h1>
    <p>{message}</p>
</body>
</html>"""


class CallbackError(Exception):
    """Error while waiting for the authorization redirect."""

    pass


class CallbackTimeoutError(CallbackError):
    """The user did not complete authorization in time."""

    pass


class AuthorizationPresenter(Protocol):
    async def present(self, url: str, redirect_uri: str) -> str:
        """Show ``url`` to the user and return the redirect URL they land on."""
        ...


def _render_page(query: str) -> str:
    params = params_from_query(query)
    if "error" in params or "error_description" in params:
        error = html.escape(params.get("error", "unknown_error"))
        description = html.escape(params.get("error_description", "No description provided"))
        return PAGE_TEMPLATE.format(
            title="Authorization Failed",
            message=f"<code>{error}</code>: {description}",
        )
    return PAGE_TEMPLATE.format(
        title="Authorization Complete",
        message="You can close this window and return to the terminal.",
    )


class LocalhostCallbackServer:
    """One-shot HTTP server that captures the redirect on a loopback address.

    Usage:
        async with LocalhostCallbackServer("http://127.0.0.1:8400/callback") as server:
            # send the user to the authorize URL
            redirect = await server.wait_for_redirect()
    """

    def __init__(self, redirect_uri: str, timeout: float = DEFAULT_TIMEOUT):
        parsed = urlparse(redirect_uri)
        if parsed.scheme != "http" or parsed.hostname not in LOOPBACK_HOSTS:
            raise InvalidRedirectURL(redirect_uri)
        if parsed.port is None:
            raise InvalidRedirectURL(redirect_uri)

        self.redirect_uri = redirect_uri
        self.host = parsed.hostname
        self.port = parsed.port
        self.path = parsed.path or "/"
        self.timeout = timeout

        self._server: asyncio.Server | None = None
        self._redirect: asyncio.Future[str] | None = None

    async def start(self) -> None:
        self._redirect = asyncio.get_running_loop().create_future()
        try:
            self._server = await asyncio.start_server(self._handle_connection, self.host, self.port)
        except OSError as e:
            raise CallbackError(f"Cannot listen on {self.host}:{self.port}: {e}") from e
        logger.debug(f"Waiting for the redirect on {self.redirect_uri}")

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def wait_for_redirect(self) -> str:
        """The full redirect URL, including its query.

        Raises:
            CallbackTimeoutError: If no redirect arrives within ``timeout``
        """
        if self._redirect is None:
            raise CallbackError("Server not started")
        try:
            return await asyncio.wait_for(asyncio.shield(self._redirect), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise CallbackTimeoutError(
                f"No authorization redirect received within {self.timeout} seconds"
            ) from None

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        try:
            request_line = (await reader.readline()).decode("utf-8", errors="replace")
            while (await reader.readline()) not in (b"\r\n", b"\n", b""):
                pass

            parts = request_line.split()
            if len(parts) < 2 or parts[0] != "GET":
                await self._respond(writer, HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed")
                return

            target = urlparse(parts[1])
            if target.path != self.path:
                await self._respond(writer, HTTPStatus.NOT_FOUND, "Not found")
                return

            await self._respond(
                writer, HTTPStatus.OK, _render_page(target.query), content_type="text/html"
            )
            if self._redirect is not None and not self._redirect.done():
                self._redirect.set_result(f"http://{self.host}:{self.port}{parts[1]}")
        except (ConnectionError, UnicodeError) as e:
            logger.warning(f"Error handling redirect request: {e}")
        finally:
            writer.close()

    async def _respond(
        self,
        writer: asyncio.StreamWriter,
        status: HTTPStatus,
        body: str,
        content_type: str = "text/plain",
    ) -> None:
        payload = body.encode("utf-8")
        head = (
            f"HTTP/1.1 {status.value} {status.phrase}\r\n"
            f"Content-Type: {content_type}; charset=utf-8\r\n"
            f"Content-Length: {len(payload)}\r\n"
            f"X-Content-Type-Options: nosniff\r\n"
            f"X-Frame-Options: DENY\r\n"
            f"Connection: close\r\n\r\n"
        )
        writer.write(head.encode("utf-8") + payload)
        await writer.drain()

    async def __aenter__(self) -> "LocalhostCallbackServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()


class BrowserPresenter:
    """Opens the authorize URL in the system browser and waits for the redirect.

    Args:
        timeout: Seconds to wait for the user to finish
        open_browser: Callable opening a URL, returns False on failure
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, open_browser: Any = None):
        self.timeout = timeout
        self.open_browser = open_browser or webbrowser.open

    async def present(self, url: str, redirect_uri: str) -> str:
        """Open ``url`` and return the redirect URL.

        Raises:
            InvalidRedirectURL: If ``redirect_uri`` is not a loopback http URL with a port
            UnableToOpenAuthorizeURL: If no browser could be opened
            Generic: If the user did not finish in time
        """
        try:
            async with LocalhostCallbackServer(redirect_uri, timeout=self.timeout) as server:
                if not self.open_browser(url):
                    raise UnableToOpenAuthorizeURL(f"Cannot open authorize URL: {url}")
                return await server.wait_for_redirect()
        except CallbackError as e:
            raise Generic(str(e)) from e
