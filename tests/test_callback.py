"""Tests for the redirect callback server and browser presenter."""

import asyncio
import socket

import pytest

from oauthflow.oauth.callback import (
    BrowserPresenter,
    CallbackTimeoutError,
    LocalhostCallbackServer,
    _render_page,
)
from oauthflow.oauth.errors import Generic, InvalidRedirectURL, UnableToOpenAuthorizeURL


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port: int = s.getsockname()[1]
    return port


async def _send(port: int, request_line: str) -> bytes:
    """Send a bare HTTP request to the callback server and return the response."""
    await asyncio.sleep(0.05)
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(f"{request_line} HTTP/1.1\r\nHost: localhost\r\n\r\n".encode())
    await writer.drain()
    response = await reader.read(4096)
    writer.close()
    await writer.wait_closed()
    return response


class TestRedirectValidation:
    """Tests for the redirect URIs the server accepts."""

    @pytest.mark.parametrize(
        "redirect_uri",
        [
            "https://127.0.0.1:8400/callback",
            "http://app.example.com:8400/callback",
            "http://127.0.0.1/callback",
            "oauth2://callback",
        ],
    )
    def test_rejects_non_loopback(self, redirect_uri: str) -> None:
        """Test that only loopback http URIs with a port are served."""
        with pytest.raises(InvalidRedirectURL):
            LocalhostCallbackServer(redirect_uri)

    def test_accepts_loopback(self) -> None:
        """Test parsing of a loopback redirect URI."""
        server = LocalhostCallbackServer("http://localhost:8400/oauth/cb")
        assert server.host == "localhost"
        assert server.port == 8400
        assert server.path == "/oauth/cb"


class TestLocalhostCallbackServer:
    """Tests for LocalhostCallbackServer."""

    @pytest.mark.asyncio
    async def test_captures_redirect(self) -> None:
        """Test that the redirect URL is returned with its query."""
        port = _free_port()
        async with LocalhostCallbackServer(f"http://127.0.0.1:{port}/callback", timeout=5) as server:
            sender = asyncio.create_task(_send(port, "GET /callback?code=abc&state=xyz"))

            redirect = await server.wait_for_redirect()
            response = await sender

        assert redirect == f"http://127.0.0.1:{port}/callback?code=abc&state=xyz"
        assert b"200 OK" in response
        assert b"Authorization Complete" in response

    @pytest.mark.asyncio
    async def test_wrong_path_ignored(self) -> None:
        """Test that other paths don't complete the wait."""
        port = _free_port()
        async with LocalhostCallbackServer(f"http://127.0.0.1:{port}/callback", timeout=5) as server:

            async def send_requests() -> bytes:
                response = await _send(port, "GET /favicon.ico")
                await _send(port, "GET /callback?code=right")
                return response

            sender = asyncio.create_task(send_requests())
            redirect = await server.wait_for_redirect()
            first_response = await sender

        assert b"404" in first_response
        assert redirect.endswith("/callback?code=right")

    @pytest.mark.asyncio
    async def test_post_rejected(self) -> None:
        """Test that only GET requests are accepted."""
        port = _free_port()
        async with LocalhostCallbackServer(f"http://127.0.0.1:{port}/callback", timeout=5):
            response = await _send(port, "POST /callback?code=abc")
        assert b"405" in response

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        """Test that waiting gives up after the timeout."""
        port = _free_port()
        async with LocalhostCallbackServer(f"http://127.0.0.1:{port}/callback", timeout=0.1) as server:
            with pytest.raises(CallbackTimeoutError) as exc_info:
                await server.wait_for_redirect()
        assert "0.1 seconds" in str(exc_info.value)


class TestRenderPage:
    """Tests for the page shown in the browser."""

    def test_error_page_is_escaped(self) -> None:
        """Test that error details are HTML-escaped."""
        page = _render_page("error=access_denied&error_description=%3Cscript%3E")
        assert "Authorization Failed" in page
        assert "<script>" not in page
        assert "&lt;script&gt;" in page


class TestBrowserPresenter:
    """Tests for BrowserPresenter."""

    @pytest.mark.asyncio
    async def test_opens_browser_and_returns_redirect(self) -> None:
        """Test the full browser round trip."""
        port = _free_port()
        opened: list[str] = []

        def open_browser(url: str) -> bool:
            opened.append(url)
            asyncio.get_running_loop().create_task(_send(port, "GET /cb?code=abc&state=s1"))
            return True

        presenter = BrowserPresenter(timeout=5, open_browser=open_browser)
        redirect = await presenter.present(
            "https://auth.example.com/authorize?state=s1", f"http://127.0.0.1:{port}/cb"
        )

        assert opened == ["https://auth.example.com/authorize?state=s1"]
        assert redirect == f"http://127.0.0.1:{port}/cb?code=abc&state=s1"

    @pytest.mark.asyncio
    async def test_browser_unavailable(self) -> None:
        """Test that a browser that cannot open is reported."""
        presenter = BrowserPresenter(timeout=5, open_browser=lambda url: False)
        with pytest.raises(UnableToOpenAuthorizeURL):
            await presenter.present("https://auth.example.com/authorize", f"http://127.0.0.1:{_free_port()}/cb")

    @pytest.mark.asyncio
    async def test_timeout_is_generic(self) -> None:
        """Test that a user who never returns fails the attempt."""
        presenter = BrowserPresenter(timeout=0.1, open_browser=lambda url: True)
        with pytest.raises(Generic):
            await presenter.present("https://auth.example.com/authorize", f"http://127.0.0.1:{_free_port()}/cb")
