"""Loopback callback listener for OAuth redirects.

This module provides an ephemeral HTTP server that receives the provider's
authorization redirect. It:
- Binds 127.0.0.1 on an OS-assigned port (never a public interface)
- Resolves a one-shot future with the first request carrying ``code`` or ``error``
- Answers every other request without touching the result (prefetch, favicon)
- Returns a small HTML page telling the user to go back to the launcher
"""

import asyncio
import html
import logging
import socket
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger(__name__)

LOOPBACK_HOST = "127.0.0.1"

# Third-party sign-in (federated providers) can keep the user busy for a while
DEFAULT_TIMEOUT = 15 * 60  # seconds

# Browsers open speculative connections that may never send a request
REQUEST_READ_TIMEOUT = 10.0  # seconds


class CallbackError(Exception):
    """Error during OAuth callback handling."""

    pass


class CallbackTimeoutError(CallbackError):
    """Timeout waiting for OAuth callback."""

    pass


@dataclass
class CallbackResult:
    """Result from OAuth callback.

    Attributes:
        code: The authorization code from the callback
        state: The state parameter from the callback
        error: Error code if authorization failed
        error_description: Human-readable error description
    """

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    def is_success(self) -> bool:
        """Check if callback was successful."""
        return bool(self.code) and not self.error

    def is_meaningful(self) -> bool:
        """Check if the request carries a code or an error."""
        return bool(self.code) or bool(self.error)


_PAGE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family: sans-serif; text-align: center; margin-top: 15vh;">
    <h1>{heading}</h1>
    <p>{detail}</p>
</body>
</html>"""

# Sent with every HTML page; the listener serves nothing but these pages
_HTML_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Content-Security-Policy": "default-src 'none'; style-src 'unsafe-inline'",
    "Cache-Control": "no-store",
}


def _page(title: str, heading: str, detail: str = "") -> str:
    return _PAGE.format(title=title, heading=heading, detail=detail)


@dataclass
class CallbackResponse:
    """HTTP response the listener sends for one request."""

    status: HTTPStatus
    body: str = ""
    content_type: str = "text/plain"

    @property
    def is_html(self) -> bool:
        return self.content_type.startswith("text/html")


def find_available_port() -> int:
    """Ask the OS for a free ephemeral port on the loopback interface.

    Returns:
        An available port number
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((LOOPBACK_HOST, 0))
        port: int = s.getsockname()[1]
        return port


async def _read_request_head(reader: asyncio.StreamReader) -> str:
    """Read the request line and drain the headers."""
    # e.g. "GET /?code=xxx&state=yyy HTTP/1.1"
    request_line = (await reader.readline()).decode("utf-8", errors="replace")

    # Headers are not needed, only drained
    while (await reader.readline()).strip():
        pass
    return request_line


def parse_callback_url(url: str) -> CallbackResult:
    """Parse OAuth callback URL parameters.

    Args:
        url: The callback URL (or request target) with query parameters

    Returns:
        CallbackResult with parsed parameters
    """
    params = parse_qs(urlparse(url).query)

    def first(name: str) -> str | None:
        values = params.get(name)
        return values[0] if values else None

    return CallbackResult(
        code=first("code"),
        state=first("state"),
        error=first("error"),
        error_description=first("error_description"),
    )


def route_request(
    method: str,
    target: str,
    path: str = "/",
) -> tuple[CallbackResponse, CallbackResult | None]:
    """Decide how to answer one request to the listener.

    Only a GET on ``path`` carrying ``code`` or ``error`` produces a
    CallbackResult. Everything else (favicon lookups, browser prefetch,
    stray requests) gets a response and leaves the pending login untouched.

    Returns:
        The response to send and the callback result, if any
    """
    if target.startswith("/favicon.ico"):
        return CallbackResponse(HTTPStatus.NOT_FOUND), None

    if method != "GET":
        return CallbackResponse(HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed"), None

    if urlparse(target).path != path:
        return CallbackResponse(HTTPStatus.NOT_FOUND, "Not found"), None

    result = parse_callback_url(target)
    if not result.is_meaningful():
        page = _page("Waiting", "Waiting for authorization...")
        return CallbackResponse(HTTPStatus.OK, page, "text/html; charset=utf-8"), None

    if result.is_success():
        page = _page(
            "Authorization Successful",
            "Authorization successful!",
            "You can close this window and return to the launcher.",
        )
    else:
        detail = (
            f"{html.escape(result.error or 'unknown_error')}: "
            f"{html.escape(result.error_description or 'No description provided')}"
        )
        page = _page("Authorization Failed", "Authorization failed", detail)

    return CallbackResponse(HTTPStatus.OK, page, "text/html; charset=utf-8"), result


class LoopbackCallbackServer:
    """Ephemeral HTTP server for the OAuth redirect.

    Usage:
        async with LoopbackCallbackServer() as server:
            state = generate_state(server.port)
            # open the authorization URL
            result = await server.wait_for_callback(timeout)
    """

    def __init__(
        self,
        port: int = 0,
        path: str = "/",
        read_timeout: float = REQUEST_READ_TIMEOUT,
    ):
        """Initialize callback server.

        Args:
            port: Port to bind; 0 lets the OS pick one atomically
            path: URL path the redirect arrives on
            read_timeout: Seconds a client gets to send its request head
        """
        self.path = path
        self.port: int = port
        self.read_timeout = read_timeout

        self._server: asyncio.Server | None = None
        self._result: asyncio.Future[CallbackResult] | None = None
        self._handlers: set[asyncio.Task[None]] = set()

    @property
    def is_running(self) -> bool:
        return self._server is not None

    async def start(self) -> int:
        """Bind the listener.

        Returns:
            The port the listener is bound to
        """
        self._result = asyncio.get_running_loop().create_future()
        self._server = await asyncio.start_server(self._handle_connection, LOOPBACK_HOST, self.port)

        if not self._server.sockets:
            await self.stop()
            raise CallbackError("Failed to start callback listener: no sockets created")

        self.port = self._server.sockets[0].getsockname()[1]
        logger.debug(f"Callback listener started on {LOOPBACK_HOST}:{self.port}")
        return self.port

    async def stop(self) -> None:
        """Stop the listener and release its port. Safe to call twice."""
        server, self._server = self._server, None
        if server is None:
            return
        server.close()

        # wait_closed() waits for open client connections, including idle ones
        handlers = list(self._handlers)
        for task in handlers:
            task.cancel()
        await asyncio.gather(*handlers, return_exceptions=True)

        await server.wait_closed()
        logger.debug(f"Callback listener on port {self.port} stopped")

    async def wait_for_callback(self, timeout: float | None = DEFAULT_TIMEOUT) -> CallbackResult:
        """Wait for the OAuth redirect.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Returns:
            CallbackResult with the authorization code or error

        Raises:
            CallbackError: If the listener was never started
            CallbackTimeoutError: If timeout is reached
        """
        if self._result is None:
            raise CallbackError("Listener not started")

        try:
            # shield: a timeout must not cancel the shared one-shot future
            return await asyncio.wait_for(asyncio.shield(self._result), timeout=timeout)
        except asyncio.TimeoutError:
            raise CallbackTimeoutError(
                f"Timeout waiting for OAuth callback after {timeout} seconds"
            ) from None

    def _resolve(self, result: CallbackResult) -> bool:
        """Complete the pending future once. Returns False if already resolved."""
        if self._result is None or self._result.done():
            return False
        self._result.set_result(result)
        return True

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._handlers.add(task)
        try:
            request_line = await asyncio.wait_for(_read_request_head(reader), self.read_timeout)
            parts = request_line.split()

            if len(parts) < 2:
                await self._write_response(
                    writer, CallbackResponse(HTTPStatus.BAD_REQUEST, "Invalid request")
                )
                return

            response, result = route_request(parts[0], parts[1], self.path)
            await self._write_response(writer, response)

            if result is not None and not self._resolve(result):
                logger.debug("Ignoring callback received after the result was resolved")

        except asyncio.TimeoutError:
            logger.debug("Callback connection sent no request in time; closing")
        except (ConnectionError, asyncio.IncompleteReadError) as e:
            logger.debug(f"Callback connection dropped: {e}")
        except Exception as e:
            logger.warning(f"Error handling callback request: {e}")
        finally:
            if task is not None:
                self._handlers.discard(task)
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError:
                pass

    async def _write_response(
        self,
        writer: asyncio.StreamWriter,
        response: CallbackResponse,
    ) -> None:
        body = response.body.encode("utf-8")
        headers = {
            "Content-Type": response.content_type,
            "Content-Length": str(len(body)),
            "Connection": "close",
        }
        if response.is_html:
            headers.update(_HTML_HEADERS)

        head = f"HTTP/1.1 {response.status.value} {response.status.phrase}\r\n"
        head += "".join(f"{name}: {value}\r\n" for name, value in headers.items())
        writer.write(head.encode("ascii") + b"\r\n" + body)
        await writer.drain()

    async def __aenter__(self) -> "LoopbackCallbackServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.stop()
