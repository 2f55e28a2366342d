"""
Proxy Tests

Tests header rewriting for the terminal backend, backend error mapping and
the WebSocket bridge.

Security requirements verified:
- The identity header is always set by the gateway, never by the client
- The session cookie never reaches the backend
- Hop-by-hop headers are not forwarded in either direction
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import patch

import httpx
import pytest
from fastapi import status
from starlette.datastructures import URL, Headers
from starlette.websockets import WebSocketDisconnect, WebSocketState

from terminal_gateway.proxy.routes import (
    build_backend_headers,
    filter_response_headers,
    identity_header_value,
    proxy_websocket,
    strip_cookie,
)

from conftest import BACKEND_URL, login, make_identity, make_settings


class EchoUpstream:
    """Backend WebSocket stand-in that echoes every frame until it sees ``exit``."""

    subprotocol = "tty"
    CLOSE_COMMAND = "exit"

    def __init__(self):
        self.queue = asyncio.Queue()
        self.closed = False

    async def send(self, message):
        await self.queue.put(message)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self.closed:
            raise StopAsyncIteration
        message = await self.queue.get()
        if message == self.CLOSE_COMMAND:
            self.closed = True
            raise StopAsyncIteration
        return message

    async def close(self):
        self.closed = True


@pytest.fixture
def upstream_connect():
    """Patch the backend WebSocket connector and record its arguments."""
    calls = []

    async def fake_connect(url, **kwargs):
        calls.append({"url": url, **kwargs})
        return EchoUpstream()

    with patch("terminal_gateway.proxy.routes.websockets.connect", fake_connect):
        yield calls


def failing_backend(error_class):
    def handler(request):
        raise error_class("backend failure", request=request)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BACKEND_URL)


# ============================================================================
# Header Tests
# ============================================================================

def test_identity_header_is_url_encoded():
    assert identity_header_value(make_identity("Bob Smith"), "anonymous") == "Bob%20Smith"
    assert identity_header_value(make_identity("José"), "anonymous") == "Jos%C3%A9"
    assert identity_header_value(make_identity("a/b&c"), "anonymous") == "a%2Fb%26c"


def test_identity_header_placeholder_without_identity():
    headers = build_backend_headers([("accept", "*/*")], None, make_settings())

    assert headers["X-WEBAUTH-USER"] == "anonymous"


def test_client_identity_header_is_overwritten():
    headers = build_backend_headers(
        [("x-webauth-user", "admin"), ("X-WebAuth-User", "root")],
        make_identity("alice"),
        make_settings(),
    )

    identity_values = [v for k, v in headers.items() if k.lower() == "x-webauth-user"]
    assert identity_values == ["alice"]


def test_hop_by_hop_and_host_headers_are_dropped():
    headers = build_backend_headers(
        [
            ("host", "gateway.example.com"),
            ("connection", "keep-alive"),
            ("keep-alive", "timeout=5"),
            ("transfer-encoding", "chunked"),
            ("upgrade", "h2c"),
            ("content-length", "12"),
            ("accept-language", "en"),
        ],
        make_identity(),
        make_settings(),
    )

    assert {k.lower() for k in headers} == {"accept-language", "x-webauth-user"}


def test_session_cookie_is_stripped():
    assert strip_cookie("auth=abc; theme=dark", "auth") == "theme=dark"
    assert strip_cookie("theme=dark;auth=abc;lang=en", "auth") == "theme=dark; lang=en"
    assert strip_cookie("auth=abc", "auth") == ""
    assert strip_cookie("oauth=keep", "auth") == "oauth=keep"


def test_cookie_header_dropped_when_only_session_cookie():
    headers = build_backend_headers([("cookie", "auth=abc")], make_identity(), make_settings())

    assert "cookie" not in {k.lower() for k in headers}


def test_response_hop_by_hop_headers_filtered():
    headers = httpx.Headers([
        ("connection", "close"),
        ("transfer-encoding", "chunked"),
        ("set-cookie", "a=1"),
        ("set-cookie", "b=2"),
        ("content-type", "text/html"),
    ])

    assert filter_response_headers(headers) == [
        ("set-cookie", "a=1"),
        ("set-cookie", "b=2"),
        ("content-type", "text/html"),
    ]


# ============================================================================
# HTTP Proxy Tests
# ============================================================================

def test_forwarded_request_replaces_client_identity(make_client, backend):
    with make_client() as client:
        token = login(client, username="Bob Smith").cookies["auth"]
        client.cookies.clear()
        response = client.get(
            "/token",
            headers={
                "cookie": f"theme=dark; auth={token}",
                "X-WEBAUTH-USER": "admin",
            },
        )

    assert response.status_code == 200
    forwarded = backend.requests[-1]
    assert forwarded.headers.get_list("x-webauth-user") == ["Bob%20Smith"]
    assert forwarded.headers["cookie"] == "theme=dark"


def test_backend_status_and_body_are_passed_through(make_client):
    def handler(request):
        return httpx.Response(404, stream=httpx.ByteStream(b"not here"), headers={"x-ttyd": "1"})

    backend_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BACKEND_URL)

    with make_client(backend_client=backend_client) as client:
        login(client)
        response = client.get("/missing")

    assert response.status_code == 404
    assert response.content == b"not here"
    assert response.headers["x-ttyd"] == "1"


def test_unreachable_backend_returns_502(make_client):
    with make_client(backend_client=failing_backend(httpx.ConnectError)) as client:
        login(client)
        response = client.get("/")

    assert response.status_code == status.HTTP_502_BAD_GATEWAY
    assert response.json() == {"detail": "Cannot reach terminal backend"}


def test_backend_timeout_returns_504(make_client):
    with make_client(backend_client=failing_backend(httpx.ReadTimeout)) as client:
        login(client)
        response = client.get("/")

    assert response.status_code == status.HTTP_504_GATEWAY_TIMEOUT
    assert response.json() == {"detail": "Terminal backend timeout"}


# ============================================================================
# WebSocket Proxy Tests
# ============================================================================

def test_websocket_frames_are_bridged(make_client, upstream_connect):
    with make_client() as client:
        login(client)
        with client.websocket_connect("/ws?arg=1", subprotocols=["tty"]) as websocket:
            assert websocket.accepted_subprotocol == "tty"

            websocket.send_text("ls -la\n")
            assert websocket.receive_text() == "ls -la\n"

            websocket.send_bytes(b"\x001\x02")
            assert websocket.receive_bytes() == b"\x001\x02"

            # backend hangs up; the gateway closes the client side
            websocket.send_text(EchoUpstream.CLOSE_COMMAND)
            with pytest.raises(WebSocketDisconnect):
                websocket.receive_text()

    call = upstream_connect[0]
    assert call["url"] == "ws://backend:7681/ws?arg=1"
    assert call["subprotocols"] == ["tty"]

    headers = {k.lower(): v for k, v in call["additional_headers"].items()}
    assert headers["x-webauth-user"] == "alice"
    assert "cookie" not in headers
    assert "sec-websocket-key" not in headers
    assert "host" not in headers


class IdleClientSocket:
    """Client WebSocket stand-in that never sends a frame."""

    def __init__(self):
        self.app = SimpleNamespace(state=SimpleNamespace(settings=make_settings()))
        self.url = URL("ws://testserver/ws")
        self.headers = Headers()
        self.scope = {"type": "websocket", "subprotocols": []}
        self.state = SimpleNamespace()
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTING
        self.receiving = asyncio.Event()
        self.receive_cancelled = False
        self.closed = False

    async def accept(self, subprotocol=None):
        self.application_state = WebSocketState.CONNECTED

    async def receive(self):
        self.receiving.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.receive_cancelled = True
            raise

    async def close(self, code=1000):
        self.closed = True
        self.application_state = WebSocketState.DISCONNECTED


@pytest.mark.asyncio
async def test_cancelled_bridge_stops_both_directions():
    upstream = EchoUpstream()
    client_socket = IdleClientSocket()

    async def fake_connect(url, **kwargs):
        return upstream

    with patch("terminal_gateway.proxy.routes.websockets.connect", fake_connect):
        handler = asyncio.create_task(proxy_websocket(client_socket, "ws"))
        await asyncio.wait_for(client_socket.receiving.wait(), timeout=1)

        handler.cancel()
        with pytest.raises(asyncio.CancelledError):
            await handler

    assert client_socket.receive_cancelled
    assert upstream.closed
    assert client_socket.closed


def test_websocket_under_login_path_is_not_bridged(make_client, upstream_connect):
    with make_client() as client:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/login/ws"):
                pass

    assert exc_info.value.code == status.WS_1008_POLICY_VIOLATION
    assert upstream_connect == []


def test_websocket_backend_unavailable_closes_with_1011(make_client):
    async def refuse(url, **kwargs):
        raise OSError("connection refused")

    with patch("terminal_gateway.proxy.routes.websockets.connect", refuse):
        with make_client() as client:
            login(client)
            with pytest.raises(WebSocketDisconnect) as exc_info:
                with client.websocket_connect("/ws"):
                    pass

    assert exc_info.value.code == status.WS_1011_INTERNAL_ERROR
