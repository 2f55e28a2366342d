"""
Proxy Routes - Terminal Backend Forwarding
==========================================

Forwards gated requests to the backend terminal service (ttyd).

Security Model:
---------------
1. The session gate has already resolved the caller's identity
2. The identity header (X-WEBAUTH-USER) is always overwritten by the gateway,
   so a client-supplied value never reaches the backend
3. The session cookie is stripped before forwarding
4. Hop-by-hop headers are not forwarded in either direction

Endpoints:
----------
- ANY /{path}: HTTP requests, responses streamed back
- WS  /{path}: WebSocket upgrades, bridged frame by frame
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote

import httpx
import websockets
from fastapi import APIRouter, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask
from starlette.websockets import WebSocketState

from ..auth.manager import AuthManager
from ..auth.middleware import IDENTITY_STATE_KEY
from ..config import Settings, get_settings
from ..models import Identity

logger = logging.getLogger(__name__)

proxy_router = APIRouter(tags=["Terminal Proxy"])

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

# Headers the websockets client sets itself during the handshake
WEBSOCKET_HANDSHAKE_HEADERS = frozenset({
    "host",
    "sec-websocket-key",
    "sec-websocket-version",
    "sec-websocket-extensions",
    "sec-websocket-protocol",
    "sec-websocket-accept",
})


# ============================================================================
# Dependencies
# ============================================================================

def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_backend_client(request: Request) -> httpx.AsyncClient:
    """
    Get backend HTTP client from app state.

    Raises:
        HTTPException: 503 if the client has not been created (lifespan not run)
    """
    client = getattr(request.app.state, "backend_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Backend client not available",
        )
    return client


# ============================================================================
# Header Functions
# ============================================================================

def identity_header_value(identity: Optional[Identity], anonymous: str) -> str:
    """
    Value for the identity header.

    Args:
        identity: Identity attached by the session gate, if any
        anonymous: Placeholder used when no identity is attached

    Returns:
        URL-encoded display name, or the placeholder
    """
    if identity is None:
        return anonymous
    return quote(identity.display_name, safe="")


def strip_cookie(cookie_header: str, name: str) -> str:
    """Remove one cookie from a Cookie header value."""
    kept = [
        part.strip()
        for part in cookie_header.split(";")
        if part.strip() and part.strip().split("=", 1)[0].strip() != name
    ]
    return "; ".join(kept)


def build_backend_headers(
    headers: Iterable[Tuple[str, str]],
    identity: Optional[Identity],
    settings: Settings,
    excluded: Iterable[str] = (),
) -> Dict[str, str]:
    """
    Build headers for the backend request.

    Drops hop-by-hop headers, Host, any client-supplied identity header and
    the session cookie, then sets the identity header.

    Args:
        headers: Original request headers
        identity: Identity attached by the session gate
        settings: Application settings
        excluded: Additional lower-case header names to drop

    Returns:
        Headers dict for the backend request
    """
    identity_header = settings.IDENTITY_HEADER.lower()
    dropped = HOP_BY_HOP_HEADERS | {"host", "content-length", identity_header} | set(excluded)

    backend_headers: Dict[str, str] = {}
    for key, value in headers:
        lower = key.lower()
        if lower in dropped:
            continue
        if lower == "cookie":
            value = strip_cookie(value, AuthManager.COOKIE_NAME)
            if not value:
                continue
        backend_headers[key] = value

    backend_headers[settings.IDENTITY_HEADER] = identity_header_value(
        identity, settings.ANONYMOUS_USER
    )
    return backend_headers


def filter_response_headers(headers: httpx.Headers) -> List[Tuple[str, str]]:
    """Backend response headers minus hop-by-hop ones, duplicates preserved."""
    return [
        (key, value)
        for key, value in headers.multi_items()
        if key.lower() not in HOP_BY_HOP_HEADERS
    ]


def get_identity(connection) -> Optional[Identity]:
    return getattr(connection.state, IDENTITY_STATE_KEY, None)


# ============================================================================
# HTTP Proxy
# ============================================================================

@proxy_router.api_route("/{path:path}", methods=PROXY_METHODS)
async def proxy_http(request: Request, path: str):
    """
    Forward an HTTP request to the backend and stream the response back.

    Flow:
    1. Build backend headers (identity header set, session cookie removed)
    2. Forward the request body to the backend
    3. Stream the backend response back unchanged, minus hop-by-hop headers

    Raises:
        HTTPException: 404 for unrouted gateway auth paths, 504 on backend
            timeout, 502 if the backend is unreachable
    """
    # auth paths skip the session gate, so they must never reach the backend
    if AuthManager.is_exempt(request.url.path):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not Found")

    settings = get_app_settings(request)
    client = get_backend_client(request)
    identity = get_identity(request)

    url = "/" + path
    if request.url.query:
        url = f"{url}?{request.url.query}"

    backend_request = client.build_request(
        request.method,
        url,
        headers=build_backend_headers(request.headers.items(), identity, settings),
        content=await request.body(),
        timeout=settings.BACKEND_TIMEOUT_SECONDS,
    )

    try:
        backend_response = await client.send(backend_request, stream=True)
    except httpx.TimeoutException:
        logger.error("Backend request timeout", extra={"path": request.url.path})
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Terminal backend timeout",
        )
    except httpx.HTTPError as e:
        logger.error(
            f"Backend request failed: {type(e).__name__}",
            extra={"path": request.url.path},
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Cannot reach terminal backend",
        )

    logger.debug(
        "Proxied request",
        extra={
            "method": request.method,
            "path": request.url.path,
            "status_code": backend_response.status_code,
            "user_id": identity.id if identity else None,
        },
    )

    response = StreamingResponse(
        backend_response.aiter_raw(),
        status_code=backend_response.status_code,
        background=BackgroundTask(backend_response.aclose),
    )
    response.raw_headers = [
        (key.encode("latin-1"), value.encode("latin-1"))
        for key, value in filter_response_headers(backend_response.headers)
    ]
    return response


# ============================================================================
# WebSocket Proxy
# ============================================================================

async def _client_to_backend(websocket: WebSocket, upstream) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return
        if message.get("bytes") is not None:
            await upstream.send(message["bytes"])
        elif message.get("text") is not None:
            await upstream.send(message["text"])


async def _backend_to_client(websocket: WebSocket, upstream) -> None:
    async for message in upstream:
        if isinstance(message, bytes):
            await websocket.send_bytes(message)
        else:
            await websocket.send_text(message)


@proxy_router.websocket("/{path:path}")
async def proxy_websocket(websocket: WebSocket, path: str):
    """
    Bridge a WebSocket connection to the backend.

    The backend handshake happens first so the subprotocol it selects
    (ttyd requires ``tty``) can be echoed back to the client on accept.
    Auth paths are closed with 1008 without contacting the backend.
    """
    if AuthManager.is_exempt(websocket.url.path):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    settings = getattr(websocket.app.state, "settings", None) or get_settings()
    identity = get_identity(websocket)

    url = f"{settings.backend_websocket_url_str}/{path}"
    if websocket.url.query:
        url = f"{url}?{websocket.url.query}"

    headers = build_backend_headers(
        websocket.headers.items(),
        identity,
        settings,
        excluded=WEBSOCKET_HANDSHAKE_HEADERS,
    )
    subprotocols = websocket.scope.get("subprotocols") or None

    try:
        upstream = await websockets.connect(
            url,
            additional_headers=headers,
            subprotocols=subprotocols,
            open_timeout=settings.BACKEND_TIMEOUT_SECONDS,
        )
    except (OSError, asyncio.TimeoutError, websockets.WebSocketException) as e:
        logger.error(
            f"Backend WebSocket connection failed: {type(e).__name__}",
            extra={"path": websocket.url.path},
        )
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    await websocket.accept(subprotocol=upstream.subprotocol)
    logger.info(
        "WebSocket bridged",
        extra={"path": websocket.url.path, "user_id": identity.id if identity else None},
    )

    tasks = [
        asyncio.create_task(_client_to_backend(websocket, upstream)),
        asyncio.create_task(_backend_to_client(websocket, upstream)),
    ]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if task.cancelled():
                continue
            error = task.exception()
            if error is not None and not isinstance(
                error, (WebSocketDisconnect, websockets.ConnectionClosed)
            ):
                logger.warning(f"WebSocket bridge ended with error: {error}")
    finally:
        # also reached when this handler is cancelled mid-wait
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await upstream.close()
        if (
            websocket.client_state != WebSocketState.DISCONNECTED
            and websocket.application_state != WebSocketState.DISCONNECTED
        ):
            await websocket.close()

    logger.info("WebSocket closed", extra={"path": websocket.url.path})
