"""
Session gating middleware.

Pure ASGI middleware so that WebSocket upgrades are gated exactly like plain
HTTP requests. The resolved identity is stored in the request state
(``request.state.identity``) for the proxy to turn into the identity header.
"""

import logging

from fastapi import status
from fastapi.responses import JSONResponse
from starlette.requests import HTTPConnection
from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.websockets import WebSocketClose

from .manager import AuthManager

logger = logging.getLogger(__name__)

IDENTITY_STATE_KEY = "identity"


class SessionGateMiddleware:
    """
    Forward requests that carry a valid session; challenge everything else.

    - Login paths and logout pass through untouched
    - HTTP requests without a valid session get a 302 to the login page
      with the session cookie cleared
    - WebSocket upgrades without a valid session are closed with 1008
    """

    def __init__(self, app: ASGIApp, manager: AuthManager):
        self.app = app
        self.manager = manager

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        if self.manager.is_exempt(scope["path"]):
            await self.app(scope, receive, send)
            return

        if not self.manager.is_ready:
            await self._reject_unavailable(scope, receive, send)
            return

        connection = HTTPConnection(scope)
        token = connection.cookies.get(self.manager.COOKIE_NAME)
        identity = await self.manager.resolve_identity(token)

        if identity is None:
            logger.debug(
                "Unauthenticated request",
                extra={"path": scope["path"], "had_cookie": token is not None},
            )
            if scope["type"] == "websocket":
                await WebSocketClose(code=status.WS_1008_POLICY_VIOLATION)(scope, receive, send)
            else:
                await self.manager.login_redirect()(scope, receive, send)
            return

        scope.setdefault("state", {})[IDENTITY_STATE_KEY] = identity
        await self.app(scope, receive, send)

    async def _reject_unavailable(self, scope: Scope, receive: Receive, send: Send) -> None:
        logger.error(
            "Request rejected: auth manager not ready",
            extra={"state": self.manager.state.value},
        )
        if scope["type"] == "websocket":
            await WebSocketClose(code=status.WS_1011_INTERNAL_ERROR)(scope, receive, send)
            return
        response = JSONResponse(
            {"error": "Authentication service unavailable"},
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
        await response(scope, receive, send)
