"""
Authentication Manager
======================

Owns the active identity provider and the session store, and exposes the
request handlers for the login surface.

Lifecycle:
    UNINITIALIZED -> INITIALIZING -> READY | FAILED_FATAL

If the configured provider cannot initialize, the manager falls back to the
local provider. Only a failure of the local provider itself is fatal.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Request, status
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from ..config import Settings
from ..models import (
    ErrorResponse,
    Identity,
    LoginSuccessResponse,
    RouteDescriptor,
    RouteKind,
    Session,
    UserSummary,
)
from .errors import AuthError, ConfigError
from .providers import IdentityProvider, LocalIdentityProvider, create_provider
from .session import SessionStore

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[str, Settings], IdentityProvider]


class ManagerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED_FATAL = "failed_fatal"


class AuthManager:
    """
    Central authority for login, logout and session validation.

    Attributes:
        settings: Application settings
        store: Session store owned by this manager
        state: Current lifecycle state
    """

    COOKIE_NAME = "auth"
    LOGIN_PATH = "/login"
    CONFIG_PATH = "/login/config"
    LOGOUT_PATH = "/logout"
    SUBMIT_PATHS = frozenset({"/login", "/login/local", "/login/sso"})

    def __init__(
        self,
        settings: Settings,
        store: Optional[SessionStore] = None,
        provider_factory: ProviderFactory = create_provider,
    ):
        self.settings = settings
        self.store = store if store is not None else SessionStore()
        self.state = ManagerState.UNINITIALIZED
        self._provider_factory = provider_factory
        self._provider: Optional[IdentityProvider] = None

    @property
    def provider(self) -> IdentityProvider:
        if self._provider is None:
            raise RuntimeError("AuthManager has not been initialized")
        return self._provider

    @property
    def is_ready(self) -> bool:
        return self.state == ManagerState.READY

    # =========================================================================
    # Initialization
    # =========================================================================

    def initialize(self) -> IdentityProvider:
        """
        Select and initialize the configured provider.

        Returns:
            The active provider

        Raises:
            ConfigError: If the local provider (configured or fallback) fails
        """
        provider_type = self.settings.AUTH_PROVIDER
        self.state = ManagerState.INITIALIZING
        logger.info("Initializing auth provider", extra={"provider": provider_type})

        try:
            provider = self._provider_factory(provider_type, self.settings)
            provider.initialize()
        except ConfigError as e:
            logger.error(
                f"Failed to initialize auth provider '{provider_type}': {e}"
            )
            if provider_type == LocalIdentityProvider.name:
                self.state = ManagerState.FAILED_FATAL
                raise

            logger.warning("Falling back to local authentication")
            try:
                provider = self._provider_factory(LocalIdentityProvider.name, self.settings)
                provider.initialize()
            except ConfigError:
                self.state = ManagerState.FAILED_FATAL
                raise

        self._provider = provider
        self.state = ManagerState.READY
        logger.info("Auth provider ready", extra={"provider": provider.name})
        return provider

    # =========================================================================
    # Session Handling
    # =========================================================================

    @classmethod
    def is_exempt(cls, path: str) -> bool:
        """Paths reachable without a session."""
        return (
            path == cls.LOGIN_PATH
            or path.startswith(cls.LOGIN_PATH + "/")
            or path == cls.LOGOUT_PATH
        )

    def is_session_valid(self, session: Session) -> bool:
        """Shared policy for inline checks and the background sweep."""
        return self.provider.validate_session(session, now=self.store.now())

    async def resolve_identity(self, token: Optional[str]) -> Optional[Identity]:
        """
        Resolve a session token to an identity.

        Valid sessions are touched. Expired sessions are removed.

        Args:
            token: Value of the session cookie

        Returns:
            The session's identity, or None if absent or expired
        """
        session = self.store.get(token)
        if session is None:
            return None

        if not self.is_session_valid(session):
            logger.info(
                "Session expired",
                extra={"user": session.identity.display_name},
            )
            await self.store.remove(token)
            return None

        await self.store.touch(token)
        return session.identity

    def start_session_sweeper(self) -> None:
        self.store.start(
            self.is_session_valid,
            interval_seconds=self.settings.SESSION_SWEEP_INTERVAL_SECONDS,
        )

    async def shutdown(self) -> None:
        await self.store.shutdown()

    def set_session_cookie(self, response: Response, token: str) -> None:
        response.set_cookie(
            self.COOKIE_NAME,
            token,
            httponly=True,
            samesite="lax",
            secure=self.settings.SECURE_COOKIES,
        )

    def clear_session_cookie(self, response: Response) -> None:
        response.delete_cookie(
            self.COOKIE_NAME,
            httponly=True,
            samesite="lax",
            secure=self.settings.SECURE_COOKIES,
        )

    def login_redirect(self) -> RedirectResponse:
        """302 to the login page with the session cookie cleared."""
        response = RedirectResponse(url=self.LOGIN_PATH, status_code=status.HTTP_302_FOUND)
        self.clear_session_cookie(response)
        return response

    # =========================================================================
    # Request Handlers
    # =========================================================================

    async def login_page(self, request: Request) -> Response:
        """Serve the provider's login page."""
        try:
            html = self.provider.render_login_page()
        except Exception as e:
            logger.error(f"Failed to render login page: {e}", exc_info=True)
            return HTMLResponse(
                "Login page failed to load",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return HTMLResponse(html)

    async def client_config(self, request: Request) -> Response:
        """Serve the provider's browser-safe configuration."""
        try:
            config = self.provider.public_config()
        except Exception as e:
            logger.error(f"Failed to build client config: {e}", exc_info=True)
            return JSONResponse(
                ErrorResponse(error="Failed to load configuration").model_dump(exclude_none=True),
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return JSONResponse(config)

    async def submit_credentials(self, request: Request) -> Response:
        """
        Authenticate submitted credentials and start a session.

        Returns:
            200 with the user's name and id and the session cookie set, or
            401 with a generic error (details only when DEBUG is enabled)
        """
        credentials = await self._read_credentials(request)

        try:
            identity = await self.provider.authenticate(credentials)
        except AuthError as e:
            logger.warning(
                "Authentication failed",
                extra={
                    "provider": self.provider.name,
                    "error_type": type(e).__name__,
                    "detail": e.detail,
                },
            )
            body = ErrorResponse(
                error=e.public_message,
                details=e.detail if self.settings.DEBUG else None,
            )
            return JSONResponse(
                body.model_dump(exclude_none=True),
                status_code=status.HTTP_401_UNAUTHORIZED,
            )

        token = await self.store.create(identity)

        body = LoginSuccessResponse(
            user=UserSummary(name=identity.display_name, id=identity.id)
        )
        response = JSONResponse(body.model_dump())
        self.set_session_cookie(response, token)

        logger.info(
            "User logged in",
            extra={"user": identity.display_name, "user_id": identity.id},
        )
        return response

    async def logout(self, request: Request) -> Response:
        """End the caller's session, if any, and return to the login page."""
        token = request.cookies.get(self.COOKIE_NAME)
        session = self.store.get(token)

        if session is not None:
            await self.provider.logout(session)
            await self.store.remove(token)
            logger.info("User logged out", extra={"user": session.identity.display_name})

        return self.login_redirect()

    async def _read_credentials(self, request: Request) -> Dict[str, Any]:
        """Parse a JSON or form body into a plain dict."""
        content_type = request.headers.get("content-type", "")
        try:
            if content_type.startswith("application/json"):
                data = await request.json()
                return data if isinstance(data, dict) else {}
            form = await request.form()
            return {key: value for key, value in form.items() if isinstance(value, str)}
        except ValueError:
            return {}

    # =========================================================================
    # Routing
    # =========================================================================

    def build_router(self) -> APIRouter:
        """
        Create the router for the login surface and provider routes.

        Provider routes on a known submission path are bound to
        ``submit_credentials`` so session creation stays here; a route on the
        config path is bound to ``client_config``; anything else is bound to
        the handler the provider supplied.
        """
        router = APIRouter(tags=["Authentication"])

        router.add_api_route(self.LOGIN_PATH, self.login_page, methods=["GET"])
        router.add_api_route(self.CONFIG_PATH, self.client_config, methods=["GET"])
        router.add_api_route(self.LOGIN_PATH, self.submit_credentials, methods=["POST"])
        router.add_api_route(self.LOGOUT_PATH, self.logout, methods=["POST"])

        registered = {
            (self.LOGIN_PATH, "GET"),
            (self.CONFIG_PATH, "GET"),
            (self.LOGIN_PATH, "POST"),
            (self.LOGOUT_PATH, "POST"),
        }

        for descriptor in self.provider.extra_routes():
            method = descriptor.method.upper()
            if (descriptor.path, method) in registered:
                continue

            handler = self._route_handler(descriptor)
            if handler is None:
                logger.warning(
                    "Skipping provider route without handler",
                    extra={"path": descriptor.path, "method": method},
                )
                continue

            router.add_api_route(descriptor.path, handler, methods=[method])
            registered.add((descriptor.path, method))

        return router

    def _route_handler(self, descriptor: RouteDescriptor):
        if descriptor.path in self.SUBMIT_PATHS:
            return self.submit_credentials
        if descriptor.path == self.CONFIG_PATH or descriptor.kind == RouteKind.CONFIG:
            return self.client_config
        return descriptor.handler
