"""
Terminal Gateway Application Factory
====================================

Entry point for the authentication gateway that sits in front of the web
terminal backend (ttyd).

Architecture:
    Browser → Gateway (this service) → ttyd

Routes:
    - /login, /login/*  : Login page, provider config, credential submission
    - /logout           : End the session
    - everything else   : Gated, then proxied to the backend (HTTP and WebSocket)

Environment Variables:
    - AUTH_PROVIDER: 'sso' (default) or 'local'
    - SSO_OAUTH_URL, SSO_TOKEN_URL, SSO_USERINFO_URL: OAuth2 endpoints
    - SSO_CLIENT_ID, SSO_CLIENT_SECRET, SSO_REDIRECT_URI: OAuth2 client
    - BACKEND_SERVICE_URL: Terminal backend URL (default: http://127.0.0.1:7681)
    - SECURE_COOKIES: Set the Secure cookie flag (default: true)
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Development:
        AUTH_PROVIDER=local SECURE_COOKIES=false uvicorn terminal_gateway.main:create_app --factory --reload --port 3000

    Production:
        terminal-gateway   (or: uvicorn terminal_gateway.main:create_app --factory --host 0.0.0.0 --port 3000)
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .auth.manager import AuthManager
from .auth.middleware import SessionGateMiddleware
from .config import Settings, get_settings
from .proxy.routes import proxy_router


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def create_app(
    settings: Optional[Settings] = None,
    manager: Optional[AuthManager] = None,
    backend_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    """
    Application factory function.

    Initializes the auth manager before any route is registered, so a fatal
    provider failure prevents the app from being created at all.

    Args:
        settings: Settings to use (default: loaded from the environment)
        manager: Pre-built auth manager (initialized here if needed)
        backend_client: HTTP client for the backend (default: created in lifespan)

    Returns:
        FastAPI: Configured application instance

    Raises:
        ConfigError: If no provider could be initialized
    """
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("terminal_gateway.main")

    manager = manager or AuthManager(settings)
    if not manager.is_ready:
        manager.initialize()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Startup: start the session sweeper and open the backend client.
        Shutdown: stop the sweeper, drop sessions, close the client.
        """
        logger.info(
            "Starting terminal gateway",
            extra={
                "backend_url": settings.backend_service_url_str,
                "provider": manager.provider.name,
            },
        )
        manager.start_session_sweeper()

        owns_client = app.state.backend_client is None
        if owns_client:
            app.state.backend_client = httpx.AsyncClient(
                base_url=settings.backend_service_url_str,
                timeout=settings.BACKEND_TIMEOUT_SECONDS,
            )

        yield

        logger.info("Shutting down terminal gateway")
        await manager.shutdown()
        if owns_client:
            await app.state.backend_client.aclose()
            app.state.backend_client = None
        logger.info("Terminal gateway shutdown complete")

    app = FastAPI(
        title="Terminal Gateway",
        description="Authentication gateway and reverse proxy for the web terminal",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.state.settings = settings
    app.state.auth_manager = manager
    app.state.backend_client = backend_client

    app.add_middleware(SessionGateMiddleware, manager=manager)

    # Login surface first; the proxy catch-all must be registered last
    app.include_router(manager.build_router())
    app.include_router(proxy_router)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and returns a standardized error response.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__,
            },
            exc_info=True,
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "detail": str(exc) if settings.DEBUG else None,
            },
        )

    return app


def run() -> None:
    """Console entry point: serve the gateway with uvicorn."""
    settings = get_settings()

    uvicorn.run(
        create_app(settings),
        host=settings.GATEWAY_HOST,
        port=settings.GATEWAY_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
