"""
Authentication Package

This package verifies who is calling the terminal gateway and keeps track of
their session.

Modules:
- providers: Pluggable identity providers (local development, SSO/OAuth2)
- session: In-memory session store with periodic sweep
- manager: Provider selection with fallback, login/logout handlers, routing
- middleware: ASGI session gate for HTTP and WebSocket requests
- errors: Configuration and authentication error types
- utils: Payload field resolution and log redaction

The authentication flow:
1. An unauthenticated request is redirected to /login
2. The login page submits credentials (or an SSO code) to the manager
3. The active provider resolves an identity; the manager creates a session
   and sets the ``auth`` cookie
4. Later requests carrying the cookie pass the gate with the identity attached
"""

from .errors import (
    AuthError,
    ConfigError,
    IdentityResolutionFailed,
    InvalidCredentials,
    UpstreamUnavailable,
)
from .manager import AuthManager, ManagerState
from .middleware import SessionGateMiddleware
from .session import SessionStore

__all__ = [
    "AuthManager",
    "ManagerState",
    "SessionGateMiddleware",
    "SessionStore",
    "AuthError",
    "ConfigError",
    "IdentityResolutionFailed",
    "InvalidCredentials",
    "UpstreamUnavailable",
]
