"""
Authentication error types.

Providers raise these instead of returning sentinel values so callers can tell
input problems apart from upstream failures. Every ``AuthError`` carries a
diagnostic ``detail`` that is safe to log; it never contains client secrets or
raw tokens.
"""

from typing import Optional


class GatewayError(Exception):
    """Base exception for gateway errors"""
    pass


class ConfigError(GatewayError):
    """A provider is missing or has invalid configuration."""
    pass


class AuthError(GatewayError):
    """Base exception for failed authentication attempts."""

    public_message = "Authentication failed"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class InvalidCredentials(AuthError):
    """The caller supplied missing or unusable credentials."""
    pass


class UpstreamUnavailable(AuthError):
    """
    The identity provider's token or userinfo endpoint failed.

    Attributes:
        status_code: Upstream HTTP status, or None for transport failures
        url: Endpoint that failed
    """

    def __init__(self, detail: str, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(detail)
        self.status_code = status_code
        self.url = url


class IdentityResolutionFailed(AuthError):
    """The userinfo payload lacked a resolvable user id or display name."""
    pass
