"""
Local development provider.

Accepts any non-empty username/password pair. This is not a security
boundary; it exists so the terminal can be used without an SSO tenant.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, List, Mapping, Optional

from ...models import (
    Identity,
    IdentityKind,
    ProviderConfig,
    RouteDescriptor,
    RouteKind,
    Session,
)
from ..errors import InvalidCredentials
from .base import IdentityProvider

logger = logging.getLogger(__name__)


class LocalIdentityProvider(IdentityProvider):
    """Development-only provider with a generous session policy."""

    name = "local"
    template_name = "local_login.html"
    DEFAULT_CONFIG = ProviderConfig(
        max_session_age=timedelta(hours=24),
        max_inactivity=timedelta(hours=4),
    )

    def initialize(self) -> None:
        logger.warning("Local development authentication enabled")
        logger.warning(
            "Any username/password is accepted; use the SSO provider in production"
        )

    def public_config(self) -> dict:
        return {
            "mode": "local",
            "message": "Development mode: sign in with any username and password",
        }

    def extra_routes(self) -> List[RouteDescriptor]:
        return [
            RouteDescriptor(method="POST", path="/login/local", kind=RouteKind.SUBMIT),
        ]

    async def authenticate(self, credentials: Mapping[str, Any]) -> Identity:
        username = str(credentials.get("username") or "")
        password = str(credentials.get("password") or "")

        # usernames are kept as given; only blank ones are rejected
        if not username.strip() or not password:
            raise InvalidCredentials("Username and password must not be empty")

        logger.info("Local login", extra={"user": username})

        return Identity(
            id=f"local_{username}",
            display_name=username,
            email=f"{username}@local.dev",
            department="Development",
            kind=IdentityKind.LOCAL,
        )

    def validate_session(self, session: Session, now: Optional[datetime] = None) -> bool:
        is_valid = super().validate_session(session, now)

        if not is_valid and session.identity.kind == IdentityKind.LOCAL:
            logger.info(
                "Local development session expired",
                extra={"user": session.identity.display_name},
            )

        return is_valid
