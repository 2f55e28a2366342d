"""
Identity provider interface.

Every authentication backend subclasses ``IdentityProvider`` and turns
caller-supplied credentials into an ``Identity``. The session validity policy
lives here so the per-request check and the background sweep evaluate exactly
the same rule.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, ClassVar, List, Mapping, Optional

from ...config import Settings
from ...models import Identity, ProviderConfig, RouteDescriptor, Session

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_session_valid(session: Session, config: ProviderConfig, now: datetime) -> bool:
    """
    Evaluate the session expiry policy.

    A session is valid while it is younger than ``max_session_age`` and has
    been accessed within ``max_inactivity``. Activity never extends the
    absolute cap.

    Args:
        session: Session to check
        config: Provider policy
        now: Evaluation time

    Returns:
        True if both limits hold
    """
    age = now - session.created_at
    inactivity = now - session.last_accessed_at
    return age <= config.max_session_age and inactivity <= config.max_inactivity


class IdentityProvider(ABC):
    """
    Base class for authentication providers.

    Subclasses set ``name``, ``DEFAULT_CONFIG`` and ``template_name`` and
    implement ``authenticate``. The remaining hooks have safe defaults.
    """

    name: ClassVar[str] = "base"
    template_name: ClassVar[str] = ""
    DEFAULT_CONFIG: ClassVar[ProviderConfig] = ProviderConfig(
        max_session_age=timedelta(hours=12),
        max_inactivity=timedelta(hours=1),
    )

    def __init__(self, config: Optional[ProviderConfig] = None):
        self.config = config or self.DEFAULT_CONFIG

    @classmethod
    def from_settings(cls, settings: Settings) -> "IdentityProvider":
        """
        Build a provider from application settings.

        Session limits from settings override the variant's defaults for this
        instance only.
        """
        return cls(config=cls.config_from_settings(settings))

    @classmethod
    def config_from_settings(cls, settings: Settings, **provider_specific: str) -> ProviderConfig:
        defaults = cls.DEFAULT_CONFIG
        max_age = defaults.max_session_age
        max_inactivity = defaults.max_inactivity

        if settings.SESSION_MAX_AGE_SECONDS:
            max_age = timedelta(seconds=settings.SESSION_MAX_AGE_SECONDS)
        if settings.SESSION_MAX_INACTIVITY_SECONDS:
            max_inactivity = timedelta(seconds=settings.SESSION_MAX_INACTIVITY_SECONDS)

        return ProviderConfig(
            max_session_age=max_age,
            max_inactivity=max_inactivity,
            provider_specific={**defaults.provider_specific, **provider_specific},
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self) -> None:
        """
        Validate configuration before the provider serves requests.

        Raises:
            ConfigError: If required configuration is missing
        """

    # =========================================================================
    # Login Surface
    # =========================================================================

    def render_login_page(self) -> str:
        """
        Read the provider's static login page.

        Raises:
            OSError: If the template cannot be read
        """
        return (TEMPLATE_DIR / self.template_name).read_text(encoding="utf-8")

    def public_config(self) -> dict:
        """Browser-facing configuration. Must never include secrets."""
        return {}

    def extra_routes(self) -> List[RouteDescriptor]:
        """Endpoints this provider needs the manager to expose."""
        return []

    # =========================================================================
    # Authentication
    # =========================================================================

    @abstractmethod
    async def authenticate(self, credentials: Mapping[str, Any]) -> Identity:
        """
        Exchange submitted credentials for an identity.

        Args:
            credentials: Parsed request body

        Returns:
            The authenticated identity

        Raises:
            AuthError: If authentication fails for any reason
        """

    def validate_session(self, session: Session, now: Optional[datetime] = None) -> bool:
        """
        Check a session against this provider's policy.

        Overrides may add logging but must not accept a session the base
        policy rejects.
        """
        return is_session_valid(session, self.config, now or utcnow())

    async def logout(self, session: Session) -> None:
        """Called before a session is removed on logout."""
