"""
Identity Providers

Registry of the available authentication backends, keyed by the value of the
``AUTH_PROVIDER`` setting:

- local: development login accepting any credentials
- sso: OAuth 2.0 authorization-code flow against the corporate SSO
"""

from typing import Dict, Type

from ...config import Settings
from ..errors import ConfigError
from .base import IdentityProvider, is_session_valid
from .local import LocalIdentityProvider
from .sso import SSOIdentityProvider

PROVIDER_REGISTRY: Dict[str, Type[IdentityProvider]] = {
    LocalIdentityProvider.name: LocalIdentityProvider,
    SSOIdentityProvider.name: SSOIdentityProvider,
}


def create_provider(name: str, settings: Settings) -> IdentityProvider:
    """
    Instantiate a registered provider.

    Args:
        name: Registry key
        settings: Application settings

    Returns:
        Uninitialized provider instance

    Raises:
        ConfigError: If no provider is registered under ``name``
    """
    provider_class = PROVIDER_REGISTRY.get(name)
    if provider_class is None:
        raise ConfigError(
            f"Unknown auth provider '{name}'. "
            f"Expected one of: {', '.join(sorted(PROVIDER_REGISTRY))}"
        )
    return provider_class.from_settings(settings)


__all__ = [
    "IdentityProvider",
    "LocalIdentityProvider",
    "SSOIdentityProvider",
    "PROVIDER_REGISTRY",
    "create_provider",
    "is_session_valid",
]
