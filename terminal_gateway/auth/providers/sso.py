"""
SSO (OAuth 2.0) identity provider.

Implements the authorization-code exchange against the corporate SSO:

1. The browser obtains a one-time ``code`` from the authorize endpoint
2. The gateway exchanges it for an access token at the token endpoint
3. The gateway reads the user profile from the userinfo endpoint
4. Profile attributes are resolved from the provider's nested payload

Codes are single-use, so neither call is retried.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

import httpx

from ...config import Settings, missing_sso_settings
from ...models import Identity, IdentityKind, ProviderConfig, RouteDescriptor, RouteKind
from ..errors import ConfigError, IdentityResolutionFailed, InvalidCredentials, UpstreamUnavailable
from ..utils import FieldPath, mask_secret, redact, resolve_field
from .base import IdentityProvider

logger = logging.getLogger(__name__)

UPSTREAM_TIMEOUT_SECONDS = 10.0


# =============================================================================
# Userinfo Field Candidates
# =============================================================================

USER_ID_PATHS: List[FieldPath] = [
    ("access_token", "user_id"),
    ("oa", "uid"),
    ("oa", "loginid"),
]

DISPLAY_NAME_PATHS: List[FieldPath] = [
    ("oa", "sn"),
    ("oa", "cn"),
    ("oa", "displayname"),
]

EMAIL_PATHS: List[FieldPath] = [
    ("oa", "email"),
    ("oa", "mailaddress"),
]

DEPARTMENT_PATHS: List[FieldPath] = [
    ("oa", "fdu-deptname"),
    ("oa", "dpfullname"),
]


class SSOIdentityProvider(IdentityProvider):
    """
    OAuth 2.0 authorization-code provider.

    Endpoint URLs and client credentials live in ``config.provider_specific``
    under the keys oauth_url, token_url, userinfo_url, client_id,
    client_secret and redirect_uri.
    """

    name = "sso"
    template_name = "sso_login.html"
    DEFAULT_CONFIG = ProviderConfig(
        max_session_age=timedelta(hours=12),
        max_inactivity=timedelta(hours=1),
    )

    def __init__(
        self,
        config: Optional[ProviderConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(config)
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "SSOIdentityProvider":
        values = {k: v for k, v in settings.sso_settings.items() if v is not None}
        return cls(config=cls.config_from_settings(settings, **values))

    @property
    def sso(self) -> Dict[str, str]:
        return self.config.provider_specific

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def initialize(self) -> None:
        """
        Validate that every OAuth setting is present.

        Raises:
            ConfigError: Naming each missing environment variable
        """
        missing = missing_sso_settings(self.sso)
        if missing:
            raise ConfigError(
                f"Missing required SSO configuration: {', '.join(missing)}"
            )

        logger.info(
            "SSO configuration validated",
            extra={
                "token_url": self.sso["token_url"],
                "client_id": self.sso["client_id"],
                "client_secret": mask_secret(self.sso["client_secret"]),
            },
        )

    # =========================================================================
    # Login Surface
    # =========================================================================

    def public_config(self) -> dict:
        return {
            "oauth_url": self.sso.get("oauth_url"),
            "client_id": self.sso.get("client_id"),
            "redirect_uri": self.sso.get("redirect_uri"),
            "theme": "mini",
            "login_type": "oa",
        }

    def extra_routes(self) -> List[RouteDescriptor]:
        return [
            RouteDescriptor(method="POST", path="/login/sso", kind=RouteKind.SUBMIT),
            RouteDescriptor(method="GET", path="/login/config", kind=RouteKind.CONFIG),
        ]

    # =========================================================================
    # Authentication
    # =========================================================================

    async def authenticate(self, credentials: Mapping[str, Any]) -> Identity:
        """
        Run the code exchange and userinfo lookup.

        Args:
            credentials: Body with ``code`` (``state`` and ``redirect_uri`` are
                accepted but the configured redirect URI is always used)

        Returns:
            SSO identity carrying the upstream access token

        Raises:
            InvalidCredentials: If no authorization code was supplied
            UpstreamUnavailable: If either endpoint fails
            IdentityResolutionFailed: If id or display name cannot be resolved
        """
        code = str(credentials.get("code") or "").strip()
        if not code:
            raise InvalidCredentials("Missing authorization code")

        logger.info("Starting SSO authentication")

        if self._http_client is not None:
            return await self._authenticate_with(self._http_client, code)

        async with httpx.AsyncClient() as client:
            return await self._authenticate_with(client, code)

    async def _authenticate_with(self, client: httpx.AsyncClient, code: str) -> Identity:
        token_data = await self._exchange_code(client, code)

        access_token = token_data.get("access_token")
        if not access_token:
            raise UpstreamUnavailable(
                "Token response missing access_token",
                url=self.sso["token_url"],
            )
        token_type = token_data.get("token_type") or "Bearer"
        logger.info("Obtained SSO access token")

        user_info = await self._fetch_userinfo(client, token_type, access_token)
        return self._build_identity(user_info, access_token)

    async def _exchange_code(self, client: httpx.AsyncClient, code: str) -> Dict[str, Any]:
        """POST the authorization code to the token endpoint."""
        payload = {
            "grant_type": "code",
            "client_id": self.sso["client_id"],
            "client_secret": self.sso["client_secret"],
            "code": code,
            "redirect_uri": self.sso["redirect_uri"],
        }
        logger.debug(
            "Exchanging authorization code",
            extra={"url": self.sso["token_url"], "payload": redact(payload)},
        )

        return await self._request_json(
            client,
            "POST",
            self.sso["token_url"],
            data=payload,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

    async def _fetch_userinfo(
        self,
        client: httpx.AsyncClient,
        token_type: str,
        access_token: str,
    ) -> Dict[str, Any]:
        """GET the user profile using the access token."""
        return await self._request_json(
            client,
            "GET",
            self.sso["userinfo_url"],
            headers={"Authorization": f"{token_type} {access_token}"},
        )

    async def _request_json(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        """
        Perform a single bounded request and decode its JSON body.

        Raises:
            UpstreamUnavailable: On transport errors, non-2xx status or a
                body that is not a JSON object
        """
        try:
            response = await client.request(
                method, url, timeout=UPSTREAM_TIMEOUT_SECONDS, **kwargs
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "SSO upstream returned an error status",
                extra={
                    "status_code": e.response.status_code,
                    "reason": e.response.reason_phrase,
                    "url": url,
                },
            )
            raise UpstreamUnavailable(
                f"{method} {url} returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
                url=url,
            ) from e
        except httpx.HTTPError as e:
            logger.error(
                f"SSO upstream request failed: {type(e).__name__}",
                extra={"url": url},
            )
            raise UpstreamUnavailable(
                f"{method} {url} failed: {type(e).__name__}",
                url=url,
            ) from e

        try:
            data = response.json()
        except ValueError as e:
            logger.error("SSO upstream returned invalid JSON", extra={"url": url})
            raise UpstreamUnavailable(
                f"{method} {url} returned invalid JSON",
                status_code=response.status_code,
                url=url,
            ) from e

        if not isinstance(data, dict):
            raise UpstreamUnavailable(
                f"{method} {url} returned unexpected payload",
                status_code=response.status_code,
                url=url,
            )

        return data

    def _build_identity(self, user_info: Dict[str, Any], access_token: str) -> Identity:
        user_id = resolve_field(user_info, USER_ID_PATHS)
        display_name = resolve_field(user_info, DISPLAY_NAME_PATHS)

        if not user_id or not display_name:
            raise IdentityResolutionFailed(
                f"Could not resolve user identity: user_id={user_id}, display_name={display_name}"
            )

        logger.info(
            "Resolved SSO user",
            extra={"user": display_name, "user_id": user_id},
        )

        return Identity(
            id=user_id,
            display_name=display_name,
            email=resolve_field(user_info, EMAIL_PATHS),
            department=resolve_field(user_info, DEPARTMENT_PATHS),
            kind=IdentityKind.SSO,
            provider_token=access_token,
        )
