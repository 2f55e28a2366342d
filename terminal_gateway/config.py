"""
Configuration module for the Terminal Gateway.

This module uses Pydantic Settings to load and validate environment variables
for provider selection, SSO (OAuth2) endpoints, session policy, cookie flags
and backend (ttyd) communication.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The SSO values are only required when the SSO provider is selected; the
    provider itself validates them during initialization so that a missing
    value can fall back to local authentication instead of aborting startup.
    """

    # =========================================================================
    # Provider Selection
    # =========================================================================

    AUTH_PROVIDER: str = Field(
        default="sso",
        description="Active identity provider ('local' or 'sso')",
    )

    # =========================================================================
    # SSO / OAuth2 Configuration
    # =========================================================================

    SSO_OAUTH_URL: Optional[str] = Field(
        None,
        description="OAuth2 authorize endpoint the browser is sent to",
        validation_alias=AliasChoices("SSO_OAUTH_URL", "GFT_OAUTH_URL"),
    )

    SSO_TOKEN_URL: Optional[str] = Field(
        None,
        description="OAuth2 token endpoint used for the code exchange",
        validation_alias=AliasChoices("SSO_TOKEN_URL", "GFT_TOKEN_URL"),
    )

    SSO_USERINFO_URL: Optional[str] = Field(
        None,
        description="Userinfo endpoint queried with the access token",
        validation_alias=AliasChoices("SSO_USERINFO_URL", "GFT_USERINFO_URL"),
    )

    SSO_CLIENT_ID: Optional[str] = Field(
        None,
        description="OAuth2 client ID",
        validation_alias=AliasChoices("SSO_CLIENT_ID", "GFT_CLIENT_ID"),
    )

    SSO_CLIENT_SECRET: Optional[str] = Field(
        None,
        description="OAuth2 client secret (never exposed to the browser)",
        validation_alias=AliasChoices("SSO_CLIENT_SECRET", "GFT_CLIENT_SECRET"),
    )

    SSO_REDIRECT_URI: Optional[str] = Field(
        None,
        description="Redirect URI registered with the identity provider",
        validation_alias=AliasChoices("SSO_REDIRECT_URI", "GFT_REDIRECT_URI"),
    )

    # =========================================================================
    # Session Policy
    # =========================================================================

    SESSION_MAX_AGE_SECONDS: Optional[int] = Field(
        None,
        description="Absolute session lifetime; provider default when unset",
        gt=0,
    )

    SESSION_MAX_INACTIVITY_SECONDS: Optional[int] = Field(
        None,
        description="Maximum idle time between requests; provider default when unset",
        gt=0,
    )

    SESSION_SWEEP_INTERVAL_SECONDS: float = Field(
        default=30 * 60,
        description="Interval between background sweeps of expired sessions",
        gt=0,
    )

    SECURE_COOKIES: bool = Field(
        default=True,
        description="Set the Secure flag on the session cookie (disable only without TLS)",
    )

    # =========================================================================
    # Backend (Terminal Service) Configuration
    # =========================================================================

    BACKEND_SERVICE_URL: HttpUrl = Field(
        default="http://127.0.0.1:7681",
        description="Backend terminal service base URL (e.g., ttyd)",
    )

    BACKEND_TIMEOUT_SECONDS: float = Field(
        default=30.0,
        description="Timeout for proxied HTTP requests to the backend",
        gt=0,
    )

    IDENTITY_HEADER: str = Field(
        default="X-WEBAUTH-USER",
        description="Header carrying the authenticated display name to the backend",
        min_length=1,
    )

    ANONYMOUS_USER: str = Field(
        default="anonymous",
        description="Identity header value used when no identity is attached",
    )

    # =========================================================================
    # Gateway Server Configuration
    # =========================================================================

    GATEWAY_HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the gateway server",
    )

    GATEWAY_PORT: int = Field(
        default=3000,
        description="Port to bind the gateway server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    DEBUG: bool = Field(
        default=False,
        description="Include diagnostic details in authentication failure responses",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        populate_by_name=True,
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def backend_service_url_str(self) -> str:
        """
        Get backend service URL as string (for HTTP client usage).

        Returns:
            Backend URL as string without trailing slash.
        """
        return str(self.BACKEND_SERVICE_URL).rstrip("/")

    @property
    def backend_websocket_url_str(self) -> str:
        """Backend URL with the scheme switched to ws/wss."""
        url = self.backend_service_url_str
        if url.startswith("https://"):
            return "wss://" + url[len("https://"):]
        return "ws://" + url[len("http://"):]

    @property
    def sso_settings(self) -> Dict[str, Optional[str]]:
        """
        SSO values keyed by the names the SSO provider expects.

        Returns:
            Mapping of provider-specific keys to configured values (may be None).
        """
        return {
            "oauth_url": self.SSO_OAUTH_URL,
            "token_url": self.SSO_TOKEN_URL,
            "userinfo_url": self.SSO_USERINFO_URL,
            "client_id": self.SSO_CLIENT_ID,
            "client_secret": self.SSO_CLIENT_SECRET,
            "redirect_uri": self.SSO_REDIRECT_URI,
        }

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("AUTH_PROVIDER")
    @classmethod
    def normalize_provider(cls, v: str) -> str:
        """Provider keys are matched case-insensitively."""
        return v.strip().lower()

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate the logging level name.

        Raises:
            ValueError: If the level is not a standard logging level
        """
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        level = v.upper()

        if level not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return level


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If environment variables are present but invalid.
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

SSO_ENV_NAMES: Dict[str, str] = {
    "oauth_url": "SSO_OAUTH_URL",
    "token_url": "SSO_TOKEN_URL",
    "userinfo_url": "SSO_USERINFO_URL",
    "client_id": "SSO_CLIENT_ID",
    "client_secret": "SSO_CLIENT_SECRET",
    "redirect_uri": "SSO_REDIRECT_URI",
}


def missing_sso_settings(values: Dict[str, Optional[str]]) -> List[str]:
    """
    List the environment variable names of SSO values that are unset or blank.

    Args:
        values: Provider-specific SSO mapping (see Settings.sso_settings)

    Returns:
        Environment variable names, in declaration order.
    """
    return [
        env_name
        for key, env_name in SSO_ENV_NAMES.items()
        if not (values.get(key) or "").strip()
    ]
