"""
Data Models Module

This module defines Pydantic models shared across the gateway.

Models are organized by functional area:
- Identity and session records (produced by providers, owned by the store)
- Provider configuration and declared routes
- Response payloads for the login surface
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ============================================================================
# Identity Models
# ============================================================================

class IdentityKind(str, Enum):
    """Which provider variant produced an identity."""

    LOCAL = "local"
    SSO = "sso"


class Identity(BaseModel):
    """
    Normalized record describing an authenticated caller.

    Immutable once produced. ``provider_token`` is only populated by the SSO
    provider and is excluded from serialization so it never reaches a client.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Provider-namespaced user identifier")
    display_name: str = Field(..., description="Name shown to the backend and the user")
    email: Optional[str] = Field(None, description="User email address")
    department: Optional[str] = Field(None, description="Organizational unit")
    kind: IdentityKind = Field(..., description="Provider variant")
    provider_token: Optional[str] = Field(
        None,
        description="Upstream access token (sso only)",
        exclude=True,
        repr=False,
    )


class Session(BaseModel):
    """
    Server-held record binding an opaque token to an identity.

    Owned by the SessionStore; only ``last_accessed_at`` changes after creation.
    """

    model_config = ConfigDict(validate_assignment=True)

    token: str = Field(..., min_length=1, repr=False)
    created_at: datetime
    last_accessed_at: datetime
    identity: Identity

    @model_validator(mode="after")
    def check_access_order(self) -> "Session":
        if self.last_accessed_at < self.created_at:
            raise ValueError("last_accessed_at must not precede created_at")
        return self


# ============================================================================
# Provider Models
# ============================================================================

class ProviderConfig(BaseModel):
    """Session policy and provider-specific settings, fixed at initialization."""

    model_config = ConfigDict(frozen=True)

    max_session_age: timedelta = Field(..., description="Absolute session lifetime")
    max_inactivity: timedelta = Field(..., description="Maximum idle time")
    provider_specific: Dict[str, str] = Field(default_factory=dict)


class RouteKind(str, Enum):
    """How the manager should dispatch a provider-declared route."""

    SUBMIT = "submit"
    CONFIG = "config"
    CUSTOM = "custom"


class RouteDescriptor(BaseModel):
    """
    Declarative description of an endpoint a provider wants exposed.

    ``handler`` is only consulted for CUSTOM routes whose path the manager
    does not own itself.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    method: str = Field(..., description="HTTP method (GET, POST, ...)")
    path: str = Field(..., description="Route path")
    kind: RouteKind = Field(default=RouteKind.CUSTOM)
    handler: Optional[Callable[..., Awaitable[Any]]] = Field(default=None, exclude=True)


# ============================================================================
# Response Models
# ============================================================================

class UserSummary(BaseModel):
    """The only identity fields returned to the browser after login."""

    name: str
    id: str


class LoginSuccessResponse(BaseModel):
    """Body of a successful credential submission."""

    success: bool = True
    user: UserSummary


class ErrorResponse(BaseModel):
    """Standardized error response model."""

    error: str = Field(..., description="Human-readable error message")
    details: Optional[str] = Field(None, description="Diagnostic detail (debug only)")
