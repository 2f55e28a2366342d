"""
Shared fixtures for the gateway tests.

Provides settings factories, a controllable clock for expiry tests and a
recording backend built on httpx.MockTransport.
"""

from datetime import datetime, timedelta, timezone
from typing import List

import httpx
import pytest
from fastapi.testclient import TestClient

from terminal_gateway.auth.manager import AuthManager
from terminal_gateway.auth.providers import create_provider
from terminal_gateway.auth.session import SessionStore
from terminal_gateway.config import Settings
from terminal_gateway.main import create_app
from terminal_gateway.models import Identity, IdentityKind

BACKEND_URL = "http://backend:7681"

SSO_VALUES = {
    "SSO_OAUTH_URL": "https://sso.example.com/oauth2/authorize",
    "SSO_TOKEN_URL": "https://sso.example.com/oauth2/token",
    "SSO_USERINFO_URL": "https://sso.example.com/oauth2/userinfo",
    "SSO_CLIENT_ID": "terminal-gateway",
    "SSO_CLIENT_SECRET": "s3cr3t-client-value-0123456789",
    "SSO_REDIRECT_URI": "https://terminal.example.com/login",
}


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


class RecordingBackend:
    """Terminal backend stand-in that records every request it receives."""

    def __init__(self):
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(
            200,
            # streamed body, as a real backend response is read via aiter_raw()
            stream=httpx.ByteStream(b"terminal:" + request.content),
            headers={"content-type": "text/plain", "x-backend": "ttyd"},
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self), base_url=BACKEND_URL)


def make_settings(**overrides) -> Settings:
    values = {
        "AUTH_PROVIDER": "local",
        "SECURE_COOKIES": False,
        "BACKEND_SERVICE_URL": BACKEND_URL,
        "LOG_LEVEL": "DEBUG",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_identity(name: str = "alice", kind: IdentityKind = IdentityKind.LOCAL) -> Identity:
    return Identity(
        id=f"local_{name}" if kind == IdentityKind.LOCAL else name,
        display_name=name,
        email=f"{name}@local.dev",
        department="Development",
        kind=kind,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def local_settings():
    return make_settings()


@pytest.fixture
def sso_settings():
    return make_settings(AUTH_PROVIDER="sso", **SSO_VALUES)


@pytest.fixture
def backend():
    return RecordingBackend()


@pytest.fixture
def store(clock):
    return SessionStore(clock=clock)


@pytest.fixture
def make_client(backend, store):
    """Build a TestClient around a fully wired gateway."""

    def factory(settings=None, provider_factory=create_provider, backend_client=None):
        settings = settings or make_settings()
        manager = AuthManager(settings, store=store, provider_factory=provider_factory)
        app = create_app(
            settings,
            manager=manager,
            backend_client=backend_client or backend.client(),
        )
        return TestClient(app)

    return factory


def login(client, username="alice", password="secret", path="/login"):
    response = client.post(path, json={"username": username, "password": password})
    assert response.status_code == 200
    return response
