# tests/conftest.py
"""
Shared fixtures for the Spendwise test suite.

Provides settings, a seeded in-memory backend, the application and a
TestClient running the full lifespan.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from spendwise.core.config import Settings
from spendwise.core.security import sign_payload
from spendwise.main import create_app
from spendwise.models.subscription import PlanType
from spendwise.services.data_backend import InMemoryDataBackend

TEST_CSRF_SECRET = "test-csrf-secret"
TEST_WEBHOOK_SECRET = "test-webhook-secret"

FREE_USER = "user-free"
FREE_TOKEN = "token-free"
PRO_USER = "user-pro"
PRO_TOKEN = "token-pro"


def auth_headers(token: str = FREE_TOKEN) -> dict:
    return {"Authorization": f"Bearer {token}"}


def sign(body: bytes, secret: str = TEST_WEBHOOK_SECRET) -> str:
    return sign_payload(secret, body)


def make_settings(**overrides) -> Settings:
    values = {
        "ENVIRONMENT": "development",
        "CSRF_SECRET": TEST_CSRF_SECRET,
        "BILLING_WEBHOOK_SECRET": TEST_WEBHOOK_SECRET,
        "RATE_LIMIT_ENABLED": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def backend():
    """In-memory backend with one free and one pro user"""
    backend = InMemoryDataBackend()

    async def seed():
        await backend.register_user(FREE_USER, FREE_TOKEN, PlanType.FREE)
        await backend.register_user(PRO_USER, PRO_TOKEN, PlanType.PRO)

    asyncio.run(seed())
    return backend


@pytest.fixture
def app(settings, backend):
    return create_app(settings=settings, backend=backend)


@pytest.fixture
def client(app):
    """TestClient with lifespan (cache store, CSRF guard, services) started"""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def csrf_token(client):
    """Fetch a CSRF token; the digest cookie stays in the client's jar"""
    response = client.get("/csrf-token")
    assert response.status_code == 200
    return response.json()["csrf_token"]
