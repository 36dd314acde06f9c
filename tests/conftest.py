"""
Test Configuration
==================

Pytest fixtures for ITSM Engine tests.
"""

import os
from collections.abc import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment before settings are first read
os.environ["ITSM_ENVIRONMENT"] = "testing"
os.environ["ITSM_SCHEDULER_ENABLED"] = "false"

from itsm_engine.config import Settings  # noqa: E402
from itsm_engine.models import SessionContext, UserRole  # noqa: E402
from itsm_engine.repositories import Store  # noqa: E402
from itsm_engine.services import build_services  # noqa: E402


@pytest.fixture
def admin() -> SessionContext:
    return SessionContext(user_id=uuid4(), role=UserRole.ADMIN)


@pytest.fixture
def agent() -> SessionContext:
    return SessionContext(user_id=uuid4(), role=UserRole.AGENT)


@pytest.fixture
def store() -> Store:
    return Store()


@pytest.fixture
def services(store: Store):
    return build_services(store)


@pytest.fixture
def settings() -> Settings:
    return Settings(environment="testing", scheduler_enabled=False)


@pytest_asyncio.fixture
async def client(store: Store, settings: Settings) -> AsyncGenerator[AsyncClient, None]:
    """Create test client for the API around the shared store."""
    from itsm_engine.api.app import create_app

    app = create_app(store=store, settings=settings)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client
