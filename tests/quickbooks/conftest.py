"""Fixtures for the QuickBooks tests: a scripted QuickBooks server and a live connection."""
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from sleekinvoices.quickbooks.client import QuickBooksClient
from sleekinvoices.quickbooks.config import QuickBooksConfig
from sleekinvoices.quickbooks.models import QuickBooksConnection
from sleekinvoices.quickbooks.utils import utcnow

from fake_quickbooks import REALM_ID, FakeQuickBooks


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def qb_config() -> QuickBooksConfig:
    return QuickBooksConfig(
        client_id="test-client-id",
        client_secret="test-client-secret",
        redirect_uri="http://localhost:8000/api/quickbooks/callback",
        environment="sandbox",
    )


@pytest.fixture
def fake_qb(qb_config) -> FakeQuickBooks:
    return FakeQuickBooks(qb_config)


@pytest.fixture
def transport(fake_qb) -> httpx.MockTransport:
    return httpx.MockTransport(fake_qb.handler)


@pytest_asyncio.fixture
async def connection(db, user) -> QuickBooksConnection:
    """An active connection whose access token is still fresh."""
    now = utcnow()
    connection = QuickBooksConnection(
        user_id=user.id,
        realm_id=REALM_ID,
        environment="sandbox",
        access_token="access-0",
        refresh_token="refresh-0",
        token_expires_at=now + timedelta(hours=1),
        refresh_token_expires_at=now + timedelta(days=90),
        is_active=True,
    )
    db.add(connection)
    await db.commit()
    return connection


@pytest.fixture
def qb_client(db, user, connection, qb_config, transport) -> QuickBooksClient:
    return QuickBooksClient(db, user.id, config=qb_config, transport=transport)
