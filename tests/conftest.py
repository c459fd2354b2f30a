"""Pytest fixtures for backend tests."""

from collections.abc import AsyncGenerator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import APP_VERSION, settings
from app.db.base import Base
from app.db.session import create_engine, get_db
from app.main import app
from app.services.lapi_client import LAPIClient
from app.services.sync import SyncService
from app.services.version_check import VersionChecker

# One shared in-memory database per test; StaticPool keeps the single
# connection alive across sessions
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def _make_alert(alert_id: int = 100, decisions: list[dict[str, Any]] | None = None, **overrides) -> dict[str, Any]:
    """Build an alert payload shaped like GET /v1/alerts output."""
    alert = {
        "id": alert_id,
        "uuid": f"uuid-{alert_id}",
        "scenario": "crowdsecurity/ssh-bf",
        "scenario_version": "0.1",
        "scenario_hash": "abc123",
        "message": "Ip 1.2.3.4 performed 'crowdsecurity/ssh-bf' (6 events over 2s)",
        "capacity": 5,
        "leakspeed": "10s",
        "simulated": False,
        "remediation": True,
        "events_count": 6,
        "machine_id": "machine-1",
        "source": {
            "scope": "Ip",
            "value": "1.2.3.4",
            "ip": "1.2.3.4",
            "cn": "FR",
            "as_name": "Example Telecom",
            "as_number": 64500,
            "latitude": 48.85,
            "longitude": 2.35,
        },
        "labels": None,
        "meta": [{"key": "target_user", "value": '["root","admin"]'}],
        "events": [
            {
                "timestamp": "2024-01-01T00:00:00Z",
                "meta": [{"key": "service", "value": "ssh"}],
            }
        ],
        "decisions": decisions if decisions is not None else [],
        "created_at": "2024-01-01T00:00:00Z",
        "start_at": "2024-01-01T00:00:00Z",
        "stop_at": "2024-01-01T00:00:02Z",
    }
    alert.update(overrides)
    return alert


def _make_decision(decision_id: int = 500, value: str = "1.2.3.4", duration: str = "4h", **overrides) -> dict[str, Any]:
    """Build a decision payload as embedded in an alert."""
    decision = {
        "id": decision_id,
        "origin": "crowdsec",
        "type": "ban",
        "scope": "Ip",
        "value": value,
        "duration": duration,
        "scenario": "crowdsecurity/ssh-bf",
        "simulated": False,
    }
    decision.update(overrides)
    return decision


@pytest.fixture(autouse=True)
def no_api_password(monkeypatch):
    """Run every test with the REST API open unless a test sets a password."""
    monkeypatch.setattr(settings, "API_PASSWORD", None)


@pytest.fixture
def make_alert():
    return _make_alert


@pytest.fixture
def make_decision():
    return _make_decision


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a fresh in-memory database engine with all tables."""
    engine = create_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def test_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_lapi_client() -> MagicMock:
    """LAPI client double; every network method is an AsyncMock."""
    client = MagicMock(spec=LAPIClient)
    client.fetch_alerts = AsyncMock(return_value=[])
    client.check_status = AsyncMock(return_value=True)
    client.create_alerts = AsyncMock(return_value=["1"])
    client.delete_alert = AsyncMock(return_value=1)
    client.delete_decision = AsyncMock(return_value=1)
    return client


@pytest.fixture
def sync_service(mock_lapi_client, session_factory) -> SyncService:
    return SyncService(mock_lapi_client, session_factory)


@pytest.fixture
def version_checker() -> VersionChecker:
    return VersionChecker(APP_VERSION)


@pytest_asyncio.fixture(scope="function")
async def client(
    session_factory, mock_lapi_client, sync_service, version_checker
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client wired to the test database and a fake LAPI."""

    async def override():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override
    app.state.lapi_client = mock_lapi_client
    app.state.sync_service = sync_service
    app.state.version_checker = version_checker

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
