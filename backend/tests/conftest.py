"""Test fixtures — in-memory SQLite database and FastAPI test client."""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from panelhub.database import get_db
from panelhub.main import create_app
from panelhub.models.base import Base


@pytest_asyncio.fixture
async def db_session():
    """Provide an async in-memory SQLite session for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession):
    """Provide an async test client with overridden DB dependency."""
    app = create_app()

    async def _override_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def full_state_payload():
    """A ``full_state`` frame as a panel sends it."""
    return {
        "event": "full_state",
        "wifiConnected": True,
        "ssid": "home",
        "ip": "10.0.0.21",
        "statusLedOn": False,
        "version": "2.4.1",
        "hostname": "Kitchen",
        "deviceId": "cbx-0021",
        "relays": [
            {"index": 0, "state": False, "name": "Ceiling"},
            {"index": 1, "state": True, "name": "Counter"},
        ],
        "curtains": [{"index": 0, "state": "Closed", "name": "Window"}],
        "contacts": [{"index": 0, "state": "closed", "name": "Door"}],
    }
