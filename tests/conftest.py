import asyncio
import itertools
import json
import os
from collections.abc import AsyncGenerator
from datetime import timedelta
from unittest.mock import MagicMock
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Load environment variables from .env file
load_dotenv()

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("GCAL_DEFAULT_TZ", "America/New_York")

from app.core.google_calendar import GoogleCalendarClient  # noqa: E402
from app.core.redis_client import CacheManager  # noqa: E402
from app.core.security import create_access_token  # noqa: E402
from app.database import get_db  # noqa: E402
from app.dependencies import get_cache_manager, get_calendar_client  # noqa: E402
from app.main import app  # noqa: E402
from app.models import metadata, patients, providers, users  # noqa: E402

# In-memory SQLite unless a separate test database is configured
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

CALENDAR_BASE_URL = "https://calendar.test"


class FakeCalendar:
    """In-memory stand-in for the calendar REST API, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.events: dict[str, dict] = {}
        self.calendars: list[str] = []
        self.requests: list[httpx.Request] = []
        # HTTP method -> status code to answer every such request with
        self.fail: dict[str, int] = {}
        self.busy: list[dict[str, str]] = []
        # HTTP method or URL path -> seconds to hold the next such response back
        self.slow: dict[str, float] = {}
        self._ids = itertools.count(1)

    def calls(self, method: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.method == method]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method in self.fail:
            return httpx.Response(self.fail[request.method], json={"error": "fake failure"})

        parts = request.url.path.strip("/").split("/")
        body = json.loads(request.content) if request.content else {}

        if parts == ["freeBusy"]:
            calendar_id = body["items"][0]["id"]
            return httpx.Response(200, json={"calendars": {calendar_id: {"busy": self.busy}}})

        if parts == ["calendars"]:
            calendar_id = f"cal-{next(self._ids)}"
            self.calendars.append(calendar_id)
            return httpx.Response(200, json={"id": calendar_id, **body})

        if len(parts) == 3 and parts[2] == "acl":
            return httpx.Response(200, json={"id": f"user:{body['scope']['value']}"})

        calendar_id = parts[1]
        if len(parts) == 3:
            if request.method == "POST":
                event_id = f"evt-{next(self._ids)}"
                self.events[event_id] = {"id": event_id, "calendarId": calendar_id, **body}
                return httpx.Response(200, json=self.events[event_id])

            tag = request.url.params.get("privateExtendedProperty", "")
            wanted = tag.split("=", 1)[1] if "=" in tag else None
            items = [
                event
                for event in self.events.values()
                if event["calendarId"] == calendar_id
                and event.get("extendedProperties", {}).get("private", {}).get("appointmentId")
                == wanted
            ]
            return httpx.Response(200, json={"items": items})

        event_id = parts[3]
        if event_id not in self.events:
            return httpx.Response(404, json={"error": "not found"})
        if request.method == "PATCH":
            self.events[event_id].update(body)
            return httpx.Response(200, json=self.events[event_id])
        if request.method == "DELETE":
            del self.events[event_id]
            return httpx.Response(204)
        return httpx.Response(200, json=self.events[event_id])

    async def respond(self, request: httpx.Request) -> httpx.Response:
        response = self.handler(request)
        delay = self.slow.pop(request.url.path, None) or self.slow.pop(request.method, None)
        if delay:
            await asyncio.sleep(delay)
        return response

    def client(self) -> GoogleCalendarClient:
        return GoogleCalendarClient(
            "test-token",
            base_url=CALENDAR_BASE_URL,
            transport=httpx.MockTransport(self.respond),
        )


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,  # Set to True for SQL debugging
        poolclass=StaticPool,
        connect_args={"check_same_thread": False} if TEST_DATABASE_URL.startswith("sqlite") else {},
    )

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    # Drop tables after test
    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Sessions on a file-backed database, one per concurrent request."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scheduling.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def fake_calendar() -> FakeCalendar:
    return FakeCalendar()


@pytest.fixture
def cache_manager() -> CacheManager:
    """Cache manager over a Redis mock that always misses."""
    mock_redis = MagicMock()
    mock_redis.get.return_value = None
    return CacheManager(redis_client=mock_redis)


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    fake_calendar: FakeCalendar,
    cache_manager: CacheManager,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    async def override_get_calendar_client() -> AsyncGenerator[GoogleCalendarClient, None]:
        async with fake_calendar.client() as calendar:
            yield calendar

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache_manager] = lambda: cache_manager
    app.dependency_overrides[get_calendar_client] = override_get_calendar_client

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


async def _insert_user(db_session: AsyncSession, role: str) -> dict:
    user = {
        "id": uuid4(),
        "email": f"{role}@clinic.test",
        "full_name": f"Test {role.title()}",
        "role": role,
        "is_active": True,
    }
    await db_session.execute(insert(users).values(**user))
    await db_session.commit()
    return user


def _headers_for(user: dict) -> dict:
    token = create_access_token(
        data={"sub": str(user["id"]), "email": user["email"]},
        expires_delta=timedelta(minutes=30),
    )
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def test_user(db_session: AsyncSession) -> dict:
    """Front-desk user in the database."""
    return await _insert_user(db_session, "reception")


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> dict:
    return await _insert_user(db_session, "admin")


@pytest.fixture
def auth_headers(test_user: dict) -> dict:
    """Create authentication headers for testing protected endpoints."""
    return _headers_for(test_user)


@pytest.fixture
def admin_headers(admin_user: dict) -> dict:
    return _headers_for(admin_user)


@pytest_asyncio.fixture
async def provider(db_session: AsyncSession) -> dict:
    """Active provider with a calendar."""
    row = {
        "id": uuid4(),
        "display_name": "Dr. Smith",
        "email": "smith@clinic.test",
        "calendar_id": "cal-smith",
        "is_active": True,
    }
    await db_session.execute(insert(providers).values(**row))
    await db_session.commit()
    return row


@pytest_asyncio.fixture
async def second_provider(db_session: AsyncSession) -> dict:
    row = {
        "id": uuid4(),
        "display_name": "Dr. Jones",
        "email": "jones@clinic.test",
        "calendar_id": "cal-jones",
        "is_active": True,
    }
    await db_session.execute(insert(providers).values(**row))
    await db_session.commit()
    return row


@pytest_asyncio.fixture
async def provider_without_calendar(db_session: AsyncSession) -> dict:
    row = {
        "id": uuid4(),
        "display_name": "Dr. Nocal",
        "email": "nocal@clinic.test",
        "calendar_id": None,
        "is_active": True,
    }
    await db_session.execute(insert(providers).values(**row))
    await db_session.commit()
    return row


@pytest_asyncio.fixture
async def patient(db_session: AsyncSession) -> dict:
    row = {"id": uuid4(), "name": "Jane Roe", "email": "jane@example.com"}
    await db_session.execute(insert(patients).values(**row))
    await db_session.commit()
    return row


@pytest.fixture
def booking(provider: dict, patient: dict) -> dict:
    """Create-appointment payload for 09:00-09:30."""
    return {
        "providerId": str(provider["id"]),
        "patientId": str(patient["id"]),
        "date": "2025-03-10",
        "start": "09:00",
        "end": "09:30",
        "reason": "Checkup",
    }
