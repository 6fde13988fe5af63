import os
import tempfile
from collections.abc import AsyncGenerator
from datetime import date, timedelta
from pathlib import Path
from unittest.mock import MagicMock

# Settings are read at import time; give the test run safe defaults first
_DEFAULT_DB = Path(tempfile.gettempdir()) / "tenant_booking_app.db"
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DEFAULT_DB}")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("PASSWORD_PEPPER", "test-pepper")
os.environ.setdefault("LOG_FORMAT", "console")

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import NullPool

# Load environment variables from .env file
load_dotenv()

from app.config import settings
from app.core.redis_client import get_redis_client
from app.core.security import create_access_token
from app.database import Database, get_database, get_db
from app.dependencies import get_email_service
from app.main import app
from app.models import metadata
from app.schemas.users import UserCreate, UserRole
from app.services.directory_service import DirectoryService
from app.services.email_service import EmailService

# Point TEST_DATABASE_URL at a PostgreSQL database to exercise the
# exclusion constraint; a temporary SQLite file is used otherwise.
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

if TEST_DATABASE_URL and TEST_DATABASE_URL == settings.database_url:
    raise RuntimeError("TEST_DATABASE_URL must differ from DATABASE_URL; tests drop all tables")

PASSWORD = "s3cret-pass"


class RecordingEmailService(EmailService):
    """Email service that records messages instead of sending them."""

    def __init__(self):
        super().__init__(settings)
        self.outbox: list[dict] = []
        self.fail = False

    async def send(self, to: str, subject: str, text: str, html: str) -> None:
        if self.fail:
            from app.core.exceptions import EmailDeliveryException

            raise EmailDeliveryException("SMTP unavailable")
        self.outbox.append({"to": to, "subject": subject, "text": text, "html": html})


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    """A fresh schema per test."""
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    db = Database(url, poolclass=NullPool)

    async with db.engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    yield db

    async with db.engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await db.dispose()


@pytest_asyncio.fixture
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with database.session_factory() as session:
        yield session


@pytest.fixture
def redis_mock() -> MagicMock:
    """Redis client backed by a dict."""
    store: dict[str, str] = {}
    client = MagicMock()
    client.get.side_effect = store.get
    client.set.side_effect = lambda key, value: store.__setitem__(key, value)
    client.setex.side_effect = lambda key, ttl, value: store.__setitem__(key, value)
    client.exists.side_effect = lambda key: int(key in store)
    client.delete.side_effect = lambda key: int(store.pop(key, None) is not None)
    client.store = store
    return client


@pytest.fixture
def email_service() -> RecordingEmailService:
    return RecordingEmailService()


@pytest_asyncio.fixture
async def client(
    database: Database,
    redis_mock: MagicMock,
    email_service: RecordingEmailService,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async for session in database.session():
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_database] = lambda: database
    app.dependency_overrides[get_redis_client] = lambda: redis_mock
    app.dependency_overrides[get_email_service] = lambda: email_service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def directory(db_session: AsyncSession) -> DirectoryService:
    return DirectoryService(db_session)


@pytest_asyncio.fixture
async def acme(directory: DirectoryService) -> dict:
    """Customer admin owning the ``acme`` tenant."""
    return await directory.create_user(
        UserCreate(
            full_name="Acme Owner",
            email="owner@acme.example.com",
            password=PASSWORD,
            role=UserRole.CUSTOMER_ADMIN,
            domain="acme",
        )
    )


@pytest_asyncio.fixture
async def acme_client(directory: DirectoryService, acme: dict) -> dict:
    """Client registered under the ``acme`` tenant."""
    return await directory.create_user(
        UserCreate(full_name="Jane Client", email="jane@example.com", password=PASSWORD),
        tenant_header="acme",
    )


@pytest_asyncio.fixture
async def acme_staff(directory: DirectoryService, acme: dict) -> dict:
    """Second ``acme`` user, bookable as a provider."""
    return await directory.create_user(
        UserCreate(full_name="Sam Staff", email="sam@acme.example.com", password=PASSWORD),
        tenant_header="acme",
    )


@pytest_asyncio.fixture
async def administrator(directory: DirectoryService) -> dict:
    return await directory.create_user(
        UserCreate(
            full_name="Site Admin",
            email="admin@example.com",
            password=PASSWORD,
            role=UserRole.ADMINISTRATOR,
        )
    )


def auth_headers_for(user: dict) -> dict:
    """Bearer headers for a stored user."""
    token = create_access_token(
        data={"sub": str(user["id"]), "role": user["role"]},
        expires_delta=timedelta(minutes=30),
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def future_date() -> date:
    return date.today() + timedelta(days=7)
