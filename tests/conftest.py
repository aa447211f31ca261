import os
import uuid
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

os.environ.setdefault("MONGODB_DB_NAME", "leadmarket_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")

from leadmarket.container import Services, build_services  # noqa: E402
from leadmarket.core.config import Settings  # noqa: E402
from leadmarket.core.money import to_cents  # noqa: E402
from leadmarket.core.security import create_session_cookie  # noqa: E402
from leadmarket.db.init import init_db  # noqa: E402
from leadmarket.deps import SESSION_COOKIE_NAME  # noqa: E402
from leadmarket.models.contractor import Contractor  # noqa: E402
from leadmarket.models.lead import Lead  # noqa: E402
from leadmarket.models.user import User  # noqa: E402
from tests.stripe_helpers import WEBHOOK_SECRET, FakeGateway  # noqa: E402


@pytest_asyncio.fixture(autouse=True)
async def db():
    """Fresh in-memory database per test."""
    await init_db(AsyncMongoMockClient()["leadmarket_test"])


@pytest.fixture
def settings() -> Settings:
    return Settings(
        secret_key="test-secret-key-min-32-characters-long",
        stripe_secret_key="sk_test_placeholder",
        stripe_webhook_secret=WEBHOOK_SECRET,
        frontend_url="https://app.example.com",
    )


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def services(settings: Settings, gateway: FakeGateway) -> Services:
    return build_services(settings, gateway=gateway)


@pytest.fixture
def make_contractor():
    async def _make(uid: str | None = None, credits: str = "0", status: str = "approved") -> Contractor:
        uid = uid or f"contractor-{uuid.uuid4().hex[:8]}"
        contractor = Contractor(
            id=uid,
            email=f"{uid}@example.com",
            display_name="Test Contractor",
            status=status,
            credits_cents=to_cents(Decimal(credits)),
        )
        await contractor.insert()
        return contractor

    return _make


@pytest.fixture
def make_lead():
    async def _make(price: str = "25", owner_uid: str = "homeowner-1") -> Lead:
        if not await User.get(owner_uid):
            await User(
                id=owner_uid,
                email=f"{owner_uid}@example.com",
                display_name="Jane Homeowner",
                phone="+1 416 555 0100",
            ).insert()
        lead = Lead(
            owner_uid=owner_uid,
            service_type="Plumbing",
            location="Toronto, ON",
            description="Leaking kitchen sink",
            price_cents=to_cents(Decimal(price)),
        )
        await lead.insert()
        return lead

    return _make


@pytest_asyncio.fixture
async def client(services: Services) -> AsyncGenerator[AsyncClient, None]:
    from leadmarket.main import app
    app.state.services = services
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def login(client: AsyncClient):
    def _login(uid: str, role: str = "contractor") -> None:
        client.cookies.set(SESSION_COOKIE_NAME, create_session_cookie(uid, role))

    return _login
