"""Shared test fixtures — async SQLite in-memory DB, fake PayPal, test client."""

import os

os.environ["JWT_SECRET_KEY"] = "test-secret-key"  # noqa: S105
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["PAYPAL_WEBHOOK_ID"] = "WH-TEST"

from collections.abc import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

# Import all models so metadata is populated
import staffhub.models  # noqa: E402, F401
from staffhub.api.deps import get_paypal_gateway  # noqa: E402
from staffhub.core.database import get_session  # noqa: E402
from staffhub.main import app  # noqa: E402
from staffhub.models.member import Member, MemberRole  # noqa: E402
from staffhub.models.tenant import Tenant  # noqa: E402
from staffhub.services.paypal import PayPalError, ProviderResponse  # noqa: E402


class FakePayPal:
    """In-memory stand-in for PayPalGateway that records every command."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.responses: dict[str, ProviderResponse] = {}
        self.plans: list[dict] = []
        self.verified: bool = True
        self.error: PayPalError | None = None

    def commands(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    def _reply(self, name: str, *args, default: ProviderResponse) -> ProviderResponse:
        self.calls.append((name, *args))
        if self.error is not None:
            raise self.error
        return self.responses.get(name, default)

    async def revise_quantity(self, subscription_id, quantity):
        return self._reply(
            "revise_quantity", subscription_id, quantity,
            default=ProviderResponse(ok=True, status=200, data={"plan_overridden": False}),
        )

    async def suspend(self, subscription_id, reason=None):
        return self._reply("suspend", subscription_id, reason, default=ProviderResponse(ok=True, status=204))

    async def activate(self, subscription_id, reason=None):
        return self._reply("activate", subscription_id, reason, default=ProviderResponse(ok=True, status=204))

    async def cancel(self, subscription_id, reason=None):
        return self._reply("cancel", subscription_id, reason, default=ProviderResponse(ok=True, status=204))

    async def list_plans(self, product_id=None):
        return self._reply(
            "list_plans", product_id,
            default=ProviderResponse(ok=True, status=200, data={"plans": self.plans}),
        )

    async def create_plan(self, payload):
        plan_id = f"P-{len(self.commands('create_plan')) + 1}"
        return self._reply("create_plan", payload, default=ProviderResponse(ok=True, status=201, data={"id": plan_id}))

    async def verify_webhook_signature(self, headers, raw_body):
        self.calls.append(("verify", dict(headers)))
        if self.error is not None:
            raise self.error
        return self.verified


@pytest.fixture
async def engine():
    # StaticPool keeps one in-memory database alive across connections
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def test_session_factory(engine):
    """Session factory bound to the test SQLite engine."""
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(test_session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with test_session_factory() as sess:
        yield sess
        await sess.rollback()


@pytest.fixture
def fake_paypal() -> FakePayPal:
    return FakePayPal()


@pytest.fixture
def make_tenant(session):
    """Factory: persist a tenant with ``members`` member rows mirroring its status."""

    async def _make(members: int = 2, **fields) -> Tenant:
        fields.setdefault("name", "Acme Shifts")
        tenant = Tenant(**fields)
        session.add(tenant)
        await session.flush()
        for i in range(members):
            session.add(Member(
                tenant_id=tenant.id,
                email=f"member{i}@acme.com",
                role=MemberRole.OWNER if i == 0 else MemberRole.MEMBER,
                subscription_status=tenant.subscription_status,
            ))
        await session.commit()
        return tenant

    return _make


@pytest.fixture
async def client(session, fake_paypal) -> AsyncGenerator[AsyncClient, None]:
    """HTTPX async test client with DB session and PayPal overrides."""

    async def _override_session():
        yield session

    app.dependency_overrides[get_session] = _override_session
    app.dependency_overrides[get_paypal_gateway] = lambda: fake_paypal

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
