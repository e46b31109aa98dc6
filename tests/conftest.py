"""Pytest configuration and fixtures."""

import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.core.action_authorization import ActionAuthorizer, build_action_registry
from app.core.auth import create_access_token
from app.infrastructure.notifications import Notifier
from app.persistence.database import Base, get_db
from app.persistence.models import *  # noqa: F401, F403
from app.persistence.models.tenant import Tenant, User


class RecordingNotifier(Notifier):
    """Notifier that keeps every delivery in memory."""

    def __init__(self):
        self.sent: list[tuple[int, str, str]] = []

    async def send(self, tenant_id: int, address: str, text: str) -> None:
        self.sent.append((tenant_id, address, text))

    def addresses(self) -> list[str]:
        return [address for _, address, _ in self.sent]


@pytest.fixture
async def db_session():
    """Create a test database session."""
    # Use in-memory SQLite for testing
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session = sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


async def _create_tenant(db_session, name: str) -> Tenant:
    tenant = Tenant(name=name, subdomain=f"{name.lower().replace(' ', '-')}-{uuid.uuid4().hex[:8]}")
    db_session.add(tenant)
    await db_session.commit()
    await db_session.refresh(tenant)
    return tenant


@pytest.fixture
async def tenant(db_session) -> Tenant:
    return await _create_tenant(db_session, "Greenfield Academy")


@pytest.fixture
async def other_tenant(db_session) -> Tenant:
    return await _create_tenant(db_session, "Riverside College")


@pytest.fixture
async def admin_user(db_session, tenant) -> User:
    user = User(
        tenant_id=tenant.id,
        email=f"principal-{uuid.uuid4().hex[:8]}@greenfield.test",
        display_name="Mrs Adeyemi",
        phone_number="+15550000001",
        role="admin",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def teacher_user(db_session, tenant) -> User:
    user = User(
        tenant_id=tenant.id,
        email=f"teacher-{uuid.uuid4().hex[:8]}@greenfield.test",
        phone_number="+15550000002",
        role="teacher",
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


def _auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


@pytest.fixture
def admin_headers(admin_user) -> dict[str, str]:
    return _auth_headers(admin_user)


@pytest.fixture
def teacher_headers(teacher_user) -> dict[str, str]:
    return _auth_headers(teacher_user)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
async def client(db_session, notifier):
    """Create a test HTTP client bound to the test database."""
    from app.main import app

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    # Lifespan does not run under ASGITransport
    app.state.notifier = notifier
    app.state.action_authorizer = ActionAuthorizer(build_action_registry())
    app.state.action_executors = {}

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()
