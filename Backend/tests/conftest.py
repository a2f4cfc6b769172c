"""
Pytest configuration and fixtures for async API testing.

Every test gets its own in-memory SQLite database (aiosqlite). Requests
authenticate with the X-User-Id header, which the app only honours when
DISABLE_AUTH_CHECKS is set; Firebase is never contacted.
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DISABLE_AUTH_CHECKS"] = "true"
os.environ["SEED_DEFAULT_PLANS"] = "false"
os.environ.setdefault("FIREBASE_PROJECT_ID", "salonops-test")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from salonops.core.db import Base, get_session
from salonops.models import Branch, Service, SubscriptionPlan, User, UserRole
from salonops.rate_limiter import clear_rate_limits

OPEN_ALL_WEEK = {
    day: {"open": "09:00", "close": "17:00", "closed": False}
    for day in ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
}


@pytest.fixture(scope="function")
async def async_engine():
    """
    Fresh in-memory database per test.

    StaticPool keeps one connection so every session sees the same schema.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(async_engine):
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def async_session(session_maker):
    """
    Session for arranging data and checking results.

    Requests run in their own sessions; call `expire_all()` before reading
    rows a request has changed.
    """
    async with session_maker() as session:
        yield session


@pytest.fixture(scope="function")
async def client(session_maker):
    """AsyncClient bound to the app, one database session per request."""
    from salonops.main import app

    async def override_get_session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_rate_limits():
    clear_rate_limits()
    yield
    clear_rate_limits()


def auth(uid: str) -> dict:
    return {"X-User-Id": uid}


# ============================================================================
# DATA FIXTURES
# ============================================================================

@pytest.fixture
async def plan(async_session: AsyncSession) -> SubscriptionPlan:
    plan = SubscriptionPlan(
        name="Starter",
        price=29.0,
        price_label="$29/mo",
        branches=2,
        staff=3,
        features=["Online booking"],
    )
    async_session.add(plan)
    await async_session.commit()
    return plan


@pytest.fixture
async def super_admin(async_session: AsyncSession) -> User:
    user = User(uid="super-1", email="root@salonops.test", name="Root", role=UserRole.SUPER_ADMIN.value)
    async_session.add(user)
    await async_session.commit()
    return user


@pytest.fixture
async def owner(async_session: AsyncSession, plan: SubscriptionPlan) -> User:
    user = User(
        uid="owner-a",
        email="owner@salon-a.test",
        name="Ava Owner",
        role=UserRole.SALON_OWNER.value,
        owner_uid="owner-a",
        salon_name="Salon A",
        plan_id=plan.id,
    )
    async_session.add(user)
    await async_session.commit()
    return user


@pytest.fixture
async def other_owner(async_session: AsyncSession) -> User:
    user = User(
        uid="owner-b",
        email="owner@salon-b.test",
        name="Ben Owner",
        role=UserRole.SALON_OWNER.value,
        owner_uid="owner-b",
        salon_name="Salon B",
    )
    async_session.add(user)
    await async_session.commit()
    return user


@pytest.fixture
async def branch(async_session: AsyncSession, owner: User) -> Branch:
    branch = Branch(
        owner_uid=owner.uid,
        name="Main Street",
        address="1 Main St",
        timezone="Australia/Melbourne",
        hours=OPEN_ALL_WEEK,
    )
    async_session.add(branch)
    await async_session.commit()
    return branch


@pytest.fixture
async def other_branch(async_session: AsyncSession, other_owner: User) -> Branch:
    branch = Branch(owner_uid=other_owner.uid, name="Elsewhere", address="9 Far Rd", hours=OPEN_ALL_WEEK)
    async_session.add(branch)
    await async_session.commit()
    return branch


async def make_staff(session: AsyncSession, uid: str, owner_uid: str, branch_id=None, name=None, **extra) -> User:
    user = User(
        uid=uid,
        email=f"{uid}@salon.test",
        name=name or uid.title(),
        role=extra.pop("role", UserRole.SALON_STAFF.value),
        owner_uid=owner_uid,
        branch_id=branch_id,
        **extra,
    )
    session.add(user)
    await session.commit()
    return user


@pytest.fixture
async def staff(async_session: AsyncSession, owner: User, branch: Branch) -> User:
    return await make_staff(async_session, "staff-1", owner.uid, branch.id, name="Sam Stylist")


@pytest.fixture
async def staff2(async_session: AsyncSession, owner: User, branch: Branch) -> User:
    return await make_staff(async_session, "staff-2", owner.uid, branch.id, name="Kim Colourist")


@pytest.fixture
async def haircut(async_session: AsyncSession, owner: User) -> Service:
    service = Service(owner_uid=owner.uid, name="Haircut", price=45.0, duration_minutes=30)
    async_session.add(service)
    await async_session.commit()
    return service


@pytest.fixture
async def colour(async_session: AsyncSession, owner: User) -> Service:
    service = Service(owner_uid=owner.uid, name="Colour", price=120.0, duration_minutes=60)
    async_session.add(service)
    await async_session.commit()
    return service
