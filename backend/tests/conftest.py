"""
Test Configuration — Fixtures for async DB, test client, and seeded accounts.

Every test gets its own in-memory SQLite database, so application code can
commit and roll back freely. Accounts are funded through the ledger, never
by writing users.balance, so balance always equals the transaction sum.

After an operation is expected to fail, its rollback expires every object
in the session; re-read anything you keep using with `await db.refresh(obj)`.
"""

import uuid
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from accounts.ledger import add_funds
from api.deps import get_db
from api.main import app
from core.roles import Role
from core.security import create_access_token, hash_password
from db.models import Insurance, PolicyPlan, Product, User
from db.session import Base

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_PASSWORD = "harvest-2024"
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


@pytest.fixture
async def test_engine():
    """A fresh in-memory database with every table created."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(test_db):
    """Create an async test client with the DB dependency overridden."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_headers(user: User) -> dict:
    token = create_access_token({"sub": str(user.user_id), "role": user.role})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(test_db):
    """Factory: create an account with a role and an optional opening balance."""

    async def _make(role: Role, balance: float = 0.0, name: str | None = None) -> User:
        user = User(
            name=name or f"{role.value.title()} {uuid.uuid4().hex[:6]}",
            email=f"{role.value}-{uuid.uuid4().hex[:8]}@agrichain.test",
            hashed_password=TEST_PASSWORD_HASH,
            role=role.value,
            balance=0.0,
        )
        test_db.add(user)
        await test_db.commit()
        if balance:
            await add_funds(test_db, user.user_id, balance, idempotency_key=f"opening-{user.user_id}")
            await test_db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_product(test_db):
    async def _make(seller: User, price: float = 200.0, quantity: int = 10, name: str = "Basmati Rice") -> Product:
        product = Product(
            seller_id=seller.user_id,
            name=name,
            category="grains",
            price=price,
            quantity=quantity,
        )
        test_db.add(product)
        await test_db.commit()
        return product

    return _make


@pytest.fixture
def make_holding(test_db):
    """Factory: plan + holding written directly, bypassing the premium transfer."""

    async def _make(
        seller: User,
        agent: User,
        coverage: float = 1000.0,
        start: datetime | None = None,
        end: datetime | None = None,
        status: str = "active",
    ) -> Insurance:
        now = datetime.utcnow()
        plan = PolicyPlan(
            code=f"PLAN-{uuid.uuid4().hex[:6].upper()}",
            name="Crop Shield",
            plan_type="crop",
            daily_rate=5.0,
            coverage=coverage,
            agent_id=agent.user_id,
        )
        test_db.add(plan)
        await test_db.flush()
        holding = Insurance(
            holder_id=seller.user_id,
            plan_id=plan.plan_id,
            policy_code=plan.code,
            premium=150.0,
            coverage=coverage,
            duration_days=30,
            start_date=start or now - timedelta(days=1),
            end_date=end or now + timedelta(days=29),
            status=status,
            agent_id=agent.user_id,
        )
        test_db.add(holding)
        await test_db.commit()
        return holding

    return _make


@pytest.fixture
async def marketplace(make_user, make_product):
    """One of every role, with the buyer holding ₹500 and a ₹200 product in stock."""
    buyer = await make_user(Role.BUYER, balance=500.0, name="Asha")
    seller = await make_user(Role.SELLER, balance=0.0, name="Ravi Farms")
    logistics = await make_user(Role.LOGISTICS, name="Fast Freight")
    coldstorage = await make_user(Role.COLDSTORAGE, name="Chill Depot")
    driver = await make_user(Role.DRIVER, name="Vikram")
    agent = await make_user(Role.INSURANCE, balance=5000.0, name="Shield Agent")
    admin = await make_user(Role.ADMIN, name="Ops")
    product = await make_product(seller, price=200.0, quantity=10)
    return {
        "buyer": buyer,
        "seller": seller,
        "logistics": logistics,
        "coldstorage": coldstorage,
        "driver": driver,
        "agent": agent,
        "admin": admin,
        "product": product,
    }


@pytest.fixture
def ship_order(test_db, marketplace):
    """Drive an order from pending to dispatched_to_customer."""
    from fulfillment.orders import advance_status
    from fulfillment.transitions import DeliveryDestination, OrderStatus

    async def _ship(order, via_coldstorage: bool = False):
        m = marketplace
        await advance_status(test_db, order.order_id, OrderStatus.CONFIRMED, m["seller"])
        await advance_status(
            test_db,
            order.order_id,
            OrderStatus.DISPATCHED_TO_LOGISTICS,
            m["seller"],
            logistics_id=m["logistics"].user_id,
            delivery_destination=DeliveryDestination.COLDSTORAGE if via_coldstorage else DeliveryDestination.CUSTOMER,
        )
        if via_coldstorage:
            await advance_status(
                test_db,
                order.order_id,
                OrderStatus.DISPATCHED_TO_COLDSTORAGE,
                m["logistics"],
                coldstorage_id=m["coldstorage"].user_id,
            )
            await advance_status(test_db, order.order_id, OrderStatus.IN_COLDSTORAGE, m["coldstorage"])
            handler = m["coldstorage"]
        else:
            handler = m["logistics"]
        return await advance_status(
            test_db,
            order.order_id,
            OrderStatus.DISPATCHED_TO_CUSTOMER,
            handler,
            driver_id=m["driver"].user_id,
        )

    return _ship
