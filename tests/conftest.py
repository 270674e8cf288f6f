"""
Shared fixtures: an in-memory SQLite database per test, seeded users,
address book entries and catalog items, a zero-latency mock gateway and
observers that record what the hub sends them.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENV_MODE", "development")

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from takeout.database import Base
from takeout.models import (
    AddressBook,
    Dish,
    Order,
    OrderStatus,
    PayStatus,
    Setmeal,
    User,
)
from takeout.services.notifications import NotificationHub, Observer
from takeout.services.orders import OrderService, new_order_number
from takeout.services.payment import MockPaymentService

NOW = datetime(2024, 5, 20, 12, 0, 0)


class RecordingObserver(Observer):
    def __init__(self, key: str):
        self._key = key
        self.messages: list[str] = []

    @property
    def key(self) -> str:
        return self._key

    async def send(self, message: str) -> None:
        self.messages.append(message)


class FailingObserver(RecordingObserver):
    async def send(self, message: str) -> None:
        raise ConnectionError("socket closed")


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
async def seed(session):
    """Two users with one address each, two dishes (one off sale) and a set meal."""
    alice = User(openid="openid-alice", name="Alice", phone="555-0101")
    bob = User(openid="openid-bob", name="Bob", phone="555-0202")
    session.add_all([alice, bob])
    await session.flush()

    alice_home = AddressBook(
        user_id=alice.id,
        consignee="Alice",
        phone="555-0101",
        province_name="NY",
        city_name="New York",
        district_name="Manhattan",
        detail="350 Fifth Avenue",
        is_default=True,
    )
    bob_home = AddressBook(
        user_id=bob.id,
        consignee="Bob",
        phone="555-0202",
        city_name="New York",
        detail="1 Main St",
    )
    noodles = Dish(name="Beef Noodles", price=12.5, image="noodles.png")
    dumplings = Dish(name="Dumplings", price=8.0)
    retired = Dish(name="Retired Dish", price=5.0, status=False)
    family_set = Setmeal(name="Family Set", price=38.0)
    session.add_all([alice_home, bob_home, noodles, dumplings, retired, family_set])
    await session.commit()

    return SimpleNamespace(
        alice=alice,
        bob=bob,
        alice_home=alice_home,
        bob_home=bob_home,
        noodles=noodles,
        dumplings=dumplings,
        retired=retired,
        family_set=family_set,
    )


@pytest.fixture
def payment():
    return MockPaymentService(min_latency=0, max_latency=0)


@pytest.fixture
def hub():
    return NotificationHub(send_timeout=1.0)


@pytest.fixture
def dashboard(hub):
    observer = RecordingObserver("dashboard-1")
    hub.register(observer)
    return observer


@pytest.fixture
def order_service(session, payment, hub):
    return OrderService(session, payment, hub, clock=lambda: NOW)


@pytest.fixture
def make_order(session, seed):
    """Insert an order directly in a given state."""

    async def _make_order(
        status: OrderStatus = OrderStatus.PENDING_PAYMENT,
        minutes_ago: int = 0,
        pay_status: PayStatus = PayStatus.UNPAID,
        user=None,
        amount: float = 20.0,
    ) -> Order:
        user = user or seed.alice
        order_time = NOW - timedelta(minutes=minutes_ago)
        order = Order(
            number=new_order_number(order_time),
            user_id=user.id,
            address_book_id=seed.alice_home.id,
            status=status,
            pay_status=pay_status,
            pay_method="card",
            amount=amount,
            consignee="Alice",
            phone="555-0101",
            address="350 Fifth Avenue",
            order_time=order_time,
        )
        session.add(order)
        await session.commit()
        return order

    return _make_order
