import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from waiter_bot.db import init_db
from waiter_bot.errors import TransientUpstreamError
from waiter_bot.schemas import CartLine, MenuItem, SessionState, TenantConfig
from waiter_bot.services.menu import StaticMenuProvider
from waiter_bot.services.order import OrderSink
from waiter_bot.services.session import SessionStore

TENANT_ID = "pizza-palace"
USER_ID = "user-1"


class FakeClock:
    """Controllable time source for TTL tests."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLLM:
    """Stands in for LLMClient. Returns queued outputs; Exception instances are raised."""

    def __init__(self, *outputs):
        self.outputs = list(outputs)
        self.calls = []

    def complete(self, messages, **params):
        self.calls.append(messages)
        if not self.outputs:
            raise TransientUpstreamError("no more fake outputs")
        output = self.outputs.pop(0)
        if isinstance(output, Exception):
            raise output
        return output


class FakeOrderSink(OrderSink):
    """Records submitted orders in memory."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.orders = []

    def submit(self, projection):
        if self.fail:
            raise TransientUpstreamError("order service down")
        self.orders.append(projection)
        return f"ORD-{len(self.orders)}"


@pytest.fixture
def menu():
    """Small menu: two burgers share a category, Fries is the only side."""
    return [
        MenuItem(item_id="burger", title="Burger", price=100, tags=["burgers"], aliases=["burgr"]),
        MenuItem(item_id="fries", title="Fries", price=50, tags=["sides"], aliases=["french fries", "chips"]),
        MenuItem(item_id="truffle", title="Truffle Melt Burger", price=180, tags=["burgers"]),
        MenuItem(item_id="wrap", title="Paneer Wrap", price=120, tags=["wraps"]),
    ]


@pytest.fixture
def menu_provider(menu):
    return StaticMenuProvider(
        {TENANT_ID: menu},
        {TENANT_ID: TenantConfig(tenant_id=TENANT_ID, name="Pizza Palace")},
    )


@pytest.fixture
def db_engine():
    """In-memory SQLite database shared across connections via StaticPool."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(session_factory, clock):
    return SessionStore(session_factory, ttl_seconds=600, clock=clock)


@pytest.fixture
def order_sink():
    return FakeOrderSink()


@pytest.fixture
def session():
    return SessionState(tenant_id=TENANT_ID, user_id=USER_ID)


@pytest.fixture
def cart_250():
    """2 x Burger @ 100 + 1 x Fries @ 50."""
    return [
        CartLine(item_id="burger", title="Burger", qty=2, unit_price=100),
        CartLine(item_id="fries", title="Fries", qty=1, unit_price=50),
    ]
