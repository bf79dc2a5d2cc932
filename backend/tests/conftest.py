"""
Test Configuration — Fixtures for async DB, test client, and seeded data.

Each test gets a fresh in-memory SQLite schema. App code that commits only
releases a SAVEPOINT, and the outer transaction is rolled back at teardown.
"""

import uuid
from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from alerts.engine import SqlAlertSink
from api.deps import get_alert_sink, get_db
from api.main import app
from core.config import get_settings
from db.records import utcnow
from db.session import Base
from performance.service import PerformanceLayer

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class RecordingAlertSink(SqlAlertSink):
    """Persists alerts like production, records broadcasts instead of publishing."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, redis_url="redis://unused", channel="alerts:test")
        self.broadcasts: list[tuple[str, dict]] = []

    async def broadcast(self, event_type: str, payload: dict) -> int:
        self.broadcasts.append((event_type, payload))
        return 0


@pytest.fixture
async def test_engine():
    """Create a test database engine and build all tables."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    """Session wrapped in a transaction that rolls back after each test."""
    async with test_engine.connect() as conn:
        trans = await conn.begin()
        session = AsyncSession(
            bind=conn,
            expire_on_commit=False,
            join_transaction_mode="create_savepoint",
        )

        yield session

        await session.close()
        await trans.rollback()


@pytest.fixture
def alert_sink(test_db):
    return RecordingAlertSink(test_db)


@pytest.fixture
async def client(test_db, alert_sink):
    """Async test client with a fresh performance layer and DB overrides."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_alert_sink] = lambda: alert_sink
    app.state.performance = PerformanceLayer.from_settings(get_settings())

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def seeded_db(test_db):
    """
    Seed a small shop:
      - 2 suppliers (one below the reliability cut-off)
      - 3 products (one out of stock, one low, one healthy)
      - 3 customers (regular buyer, lapsed gold buyer, no purchases)
      - completed transactions at 14:00 UTC with a browser user agent
    """
    from db.models import Customer, Product, Supplier, Transaction

    now = utcnow().replace(hour=14, minute=0, second=0, microsecond=0)

    fast = Supplier(
        name="Fast Freight",
        contact_email="orders@fastfreight.test",
        reliability_score=0.95,
        average_delivery_days=3,
        payment_terms="Net 60",
    )
    slow = Supplier(
        name="Slow Boat",
        reliability_score=0.5,
        average_delivery_days=20,
        payment_terms="Prepaid",
    )
    test_db.add_all([fast, slow])
    await test_db.flush()

    headphones = Product(
        sku="SKU-HP", name="Headphones", category="Audio", price=200.0, stock_quantity=0, supplier_id=fast.supplier_id
    )
    speaker = Product(
        sku="SKU-SP", name="Speaker", category="Audio", price=120.0, stock_quantity=5, supplier_id=fast.supplier_id
    )
    cable = Product(sku="SKU-CB", name="Cable", category="Accessories", price=10.0, stock_quantity=500)
    test_db.add_all([headphones, speaker, cable])
    await test_db.flush()

    regular = Customer(
        email="regular@shop.test",
        first_name="Rae",
        last_name="Regular",
        total_spent=600.0,
        risk_score=0.1,
        loyalty_tier="silver",
    )
    lapsed = Customer(
        email="lapsed@shop.test",
        first_name="Lee",
        last_name="Lapsed",
        total_spent=400.0,
        risk_score=0.2,
        loyalty_tier="gold",
    )
    newcomer = Customer(email="new@shop.test", first_name="Nia", last_name="New")
    test_db.add_all([regular, lapsed, newcomer])
    await test_db.flush()

    def txn(customer, product, days_ago, quantity=1):
        return Transaction(
            customer_id=customer.customer_id,
            product_id=product.product_id,
            quantity=quantity,
            unit_price=product.price,
            total_amount=product.price * quantity,
            status="completed",
            payment_method="card",
            timestamp=now - timedelta(days=days_ago),
            user_agent="Mozilla/5.0 (Macintosh)",
        )

    transactions = [
        txn(regular, speaker, 1, quantity=3),
        txn(regular, speaker, 5, quantity=3),
        txn(regular, cable, 3),
        # Lapsed: 10-day interval, last purchase 35 days ago
        txn(lapsed, speaker, 45),
        txn(lapsed, cable, 35),
    ]
    test_db.add_all(transactions)
    await test_db.commit()

    return {
        "now": now,
        "suppliers": {"fast": fast, "slow": slow},
        "products": {"headphones": headphones, "speaker": speaker, "cable": cable},
        "customers": {"regular": regular, "lapsed": lapsed, "newcomer": newcomer},
        "transactions": transactions,
    }


@pytest.fixture
def unknown_id():
    return uuid.uuid4()
