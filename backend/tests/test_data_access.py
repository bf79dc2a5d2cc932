"""
Tests for the SQL data access layer against the seeded SQLite shop.
"""

from datetime import timedelta

import pytest

from db.access import SqlDataAccess, save_fraud_annotation
from db.records import LoyaltyTier, TransactionStatus, utcnow


@pytest.mark.asyncio
class TestSqlDataAccess:
    async def test_window_query_is_ordered_and_filtered(self, test_db, seeded_db):
        access = SqlDataAccess(test_db)
        regular = seeded_db["customers"]["regular"]

        rows = await access.find_transactions_in_window(
            customer_id=regular.customer_id,
            start=seeded_db["now"] - timedelta(days=4),
            status=TransactionStatus.COMPLETED,
        )

        assert [r.total_amount for r in rows] == [10.0, 360.0]
        assert rows[0].timestamp < rows[1].timestamp
        assert rows[0].status is TransactionStatus.COMPLETED

    async def test_count_transactions_since(self, test_db, seeded_db):
        access = SqlDataAccess(test_db)
        regular = seeded_db["customers"]["regular"]
        now = seeded_db["now"]

        assert await access.count_transactions_since(regular.customer_id, now - timedelta(days=10)) == 3
        assert (
            await access.count_transactions_since(
                regular.customer_id, now - timedelta(days=10), until=now - timedelta(days=2)
            )
            == 2
        )

    async def test_customer_record(self, test_db, seeded_db):
        lapsed = seeded_db["customers"]["lapsed"]
        record = await SqlDataAccess(test_db).get_customer(lapsed.customer_id)
        assert record.name == "Lee Lapsed"
        assert record.loyalty_tier is LoyaltyTier.GOLD

    async def test_customers_carry_only_matching_transactions(self, test_db, seeded_db):
        from db.models import Transaction

        regular = seeded_db["customers"]["regular"]
        test_db.add(
            Transaction(
                customer_id=regular.customer_id,
                product_id=seeded_db["products"]["cable"].product_id,
                quantity=1,
                unit_price=10.0,
                total_amount=10.0,
                status="refunded",
                timestamp=seeded_db["now"],
            )
        )
        await test_db.commit()

        customers = await SqlDataAccess(test_db).find_customers_with_transactions()

        by_email = {c.email: c for c in customers}
        assert len(by_email) == 3
        assert len(by_email["regular@shop.test"].transactions) == 3
        assert by_email["new@shop.test"].transactions == ()

    async def test_batch_sales(self, test_db, seeded_db):
        products = seeded_db["products"]
        sales = await SqlDataAccess(test_db).batch_sales_by_product(
            [p.product_id for p in products.values()],
            since=seeded_db["now"] - timedelta(days=30),
        )
        assert sales == {products["speaker"].product_id: 6, products["cable"].product_id: 1}

    async def test_batch_sales_empty_ids(self, test_db):
        assert await SqlDataAccess(test_db).batch_sales_by_product([], since=utcnow()) == {}

    async def test_low_stock_includes_supplier(self, test_db, seeded_db):
        products = await SqlDataAccess(test_db).find_low_stock_products(max_stock=50)
        assert sorted(p.name for p in products) == ["Headphones", "Speaker"]
        assert all(p.supplier.name == "Fast Freight" for p in products)

    async def test_list_suppliers(self, test_db, seeded_db):
        suppliers = await SqlDataAccess(test_db).list_suppliers(min_reliability=0.7)
        assert [s.name for s in suppliers] == ["Fast Freight"]

    async def test_find_products(self, test_db, seeded_db):
        access = SqlDataAccess(test_db)
        in_stock = await access.find_products(categories=["Audio"])
        everything = await access.find_products(categories=["Audio"], in_stock_only=False)
        assert [p.name for p in in_stock] == ["Speaker"]
        assert [p.name for p in everything] == ["Headphones", "Speaker"]

    async def test_best_sellers(self, test_db, seeded_db):
        sellers = await SqlDataAccess(test_db).best_sellers(limit=5)
        assert [(s.product.name, s.total_sold, s.order_count) for s in sellers] == [
            ("Speaker", 7, 3),
            ("Cable", 2, 2),
        ]

    async def test_recent_transactions(self, test_db, seeded_db):
        recent = await SqlDataAccess(test_db).find_recent_transactions(limit=2)
        assert len(recent) == 2
        assert recent[0].timestamp > recent[1].timestamp

    async def test_fraud_annotation_round_trip(self, test_db, seeded_db):
        access = SqlDataAccess(test_db)
        txn = seeded_db["transactions"][2]
        flags = [{"type": "unusual_time", "score": 15, "message": "Transaction at unusual hour: 3:00"}]

        await save_fraud_annotation(test_db, txn.transaction_id, 0.85, flags)

        suspicious = await access.find_suspicious_transactions(min_score=0.5)
        assert [t.transaction_id for t in suspicious] == [txn.transaction_id]
        assert suspicious[0].fraud_flags == tuple(flags)


class TestSchema:
    def test_customer_columns(self):
        from db.models import Customer

        assert "preferred_payment" not in Customer.__table__.columns
        assert {"risk_score", "loyalty_tier", "total_spent"} <= set(Customer.__table__.columns.keys())

    def test_transaction_columns(self):
        from db.models import Transaction

        columns = set(Transaction.__table__.columns.keys())
        assert columns.isdisjoint({"tax_amount", "session_id"})
        assert {"user_agent", "ip_address", "fraud_score", "fraud_flags"} <= columns
