"""
In-memory DataAccess and record builders for engine unit tests.
"""

import uuid
from collections import Counter
from dataclasses import replace
from datetime import datetime

from db.records import (
    CustomerRecord,
    LoyaltyTier,
    ProductRecord,
    ProductSales,
    SupplierRecord,
    TransactionRecord,
    TransactionStatus,
)

BASE_TIME = datetime(2024, 6, 12, 14, 0, 0)  # Wednesday, 14:00 UTC


def make_supplier(**overrides) -> SupplierRecord:
    fields = {
        "supplier_id": uuid.uuid4(),
        "name": "Acme Supply",
        "reliability_score": 0.9,
        "average_delivery_days": 5,
        "payment_terms": "Net 30",
    }
    fields.update(overrides)
    return SupplierRecord(**fields)


def make_product(**overrides) -> ProductRecord:
    fields = {
        "product_id": uuid.uuid4(),
        "name": "Widget",
        "category": "Gadgets",
        "price": 50.0,
        "stock_quantity": 100,
        "sku": None,
    }
    fields.update(overrides)
    return ProductRecord(**fields)


def make_customer(**overrides) -> CustomerRecord:
    fields = {
        "customer_id": uuid.uuid4(),
        "email": f"{uuid.uuid4().hex[:8]}@shop.test",
        "first_name": "Test",
        "last_name": "Customer",
        "total_spent": 1000.0,
        "risk_score": 0.1,
        "loyalty_tier": LoyaltyTier.NONE,
    }
    fields.update(overrides)
    return CustomerRecord(**fields)


def make_transaction(customer: CustomerRecord | None = None, product: ProductRecord | None = None, **overrides):
    fields = {
        "transaction_id": uuid.uuid4(),
        "customer_id": customer.customer_id if customer else uuid.uuid4(),
        "product_id": product.product_id if product else uuid.uuid4(),
        "quantity": 1,
        "unit_price": 50.0,
        "total_amount": 50.0,
        "status": TransactionStatus.COMPLETED,
        "timestamp": BASE_TIME,
        "payment_method": "card",
        "user_agent": "Mozilla/5.0 (Windows NT 10.0)",
    }
    fields.update(overrides)
    return TransactionRecord(**fields)


class FakeDataAccess:
    """DataAccess over in-memory records; counts calls per method."""

    def __init__(self, customers=(), products=(), suppliers=(), transactions=()):
        self.customers = {c.customer_id: c for c in customers}
        self.products = {p.product_id: p for p in products}
        self.suppliers = list(suppliers)
        self.transactions = list(transactions)
        self.calls: Counter[str] = Counter()

    async def find_transactions_in_window(
        self, *, customer_id=None, product_id=None, start=None, end=None, status=None
    ) -> list[TransactionRecord]:
        self.calls["find_transactions_in_window"] += 1
        matches = [
            t
            for t in self.transactions
            if (customer_id is None or t.customer_id == customer_id)
            and (product_id is None or t.product_id == product_id)
            and (start is None or t.timestamp >= start)
            and (end is None or t.timestamp <= end)
            and (status is None or t.status == status)
        ]
        return sorted(matches, key=lambda t: t.timestamp)

    async def count_transactions_since(self, customer_id, since, until=None) -> int:
        self.calls["count_transactions_since"] += 1
        return sum(
            1
            for t in self.transactions
            if t.customer_id == customer_id and t.timestamp >= since and (until is None or t.timestamp <= until)
        )

    async def get_transaction(self, transaction_id):
        return next((t for t in self.transactions if t.transaction_id == transaction_id), None)

    async def get_customer(self, customer_id):
        self.calls["get_customer"] += 1
        return self.customers.get(customer_id)

    async def get_product(self, product_id, with_supplier=False):
        return self.products.get(product_id)

    async def get_products(self, product_ids):
        return {pid: self.products[pid] for pid in set(product_ids) if pid in self.products}

    async def find_customers_with_transactions(self, status=TransactionStatus.COMPLETED, customer_ids=None):
        wanted = set(customer_ids) if customer_ids is not None else None
        result = []
        for customer in self.customers.values():
            if wanted is not None and customer.customer_id not in wanted:
                continue
            history = tuple(
                t
                for t in self.transactions
                if t.customer_id == customer.customer_id and (status is None or t.status == status)
            )
            result.append(replace(customer, transactions=history))
        return result

    async def batch_sales_by_product(self, product_ids, since):
        self.calls["batch_sales_by_product"] += 1
        ids = set(product_ids)
        totals: Counter = Counter()
        for t in self.transactions:
            if t.product_id in ids and t.timestamp >= since and t.status == TransactionStatus.COMPLETED:
                totals[t.product_id] += t.quantity
        return dict(totals)

    async def find_low_stock_products(self, max_stock):
        return [p for p in self.products.values() if p.stock_quantity <= max_stock]

    async def list_suppliers(self, min_reliability=0.0):
        eligible = [s for s in self.suppliers if s.reliability_score >= min_reliability]
        return sorted(eligible, key=lambda s: s.reliability_score, reverse=True)

    async def find_products(self, *, categories=None, in_stock_only=True):
        matches = [
            p
            for p in self.products.values()
            if (categories is None or p.category in set(categories)) and (not in_stock_only or p.stock_quantity > 0)
        ]
        return sorted(matches, key=lambda p: p.price, reverse=True)

    async def best_sellers(self, limit=10):
        sold: Counter = Counter()
        orders: Counter = Counter()
        for t in self.transactions:
            product = self.products.get(t.product_id)
            if t.status == TransactionStatus.COMPLETED and product and product.stock_quantity > 0:
                sold[t.product_id] += t.quantity
                orders[t.product_id] += 1
        return [
            ProductSales(product=self.products[pid], total_sold=total, order_count=orders[pid])
            for pid, total in sold.most_common(limit)
        ]

    async def find_recent_transactions(self, limit=1000):
        return sorted(self.transactions, key=lambda t: t.timestamp, reverse=True)[:limit]

    async def find_suspicious_transactions(self, min_score=0.5, limit=50):
        matches = [t for t in self.transactions if t.fraud_score >= min_score]
        return sorted(matches, key=lambda t: t.fraud_score, reverse=True)[:limit]
