"""
Data Access Facade — the read-only queries the analytical engines need.

Engines depend on the ``DataAccess`` protocol, never on SQLAlchemy. The
``SqlDataAccess`` implementation runs each operation as one query against an
``AsyncSession`` and converts rows to the snapshot records in db.records.

``batch_sales_by_product`` is a single grouped query over all requested
products; the reorder job relies on that to avoid a per-product fan-out.
"""

import uuid
from collections.abc import Iterable
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload, with_loader_criteria

from db.models import Customer, Product, Supplier, Transaction
from db.records import (
    CustomerRecord,
    LoyaltyTier,
    ProductRecord,
    ProductSales,
    SupplierRecord,
    TransactionRecord,
    TransactionStatus,
)


class DataAccess(Protocol):
    """Queries consumed by the fraud, customer and inventory engines."""

    async def find_transactions_in_window(
        self,
        *,
        customer_id: uuid.UUID | None = None,
        product_id: uuid.UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        status: TransactionStatus | None = None,
    ) -> list[TransactionRecord]: ...

    async def count_transactions_since(
        self,
        customer_id: uuid.UUID,
        since: datetime,
        until: datetime | None = None,
    ) -> int: ...

    async def get_transaction(self, transaction_id: uuid.UUID) -> TransactionRecord | None: ...

    async def get_customer(self, customer_id: uuid.UUID) -> CustomerRecord | None: ...

    async def get_product(self, product_id: uuid.UUID, with_supplier: bool = False) -> ProductRecord | None: ...

    async def get_products(self, product_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, ProductRecord]: ...

    async def find_customers_with_transactions(
        self,
        status: TransactionStatus | None = TransactionStatus.COMPLETED,
        customer_ids: Iterable[uuid.UUID] | None = None,
    ) -> list[CustomerRecord]: ...

    async def batch_sales_by_product(
        self,
        product_ids: Iterable[uuid.UUID],
        since: datetime,
    ) -> dict[uuid.UUID, int]: ...

    async def find_low_stock_products(self, max_stock: int) -> list[ProductRecord]: ...

    async def list_suppliers(self, min_reliability: float = 0.0) -> list[SupplierRecord]: ...

    async def find_products(
        self,
        *,
        categories: Iterable[str] | None = None,
        in_stock_only: bool = True,
    ) -> list[ProductRecord]: ...

    async def best_sellers(self, limit: int = 10) -> list[ProductSales]: ...

    async def find_recent_transactions(self, limit: int = 1000) -> list[TransactionRecord]: ...

    async def find_suspicious_transactions(self, min_score: float = 0.5, limit: int = 50) -> list[TransactionRecord]: ...


# ──────────────────────────────────────────────────────────────────────────
# Row → record conversion
# ──────────────────────────────────────────────────────────────────────────


def to_supplier_record(row: Supplier) -> SupplierRecord:
    return SupplierRecord(
        supplier_id=row.supplier_id,
        name=row.name,
        reliability_score=float(row.reliability_score or 0.0),
        average_delivery_days=row.average_delivery_days,
        payment_terms=row.payment_terms,
        contact_email=row.contact_email,
        country=row.country,
        certification=row.certification,
    )


def to_product_record(row: Product, with_supplier: bool = False) -> ProductRecord:
    supplier = None
    if with_supplier and row.supplier is not None:
        supplier = to_supplier_record(row.supplier)
    return ProductRecord(
        product_id=row.product_id,
        name=row.name,
        category=row.category,
        price=float(row.price),
        stock_quantity=int(row.stock_quantity or 0),
        sku=row.sku,
        supplier_id=row.supplier_id,
        supplier=supplier,
    )


def to_transaction_record(row: Transaction) -> TransactionRecord:
    return TransactionRecord(
        transaction_id=row.transaction_id,
        customer_id=row.customer_id,
        product_id=row.product_id,
        quantity=int(row.quantity),
        unit_price=float(row.unit_price),
        total_amount=float(row.total_amount),
        status=TransactionStatus(row.status),
        timestamp=row.timestamp,
        payment_method=row.payment_method,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        fraud_score=float(row.fraud_score or 0.0),
        fraud_flags=tuple(row.fraud_flags or ()),
    )


def to_customer_record(row: Customer, transactions: Iterable[Transaction] = ()) -> CustomerRecord:
    return CustomerRecord(
        customer_id=row.customer_id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        registration_date=row.registration_date,
        total_spent=float(row.total_spent or 0.0),
        risk_score=float(row.risk_score or 0.0),
        loyalty_tier=LoyaltyTier(row.loyalty_tier or "none"),
        transactions=tuple(to_transaction_record(t) for t in transactions),
    )


# ──────────────────────────────────────────────────────────────────────────
# SQLAlchemy implementation
# ──────────────────────────────────────────────────────────────────────────


class SqlDataAccess:
    """DataAccess backed by an async SQLAlchemy session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_transactions_in_window(
        self,
        *,
        customer_id: uuid.UUID | None = None,
        product_id: uuid.UUID | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        status: TransactionStatus | None = None,
    ) -> list[TransactionRecord]:
        query = select(Transaction)
        if customer_id is not None:
            query = query.where(Transaction.customer_id == customer_id)
        if product_id is not None:
            query = query.where(Transaction.product_id == product_id)
        if start is not None:
            query = query.where(Transaction.timestamp >= start)
        if end is not None:
            query = query.where(Transaction.timestamp <= end)
        if status is not None:
            query = query.where(Transaction.status == TransactionStatus(status).value)

        result = await self.db.execute(query.order_by(Transaction.timestamp.asc()))
        return [to_transaction_record(row) for row in result.scalars().all()]

    async def count_transactions_since(
        self,
        customer_id: uuid.UUID,
        since: datetime,
        until: datetime | None = None,
    ) -> int:
        query = select(func.count(Transaction.transaction_id)).where(
            Transaction.customer_id == customer_id,
            Transaction.timestamp >= since,
        )
        if until is not None:
            query = query.where(Transaction.timestamp <= until)
        result = await self.db.execute(query)
        return int(result.scalar_one() or 0)

    async def get_transaction(self, transaction_id: uuid.UUID) -> TransactionRecord | None:
        row = await self.db.get(Transaction, transaction_id)
        return to_transaction_record(row) if row else None

    async def get_customer(self, customer_id: uuid.UUID) -> CustomerRecord | None:
        row = await self.db.get(Customer, customer_id)
        return to_customer_record(row) if row else None

    async def get_product(self, product_id: uuid.UUID, with_supplier: bool = False) -> ProductRecord | None:
        query = select(Product).where(Product.product_id == product_id)
        if with_supplier:
            query = query.options(selectinload(Product.supplier))
        result = await self.db.execute(query)
        row = result.scalar_one_or_none()
        return to_product_record(row, with_supplier=with_supplier) if row else None

    async def get_products(self, product_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, ProductRecord]:
        ids = list(set(product_ids))
        if not ids:
            return {}
        result = await self.db.execute(select(Product).where(Product.product_id.in_(ids)))
        return {row.product_id: to_product_record(row) for row in result.scalars().all()}

    async def find_customers_with_transactions(
        self,
        status: TransactionStatus | None = TransactionStatus.COMPLETED,
        customer_ids: Iterable[uuid.UUID] | None = None,
    ) -> list[CustomerRecord]:
        query = select(Customer).options(selectinload(Customer.transactions))
        if status is not None:
            status_value = TransactionStatus(status).value
            query = query.options(
                with_loader_criteria(Transaction, Transaction.status == status_value, include_aliases=True)
            )
        if customer_ids is not None:
            query = query.where(Customer.customer_id.in_(list(customer_ids)))

        result = await self.db.execute(query.execution_options(populate_existing=True))
        customers = result.scalars().all()
        return [to_customer_record(c, c.transactions) for c in customers]

    async def batch_sales_by_product(
        self,
        product_ids: Iterable[uuid.UUID],
        since: datetime,
    ) -> dict[uuid.UUID, int]:
        ids = list(product_ids)
        if not ids:
            return {}
        result = await self.db.execute(
            select(Transaction.product_id, func.sum(Transaction.quantity).label("total_sold"))
            .where(
                Transaction.product_id.in_(ids),
                Transaction.timestamp >= since,
                Transaction.status == TransactionStatus.COMPLETED.value,
            )
            .group_by(Transaction.product_id)
        )
        return {row.product_id: int(row.total_sold or 0) for row in result.all()}

    async def find_low_stock_products(self, max_stock: int) -> list[ProductRecord]:
        result = await self.db.execute(
            select(Product).options(selectinload(Product.supplier)).where(Product.stock_quantity <= max_stock)
        )
        return [to_product_record(row, with_supplier=True) for row in result.scalars().all()]

    async def list_suppliers(self, min_reliability: float = 0.0) -> list[SupplierRecord]:
        result = await self.db.execute(
            select(Supplier)
            .where(Supplier.reliability_score >= min_reliability)
            .order_by(Supplier.reliability_score.desc())
        )
        return [to_supplier_record(row) for row in result.scalars().all()]

    async def find_products(
        self,
        *,
        categories: Iterable[str] | None = None,
        in_stock_only: bool = True,
    ) -> list[ProductRecord]:
        query = select(Product)
        if categories is not None:
            query = query.where(Product.category.in_(list(categories)))
        if in_stock_only:
            query = query.where(Product.stock_quantity > 0)
        result = await self.db.execute(query.order_by(Product.price.desc()))
        return [to_product_record(row) for row in result.scalars().all()]

    async def best_sellers(self, limit: int = 10) -> list[ProductSales]:
        total_sold = func.sum(Transaction.quantity).label("total_sold")
        result = await self.db.execute(
            select(
                Transaction.product_id,
                total_sold,
                func.count(Transaction.transaction_id).label("order_count"),
            )
            .join(Product, Product.product_id == Transaction.product_id)
            .where(
                Transaction.status == TransactionStatus.COMPLETED.value,
                Product.stock_quantity > 0,
            )
            .group_by(Transaction.product_id)
            .order_by(total_sold.desc())
            .limit(limit)
        )
        rows = result.all()
        products = await self.get_products(row.product_id for row in rows)
        return [
            ProductSales(
                product=products[row.product_id],
                total_sold=int(row.total_sold or 0),
                order_count=int(row.order_count or 0),
            )
            for row in rows
            if row.product_id in products
        ]

    async def find_recent_transactions(self, limit: int = 1000) -> list[TransactionRecord]:
        result = await self.db.execute(select(Transaction).order_by(Transaction.timestamp.desc()).limit(limit))
        return [to_transaction_record(row) for row in result.scalars().all()]

    async def find_suspicious_transactions(self, min_score: float = 0.5, limit: int = 50) -> list[TransactionRecord]:
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.fraud_score >= min_score)
            .order_by(Transaction.fraud_score.desc(), Transaction.timestamp.desc())
            .limit(limit)
        )
        return [to_transaction_record(row) for row in result.scalars().all()]


async def save_fraud_annotation(
    db: AsyncSession,
    transaction_id: uuid.UUID,
    fraud_score: float,
    fraud_flags: list[dict[str, Any]],
) -> None:
    """Persist the fraud score/flags computed for a transaction."""
    await db.execute(
        update(Transaction)
        .where(Transaction.transaction_id == transaction_id)
        .values(fraud_score=fraud_score, fraud_flags=fraud_flags)
    )
    await db.commit()
