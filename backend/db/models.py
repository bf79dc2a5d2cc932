"""
OpsLens Database Models

Tables:
  1. customers     - Shoppers (spend + externally maintained risk score)
  2. suppliers     - Product suppliers (reliability, delivery, payment terms)
  3. products      - Product catalog with live stock quantity
  4. transactions  - Immutable order records (+ fraud annotation)
  5. alerts        - Fraud / stock / activity alerts

The analytics core only reads these tables through db.access; the one write
it triggers is the fraud annotation on transactions.
"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else value

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from sqlalchemy.orm import relationship

from db.records import utcnow
from db.session import Base

# ─── 1. Customers ──────────────────────────────────────────────────────────


class Customer(Base):
    __tablename__ = "customers"

    customer_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    email = Column(String(255), nullable=False, unique=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    registration_date = Column(DateTime)
    total_spent = Column(Float, nullable=False, default=0.0)  # Maintained by the order flow
    risk_score = Column(Float, nullable=False, default=0.0)
    loyalty_tier = Column(String(20), nullable=False, default="none")
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("risk_score >= 0 AND risk_score <= 1", name="ck_customer_risk_range"),
        CheckConstraint(
            "loyalty_tier IN ('none', 'bronze', 'silver', 'gold', 'platinum')",
            name="ck_customer_loyalty_tier",
        ),
    )

    transactions = relationship("Transaction", back_populates="customer")


# ─── 2. Suppliers ───────────────────────────────────────────────────────────


class Supplier(Base):
    __tablename__ = "suppliers"

    supplier_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    contact_email = Column(String(255))
    country = Column(String(100))
    reliability_score = Column(Float, nullable=False, default=0.9)
    average_delivery_days = Column(Integer)
    payment_terms = Column(String(20))  # Prepaid, Net 30, Net 45, Net 60
    certification = Column(String(100))
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("reliability_score >= 0 AND reliability_score <= 1", name="ck_supplier_reliability_range"),
    )

    products = relationship("Product", back_populates="supplier")


# ─── 3. Products ────────────────────────────────────────────────────────────


class Product(Base):
    __tablename__ = "products"

    product_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    sku = Column(String(100), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    category = Column(String(100))
    price = Column(Float, nullable=False)
    stock_quantity = Column(Integer, nullable=False, default=0)  # Decremented by the order flow
    supplier_id = Column(GUID(), ForeignKey("suppliers.supplier_id"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_products_category", "category"),
        Index("ix_products_stock", "stock_quantity"),
    )

    supplier = relationship("Supplier", back_populates="products")
    transactions = relationship("Transaction", back_populates="product")


# ─── 4. Transactions ───────────────────────────────────────────────────────


class Transaction(Base):
    __tablename__ = "transactions"

    transaction_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    customer_id = Column(GUID(), ForeignKey("customers.customer_id"), nullable=False)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Float, nullable=False)
    total_amount = Column(Float, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    payment_method = Column(String(50))
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    ip_address = Column(String(64))
    user_agent = Column(Text)

    # Fraud annotation, written after scoring
    fraud_score = Column(Float, nullable=False, default=0.0)
    fraud_flags = Column(JSON, default=list)

    __table_args__ = (
        Index("ix_transactions_customer_time", "customer_id", "timestamp"),
        Index("ix_transactions_product_time", "product_id", "timestamp"),
        Index("ix_transactions_fraud_score", "fraud_score"),
        CheckConstraint("quantity > 0", name="ck_transaction_quantity_positive"),
        CheckConstraint("fraud_score >= 0 AND fraud_score <= 1", name="ck_transaction_fraud_score_range"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'refunded', 'flagged', 'cancelled')",
            name="ck_transaction_status",
        ),
    )

    customer = relationship("Customer", back_populates="transactions")
    product = relationship("Product", back_populates="transactions")


# ─── 5. Alerts ─────────────────────────────────────────────────────────────


class Alert(Base):
    __tablename__ = "alerts"

    alert_id = Column(GUID(), primary_key=True, default=uuid.uuid4)
    alert_type = Column(String(50), nullable=False)
    severity = Column(String(20), nullable=False, default="medium")
    title = Column(String(255), nullable=False)
    message = Column(Text)
    transaction_id = Column(GUID(), ForeignKey("transactions.transaction_id"), nullable=True)
    customer_id = Column(GUID(), ForeignKey("customers.customer_id"), nullable=True)
    product_id = Column(GUID(), ForeignKey("products.product_id"), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    resolved = Column(Boolean, nullable=False, default=False)
    alert_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_alerts_type_created", "alert_type", "created_at"),
        CheckConstraint(
            "alert_type IN ('fraud', 'low_stock', 'high_value', 'unusual_activity', 'custom')",
            name="ck_alert_type",
        ),
        CheckConstraint("severity IN ('low', 'medium', 'high', 'critical')", name="ck_alert_severity"),
    )
