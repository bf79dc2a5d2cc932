"""
Snapshot records handed to the analytical engines.

The engines never touch ORM instances. The data access layer converts rows
into these frozen dataclasses at read time, so an engine call always works
on an immutable snapshot of the store.

Timestamps are naive UTC datetimes.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (matches DB storage)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    FLAGGED = "flagged"
    CANCELLED = "cancelled"


class AlertType(str, enum.Enum):
    FRAUD = "fraud"
    LOW_STOCK = "low_stock"
    HIGH_VALUE = "high_value"
    UNUSUAL_ACTIVITY = "unusual_activity"
    CUSTOM = "custom"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class LoyaltyTier(str, enum.Enum):
    NONE = "none"
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    PLATINUM = "platinum"


@dataclass(frozen=True)
class SupplierRecord:
    supplier_id: uuid.UUID
    name: str
    reliability_score: float = 0.0
    average_delivery_days: int | None = None
    payment_terms: str | None = None
    contact_email: str | None = None
    country: str | None = None
    certification: str | None = None


@dataclass(frozen=True)
class ProductRecord:
    product_id: uuid.UUID
    name: str
    category: str | None
    price: float
    stock_quantity: int
    sku: str | None = None
    supplier_id: uuid.UUID | None = None
    supplier: SupplierRecord | None = None


@dataclass(frozen=True)
class TransactionRecord:
    transaction_id: uuid.UUID
    customer_id: uuid.UUID
    product_id: uuid.UUID
    quantity: int
    unit_price: float
    total_amount: float
    status: TransactionStatus
    timestamp: datetime
    payment_method: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    fraud_score: float = 0.0
    fraud_flags: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True)
class CustomerRecord:
    customer_id: uuid.UUID
    email: str
    first_name: str | None = None
    last_name: str | None = None
    registration_date: datetime | None = None
    total_spent: float = 0.0
    risk_score: float = 0.0
    loyalty_tier: LoyaltyTier = LoyaltyTier.NONE
    # Only populated by find_customers_with_transactions
    transactions: tuple[TransactionRecord, ...] = ()

    @property
    def name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


@dataclass(frozen=True)
class ProductSales:
    """Aggregate sales of one product (best-seller ranking)."""

    product: ProductRecord
    total_sold: int
    order_count: int


@dataclass
class AlertMetadata:
    """Structured payload of the alert ``metadata`` JSON column."""

    fraud_score: float | None = None
    flags: list[dict[str, Any]] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.extra)
        if self.fraud_score is not None:
            payload["fraud_score"] = self.fraud_score
        if self.flags:
            payload["flags"] = list(self.flags)
        return payload

    @classmethod
    def from_json(cls, raw: dict[str, Any] | None) -> "AlertMetadata":
        data = dict(raw or {})
        fraud_score = data.pop("fraud_score", None)
        flags = data.pop("flags", None) or []
        return cls(
            fraud_score=float(fraud_score) if fraud_score is not None else None,
            flags=list(flags),
            extra=data,
        )


@dataclass(frozen=True)
class AlertRecord:
    alert_id: uuid.UUID
    alert_type: AlertType
    severity: Severity
    title: str
    message: str
    created_at: datetime
    transaction_id: uuid.UUID | None = None
    customer_id: uuid.UUID | None = None
    product_id: uuid.UUID | None = None
    is_read: bool = False
    resolved: bool = False
    metadata: AlertMetadata = field(default_factory=AlertMetadata)
