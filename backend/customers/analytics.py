"""
Customer Analytics Engine — segmentation, retention and value metrics.

Analyses:
  - RFM segmentation over the whole customer base (see customers.rfm)
  - Churn risk: days since last purchase vs. average purchase interval
  - CLV: average order value × orders per month × 24-month horizon
  - Recommendations: best sellers for new customers, otherwise
    collaborative filtering plus category affinity

All analyses are read-only and sized for dashboard / batch use rather than
per-request hot paths. Collaborative filtering in particular compares the
target against every other customer's history (O(customers × history)).
"""

import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from customers.rfm import RFMReport, build_profile, build_rfm_report
from db.access import DataAccess
from db.records import (
    CustomerRecord,
    LoyaltyTier,
    ProductRecord,
    ProductSales,
    TransactionStatus,
    utcnow,
)

logger = structlog.get_logger()

# ── Churn thresholds: ratio of days-since-last-purchase to average interval ──
# Checked in order, first match wins.
CHURN_TIERS = (
    ("critical", 3.0, 0.9),
    ("high", 2.0, 0.7),
    ("medium", 1.5, 0.4),
)
CHURN_RISK_ORDER = {"critical": 0, "high": 1, "medium": 2}
HIGH_LOYALTY_TIERS = {LoyaltyTier.GOLD, LoyaltyTier.PLATINUM}

# ── CLV ──
CLV_LIFESPAN_MONTHS = 24
DAYS_PER_MONTH = 30
CLV_CONFIDENCE = ((10, "high"), (5, "medium"))

# ── Recommendations ──
MIN_SHARED_PRODUCTS = 2
CATEGORY_RECOMMENDATIONS = 5


@dataclass
class ChurnRisk:
    customer_id: uuid.UUID
    email: str
    name: str
    loyalty_tier: LoyaltyTier
    total_spent: float
    transaction_count: int
    days_since_last_purchase: int
    avg_days_between_purchases: int
    churn_probability: float
    risk_level: str
    suggested_action: str

    @property
    def probability_label(self) -> str:
        return f"{self.churn_probability * 100:.0f}%"


@dataclass
class ChurnReport:
    total_at_risk: int
    critical_count: int
    high_count: int
    medium_count: int
    customers: list[ChurnRisk]


@dataclass
class CLVPrediction:
    customer_id: uuid.UUID
    name: str
    loyalty_tier: LoyaltyTier
    total_revenue: float
    transaction_count: int
    avg_order_value: float
    purchase_frequency: float  # Orders per active month
    months_active: float
    predicted_clv: float
    confidence: str


@dataclass
class Recommendation:
    product: ProductRecord
    reason: str
    score: int | None = None


@dataclass
class RecommendationSet:
    customer_id: uuid.UUID
    name: str
    strategy: str  # best_sellers | collaborative_filtering
    reason: str | None = None
    purchase_count: int = 0
    favorite_categories: list[str] = field(default_factory=list)
    best_sellers: list[ProductSales] = field(default_factory=list)
    collaborative: list[Recommendation] = field(default_factory=list)
    category: list[Recommendation] = field(default_factory=list)


def suggested_action(risk_level: str, loyalty_tier: LoyaltyTier) -> str:
    if risk_level == "critical":
        if loyalty_tier in HIGH_LOYALTY_TIERS:
            return "Personal outreach with exclusive VIP offer"
        return "Send win-back email with 20% discount"
    if risk_level == "high":
        return "Send re-engagement email with personalized recommendations"
    return "Include in next promotional campaign"


def classify_churn(days_since_last: int, avg_interval: int) -> tuple[str, float] | None:
    """Return (risk_level, probability), or None when not at risk."""
    for level, multiplier, probability in CHURN_TIERS:
        if days_since_last > avg_interval * multiplier:
            return level, probability
    return None


class CustomerAnalyticsEngine:
    def __init__(self, data_access: DataAccess):
        self.data_access = data_access

    # ──────────────────────────────────────────────────────────────────────
    # RFM
    # ──────────────────────────────────────────────────────────────────────

    async def rfm_analysis(self, now: datetime | None = None) -> RFMReport:
        now = now or utcnow()
        customers = await self.data_access.find_customers_with_transactions(status=TransactionStatus.COMPLETED)
        report = build_rfm_report([build_profile(c, now) for c in customers])
        logger.info(
            "customers.rfm_computed",
            total_customers=report.total_customers,
            segments={name: s.count for name, s in report.segments.items()},
        )
        return report

    # ──────────────────────────────────────────────────────────────────────
    # Churn
    # ──────────────────────────────────────────────────────────────────────

    async def churn_risk(self, now: datetime | None = None) -> ChurnReport:
        now = now or utcnow()
        customers = await self.data_access.find_customers_with_transactions(status=TransactionStatus.COMPLETED)

        at_risk = []
        for customer in customers:
            risk = self._score_churn(customer, now)
            if risk is not None:
                at_risk.append(risk)

        at_risk.sort(key=lambda r: CHURN_RISK_ORDER[r.risk_level])
        return ChurnReport(
            total_at_risk=len(at_risk),
            critical_count=sum(1 for r in at_risk if r.risk_level == "critical"),
            high_count=sum(1 for r in at_risk if r.risk_level == "high"),
            medium_count=sum(1 for r in at_risk if r.risk_level == "medium"),
            customers=at_risk,
        )

    def _score_churn(self, customer: CustomerRecord, now: datetime) -> ChurnRisk | None:
        transactions = customer.transactions
        if len(transactions) < 2:
            return None

        first_purchase = min(t.timestamp for t in transactions)
        last_purchase = max(t.timestamp for t in transactions)
        one_day = timedelta(days=1)
        days_since_last = (now - last_purchase) // one_day
        avg_interval = (last_purchase - first_purchase) // (one_day * (len(transactions) - 1))

        tier = classify_churn(days_since_last, avg_interval)
        if tier is None:
            return None
        risk_level, probability = tier

        return ChurnRisk(
            customer_id=customer.customer_id,
            email=customer.email,
            name=customer.name,
            loyalty_tier=customer.loyalty_tier,
            total_spent=round(sum(t.total_amount for t in transactions), 2),
            transaction_count=len(transactions),
            days_since_last_purchase=days_since_last,
            avg_days_between_purchases=avg_interval,
            churn_probability=probability,
            risk_level=risk_level,
            suggested_action=suggested_action(risk_level, customer.loyalty_tier),
        )

    # ──────────────────────────────────────────────────────────────────────
    # CLV
    # ──────────────────────────────────────────────────────────────────────

    async def predict_clv(self, customer_id: uuid.UUID) -> CLVPrediction | None:
        """
        Predict lifetime value for one customer.

        Raises ValueError for a missing id; returns None when the customer
        does not exist. No purchases yields a zero prediction, not an error.
        """
        if customer_id is None:
            raise ValueError("customer_id is required for CLV prediction")

        customer = await self.data_access.get_customer(customer_id)
        if customer is None:
            return None

        transactions = await self.data_access.find_transactions_in_window(
            customer_id=customer_id,
            status=TransactionStatus.COMPLETED,
        )
        if not transactions:
            return CLVPrediction(
                customer_id=customer.customer_id,
                name=customer.name,
                loyalty_tier=customer.loyalty_tier,
                total_revenue=0.0,
                transaction_count=0,
                avg_order_value=0.0,
                purchase_frequency=0.0,
                months_active=0.0,
                predicted_clv=0.0,
                confidence="low",
            )

        count = len(transactions)
        total_revenue = sum(t.total_amount for t in transactions)
        avg_order_value = total_revenue / count

        first_purchase = min(t.timestamp for t in transactions)
        last_purchase = max(t.timestamp for t in transactions)
        span_days = (last_purchase - first_purchase).total_seconds() / 86400
        months_active = max(1.0, span_days / DAYS_PER_MONTH)
        purchase_frequency = count / months_active

        confidence = "low"
        for minimum, label in CLV_CONFIDENCE:
            if count >= minimum:
                confidence = label
                break

        return CLVPrediction(
            customer_id=customer.customer_id,
            name=customer.name,
            loyalty_tier=customer.loyalty_tier,
            total_revenue=round(total_revenue, 2),
            transaction_count=count,
            avg_order_value=round(avg_order_value, 2),
            purchase_frequency=round(purchase_frequency, 2),
            months_active=round(months_active, 1),
            predicted_clv=round(avg_order_value * purchase_frequency * CLV_LIFESPAN_MONTHS, 2),
            confidence=confidence,
        )

    # ──────────────────────────────────────────────────────────────────────
    # Recommendations
    # ──────────────────────────────────────────────────────────────────────

    async def recommendations(self, customer_id: uuid.UUID, limit: int = 10) -> RecommendationSet | None:
        customer = await self.data_access.get_customer(customer_id)
        if customer is None:
            return None

        history = await self.data_access.find_transactions_in_window(
            customer_id=customer_id,
            status=TransactionStatus.COMPLETED,
        )
        purchased = {t.product_id for t in history}
        purchased_products = await self.data_access.get_products(purchased)
        categories = sorted({p.category for p in purchased_products.values() if p.category})

        if not categories:
            return RecommendationSet(
                customer_id=customer.customer_id,
                name=customer.name,
                strategy="best_sellers",
                reason="New customer with no purchase history",
                best_sellers=await self.data_access.best_sellers(limit),
            )

        collaborative = await self._collaborative(customer_id, purchased, limit)
        category = await self._category_affinity(categories, purchased)

        logger.debug(
            "customers.recommendations_built",
            customer_id=str(customer_id),
            collaborative=len(collaborative),
            category=len(category),
        )
        return RecommendationSet(
            customer_id=customer.customer_id,
            name=customer.name,
            strategy="collaborative_filtering",
            purchase_count=len(history),
            favorite_categories=categories,
            collaborative=collaborative,
            category=category,
        )

    async def _collaborative(
        self,
        customer_id: uuid.UUID,
        purchased: set[uuid.UUID],
        limit: int,
    ) -> list[Recommendation]:
        """Products bought by customers sharing ≥2 distinct products with the target."""
        population = await self.data_access.find_customers_with_transactions(status=TransactionStatus.COMPLETED)

        purchase_counts: Counter[uuid.UUID] = Counter()
        for other in population:
            if other.customer_id == customer_id:
                continue
            owned = {t.product_id for t in other.transactions}
            if len(owned & purchased) < MIN_SHARED_PRODUCTS:
                continue
            purchase_counts.update(t.product_id for t in other.transactions if t.product_id not in purchased)

        if not purchase_counts:
            return []

        products = await self.data_access.get_products(purchase_counts)
        ranked = sorted(
            (
                (product_id, count)
                for product_id, count in purchase_counts.items()
                if product_id in products and products[product_id].stock_quantity > 0
            ),
            key=lambda item: item[1],
            reverse=True,
        )
        return [
            Recommendation(product=products[product_id], score=count, reason="Bought by similar customers")
            for product_id, count in ranked[:limit]
        ]

    async def _category_affinity(self, categories: list[str], purchased: set[uuid.UUID]) -> list[Recommendation]:
        candidates = await self.data_access.find_products(categories=categories, in_stock_only=True)
        ranked = sorted(
            (p for p in candidates if p.product_id not in purchased),
            key=lambda p: p.price,
            reverse=True,
        )
        return [
            Recommendation(product=p, reason=f"Based on your interest in {p.category}")
            for p in ranked[:CATEGORY_RECOMMENDATIONS]
        ]
