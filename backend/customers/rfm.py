"""
RFM Segmentation — Recency / Frequency / Monetary scoring.

Each raw metric becomes a percentile rank within the customer population,
then an integer score 1-5 (bands 80/60/40/20). Recency is inverted: fewer
days since the last purchase is better.

Populations:
  - recency:   customers with at least one completed purchase
  - frequency: every customer (no purchases counts as 0)
  - monetary:  every customer (no purchases counts as 0)

Customers without purchases skip scoring entirely: segment "Lost", code 111.
"""

import uuid
from bisect import bisect_left
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from db.records import CustomerRecord, LoyaltyTier

SCORE_BANDS = ((80, 5), (60, 4), (40, 3), (20, 2))
NO_PURCHASE_SEGMENT = "Lost"
NO_PURCHASE_CODE = "111"
TOP_CUSTOMERS = 20


def percentile_rank(sorted_population: Sequence[float], value: float, inverse: bool = False) -> float:
    """Share of the population strictly below ``value``, in percent."""
    if not sorted_population:
        return 0.0
    percentile = bisect_left(sorted_population, value) / len(sorted_population) * 100
    return 100 - percentile if inverse else percentile


def score_percentile(percentile: float) -> int:
    for threshold, score in SCORE_BANDS:
        if percentile >= threshold:
            return score
    return 1


@dataclass(frozen=True)
class SegmentRule:
    name: str
    matches: Callable[[int, int, int], bool]


# Evaluated top to bottom, first match wins
SEGMENT_RULES: tuple[SegmentRule, ...] = (
    SegmentRule("Champions", lambda r, f, m: r >= 4 and f >= 4 and m >= 4),
    SegmentRule("Loyal Customers", lambda r, f, m: r >= 4 and f >= 3 and m >= 3),
    SegmentRule("New Customers", lambda r, f, m: r >= 4 and f <= 2),
    SegmentRule("Potential Loyalists", lambda r, f, m: r >= 3 and f >= 3 and m >= 3),
    SegmentRule("At Risk", lambda r, f, m: r <= 2 and f >= 4 and m >= 4),
    SegmentRule("Need Attention", lambda r, f, m: r <= 2 and f >= 2 and m >= 2),
    SegmentRule("Lost", lambda r, f, m: r <= 2 and f <= 2 and m <= 2),
    SegmentRule("Big Spenders", lambda r, f, m: m >= 4),
)
FALLBACK_SEGMENT = "Others"


def assign_segment(r: int, f: int, m: int) -> str:
    for rule in SEGMENT_RULES:
        if rule.matches(r, f, m):
            return rule.name
    return FALLBACK_SEGMENT


@dataclass
class RFMProfile:
    customer_id: uuid.UUID
    email: str
    name: str
    loyalty_tier: LoyaltyTier
    recency_days: int | None
    frequency: int
    monetary: float
    r_score: int | None = None
    f_score: int | None = None
    m_score: int | None = None
    rfm_code: str = NO_PURCHASE_CODE
    segment: str = NO_PURCHASE_SEGMENT

    @property
    def total_score(self) -> int:
        if self.r_score is None:
            return 0
        return self.r_score + self.f_score + self.m_score


@dataclass
class SegmentSummary:
    count: int = 0
    customers: list[RFMProfile] = field(default_factory=list)


@dataclass
class RFMReport:
    total_customers: int
    segments: dict[str, SegmentSummary]
    top_customers: list[RFMProfile]


def build_profile(customer: CustomerRecord, now: datetime) -> RFMProfile:
    """Raw R/F/M metrics from the customer's completed transactions."""
    transactions = customer.transactions
    recency_days = None
    if transactions:
        last_purchase = max(t.timestamp for t in transactions)
        recency_days = (now - last_purchase).days
    return RFMProfile(
        customer_id=customer.customer_id,
        email=customer.email,
        name=customer.name,
        loyalty_tier=customer.loyalty_tier,
        recency_days=recency_days,
        frequency=len(transactions),
        monetary=round(sum(t.total_amount for t in transactions), 2),
    )


def build_rfm_report(profiles: list[RFMProfile]) -> RFMReport:
    """Score profiles against their own population and group by segment."""
    recency_population = sorted(p.recency_days for p in profiles if p.recency_days is not None)
    frequency_population = sorted(p.frequency for p in profiles)
    monetary_population = sorted(p.monetary for p in profiles)

    for profile in profiles:
        if profile.recency_days is None:
            continue
        profile.r_score = score_percentile(percentile_rank(recency_population, profile.recency_days, inverse=True))
        profile.f_score = score_percentile(percentile_rank(frequency_population, profile.frequency))
        profile.m_score = score_percentile(percentile_rank(monetary_population, profile.monetary))
        profile.rfm_code = f"{profile.r_score}{profile.f_score}{profile.m_score}"
        profile.segment = assign_segment(profile.r_score, profile.f_score, profile.m_score)

    segments: dict[str, SegmentSummary] = {}
    for profile in profiles:
        summary = segments.setdefault(profile.segment, SegmentSummary())
        summary.count += 1
        summary.customers.append(profile)

    scored = [p for p in profiles if p.r_score is not None]
    top_customers = sorted(scored, key=lambda p: p.total_score, reverse=True)[:TOP_CUSTOMERS]

    return RFMReport(total_customers=len(profiles), segments=segments, top_customers=top_customers)
