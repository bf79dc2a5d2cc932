"""
Supplier Selector — Rank suppliers for a replenishment order.

Only suppliers with reliability ≥ 0.7 are considered. Weighted score
(max 100):

  reliability  reliability_score × 40
  delivery     (1 − min(avg_delivery_days, 14) / 14) × 30
  cost         payment terms: Prepaid 10, Net 30 20, Net 45 25, Net 60 30
               (unknown terms score as Net 30)

A supplier with no delivery history earns no delivery credit.
"""

from dataclasses import dataclass
from uuid import UUID

import structlog

from db.access import DataAccess
from db.records import ProductRecord, SupplierRecord

logger = structlog.get_logger()

MIN_RELIABILITY = 0.7
MAX_DELIVERY_DAYS = 14
RELIABILITY_WEIGHT = 40
DELIVERY_WEIGHT = 30
TOP_SUPPLIERS = 5

PAYMENT_TERM_SCORES = {
    "Prepaid": 10,
    "Net 30": 20,
    "Net 45": 25,
    "Net 60": 30,
}
DEFAULT_PAYMENT_TERM_SCORE = PAYMENT_TERM_SCORES["Net 30"]


@dataclass
class SupplierScore:
    supplier: SupplierRecord
    reliability: float
    delivery: float
    cost: float

    @property
    def total(self) -> float:
        return self.reliability + self.delivery + self.cost


@dataclass
class SupplierRecommendation:
    product: ProductRecord
    quantity: int
    recommendations: list[SupplierScore]
    best_supplier: SupplierScore | None


def score_supplier(supplier: SupplierRecord) -> SupplierScore:
    delivery_days = supplier.average_delivery_days
    if delivery_days is None:
        delivery_days = MAX_DELIVERY_DAYS
    return SupplierScore(
        supplier=supplier,
        reliability=supplier.reliability_score * RELIABILITY_WEIGHT,
        delivery=(1 - min(delivery_days, MAX_DELIVERY_DAYS) / MAX_DELIVERY_DAYS) * DELIVERY_WEIGHT,
        cost=PAYMENT_TERM_SCORES.get(supplier.payment_terms, DEFAULT_PAYMENT_TERM_SCORE),
    )


class SupplierSelector:
    """Pick the best supplier for a product reorder."""

    def __init__(self, data_access: DataAccess):
        self.data_access = data_access

    async def optimize_supplier(self, product_id: UUID, quantity: int) -> SupplierRecommendation | None:
        """
        Score every reliable supplier for this order.

        Returns None if the product does not exist. When no supplier passes
        the reliability filter, ``best_supplier`` is None.
        """
        product = await self.data_access.get_product(product_id)
        if product is None:
            return None

        suppliers = await self.data_access.list_suppliers(min_reliability=MIN_RELIABILITY)
        scores = sorted((score_supplier(s) for s in suppliers), key=lambda s: s.total, reverse=True)

        logger.debug(
            "sourcing.suppliers_scored",
            product_id=str(product_id),
            candidates=len(scores),
            best=scores[0].supplier.name if scores else None,
        )
        return SupplierRecommendation(
            product=product,
            quantity=quantity,
            recommendations=scores[:TOP_SUPPLIERS],
            best_supplier=scores[0] if scores else None,
        )
