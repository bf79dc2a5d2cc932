"""
Inventory Optimizer — Automated reorder suggestions for low-stock products.

Runs across every product at or below the low-stock ceiling (default 50).

Algorithm:
  avg_daily_sales = units sold in the trailing 30 days / 30
  ROP             = ceil(avg_daily_sales × (lead time + 3 safety days))
  order qty       = ceil(avg_daily_sales × 30)   (30 days of supply)

A product is suggested when stock ≤ ROP. Lead time is the supplier's average
delivery days, 7 when unknown.

Sales for all candidates are fetched with ONE batched query
(DataAccess.batch_sales_by_product), never a query per product.

Urgency:
  - critical: stock is 0
  - high:     stock ≤ 3 days of average sales
  - medium:   everything else that crossed the ROP
"""

import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from db.access import DataAccess
from db.records import ProductRecord, utcnow

logger = structlog.get_logger()

DEFAULT_LEAD_TIME_DAYS = 7
SAFETY_STOCK_DAYS = 3
SALES_WINDOW_DAYS = 30
SUPPLY_DAYS = 30
LOW_STOCK_CEILING = 50
WHOLESALE_COST_RATIO = 0.6  # Estimated wholesale share of retail price
HIGH_URGENCY_DAYS = 3

URGENCY_ORDER = {"critical": 0, "high": 1, "medium": 2}


@dataclass
class ReorderSuggestion:
    """One product that crossed its reorder point."""

    product: ProductRecord
    avg_daily_sales: float
    reorder_point: int
    recommended_quantity: int
    estimated_cost: float
    days_until_stockout: int | None
    lead_time_days: int
    urgency: str

    @property
    def supplier_id(self) -> uuid.UUID | None:
        return self.product.supplier.supplier_id if self.product.supplier else None


@dataclass
class ReorderReport:
    total_suggestions: int
    critical_count: int
    high_count: int
    suggestions: list[ReorderSuggestion]


def days_to_units(units_in_window: int, days: int) -> int:
    """ceil(units_in_window / SALES_WINDOW_DAYS × days), computed exactly."""
    return -(-units_in_window * days // SALES_WINDOW_DAYS)


def classify_urgency(stock: int, avg_daily_sales: float) -> str:
    if stock == 0:
        return "critical"
    if stock <= avg_daily_sales * HIGH_URGENCY_DAYS:
        return "high"
    return "medium"


def build_suggestion(product: ProductRecord, units_sold: int) -> ReorderSuggestion | None:
    """Reorder analysis for one product, or None when stock is above its ROP."""
    avg_daily = units_sold / SALES_WINDOW_DAYS
    supplier = product.supplier
    lead_time = (supplier.average_delivery_days if supplier else None) or DEFAULT_LEAD_TIME_DAYS

    reorder_point = days_to_units(units_sold, lead_time + SAFETY_STOCK_DAYS)
    if product.stock_quantity > reorder_point:
        return None

    quantity = days_to_units(units_sold, SUPPLY_DAYS)
    return ReorderSuggestion(
        product=product,
        avg_daily_sales=round(avg_daily, 2),
        reorder_point=reorder_point,
        recommended_quantity=quantity,
        estimated_cost=round(quantity * product.price * WHOLESALE_COST_RATIO, 2),
        days_until_stockout=math.floor(product.stock_quantity / avg_daily) if avg_daily > 0 else None,
        lead_time_days=lead_time,
        urgency=classify_urgency(product.stock_quantity, avg_daily),
    )


class InventoryOptimizer:
    """Turn recent sales velocity into reorder suggestions."""

    def __init__(self, data_access: DataAccess):
        self.data_access = data_access

    async def generate_reorder_suggestions(
        self,
        now: datetime | None = None,
        max_stock: int = LOW_STOCK_CEILING,
    ) -> ReorderReport:
        now = now or utcnow()
        products = await self.data_access.find_low_stock_products(max_stock)
        if not products:
            return ReorderReport(total_suggestions=0, critical_count=0, high_count=0, suggestions=[])

        sales = await self.data_access.batch_sales_by_product(
            [p.product_id for p in products],
            since=now - timedelta(days=SALES_WINDOW_DAYS),
        )

        suggestions = []
        for product in products:
            suggestion = build_suggestion(product, sales.get(product.product_id, 0))
            if suggestion is not None:
                suggestions.append(suggestion)

        # Stable: products keep their store order within an urgency level
        suggestions.sort(key=lambda s: URGENCY_ORDER[s.urgency])

        report = ReorderReport(
            total_suggestions=len(suggestions),
            critical_count=sum(1 for s in suggestions if s.urgency == "critical"),
            high_count=sum(1 for s in suggestions if s.urgency == "high"),
            suggestions=suggestions,
        )
        logger.info(
            "inventory.reorder_suggestions",
            candidates=len(products),
            suggestions=report.total_suggestions,
            critical=report.critical_count,
            high=report.high_count,
        )
        return report
