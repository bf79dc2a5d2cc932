"""
Demand Forecaster — Stock depletion projection and seasonal demand patterns.

Stock prediction (per product, trailing 30 days of completed sales):
  avg_daily_sales = mean units over the days that had sales
  trend           = (last-7-day avg − first-7-day avg) / first-7-day avg
                    (0 unless there are ≥ 7 sales days)
  for day d in 1..N:
      sales[d] = max(0, avg_daily_sales × (1 + trend × d/30))
      stock[d] = max(0, stock[d-1] − sales[d])

Seasonal analysis buckets all historical completed quantity by
day-of-week (0 = Sunday) and hour-of-day and reports the peaks.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

import pandas as pd
import structlog

from db.access import DataAccess
from db.records import ProductRecord, SupplierRecord, TransactionRecord, TransactionStatus, utcnow

logger = structlog.get_logger()

SALES_WINDOW_DAYS = 30
TREND_WINDOW_DAYS = 7
TREND_DAMPING_DAYS = 30
HIGH_RISK_STOCK = 10
TREND_THRESHOLD = 0.05

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


@dataclass
class StockPrediction:
    day: int
    date: date
    predicted_stock: int
    predicted_sales: int
    stockout_risk: str  # critical | high | low


@dataclass
class StockForecast:
    product: ProductRecord
    avg_daily_sales: float
    trend: float
    trend_direction: str  # increasing | decreasing | stable
    days_until_stockout: int | None
    predictions: list[StockPrediction] = field(default_factory=list)
    supplier: SupplierRecord | None = None

    @property
    def trend_label(self) -> str:
        return f"{self.trend * 100:.1f}%"


@dataclass
class PeriodDemand:
    index: int
    label: str
    total_quantity: int
    transaction_count: int


@dataclass
class SeasonalPattern:
    product: ProductRecord
    weekly: list[PeriodDemand]
    hourly: list[PeriodDemand]
    peak_day: str
    peak_hour: str
    recommendation: str


def to_frame(transactions: list[TransactionRecord]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "timestamp": pd.to_datetime([t.timestamp for t in transactions]),
            "quantity": [t.quantity for t in transactions],
        }
    )


def daily_sales(transactions: list[TransactionRecord]) -> list[int]:
    """Units sold per calendar date, ascending; dates without sales are absent."""
    if not transactions:
        return []
    frame = to_frame(transactions)
    per_day = frame.groupby(frame["timestamp"].dt.date)["quantity"].sum().sort_index()
    return [int(q) for q in per_day.tolist()]


def sales_trend(sales: list[int]) -> float:
    if len(sales) < TREND_WINDOW_DAYS:
        return 0.0
    first_week = sum(sales[:TREND_WINDOW_DAYS]) / TREND_WINDOW_DAYS
    last_week = sum(sales[-TREND_WINDOW_DAYS:]) / TREND_WINDOW_DAYS
    if first_week == 0:
        return 0.0
    return (last_week - first_week) / first_week


def trend_direction(trend: float) -> str:
    if trend > TREND_THRESHOLD:
        return "increasing"
    if trend < -TREND_THRESHOLD:
        return "decreasing"
    return "stable"


def stockout_risk(stock: float) -> str:
    if stock <= 0:
        return "critical"
    if stock <= HIGH_RISK_STOCK:
        return "high"
    return "low"


def project_stock(
    current_stock: int,
    avg_daily_sales: float,
    trend: float,
    days_ahead: int,
    start: datetime,
) -> list[StockPrediction]:
    predictions = []
    stock = float(current_stock)
    for day in range(1, days_ahead + 1):
        sales = max(0.0, avg_daily_sales * (1 + trend * (day / TREND_DAMPING_DAYS)))
        stock = max(0.0, stock - sales)
        predictions.append(
            StockPrediction(
                day=day,
                date=(start + timedelta(days=day)).date(),
                predicted_stock=round(stock),
                predicted_sales=round(sales),
                stockout_risk=stockout_risk(stock),
            )
        )
    return predictions


class DemandForecaster:
    def __init__(self, data_access: DataAccess):
        self.data_access = data_access

    async def predict_stock_levels(
        self,
        product_id: uuid.UUID,
        days_ahead: int = 14,
        now: datetime | None = None,
    ) -> StockForecast | None:
        """Project stock for ``days_ahead`` days. None for an unknown product."""
        now = now or utcnow()
        product = await self.data_access.get_product(product_id, with_supplier=True)
        if product is None:
            return None

        transactions = await self.data_access.find_transactions_in_window(
            product_id=product_id,
            start=now - timedelta(days=SALES_WINDOW_DAYS),
            status=TransactionStatus.COMPLETED,
        )
        sales = daily_sales(transactions)
        avg_daily = sum(sales) / len(sales) if sales else 0.0
        trend = sales_trend(sales)

        predictions = project_stock(product.stock_quantity, avg_daily, trend, days_ahead, now)
        stockout_day = next((p.day for p in predictions if p.predicted_stock <= 0), None)

        logger.debug(
            "inventory.stock_projected",
            product_id=str(product_id),
            sales_days=len(sales),
            avg_daily_sales=round(avg_daily, 2),
            days_until_stockout=stockout_day,
        )
        return StockForecast(
            product=product,
            avg_daily_sales=round(avg_daily, 2),
            trend=trend,
            trend_direction=trend_direction(trend),
            days_until_stockout=stockout_day,
            predictions=predictions,
            supplier=product.supplier,
        )

    async def analyze_seasonal_patterns(self, product_id: uuid.UUID) -> SeasonalPattern | None:
        product = await self.data_access.get_product(product_id)
        if product is None:
            return None

        transactions = await self.data_access.find_transactions_in_window(
            product_id=product_id,
            status=TransactionStatus.COMPLETED,
        )
        frame = to_frame(transactions)
        # pandas: Monday=0 → shift so Sunday=0
        frame["day_of_week"] = (frame["timestamp"].dt.dayofweek + 1) % 7
        frame["hour"] = frame["timestamp"].dt.hour

        weekly = _bucket(frame, "day_of_week", range(7), lambda i: DAY_NAMES[i])
        hourly = _bucket(frame, "hour", range(24), lambda h: f"{h:02d}:00")

        peak_day = _peak(weekly)
        peak_hour = _peak(hourly)
        return SeasonalPattern(
            product=product,
            weekly=weekly,
            hourly=hourly,
            peak_day=peak_day.label,
            peak_hour=peak_hour.label,
            recommendation=(
                f"Consider increasing stock before {peak_day.label}s and ensuring "
                f"availability during {peak_hour.label} hours."
            ),
        )


def _bucket(frame: pd.DataFrame, column: str, periods: range, label) -> list[PeriodDemand]:
    grouped = frame.groupby(column)["quantity"].agg(["sum", "count"]).reindex(periods, fill_value=0)
    return [
        PeriodDemand(
            index=index,
            label=label(index),
            total_quantity=int(row["sum"]),
            transaction_count=int(row["count"]),
        )
        for index, row in grouped.iterrows()
    ]


def _peak(periods: list[PeriodDemand]) -> PeriodDemand:
    """First period with the highest quantity (ties keep the earliest)."""
    peak = periods[0]
    for period in periods[1:]:
        if period.total_quantity > peak.total_quantity:
            peak = period
    return peak
