"""
Inventory Router — Reorder suggestions, stock forecasts, supplier choice and
seasonal demand.

GET responses here are served through the response cache (prefix
"inventory").
"""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from api.deps import get_data_access
from db.access import SqlDataAccess
from inventory.forecast import DemandForecaster
from inventory.optimizer import InventoryOptimizer
from supply_chain.sourcing import SupplierSelector

router = APIRouter(prefix="/api/v1/inventory", tags=["inventory"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class SupplierSummary(BaseModel):
    supplier_id: UUID
    name: str
    reliability_score: float
    average_delivery_days: int | None
    payment_terms: str | None
    contact_email: str | None = None
    country: str | None = None
    certification: str | None = None

    model_config = {"from_attributes": True}


class ProductStockSummary(BaseModel):
    product_id: UUID
    name: str
    sku: str | None
    category: str | None
    price: float
    stock_quantity: int

    model_config = {"from_attributes": True}


class ReorderSuggestionResponse(BaseModel):
    product: ProductStockSummary
    avg_daily_sales: float
    reorder_point: int
    recommended_quantity: int
    estimated_cost: float
    days_until_stockout: int | None
    lead_time_days: int
    urgency: str
    supplier_id: UUID | None

    model_config = {"from_attributes": True}


class ReorderReportResponse(BaseModel):
    total_suggestions: int
    critical_count: int
    high_count: int
    suggestions: list[ReorderSuggestionResponse]

    model_config = {"from_attributes": True}


class StockPredictionResponse(BaseModel):
    day: int
    date: date
    predicted_stock: int
    predicted_sales: int
    stockout_risk: str

    model_config = {"from_attributes": True}


class StockForecastResponse(BaseModel):
    product: ProductStockSummary
    avg_daily_sales: float
    trend_label: str
    trend_direction: str
    days_until_stockout: int | None
    predictions: list[StockPredictionResponse]
    supplier: SupplierSummary | None

    model_config = {"from_attributes": True}


class SupplierScoreResponse(BaseModel):
    supplier: SupplierSummary
    reliability: float
    delivery: float
    cost: float
    total: float

    model_config = {"from_attributes": True}


class SupplierRecommendationResponse(BaseModel):
    product: ProductStockSummary
    quantity: int
    recommendations: list[SupplierScoreResponse]
    best_supplier: SupplierScoreResponse | None

    model_config = {"from_attributes": True}


class PeriodDemandResponse(BaseModel):
    index: int
    label: str
    total_quantity: int
    transaction_count: int

    model_config = {"from_attributes": True}


class SeasonalPatternResponse(BaseModel):
    product: ProductStockSummary
    weekly: list[PeriodDemandResponse]
    hourly: list[PeriodDemandResponse]
    peak_day: str
    peak_hour: str
    recommendation: str

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/reorder-suggestions", response_model=ReorderReportResponse)
async def get_reorder_suggestions(data_access: SqlDataAccess = Depends(get_data_access)):
    """Products at or below their reorder point, most urgent first."""
    report = await InventoryOptimizer(data_access).generate_reorder_suggestions()
    return ReorderReportResponse.model_validate(report, from_attributes=True)


@router.get("/predict/{product_id}", response_model=StockForecastResponse)
async def predict_stock(
    product_id: UUID,
    days_ahead: int = Query(14, ge=1, le=90),
    data_access: SqlDataAccess = Depends(get_data_access),
):
    forecast = await DemandForecaster(data_access).predict_stock_levels(product_id, days_ahead=days_ahead)
    if forecast is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return StockForecastResponse.model_validate(forecast, from_attributes=True)


@router.get("/optimize-supplier/{product_id}", response_model=SupplierRecommendationResponse)
async def optimize_supplier(
    product_id: UUID,
    quantity: int = Query(100, ge=1),
    data_access: SqlDataAccess = Depends(get_data_access),
):
    recommendation = await SupplierSelector(data_access).optimize_supplier(product_id, quantity)
    if recommendation is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return SupplierRecommendationResponse.model_validate(recommendation, from_attributes=True)


@router.get("/seasonal/{product_id}", response_model=SeasonalPatternResponse)
async def get_seasonal_patterns(product_id: UUID, data_access: SqlDataAccess = Depends(get_data_access)):
    pattern = await DemandForecaster(data_access).analyze_seasonal_patterns(product_id)
    if pattern is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return SeasonalPatternResponse.model_validate(pattern, from_attributes=True)
