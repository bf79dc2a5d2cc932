"""
Customers Router — RFM segmentation, churn risk, CLV and recommendations.

GET responses here are served through the response cache (prefix
"customers").
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from api.deps import get_data_access
from customers.analytics import CustomerAnalyticsEngine
from db.access import SqlDataAccess
from db.records import LoyaltyTier

router = APIRouter(prefix="/api/v1/customers", tags=["customers"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class RFMCustomerResponse(BaseModel):
    customer_id: UUID
    email: str
    name: str
    loyalty_tier: LoyaltyTier
    recency_days: int | None
    frequency: int
    monetary: float
    rfm_code: str
    segment: str
    total_score: int

    model_config = {"from_attributes": True}


class SegmentResponse(BaseModel):
    count: int
    customers: list[RFMCustomerResponse]

    model_config = {"from_attributes": True}


class RFMReportResponse(BaseModel):
    total_customers: int
    segments: dict[str, SegmentResponse]
    top_customers: list[RFMCustomerResponse]

    model_config = {"from_attributes": True}


class ChurnRiskResponse(BaseModel):
    customer_id: UUID
    email: str
    name: str
    loyalty_tier: LoyaltyTier
    total_spent: float
    transaction_count: int
    days_since_last_purchase: int
    avg_days_between_purchases: int
    churn_probability: str
    risk_level: str
    suggested_action: str


class ChurnReportResponse(BaseModel):
    total_at_risk: int
    critical_count: int
    high_count: int
    medium_count: int
    customers: list[ChurnRiskResponse]


class CLVResponse(BaseModel):
    customer_id: UUID
    name: str
    loyalty_tier: LoyaltyTier
    total_revenue: float
    transaction_count: int
    avg_order_value: float
    purchase_frequency: float
    months_active: float
    predicted_clv: float
    confidence: str

    model_config = {"from_attributes": True}


class ProductSummary(BaseModel):
    product_id: UUID
    name: str
    category: str | None
    price: float

    model_config = {"from_attributes": True}


class RecommendationResponse(BaseModel):
    product: ProductSummary
    reason: str
    score: int | None = None

    model_config = {"from_attributes": True}


class BestSellerResponse(BaseModel):
    product: ProductSummary
    total_sold: int
    order_count: int

    model_config = {"from_attributes": True}


class RecommendationSetResponse(BaseModel):
    customer_id: UUID
    name: str
    strategy: str
    reason: str | None
    purchase_count: int
    favorite_categories: list[str]
    best_sellers: list[BestSellerResponse]
    collaborative: list[RecommendationResponse]
    category: list[RecommendationResponse]

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/rfm-analysis", response_model=RFMReportResponse)
async def get_rfm_analysis(data_access: SqlDataAccess = Depends(get_data_access)):
    report = await CustomerAnalyticsEngine(data_access).rfm_analysis()
    return RFMReportResponse.model_validate(report, from_attributes=True)


@router.get("/churn-risk", response_model=ChurnReportResponse)
async def get_churn_risk(data_access: SqlDataAccess = Depends(get_data_access)):
    report = await CustomerAnalyticsEngine(data_access).churn_risk()
    return ChurnReportResponse(
        total_at_risk=report.total_at_risk,
        critical_count=report.critical_count,
        high_count=report.high_count,
        medium_count=report.medium_count,
        customers=[
            ChurnRiskResponse(
                customer_id=risk.customer_id,
                email=risk.email,
                name=risk.name,
                loyalty_tier=risk.loyalty_tier,
                total_spent=risk.total_spent,
                transaction_count=risk.transaction_count,
                days_since_last_purchase=risk.days_since_last_purchase,
                avg_days_between_purchases=risk.avg_days_between_purchases,
                churn_probability=risk.probability_label,
                risk_level=risk.risk_level,
                suggested_action=risk.suggested_action,
            )
            for risk in report.customers
        ],
    )


@router.get("/{customer_id}/clv", response_model=CLVResponse)
async def get_customer_clv(customer_id: UUID, data_access: SqlDataAccess = Depends(get_data_access)):
    prediction = await CustomerAnalyticsEngine(data_access).predict_clv(customer_id)
    if prediction is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return CLVResponse.model_validate(prediction, from_attributes=True)


@router.get("/{customer_id}/recommendations", response_model=RecommendationSetResponse)
async def get_recommendations(
    customer_id: UUID,
    limit: int = Query(10, ge=1, le=50),
    data_access: SqlDataAccess = Depends(get_data_access),
):
    recommendations = await CustomerAnalyticsEngine(data_access).recommendations(customer_id, limit=limit)
    if recommendations is None:
        raise HTTPException(status_code=404, detail="Customer not found")
    return RecommendationSetResponse.model_validate(recommendations, from_attributes=True)
