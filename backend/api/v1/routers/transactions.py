"""
Transactions Router — Fraud analysis and suspicious transaction review.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.engine import SqlAlertSink
from api.deps import get_alert_sink, get_data_access, get_db
from db.access import SqlDataAccess, save_fraud_annotation
from fraud.scoring import FraudScoringEngine, summarize_suspicious

router = APIRouter(prefix="/api/v1/transactions", tags=["transactions"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class FraudFlagResponse(BaseModel):
    type: str
    score: int
    message: str


class FraudAnalysisResponse(BaseModel):
    transaction_id: UUID
    fraud_score: float
    is_suspicious: bool
    severity: str
    flags: list[FraudFlagResponse]


class SuspiciousTransactionResponse(BaseModel):
    transaction_id: UUID
    customer_id: UUID
    product_id: UUID
    total_amount: float
    timestamp: datetime
    fraud_score: float
    fraud_flags: list[dict]

    model_config = {"from_attributes": True}


class SuspiciousSummaryResponse(BaseModel):
    total: int
    critical: list[SuspiciousTransactionResponse]
    high: list[SuspiciousTransactionResponse]
    medium: list[SuspiciousTransactionResponse]

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/{transaction_id}/fraud-analysis", response_model=FraudAnalysisResponse)
async def analyze_transaction(
    transaction_id: UUID,
    db: AsyncSession = Depends(get_db),
    data_access: SqlDataAccess = Depends(get_data_access),
    alert_sink: SqlAlertSink = Depends(get_alert_sink),
):
    """Score a transaction, persist the annotation and alert when suspicious."""
    transaction = await data_access.get_transaction(transaction_id)
    if not transaction:
        raise HTTPException(status_code=404, detail="Transaction not found")

    customer = await data_access.get_customer(transaction.customer_id)
    engine = FraudScoringEngine(data_access, alert_sink=alert_sink)
    analysis = await engine.analyze(transaction, customer)

    await save_fraud_annotation(db, transaction_id, analysis.fraud_score, analysis.flag_payload())

    return FraudAnalysisResponse(
        transaction_id=transaction_id,
        fraud_score=analysis.fraud_score,
        is_suspicious=analysis.is_suspicious,
        severity=analysis.severity.value,
        flags=analysis.flag_payload(),
    )


@router.get("/suspicious", response_model=SuspiciousSummaryResponse)
async def list_suspicious_transactions(
    min_score: float = Query(0.5, ge=0, le=1),
    limit: int = Query(50, ge=1, le=500),
    data_access: SqlDataAccess = Depends(get_data_access),
):
    """Already-scored transactions above ``min_score``, bucketed by severity."""
    transactions = await data_access.find_suspicious_transactions(min_score=min_score, limit=limit)
    return summarize_suspicious(transactions)
