"""
Fraud Rescore Worker — Batch fraud annotation after a transaction import.

Scores the most recent transactions, persists fraud_score / fraud_flags on
each one and raises a fraud alert for transactions that become suspicious
on this run. Rows already stored as suspicious were alerted on before.

Queue: fraud (triggered after CSV import, no beat schedule)
"""

import asyncio

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()


async def rescore(db: AsyncSession, limit: int) -> dict:
    """Score, annotate and alert. Shared by the task and its tests."""
    from alerts.engine import SqlAlertSink, drain_background_tasks
    from db.access import SqlDataAccess, save_fraud_annotation
    from fraud.scoring import SUSPICIOUS_SCORE, FraudScoringEngine

    engine = FraudScoringEngine(SqlDataAccess(db), alert_sink=SqlAlertSink(db))
    scored = await engine.rescore_recent(limit)

    suspicious = 0
    alerts_raised = 0
    for item in scored:
        previously_suspicious = item.transaction.fraud_score >= SUSPICIOUS_SCORE
        await save_fraud_annotation(
            db,
            item.transaction.transaction_id,
            item.analysis.fraud_score,
            item.analysis.flag_payload(),
        )
        if item.analysis.is_suspicious:
            suspicious += 1
            if previously_suspicious:
                continue
            if await engine.raise_alert(item.transaction, item.analysis) is not None:
                alerts_raised += 1

    await drain_background_tasks()
    return {
        "status": "success",
        "scored": len(scored),
        "suspicious": suspicious,
        "alerts_raised": alerts_raised,
    }


@celery_app.task(
    name="workers.fraud_rescore.rescore_recent_transactions",
    bind=True,
    max_retries=2,
    default_retry_delay=60,
    acks_late=True,
)
def rescore_recent_transactions(self, limit: int = 1000):
    """Re-score the latest ``limit`` transactions (post-import backfill)."""
    run_id = self.request.id or "manual"
    logger.info("fraud_rescore.started", limit=limit, run_id=run_id)

    async def _run():
        from core.config import get_settings

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession)
            async with async_session() as db:
                return await rescore(db, limit)
        finally:
            await engine.dispose()

    try:
        result = asyncio.run(_run())
        logger.info("fraud_rescore.completed", run_id=run_id, **result)
        return result
    except Exception as exc:
        logger.error("fraud_rescore.failed", run_id=run_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
