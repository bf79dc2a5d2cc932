"""
Stock Alerts Worker — Hourly low-stock alerting from reorder suggestions.

Runs the reorder suggestion generator and raises a ``low_stock`` alert for
every critical or high urgency product, then broadcasts LOW_STOCK_ALERT.

Schedule: crontab(minute=15), hourly
Queue: inventory
"""

import asyncio
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from workers.celery_app import celery_app

logger = structlog.get_logger()

ALERT_URGENCIES = {"critical": "critical", "high": "high"}  # urgency → alert severity


async def raise_alerts(db: AsyncSession) -> dict:
    from alerts.engine import LOW_STOCK_EVENT, NewAlert, SqlAlertSink, drain_background_tasks, fire_and_forget
    from db.access import SqlDataAccess
    from db.records import AlertMetadata, AlertType, Severity
    from inventory.optimizer import InventoryOptimizer

    sink = SqlAlertSink(db)
    report = await InventoryOptimizer(SqlDataAccess(db)).generate_reorder_suggestions()

    raised = 0
    for suggestion in report.suggestions:
        severity = ALERT_URGENCIES.get(suggestion.urgency)
        if severity is None:
            continue
        product = suggestion.product
        alert = await sink.create_alert(
            NewAlert(
                alert_type=AlertType.LOW_STOCK,
                severity=Severity(severity),
                title=f"Low Stock: {product.name}",
                message=(
                    f"{product.name} has {product.stock_quantity} units left "
                    f"(reorder point {suggestion.reorder_point}); "
                    f"recommend ordering {suggestion.recommended_quantity}"
                ),
                product_id=product.product_id,
                metadata=AlertMetadata(
                    extra={
                        "reorder_point": suggestion.reorder_point,
                        "recommended_quantity": suggestion.recommended_quantity,
                        "days_until_stockout": suggestion.days_until_stockout,
                        "estimated_cost": suggestion.estimated_cost,
                    }
                ),
            )
        )
        fire_and_forget(
            sink.broadcast(LOW_STOCK_EVENT, {"alert": alert, "suggestion": suggestion}),
            name=f"low-stock-{product.product_id}",
        )
        raised += 1

    await drain_background_tasks()
    return {
        "status": "success",
        "suggestions": report.total_suggestions,
        "alerts_raised": raised,
        "completed_at": datetime.now(timezone.utc).isoformat(),
    }


@celery_app.task(
    name="workers.stock_alerts.raise_low_stock_alerts",
    bind=True,
    max_retries=2,
    default_retry_delay=120,
    acks_late=True,
)
def raise_low_stock_alerts(self):
    run_id = self.request.id or "manual"
    logger.info("stock_alerts.started", run_id=run_id)

    async def _run():
        from core.config import get_settings

        settings = get_settings()
        engine = create_async_engine(settings.database_url)
        try:
            async_session = async_sessionmaker(engine, class_=AsyncSession)
            async with async_session() as db:
                return await raise_alerts(db)
        finally:
            await engine.dispose()

    try:
        summary = asyncio.run(_run())
        logger.info("stock_alerts.completed", run_id=run_id, **summary)
        return summary
    except Exception as exc:
        logger.error("stock_alerts.failed", error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
