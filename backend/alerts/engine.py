"""
Alert Engine — Alert persistence and real-time broadcast.

Patterns used: persisted alert records, Redis pub/sub fan-out, fire-and-forget
delivery.

Alert Types:
  - fraud: Transaction scored suspicious by the fraud engine
  - low_stock: Reorder suggestion with critical/high urgency
  - high_value / unusual_activity / custom: raised by other collaborators

Broadcast is best-effort. Publishing never blocks the caller that raised the
alert, and a publish with no subscribers is not an error.
"""

import asyncio
import json
import uuid
from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import Any, Protocol

import redis.asyncio as aioredis
import structlog
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import Alert
from db.records import AlertMetadata, AlertRecord, AlertType, Severity

logger = structlog.get_logger()
settings = get_settings()

FRAUD_ALERT_EVENT = "FRAUD_ALERT"
LOW_STOCK_EVENT = "LOW_STOCK_ALERT"


@dataclass
class NewAlert:
    """Fields for an alert about to be created."""

    alert_type: AlertType
    severity: Severity
    title: str
    message: str
    transaction_id: uuid.UUID | None = None
    customer_id: uuid.UUID | None = None
    product_id: uuid.UUID | None = None
    metadata: AlertMetadata = field(default_factory=AlertMetadata)


class AlertSink(Protocol):
    """Where engines send alerts: persistence plus a broadcast channel."""

    async def create_alert(self, alert: NewAlert) -> AlertRecord: ...

    async def broadcast(self, event_type: str, payload: dict[str, Any]) -> int: ...


def to_alert_record(row: Alert) -> AlertRecord:
    return AlertRecord(
        alert_id=row.alert_id,
        alert_type=AlertType(row.alert_type),
        severity=Severity(row.severity),
        title=row.title,
        message=row.message or "",
        created_at=row.created_at,
        transaction_id=row.transaction_id,
        customer_id=row.customer_id,
        product_id=row.product_id,
        is_read=bool(row.is_read),
        resolved=bool(row.resolved),
        metadata=AlertMetadata.from_json(row.alert_metadata),
    )


def encode_event(event_type: str, payload: dict[str, Any]) -> str:
    """Serialize a broadcast event to the wire JSON shape ``{type, data}``."""
    return json.dumps({"type": event_type, "data": jsonable_encoder(payload)})


class SqlAlertSink:
    """Persist alerts with SQLAlchemy and broadcast them over Redis pub/sub."""

    def __init__(
        self,
        db: AsyncSession,
        redis_url: str | None = None,
        channel: str | None = None,
    ):
        self.db = db
        self.redis_url = redis_url or settings.redis_url
        self.channel = channel or settings.alert_channel

    async def create_alert(self, alert: NewAlert) -> AlertRecord:
        row = Alert(
            alert_type=AlertType(alert.alert_type).value,
            severity=Severity(alert.severity).value,
            title=alert.title,
            message=alert.message,
            transaction_id=alert.transaction_id,
            customer_id=alert.customer_id,
            product_id=alert.product_id,
            alert_metadata=jsonable_encoder(alert.metadata.to_json()),
        )
        try:
            self.db.add(row)
            await self.db.commit()
            await self.db.refresh(row)
        except Exception:
            await self.db.rollback()
            raise
        logger.info(
            "alert.created",
            alert_id=str(row.alert_id),
            alert_type=row.alert_type,
            severity=row.severity,
        )
        return to_alert_record(row)

    async def broadcast(self, event_type: str, payload: dict[str, Any]) -> int:
        """
        Publish one event to the alert channel.
        Returns number of subscribers notified (0 when nobody listens).
        """
        redis = aioredis.from_url(self.redis_url)
        try:
            return await redis.publish(self.channel, encode_event(event_type, payload))
        finally:
            await redis.aclose()


# ──────────────────────────────────────────────────────────────────────────
# Fire-and-forget delivery
# ──────────────────────────────────────────────────────────────────────────

_background_tasks: set[asyncio.Task] = set()


def _log_task_failure(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("alert.broadcast_failed", task=task.get_name(), error=str(exc))


def fire_and_forget(coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
    """Run a coroutine in the background; failures are logged, never raised."""
    task = asyncio.get_running_loop().create_task(coro, name=name)
    _background_tasks.add(task)
    task.add_done_callback(_log_task_failure)
    return task


async def drain_background_tasks() -> None:
    """Wait for in-flight broadcasts (shutdown and tests)."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)
