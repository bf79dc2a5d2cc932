"""
WebSocket endpoint for real-time alert delivery.

Relays the Redis alert channel (FRAUD_ALERT / LOW_STOCK_ALERT events
published by alerts.engine) to connected dashboards.
"""

import asyncio

import redis.asyncio as aioredis
import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from core.config import get_settings

settings = get_settings()
logger = structlog.get_logger()
router = APIRouter()

HEARTBEAT_SECONDS = 30


@router.websocket("/ws/alerts")
async def websocket_alerts(websocket: WebSocket):
    """
    Stream alert events to the client.

    Connect: ws://host/ws/alerts

    Messages sent to client:
        {"type": "FRAUD_ALERT", "data": {"alert": ..., "transaction": ..., "analysis": ...}}
        {"type": "LOW_STOCK_ALERT", "data": {...}}
        {"type": "heartbeat", "data": {}}
    """
    await websocket.accept()

    redis = aioredis.from_url(settings.redis_url)
    pubsub = redis.pubsub()
    await pubsub.subscribe(settings.alert_channel)
    logger.info("ws.alerts_connected", channel=settings.alert_channel)

    async def relay_alerts():
        async for message in pubsub.listen():
            if message["type"] == "message":
                await websocket.send_text(message["data"].decode())

    async def send_heartbeat():
        while True:
            await asyncio.sleep(HEARTBEAT_SECONDS)
            await websocket.send_json({"type": "heartbeat", "data": {}})

    try:
        await asyncio.gather(relay_alerts(), send_heartbeat())
    except WebSocketDisconnect:
        logger.info("ws.alerts_disconnected")
    finally:
        await pubsub.unsubscribe(settings.alert_channel)
        await pubsub.aclose()
        await redis.aclose()
