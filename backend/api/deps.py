"""
OpsLens API Dependencies

Dependency injection for DB sessions, the data access facade, the alert
sink and the performance layer.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from alerts.engine import SqlAlertSink
from db.access import SqlDataAccess
from db.session import AsyncSessionLocal
from performance.service import PerformanceLayer


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_data_access(db: AsyncSession = Depends(get_db)) -> SqlDataAccess:
    return SqlDataAccess(db)


def get_alert_sink(db: AsyncSession = Depends(get_db)) -> SqlAlertSink:
    return SqlAlertSink(db)


def get_performance(request: Request) -> PerformanceLayer:
    return request.app.state.performance
