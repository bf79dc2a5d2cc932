"""
Tests for the Celery worker bodies (run directly against the test session).
"""

from dataclasses import replace
from datetime import timedelta

import pytest
from sqlalchemy import select

from alerts.engine import FRAUD_ALERT_EVENT, LOW_STOCK_EVENT, SqlAlertSink


@pytest.fixture
def broadcasts(monkeypatch):
    """Capture Redis broadcasts from any SqlAlertSink."""
    sent: list[tuple[str, dict]] = []

    async def record(self, event_type, payload):
        sent.append((event_type, payload))
        return 0

    monkeypatch.setattr(SqlAlertSink, "broadcast", record)
    return sent


def bot_transaction(seeded_db):
    """A large overnight order from a scripted client."""
    from db.models import Transaction

    return Transaction(
        customer_id=seeded_db["customers"]["lapsed"].customer_id,
        product_id=seeded_db["products"]["speaker"].product_id,
        quantity=10,
        unit_price=120.0,
        total_amount=1200.0,
        status="completed",
        timestamp=seeded_db["now"].replace(hour=4) - timedelta(days=1),
        user_agent="curl/8.4.0",
    )


@pytest.mark.asyncio
class TestFraudRescore:
    async def test_rescore_annotates_and_alerts(self, test_db, seeded_db, broadcasts):
        from db.models import Alert
        from workers.fraud_rescore import rescore

        bot = bot_transaction(seeded_db)
        test_db.add(bot)
        await test_db.commit()

        result = await rescore(test_db, limit=100)

        assert result == {"status": "success", "scored": 6, "suspicious": 1, "alerts_raised": 1}

        await test_db.refresh(bot)
        assert bot.fraud_score == 0.6
        assert {f["type"] for f in bot.fraud_flags} == {"amount_deviation", "unusual_time", "bot_detected"}

        alerts = (await test_db.execute(select(Alert))).scalars().all()
        assert len(alerts) == 1
        assert alerts[0].severity == "high"
        assert [event for event, _ in broadcasts] == [FRAUD_ALERT_EVENT]

    async def test_second_run_does_not_realert(self, test_db, seeded_db, broadcasts):
        from db.models import Alert
        from workers.fraud_rescore import rescore

        test_db.add(bot_transaction(seeded_db))
        await test_db.commit()

        first = await rescore(test_db, limit=100)
        second = await rescore(test_db, limit=100)

        assert first["alerts_raised"] == 1
        assert second["suspicious"] == 1
        assert second["alerts_raised"] == 0
        alerts = (await test_db.execute(select(Alert))).scalars().all()
        assert len(alerts) == 1
        assert len(broadcasts) == 1

    async def test_failed_alert_insert_keeps_annotations(self, test_db, seeded_db, broadcasts, monkeypatch):
        from db.models import Alert
        from workers.fraud_rescore import rescore

        create_alert = SqlAlertSink.create_alert

        async def untitled(self, alert):
            # title is NOT NULL, so the insert fails inside the real sink
            return await create_alert(self, replace(alert, title=None))

        monkeypatch.setattr(SqlAlertSink, "create_alert", untitled)
        bot = bot_transaction(seeded_db)
        test_db.add(bot)
        await test_db.commit()

        result = await rescore(test_db, limit=100)

        assert result["scored"] == 6
        assert result["suspicious"] == 1
        assert result["alerts_raised"] == 0
        await test_db.refresh(bot)
        assert bot.fraud_score == 0.6
        assert (await test_db.execute(select(Alert))).scalars().all() == []
        assert broadcasts == []

    async def test_limit_caps_batch(self, test_db, seeded_db, broadcasts):
        from workers.fraud_rescore import rescore

        result = await rescore(test_db, limit=2)
        assert result["scored"] == 2


@pytest.mark.asyncio
class TestStockAlerts:
    async def test_low_stock_alert_for_critical_product(self, test_db, seeded_db, broadcasts):
        from db.models import Alert
        from workers.stock_alerts import raise_alerts

        summary = await raise_alerts(test_db)

        assert summary["status"] == "success"
        assert summary["suggestions"] == 1
        assert summary["alerts_raised"] == 1

        alert = (await test_db.execute(select(Alert))).scalar_one()
        assert alert.alert_type == "low_stock"
        assert alert.severity == "critical"
        assert alert.title == "Low Stock: Headphones"
        assert alert.product_id == seeded_db["products"]["headphones"].product_id
        assert [event for event, _ in broadcasts] == [LOW_STOCK_EVENT]

    async def test_no_alerts_when_stock_is_healthy(self, test_db, broadcasts):
        from workers.stock_alerts import raise_alerts

        summary = await raise_alerts(test_db)
        assert summary["alerts_raised"] == 0
        assert broadcasts == []
