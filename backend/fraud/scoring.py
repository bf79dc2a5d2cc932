"""
Fraud Scoring Engine — Rule-based risk score for a single transaction.

Five independent checks, each adding a fixed number of points when it fires:

  1. Amount anomaly   limit 40 / too low 20 / deviation 25 / high value 15
                      (ordered rules, first match wins)
  2. Velocity         ≥5 transactions by the customer in the trailing 10 min: 30
  3. Time pattern     local hour in [2, 5]: 15
  4. Customer risk    unknown customer 20 / risk_score ≥ 0.7: 25
  5. Bot signature    missing user agent 15 / automated user agent 20

fraud_score = min(points / 100, 1.0); suspicious at ≥ 0.5.

Flags are reported in check order (amount → velocity → time → customer →
bot). Suspicious transactions raise a ``fraud`` alert and a FRAUD_ALERT
broadcast; neither can fail the scoring call.
"""

import enum
import re
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from zoneinfo import ZoneInfo

import structlog

from alerts.engine import FRAUD_ALERT_EVENT, AlertSink, NewAlert, fire_and_forget
from core.config import get_settings
from db.access import DataAccess
from db.records import (
    AlertMetadata,
    AlertRecord,
    AlertType,
    CustomerRecord,
    Severity,
    TransactionRecord,
)

logger = structlog.get_logger()

# ──────────────────────────────────────────────────────────────────────────
# Thresholds
# ──────────────────────────────────────────────────────────────────────────

MAX_VALID_AMOUNT = 10000
MIN_VALID_AMOUNT = 0.01
HIGH_AMOUNT = 5000
AMOUNT_DEVIATION_MULTIPLIER = 3
DEFAULT_AVERAGE_ORDER = 500.0  # Used when the customer is unknown
VELOCITY_WINDOW = timedelta(minutes=10)
VELOCITY_MAX_TRANSACTIONS = 5
SUSPICIOUS_HOURS = (2, 5)  # Inclusive
HIGH_RISK_CUSTOMER = 0.7
SUSPICIOUS_SCORE = 0.5

SEVERITY_THRESHOLDS = {
    Severity.CRITICAL: 0.8,
    Severity.HIGH: 0.6,
    Severity.MEDIUM: 0.4,
}

BOT_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (r"bot", r"crawler", r"spider", r"curl", r"wget", r"python", r"java/", r"php")
)


class FlagType(str, enum.Enum):
    AMOUNT_EXCEEDS_LIMIT = "amount_exceeds_limit"
    AMOUNT_TOO_LOW = "amount_too_low"
    AMOUNT_DEVIATION = "amount_deviation"
    HIGH_VALUE = "high_value"
    VELOCITY_EXCEEDED = "velocity_exceeded"
    UNUSUAL_TIME = "unusual_time"
    UNKNOWN_CUSTOMER = "unknown_customer"
    HIGH_RISK_CUSTOMER = "high_risk_customer"
    MISSING_USER_AGENT = "missing_user_agent"
    BOT_DETECTED = "bot_detected"


FLAG_POINTS: dict[FlagType, int] = {
    FlagType.AMOUNT_EXCEEDS_LIMIT: 40,
    FlagType.AMOUNT_TOO_LOW: 20,
    FlagType.AMOUNT_DEVIATION: 25,
    FlagType.HIGH_VALUE: 15,
    FlagType.VELOCITY_EXCEEDED: 30,
    FlagType.UNUSUAL_TIME: 15,
    FlagType.UNKNOWN_CUSTOMER: 20,
    FlagType.HIGH_RISK_CUSTOMER: 25,
    FlagType.MISSING_USER_AGENT: 15,
    FlagType.BOT_DETECTED: 20,
}


@dataclass(frozen=True)
class FraudFlag:
    type: FlagType
    score: int
    message: str

    @classmethod
    def of(cls, flag_type: FlagType, message: str) -> "FraudFlag":
        return cls(type=flag_type, score=FLAG_POINTS[flag_type], message=message)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "score": self.score, "message": self.message}


@dataclass(frozen=True)
class FraudAnalysis:
    fraud_score: float
    flags: tuple[FraudFlag, ...]
    is_suspicious: bool
    severity: Severity

    def flag_payload(self) -> list[dict[str, Any]]:
        return [flag.to_dict() for flag in self.flags]

    def to_dict(self) -> dict[str, Any]:
        return {
            "fraud_score": self.fraud_score,
            "flags": self.flag_payload(),
            "is_suspicious": self.is_suspicious,
            "severity": self.severity.value,
        }


def classify_severity(fraud_score: float) -> Severity:
    """Map a fraud score to a severity bucket (monotonic)."""
    for severity, threshold in SEVERITY_THRESHOLDS.items():
        if fraud_score >= threshold:
            return severity
    return Severity.LOW


# ──────────────────────────────────────────────────────────────────────────
# Amount rules (ordered, first match wins)
# ──────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AmountRule:
    flag_type: FlagType
    applies: Callable[[float, float], bool]  # (amount, customer_average) -> bool
    describe: Callable[[float, float], str]

    @property
    def points(self) -> int:
        return FLAG_POINTS[self.flag_type]


def _describe_deviation(amount: float, average: float) -> str:
    if average <= 0:
        return f"Transaction amount ${amount:.2f} from a customer with no recorded spend"
    return f"Transaction amount ${amount:.2f} is {amount / average:.1f}x the customer average"


AMOUNT_RULES: tuple[AmountRule, ...] = (
    AmountRule(
        FlagType.AMOUNT_EXCEEDS_LIMIT,
        lambda amount, _avg: amount > MAX_VALID_AMOUNT,
        lambda amount, _avg: f"Transaction amount ${amount:.2f} exceeds maximum limit of ${MAX_VALID_AMOUNT}",
    ),
    AmountRule(
        FlagType.AMOUNT_TOO_LOW,
        lambda amount, _avg: amount < MIN_VALID_AMOUNT,
        lambda amount, _avg: f"Transaction amount ${amount:.2f} is below minimum",
    ),
    AmountRule(
        FlagType.AMOUNT_DEVIATION,
        lambda amount, avg: amount > avg * AMOUNT_DEVIATION_MULTIPLIER,
        _describe_deviation,
    ),
    AmountRule(
        FlagType.HIGH_VALUE,
        lambda amount, _avg: amount > HIGH_AMOUNT,
        lambda amount, _avg: f"High-value transaction of ${amount:.2f}",
    ),
)


def estimate_customer_average(customer: CustomerRecord | None) -> float:
    """Rough average order proxy: a tenth of lifetime spend."""
    if customer is None:
        return DEFAULT_AVERAGE_ORDER
    return customer.total_spent / 10


def check_amount_anomaly(transaction: TransactionRecord, customer: CustomerRecord | None) -> FraudFlag | None:
    amount = float(transaction.total_amount)
    average = estimate_customer_average(customer)
    for rule in AMOUNT_RULES:
        if rule.applies(amount, average):
            return FraudFlag.of(rule.flag_type, rule.describe(amount, average))
    return None


def local_hour(timestamp: datetime, tz: ZoneInfo) -> int:
    """Hour of a timestamp in the given zone; naive timestamps are UTC."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(tz).hour


def check_time_pattern(timestamp: datetime, tz: ZoneInfo) -> FraudFlag | None:
    hour = local_hour(timestamp, tz)
    start, end = SUSPICIOUS_HOURS
    if start <= hour <= end:
        return FraudFlag.of(FlagType.UNUSUAL_TIME, f"Transaction at unusual hour ({hour}:00)")
    return None


def check_customer_risk(customer: CustomerRecord | None) -> FraudFlag | None:
    if customer is None:
        return FraudFlag.of(FlagType.UNKNOWN_CUSTOMER, "Transaction from unknown customer")
    if customer.risk_score >= HIGH_RISK_CUSTOMER:
        return FraudFlag.of(
            FlagType.HIGH_RISK_CUSTOMER,
            f"Customer has high risk score ({customer.risk_score * 100:.0f}%)",
        )
    return None


def check_bot_signature(user_agent: str | None) -> FraudFlag | None:
    if not user_agent:
        return FraudFlag.of(FlagType.MISSING_USER_AGENT, "Missing user agent")
    if any(pattern.search(user_agent) for pattern in BOT_PATTERNS):
        return FraudFlag.of(FlagType.BOT_DETECTED, "Request appears to be from automated system")
    return None


def aggregate(flags: list[FraudFlag]) -> FraudAnalysis:
    points = sum(flag.score for flag in flags)
    fraud_score = min(points / 100, 1.0)
    return FraudAnalysis(
        fraud_score=fraud_score,
        flags=tuple(flags),
        is_suspicious=fraud_score >= SUSPICIOUS_SCORE,
        severity=classify_severity(fraud_score),
    )


# ──────────────────────────────────────────────────────────────────────────
# Engine
# ──────────────────────────────────────────────────────────────────────────


@dataclass
class ScoredTransaction:
    transaction: TransactionRecord
    analysis: FraudAnalysis
    customer: CustomerRecord | None = None


class FraudScoringEngine:
    """Score transactions and raise alerts for suspicious ones."""

    def __init__(
        self,
        data_access: DataAccess,
        alert_sink: AlertSink | None = None,
        local_tz: str | None = None,
    ):
        self.data_access = data_access
        self.alert_sink = alert_sink
        self.local_tz = ZoneInfo(local_tz or get_settings().fraud_local_timezone)

    async def score(self, transaction: TransactionRecord, customer: CustomerRecord | None) -> FraudAnalysis:
        """Run all five checks and aggregate. Reads only the velocity count."""
        checks = [
            check_amount_anomaly(transaction, customer),
            await self.check_velocity(transaction),
            check_time_pattern(transaction.timestamp, self.local_tz),
            check_customer_risk(customer),
            check_bot_signature(transaction.user_agent),
        ]
        return aggregate([flag for flag in checks if flag is not None])

    async def check_velocity(self, transaction: TransactionRecord) -> FraudFlag | None:
        """Count the customer's transactions in [timestamp - 10 min, timestamp]."""
        window_start = transaction.timestamp - VELOCITY_WINDOW
        try:
            recent = await self.data_access.count_transactions_since(
                transaction.customer_id,
                window_start,
                until=transaction.timestamp,
            )
        except Exception:
            logger.exception(
                "fraud.velocity_check_failed",
                transaction_id=str(transaction.transaction_id),
                customer_id=str(transaction.customer_id),
            )
            return None

        if recent >= VELOCITY_MAX_TRANSACTIONS:
            minutes = int(VELOCITY_WINDOW.total_seconds() // 60)
            return FraudFlag.of(
                FlagType.VELOCITY_EXCEEDED,
                f"{recent} transactions in the last {minutes} minutes",
            )
        return None

    async def analyze(self, transaction: TransactionRecord, customer: CustomerRecord | None) -> FraudAnalysis:
        """Score a transaction and raise a fraud alert when suspicious."""
        analysis = await self.score(transaction, customer)
        if analysis.is_suspicious:
            await self.raise_alert(transaction, analysis)
        return analysis

    async def raise_alert(self, transaction: TransactionRecord, analysis: FraudAnalysis) -> AlertRecord | None:
        """
        Create the fraud alert and schedule its broadcast.

        Returns the created alert, or None when no sink is configured or the
        sink failed (the failure is logged).
        """
        if self.alert_sink is None:
            return None

        try:
            alert = await self.alert_sink.create_alert(
                NewAlert(
                    alert_type=AlertType.FRAUD,
                    severity=analysis.severity,
                    title="Suspicious Transaction Detected",
                    message="; ".join(flag.message for flag in analysis.flags),
                    transaction_id=transaction.transaction_id,
                    customer_id=transaction.customer_id,
                    metadata=AlertMetadata(
                        fraud_score=analysis.fraud_score,
                        flags=analysis.flag_payload(),
                    ),
                )
            )
        except Exception:
            logger.exception("fraud.alert_create_failed", transaction_id=str(transaction.transaction_id))
            return None

        fire_and_forget(
            self.alert_sink.broadcast(
                FRAUD_ALERT_EVENT,
                {"alert": alert, "transaction": transaction, "analysis": analysis.to_dict()},
            ),
            name=f"fraud-alert-{transaction.transaction_id}",
        )
        logger.info(
            "fraud.alert_raised",
            transaction_id=str(transaction.transaction_id),
            fraud_score=analysis.fraud_score,
            severity=analysis.severity.value,
        )
        return alert

    async def rescore_recent(self, limit: int = 1000) -> list[ScoredTransaction]:
        """
        Re-score the most recent transactions (batch import / backfill).

        Alerts are not raised here; callers persist the annotation and decide
        what to do with the suspicious ones.
        """
        transactions = await self.data_access.find_recent_transactions(limit)
        customers: dict[uuid.UUID, CustomerRecord | None] = {}
        results = []
        for transaction in transactions:
            if transaction.customer_id not in customers:
                customers[transaction.customer_id] = await self.data_access.get_customer(transaction.customer_id)
            customer = customers[transaction.customer_id]
            analysis = await self.score(transaction, customer)
            results.append(ScoredTransaction(transaction=transaction, analysis=analysis, customer=customer))
        return results


@dataclass
class SuspiciousSummary:
    total: int
    critical: list[TransactionRecord] = field(default_factory=list)
    high: list[TransactionRecord] = field(default_factory=list)
    medium: list[TransactionRecord] = field(default_factory=list)


def summarize_suspicious(transactions: list[TransactionRecord]) -> SuspiciousSummary:
    """Bucket already-scored transactions by stored fraud score."""
    summary = SuspiciousSummary(total=len(transactions))
    for txn in transactions:
        severity = classify_severity(txn.fraud_score)
        if severity is Severity.CRITICAL:
            summary.critical.append(txn)
        elif severity is Severity.HIGH:
            summary.high.append(txn)
        elif severity is Severity.MEDIUM:
            summary.medium.append(txn)
    return summary
