"""
Subscription persistence service.

Loads a user's recent transactions, runs the pure detector over them and
upserts the results.

Usage:
    service = SubscriptionService(db, user_id)
    detected = service.detect_and_persist()
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from finboard.models import Subscription, Transaction
from finboard.services.subscription_detector import (
    DetectedSubscription,
    DetectionConfig,
    SubscriptionStatus,
    calculate_monthly_total,
    detect_price_increase,
    detect_subscriptions,
    load_detection_config,
)

logger = logging.getLogger(__name__)


# Recommendation thresholds
SUBSCRIPTION_INCOME_SHARE_THRESHOLD = 0.05
SUBSCRIPTION_SAVINGS_SHARE = 0.3
PRICE_INCREASE_ALERT_PERCENT = 10


def serialize_subscription(subscription: Subscription) -> Dict[str, Any]:
    return {
        "id": subscription.id,
        "merchant": subscription.merchant,
        "amount": float(subscription.amount),
        "frequency": subscription.frequency,
        "next_charge": subscription.next_charge,
        "category": subscription.category,
        "status": subscription.status,
        "first_detected": subscription.first_detected,
        "last_charge": subscription.last_charge,
        "transaction_ids": list(subscription.transaction_ids or []),
        "cancellable": bool(subscription.cancellable),
        "cancellation_url": subscription.cancellation_url,
        "price_history": list(subscription.price_history or []),
        "detected_at": subscription.detected_at.isoformat() if subscription.detected_at else None,
    }


def build_subscription_insights(
    subscriptions: List[Any],
    monthly_income: Optional[float] = None,
    config: Optional[DetectionConfig] = None,
) -> List[Dict[str, Any]]:
    """
    Turn subscriptions into actionable recommendations.

    Produces a spending review when subscriptions take more than 5% of the
    monthly income, and one alert per subscription whose latest charge went
    up by more than 10%.
    """
    recommendations: List[Dict[str, Any]] = []
    monthly_cost = calculate_monthly_total(subscriptions, config)

    if monthly_income and monthly_income > 0:
        share = monthly_cost / monthly_income
        if share > SUBSCRIPTION_INCOME_SHARE_THRESHOLD:
            recommendations.append({
                "id": "reduce-subscriptions",
                "category": "subscriptions",
                "title": "Review subscription spending",
                "description": (
                    f"You're spending {monthly_cost:.0f}/month on subscriptions "
                    f"({share * 100:.1f}% of income). Consider canceling unused services."
                ),
                "impact": "high",
                "potential_savings": monthly_cost * SUBSCRIPTION_SAVINGS_SHARE,
                "priority": 8,
            })

    for sub in subscriptions:
        increase = detect_price_increase(sub)
        if increase is None or increase.percent_increase <= PRICE_INCREASE_ALERT_PERCENT:
            continue
        sub_id = sub["id"] if isinstance(sub, dict) else sub.id
        merchant = sub["merchant"] if isinstance(sub, dict) else sub.merchant
        recommendations.append({
            "id": f"price-increase-{sub_id}",
            "category": "subscriptions",
            "title": f"{merchant} raised prices",
            "description": (
                f"{merchant} increased from {increase.old_price:.0f} to "
                f"{increase.new_price:.0f} ({increase.percent_increase:.0f}% increase)."
            ),
            "impact": "medium",
            "potential_savings": increase.new_price - increase.old_price,
            "priority": 5,
        })

    return recommendations


class SubscriptionService:
    """Detection runs and subscription CRUD scoped to one user."""

    def __init__(self, db: Session, user_id: str, config: Optional[DetectionConfig] = None):
        self.db = db
        self.user_id = user_id
        self.config = config or load_detection_config()

    def load_recent_transactions(self, limit: Optional[int] = None) -> List[Transaction]:
        """Most recent transactions first, capped at ``limit``."""
        limit = limit or self.config.transaction_limit
        return (
            self.db.query(Transaction)
            .filter(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc())
            .limit(limit)
            .all()
        )

    def detect_and_persist(
        self,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[DetectedSubscription]:
        """
        Run detection over recent transactions and upsert every result by id.

        Upserts merge into existing rows: columns the detector doesn't produce
        (e.g. ``cancellation_url``) are kept, detector columns are overwritten.
        """
        now = now or datetime.utcnow()
        transactions = self.load_recent_transactions(limit)
        stamp_time = now if now.tzinfo else now.replace(tzinfo=timezone.utc)
        detected = detect_subscriptions(transactions, self.config, now=stamp_time)

        for sub in detected:
            data = sub.to_dict()
            self.db.merge(Subscription(
                **data,
                user_id=self.user_id,
                detected_at=now,
            ))
        self.db.commit()

        logger.info(
            "Detected subscriptions for user %s: count=%d monthly_total=%.2f",
            self.user_id,
            len(detected),
            calculate_monthly_total(detected, self.config),
        )
        return detected

    def list_active(self) -> List[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(
                Subscription.user_id == self.user_id,
                Subscription.status == SubscriptionStatus.active.value,
            )
            .order_by(Subscription.merchant)
            .all()
        )

    def get(self, subscription_id: str) -> Subscription:
        subscription = self.db.query(Subscription).filter(
            Subscription.id == subscription_id,
            Subscription.user_id == self.user_id,
        ).first()
        if not subscription:
            raise HTTPException(status_code=404, detail="Subscription not found")
        return subscription

    def update(
        self,
        subscription_id: str,
        status: Optional[SubscriptionStatus] = None,
        cancellation_url: Optional[str] = None,
    ) -> Subscription:
        subscription = self.get(subscription_id)
        if status is not None:
            subscription.status = status.value
        if cancellation_url is not None:
            subscription.cancellation_url = cancellation_url
        self.db.commit()
        self.db.refresh(subscription)
        return subscription

    def cancel(self, subscription_id: str) -> Subscription:
        subscription = self.update(subscription_id, status=SubscriptionStatus.cancelled)
        logger.info("Cancelled subscription %s for user %s", subscription_id, self.user_id)
        return subscription
