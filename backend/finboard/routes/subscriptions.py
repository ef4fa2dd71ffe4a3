import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from typing import Optional

from finboard.database import get_db
from finboard.db_helpers import get_user_id
from finboard.schemas import (
    SubscriptionInsightsResponse,
    SubscriptionListResponse,
    SubscriptionResponse,
    SubscriptionUpdate,
)
from finboard.services.plan_guard import Plan, require_plan
from finboard.services.subscription_detector import calculate_monthly_total, summarize_subscriptions
from finboard.services.subscription_service import (
    SubscriptionService,
    build_subscription_insights,
    serialize_subscription,
)

logger = logging.getLogger(__name__)

router = APIRouter()

RESOURCE = "subscriptions"


@router.get("/detect", response_model=SubscriptionListResponse)
def list_detected_subscriptions(
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Get stored active subscriptions with a cost summary."""
    user_id = get_user_id(user_id)
    require_plan(db, user_id, Plan.pro, RESOURCE, "Pro plan required to view subscriptions")

    try:
        service = SubscriptionService(db, user_id)
        subscriptions = [serialize_subscription(s) for s in service.list_active()]
        summary = summarize_subscriptions(subscriptions, service.config)
    except Exception:
        logger.exception("Error fetching subscriptions for user %s", user_id)
        raise HTTPException(status_code=500, detail="Internal server error")

    return {"success": True, "subscriptions": subscriptions, "summary": summary}


@router.post("/detect", response_model=SubscriptionListResponse)
def run_subscription_detection(
    limit: Optional[int] = Query(None, ge=1, le=5000, description="Number of recent transactions to scan"),
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """
    Detect subscriptions from the most recent transactions and store them.

    Args:
        limit: How many recent transactions to scan (default from
            SUBSCRIPTION_DETECTION_TRANSACTION_LIMIT, 500)
    """
    user_id = get_user_id(user_id)
    require_plan(db, user_id, Plan.pro, RESOURCE, "Pro plan required for subscription detection")

    try:
        service = SubscriptionService(db, user_id)
        detected = service.detect_and_persist(limit=limit)
        subscriptions = [sub.to_dict() for sub in detected]
        summary = summarize_subscriptions(subscriptions, service.config)
    except Exception:
        db.rollback()
        logger.exception("Error detecting subscriptions for user %s", user_id)
        raise HTTPException(status_code=500, detail="Internal server error")

    return {"success": True, "subscriptions": subscriptions, "summary": summary}


@router.get("/insights", response_model=SubscriptionInsightsResponse)
def get_subscription_insights(
    monthly_income: Optional[float] = Query(None, gt=0, description="Monthly income used for the spending share check"),
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Recommendations for stored active subscriptions (spending share, price increases)."""
    user_id = get_user_id(user_id)
    require_plan(db, user_id, Plan.pro, RESOURCE, "Pro plan required to view subscription insights")

    service = SubscriptionService(db, user_id)
    subscriptions = [serialize_subscription(s) for s in service.list_active()]
    return {
        "success": True,
        "monthly_total": calculate_monthly_total(subscriptions, service.config),
        "recommendations": build_subscription_insights(subscriptions, monthly_income, service.config),
    }


@router.patch("/{subscription_id}", response_model=SubscriptionResponse)
def update_subscription(
    subscription_id: str,
    updates: SubscriptionUpdate,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Update a subscription's status or cancellation link."""
    user_id = get_user_id(user_id)
    require_plan(db, user_id, Plan.pro, RESOURCE, "Pro plan required to manage subscriptions")

    service = SubscriptionService(db, user_id)
    subscription = service.update(
        subscription_id,
        status=updates.status,
        cancellation_url=updates.cancellation_url,
    )
    return serialize_subscription(subscription)


@router.post("/{subscription_id}/cancel", response_model=SubscriptionResponse)
def cancel_subscription(
    subscription_id: str,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Mark a subscription as cancelled."""
    user_id = get_user_id(user_id)
    require_plan(db, user_id, Plan.pro, RESOURCE, "Pro plan required to manage subscriptions")

    service = SubscriptionService(db, user_id)
    return serialize_subscription(service.cancel(subscription_id))
