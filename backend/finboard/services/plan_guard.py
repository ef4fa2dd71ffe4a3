"""
Billing plan checks for premium endpoints.
"""
import enum
import logging
from datetime import datetime
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from finboard.models import User

logger = logging.getLogger(__name__)


class Plan(str, enum.Enum):
    free = "free"
    pro = "pro"
    elite = "elite"


PLAN_ORDER = {
    Plan.free: 0,
    Plan.pro: 1,
    Plan.elite: 2,
}


def _coerce_plan(value: Optional[str]) -> Plan:
    try:
        return Plan(value or Plan.free.value)
    except ValueError:
        logger.warning("Unknown plan %r, treating as free", value)
        return Plan.free


def has_plan_or_better(current: Plan, minimum: Plan) -> bool:
    return PLAN_ORDER[current] >= PLAN_ORDER[minimum]


def user_has_plan(user: Optional[User], minimum: Plan, now: Optional[datetime] = None) -> bool:
    """
    True when the user is on ``minimum`` or a higher plan with ``pro_active``
    set, or is still inside a trial window. An unset flag counts as inactive.
    """
    if user is None:
        return False

    plan = _coerce_plan(user.plan)
    if has_plan_or_better(plan, minimum) and bool(user.pro_active):
        return True

    now = now or datetime.utcnow()
    if user.trial_ends_at and user.trial_ends_at > now:
        return True

    return False


def require_plan(db: Session, user_id: str, minimum: Plan, resource: str, message: str) -> None:
    """
    Raise 402 unless the user may access a plan-gated resource.

    Denials are logged as security events.
    """
    user = db.query(User).filter(User.id == user_id).first()
    if user_has_plan(user, minimum):
        return

    logger.warning(
        "Unauthorized access: user=%s resource=%s required_plan=%s reason=%s",
        user_id,
        resource,
        minimum.value,
        message,
    )
    raise HTTPException(status_code=402, detail=message)
