"""
Subscription detection for discovering recurring charges in a transaction list.

Core approach: group transactions by a normalized merchant key, then keep the
groups that recur on a regular cadence with a stable amount.

Usage:
    config = load_detection_config()
    subscriptions = detect_subscriptions(transactions, config)
    monthly = calculate_monthly_total(subscriptions)

Everything in this module is pure: no database access, no clock reads other
than the optional ``now`` used to stamp subscription ids.
"""
import enum
import math
import os
import re
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


MS_PER_DAY = 24 * 60 * 60 * 1000
DEFAULT_CATEGORY = "Other"

_DIGITS_RE = re.compile(r"\d+")
_NON_ALPHA_RE = re.compile(r"[^a-z\s]")


class Frequency(str, enum.Enum):
    """Billing cadence inferred from the average charge interval."""
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class SubscriptionStatus(str, enum.Enum):
    """Lifecycle state of a subscription. Detection only emits ``active``."""
    active = "active"
    cancelled = "cancelled"
    paused = "paused"


class InvalidTransactionDate(ValueError):
    """Raised when a transaction date cannot be parsed as ISO-8601."""

    def __init__(self, transaction_id: Any, value: Any):
        self.transaction_id = transaction_id
        self.value = value
        super().__init__(
            f"Transaction {transaction_id!r} has an invalid date: {value!r}"
        )


@dataclass(frozen=True)
class DetectionConfig:
    """
    Thresholds used by the detector and the monthly-cost normalizer.

    The defaults reproduce the production heuristics:
    - at least 2 charges per merchant
    - every gap within 7 days of the mean gap
    - every amount within 10% of the mean amount
    """
    min_transactions: int = 2
    max_interval_deviation_days: float = 7
    weekly_max_interval_days: float = 10
    monthly_max_interval_days: float = 35
    amount_tolerance: float = 0.10
    weekly_multiplier: float = 4.33
    months_per_year: int = 12
    # how many of the most recent transactions a detection run reads
    transaction_limit: int = 500


def load_detection_config() -> DetectionConfig:
    """Build a DetectionConfig from SUBSCRIPTION_* environment variables."""
    defaults = DetectionConfig()
    return DetectionConfig(
        transaction_limit=max(
            1,
            int(os.getenv(
                "SUBSCRIPTION_DETECTION_TRANSACTION_LIMIT",
                str(defaults.transaction_limit),
            )),
        ),
        min_transactions=max(
            2,
            int(os.getenv("SUBSCRIPTION_MIN_TRANSACTIONS", str(defaults.min_transactions))),
        ),
        max_interval_deviation_days=float(
            os.getenv(
                "SUBSCRIPTION_MAX_INTERVAL_DEVIATION_DAYS",
                str(defaults.max_interval_deviation_days),
            )
        ),
        amount_tolerance=float(
            os.getenv("SUBSCRIPTION_AMOUNT_TOLERANCE", str(defaults.amount_tolerance))
        ),
    )


@dataclass
class PricePoint:
    amount: float
    date: str


@dataclass
class DetectedSubscription:
    """A recurring charge derived from two or more transactions."""
    id: str
    merchant: str
    amount: float
    frequency: Frequency
    next_charge: str
    category: str
    first_detected: str
    last_charge: str
    status: SubscriptionStatus = SubscriptionStatus.active
    transaction_ids: List[str] = field(default_factory=list)
    cancellable: bool = True
    price_history: List[PricePoint] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "merchant": self.merchant,
            "amount": self.amount,
            "frequency": self.frequency.value,
            "next_charge": self.next_charge,
            "category": self.category,
            "status": self.status.value,
            "first_detected": self.first_detected,
            "last_charge": self.last_charge,
            "transaction_ids": list(self.transaction_ids),
            "cancellable": self.cancellable,
            "price_history": [
                {"amount": p.amount, "date": p.date} for p in self.price_history
            ],
        }


@dataclass
class PriceIncrease:
    increased: bool
    old_price: float
    new_price: float
    percent_increase: float


def _field(obj: Any, name: str, default: Any = None) -> Any:
    """Read ``name`` from a mapping or an attribute-style object."""
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _js_round(value: float) -> int:
    # Half rounds toward +infinity, unlike Python's banker's rounding.
    return math.floor(value + 0.5)


def parse_transaction_date(value: Any, transaction_id: Any = None) -> datetime:
    """
    Parse an ISO-8601 date or timestamp into an aware UTC datetime.

    Date-only strings and naive timestamps are taken as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        if not isinstance(value, str) or not value.strip():
            raise InvalidTransactionDate(transaction_id, value)
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise InvalidTransactionDate(transaction_id, value) from exc

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_merchant(description: Optional[str]) -> str:
    """
    Reduce a transaction description to a merchant grouping key.

    "Netflix  123" -> "netflix", "NETFLIX.COM #4421" -> "netflixcom".
    """
    if not description:
        return ""
    text = description.lower()
    text = _DIGITS_RE.sub("", text)
    text = _NON_ALPHA_RE.sub("", text)
    return " ".join(text.split()[:2])


def _group_by_merchant(transactions: Iterable[Any]) -> "OrderedDict[str, List[Any]]":
    groups: "OrderedDict[str, List[Any]]" = OrderedDict()
    for txn in transactions:
        key = normalize_merchant(_field(txn, "description"))
        groups.setdefault(key, []).append(txn)
    return groups


def _classify_frequency(avg_interval: float, config: DetectionConfig) -> Frequency:
    if avg_interval < config.weekly_max_interval_days:
        return Frequency.weekly
    if avg_interval < config.monthly_max_interval_days:
        return Frequency.monthly
    return Frequency.yearly


def _analyze_group(
    merchant: str,
    txns: List[Any],
    config: DetectionConfig,
    stamp: int,
) -> Optional[DetectedSubscription]:
    """Return a subscription for one merchant group, or None if it doesn't recur."""
    if len(txns) < config.min_transactions:
        return None

    dated = [
        (parse_transaction_date(_field(t, "date"), _field(t, "id")), t)
        for t in txns
    ]
    # sorted() is stable, so same-day charges keep their input order
    dated = sorted(dated, key=lambda pair: pair[0])

    intervals = []
    for i in range(1, len(dated)):
        delta_ms = (dated[i][0] - dated[i - 1][0]).total_seconds() * 1000
        intervals.append(_js_round(delta_ms / MS_PER_DAY))

    avg_interval = sum(intervals) / len(intervals)
    if not all(
        abs(days - avg_interval) < config.max_interval_deviation_days
        for days in intervals
    ):
        return None

    frequency = _classify_frequency(avg_interval, config)

    amounts = [float(_field(t, "amount", 0) or 0) for _, t in dated]
    avg_amount = sum(amounts) / len(amounts)
    tolerance = abs(avg_amount) * config.amount_tolerance
    if not all(abs(a - avg_amount) < tolerance for a in amounts):
        return None

    first_date, first_txn = dated[0]
    last_date, last_txn = dated[-1]
    next_charge = (last_date + timedelta(days=avg_interval)).date().isoformat()

    return DetectedSubscription(
        id=f"sub-{'-'.join(merchant.split())}-{stamp}",
        merchant=merchant,
        amount=avg_amount,
        frequency=frequency,
        next_charge=next_charge,
        category=_field(last_txn, "category") or DEFAULT_CATEGORY,
        first_detected=str(_field(first_txn, "date")),
        last_charge=str(_field(last_txn, "date")),
        transaction_ids=[str(_field(t, "id")) for _, t in dated],
        price_history=[
            PricePoint(amount=amount, date=str(_field(t, "date")))
            for amount, (_, t) in zip(amounts, dated)
        ],
    )


def detect_subscriptions(
    transactions: Iterable[Any],
    config: Optional[DetectionConfig] = None,
    now: Optional[datetime] = None,
) -> List[DetectedSubscription]:
    """
    Detect recurring charges in a list of transactions.

    Each transaction needs ``id``, ``amount``, ``date``, ``description`` and
    ``category``, either as attributes or as mapping keys.

    A merchant group becomes a subscription only if it has enough charges,
    every gap is close to the mean gap and every amount is close to the mean
    amount. Groups failing any check are dropped without error.

    Raises:
        InvalidTransactionDate: if a grouped transaction has an unparseable date
    """
    config = config or DetectionConfig()
    now = now or datetime.now(timezone.utc)
    stamp = int(now.timestamp() * 1000)

    subscriptions: List[DetectedSubscription] = []
    for merchant, txns in _group_by_merchant(transactions).items():
        detected = _analyze_group(merchant, txns, config, stamp)
        if detected is not None:
            subscriptions.append(detected)

    logger.debug("Detected %d subscriptions", len(subscriptions))
    return subscriptions


def monthly_amount(
    amount: float,
    frequency: Any,
    config: Optional[DetectionConfig] = None,
) -> float:
    """Normalize one charge to its monthly equivalent."""
    config = config or DetectionConfig()
    value = frequency.value if isinstance(frequency, Frequency) else frequency
    if value == Frequency.weekly.value:
        return amount * config.weekly_multiplier
    if value == Frequency.monthly.value:
        return amount
    if value == Frequency.yearly.value:
        return amount / config.months_per_year
    return 0.0


def calculate_monthly_total(
    subscriptions: Iterable[Any],
    config: Optional[DetectionConfig] = None,
) -> float:
    """Sum the monthly equivalent of every active subscription."""
    total = 0.0
    for sub in subscriptions:
        status = _field(sub, "status")
        status = status.value if isinstance(status, SubscriptionStatus) else status
        if status != SubscriptionStatus.active.value:
            continue
        amount = float(_field(sub, "amount", 0) or 0)
        total += monthly_amount(amount, _field(sub, "frequency"), config)
    return total


def detect_price_increase(subscription: Any) -> Optional[PriceIncrease]:
    """
    Compare the two most recent charges of a subscription.

    Returns a PriceIncrease when the latest charge is strictly higher than the
    one before it, otherwise None.
    """
    history = list(_field(subscription, "price_history") or [])
    if len(history) < 2:
        return None

    ordered = sorted(history, key=lambda p: parse_transaction_date(_field(p, "date")))
    old_price = float(_field(ordered[-2], "amount"))
    new_price = float(_field(ordered[-1], "amount"))

    if new_price <= old_price:
        return None

    if old_price == 0:
        percent = math.inf
    else:
        percent = (new_price - old_price) / old_price * 100
    return PriceIncrease(
        increased=True,
        old_price=old_price,
        new_price=new_price,
        percent_increase=percent,
    )


def summarize_subscriptions(
    subscriptions: Iterable[Any],
    config: Optional[DetectionConfig] = None,
) -> Dict[str, Any]:
    """
    Summary block returned next to subscription lists.

    ``total_yearly`` is the monthly total times 12, so yearly subscriptions go
    through a /12 then x12 round trip.
    """
    config = config or DetectionConfig()
    subscriptions = list(subscriptions)
    monthly_total = calculate_monthly_total(subscriptions, config)

    active = []
    for sub in subscriptions:
        status = _field(sub, "status")
        status = status.value if isinstance(status, SubscriptionStatus) else status
        if status == SubscriptionStatus.active.value:
            active.append(sub)

    categories: Dict[str, float] = {}
    for sub in active:
        category = _field(sub, "category") or DEFAULT_CATEGORY
        categories[category] = categories.get(category, 0.0) + float(_field(sub, "amount", 0) or 0)

    return {
        "total_monthly": monthly_total,
        "total_yearly": monthly_total * config.months_per_year,
        "active_count": len(active),
        "categories": categories,
    }
