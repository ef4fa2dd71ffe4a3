from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Dict

from finboard.services.subscription_detector import (
    Frequency,
    SubscriptionStatus,
    parse_transaction_date,
)


# Transaction Schemas
class TransactionBase(BaseModel):
    amount: Decimal
    date: str
    description: str = ""
    category: Optional[str] = None

    @field_validator("date")
    @classmethod
    def validate_date(cls, value: str) -> str:
        parse_transaction_date(value)
        return value


class TransactionCreate(TransactionBase):
    id: Optional[str] = None
    source: str = "manual"


class TransactionResponse(TransactionBase):
    id: str
    source: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Subscription Schemas
class PricePointResponse(BaseModel):
    amount: float
    date: str


class SubscriptionResponse(BaseModel):
    id: str
    merchant: str
    amount: float
    frequency: Frequency
    next_charge: Optional[str] = None
    category: Optional[str] = None
    status: SubscriptionStatus
    first_detected: Optional[str] = None
    last_charge: Optional[str] = None
    transaction_ids: List[str] = Field(default_factory=list)
    cancellable: bool = True
    cancellation_url: Optional[str] = None
    price_history: List[PricePointResponse] = Field(default_factory=list)
    detected_at: Optional[str] = None


class SubscriptionUpdate(BaseModel):
    status: Optional[SubscriptionStatus] = None
    cancellation_url: Optional[str] = None


class SubscriptionSummary(BaseModel):
    total_monthly: float
    total_yearly: float
    active_count: int
    categories: Dict[str, float] = Field(default_factory=dict)


class SubscriptionListResponse(BaseModel):
    success: bool = True
    subscriptions: List[SubscriptionResponse]
    summary: SubscriptionSummary


class SubscriptionRecommendation(BaseModel):
    id: str
    category: str
    title: str
    description: str
    impact: str
    potential_savings: float
    priority: int


class SubscriptionInsightsResponse(BaseModel):
    success: bool = True
    monthly_total: float
    recommendations: List[SubscriptionRecommendation]
