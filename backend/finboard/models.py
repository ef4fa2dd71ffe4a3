"""
SQLAlchemy models for users, transactions and detected subscriptions.
"""
import uuid
from datetime import datetime
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    Numeric,
    Float,
    Text,
    ForeignKey,
    Index,
    JSON,
)
from sqlalchemy.orm import relationship

from finboard.database import Base


class User(Base):
    """
    User model. Identity comes from the frontend; the backend only keeps the
    billing plan needed to gate premium endpoints.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    plan = Column(String(20), nullable=False, default="free")  # free, pro, elite
    pro_active = Column(Boolean, nullable=True)
    pro_expires_at = Column(DateTime, nullable=True)
    trial_used = Column(Boolean, default=False)
    trial_ends_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    transactions = relationship("Transaction", back_populates="user")
    subscriptions = relationship("Subscription", back_populates="user")


class Transaction(Base):
    """
    Transaction model. ``date`` keeps the ISO-8601 string supplied by the
    aggregator or the manual entry form.
    """
    __tablename__ = "transactions"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    date = Column(String(32), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(255), nullable=True)
    source = Column(String(50), default="manual")  # manual, plaid, saltedge
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="transactions")

    __table_args__ = (
        Index("idx_transactions_user_date", "user_id", "date"),
    )


class Subscription(Base):
    """
    Recurring charge detected from transactions.
    Keyed by (user_id, id) since detector ids are not unique across users.
    Rows are upserted on every detection run.
    """
    __tablename__ = "subscriptions"

    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    id = Column(String(255), primary_key=True)
    merchant = Column(String(255), nullable=False)
    # detector output is an unrounded mean, so no fixed scale
    amount = Column(Float, nullable=False)
    frequency = Column(String(20), nullable=False)  # weekly, monthly, yearly
    next_charge = Column(String(32), nullable=True)
    category = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="active")  # active, cancelled, paused
    first_detected = Column(String(32), nullable=True)
    last_charge = Column(String(32), nullable=True)
    transaction_ids = Column(JSON, nullable=False, default=list)
    cancellable = Column(Boolean, default=True)
    cancellation_url = Column(Text, nullable=True)
    price_history = Column(JSON, nullable=False, default=list)
    detected_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="subscriptions")

    __table_args__ = (
        Index("idx_subscriptions_user", "user_id"),
        Index("idx_subscriptions_status", "status"),
    )
