from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import List, Optional

from finboard.database import get_db
from finboard.db_helpers import get_or_create_user, get_user_id
from finboard.models import Transaction
from finboard.schemas import TransactionCreate, TransactionResponse

router = APIRouter()


@router.get("/", response_model=List[TransactionResponse])
def list_transactions(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """List transactions, newest first."""
    user_id = get_user_id(user_id)
    return (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id)
        .order_by(Transaction.date.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


@router.post("/", response_model=TransactionResponse, status_code=201)
def create_transaction(
    transaction: TransactionCreate,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Add a manual transaction."""
    user_id = get_user_id(user_id)
    get_or_create_user(db, user_id)

    transaction_data = transaction.model_dump(exclude_none=True)
    transaction_data["user_id"] = user_id
    db_transaction = Transaction(**transaction_data)
    db.add(db_transaction)
    db.commit()
    db.refresh(db_transaction)
    return db_transaction
