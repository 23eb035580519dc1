# backend/api/payments.py
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.deps import Principal, get_current_principal, get_db
from core.errors import PersistenceError
from db.models import Payment
from schemas.credits import PaymentOut

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.get("/list", response_model=List[PaymentOut])
def list_my_payments(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    # written by the payment gateway integration; this service only reads
    try:
        q = db.query(Payment).filter(Payment.user_id == principal.id)
        return q.order_by(Payment.created_at.desc()).limit(limit).offset(offset).all()
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to fetch payments: {e.__class__.__name__}") from e
