# backend/api/credits.py
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.deps import Principal, get_current_principal, get_db
from schemas.credits import BalanceOut, CreditHistoryOut, CreditTransactionOut
from services import credit_ledger

router = APIRouter(prefix="/api/credits", tags=["credits"])


@router.get("", response_model=BalanceOut)
def get_credits(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return BalanceOut(user_id=principal.id, interview_credits=credit_ledger.get_balance(db, principal.id))


@router.get("/history", response_model=CreditHistoryOut)
def credit_history(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    type: Optional[str] = Query(None, description="purchase / deduct / refund / adjustment"),
):
    rows, total = credit_ledger.list_transactions(
        db, principal.id, limit=limit, offset=offset, transaction_type=type
    )
    return CreditHistoryOut(
        transactions=[CreditTransactionOut.model_validate(r) for r in rows],
        total=total,
        has_more=offset + len(rows) < total,
        limit=limit,
        offset=offset,
    )
