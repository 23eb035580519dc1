from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class BalanceOut(BaseModel):
    user_id: str
    interview_credits: int


class CreditTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_type: str
    amount: int
    balance_after: int
    reference_id: Optional[str] = None
    reference_type: Optional[str] = None
    created_at: Optional[datetime] = None


class CreditHistoryOut(BaseModel):
    transactions: List[CreditTransactionOut]
    total: int
    has_more: bool
    limit: int
    offset: int


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    amount: int
    currency: str
    status: str
    receipt_number: Optional[str] = None
    credits_purchased: Optional[int] = None
    created_at: Optional[datetime] = None
