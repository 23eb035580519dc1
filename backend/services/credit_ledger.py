# backend/services/credit_ledger.py
"""
Per-user interview credit balance.

Reservation is a single conditional UPDATE (`... WHERE interview_credits > 0`),
so concurrent callers for the same user can never drive the balance below zero:
the storage layer serialises the writes and the losers see zero rows affected.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.errors import InsufficientCredits, PersistenceError, ProfileNotFound
from db.models import CreditTransaction, Profile

log = logging.getLogger(__name__)


def reserve_credit(
    db: Session,
    user_id: str,
    *,
    reference_id: Optional[str] = None,
    reference_type: str = "interview",
) -> dict:
    """Consume one credit. Returns {"remaining": <new balance>}."""
    try:
        result = db.execute(
            update(Profile)
            .where(Profile.id == user_id, Profile.interview_credits > 0)
            .values(interview_credits=Profile.interview_credits - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            exists = db.execute(select(Profile.id).where(Profile.id == user_id)).scalar()
            db.rollback()
            if exists is None:
                log.warning("credit reservation for unknown profile", extra={"user_id": user_id})
                raise ProfileNotFound()
            log.info("credit reservation denied: balance is zero", extra={"user_id": user_id})
            raise InsufficientCredits()

        remaining = db.execute(
            select(Profile.interview_credits).where(Profile.id == user_id)
        ).scalar_one()
        db.add(
            CreditTransaction(
                user_id=user_id,
                transaction_type="deduct",
                amount=-1,
                balance_after=remaining,
                reference_id=reference_id,
                reference_type=reference_type,
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.exception("credit reservation failed", extra={"user_id": user_id})
        raise PersistenceError(f"Failed to reserve credit: {e.__class__.__name__}") from e

    log.info("credit reserved", extra={"user_id": user_id, "remaining": remaining, "reference_id": reference_id})
    return {"remaining": remaining}


def grant_credits(
    db: Session,
    user_id: str,
    amount: int,
    *,
    transaction_type: str = "adjustment",
    reference_id: Optional[str] = None,
    reference_type: str = "manual",
) -> dict:
    """Create the profile if needed and add `amount` credits (operator top-ups, seeding)."""
    if amount < 0:
        raise ValueError("amount must be non-negative")
    try:
        profile = db.get(Profile, user_id)
        if profile is None:
            profile = Profile(id=user_id, interview_credits=0)
            db.add(profile)
            db.flush()
        db.execute(
            update(Profile)
            .where(Profile.id == user_id)
            .values(interview_credits=Profile.interview_credits + amount)
            .execution_options(synchronize_session=False)
        )
        balance = db.execute(
            select(Profile.interview_credits).where(Profile.id == user_id)
        ).scalar_one()
        if amount:
            db.add(
                CreditTransaction(
                    user_id=user_id,
                    transaction_type=transaction_type,
                    amount=amount,
                    balance_after=balance,
                    reference_id=reference_id,
                    reference_type=reference_type,
                )
            )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.exception("credit grant failed", extra={"user_id": user_id})
        raise PersistenceError(f"Failed to add credits: {e.__class__.__name__}") from e

    log.info("credits granted", extra={"user_id": user_id, "amount": amount, "balance": balance})
    return {"balance": balance}


def get_balance(db: Session, user_id: str) -> int:
    try:
        balance = db.execute(
            select(Profile.interview_credits).where(Profile.id == user_id)
        ).scalar()
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to read profile: {e.__class__.__name__}") from e
    if balance is None:
        raise ProfileNotFound()
    return int(balance)


def list_transactions(
    db: Session,
    user_id: str,
    *,
    limit: int = 20,
    offset: int = 0,
    transaction_type: Optional[str] = None,
) -> Tuple[List[CreditTransaction], int]:
    filters = [CreditTransaction.user_id == user_id]
    if transaction_type:
        filters.append(CreditTransaction.transaction_type == transaction_type)
    try:
        total = db.execute(
            select(func.count()).select_from(CreditTransaction).where(*filters)
        ).scalar_one()
        rows = (
            db.execute(
                select(CreditTransaction)
                .where(*filters)
                .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
                .limit(limit)
                .offset(offset)
            )
            .scalars()
            .all()
        )
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to fetch credit history: {e.__class__.__name__}") from e
    return list(rows), int(total)
