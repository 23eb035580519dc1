# backend/services/session_store.py
"""
Interview session records, addressed by internal id or by the provider's call id.

Lifecycle writes go through `transition()` / `fill_unset()`: each is one
conditional UPDATE, so a late or duplicate webhook can neither move status
backwards nor overwrite a field that was already recorded.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from core.errors import PersistenceError, SessionNotFound
from db.models import InterviewSession, SessionStatus

log = logging.getLogger(__name__)


def create_session(
    db: Session,
    *,
    user_id: str,
    external_call_id: Optional[str],
    session_id: Optional[str] = None,
    agent_id: Optional[str] = None,
) -> InterviewSession:
    row = InterviewSession(
        user_id=user_id,
        external_call_id=external_call_id,
        agent_id=agent_id,
        status=SessionStatus.created,
    )
    if session_id:
        row.id = session_id
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
    except IntegrityError as e:
        db.rollback()
        log.error("duplicate external call id", extra={"call_id": external_call_id, "user_id": user_id})
        raise PersistenceError("external_call_id already belongs to another session") from e
    except SQLAlchemyError as e:
        db.rollback()
        log.exception("session insert failed", extra={"user_id": user_id})
        raise PersistenceError(f"Failed to create session: {e.__class__.__name__}") from e
    return row


def get_by_id(db: Session, session_id: str) -> Optional[InterviewSession]:
    try:
        return db.get(InterviewSession, session_id)
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to read session: {e.__class__.__name__}") from e


def get_owned(db: Session, session_id: str, user_id: str, *, with_answers: bool = False) -> InterviewSession:
    """Session by internal id, visible only to its owner. Foreign and missing look the same."""
    stmt = select(InterviewSession).where(
        InterviewSession.id == session_id,
        InterviewSession.user_id == user_id,
    )
    if with_answers:
        stmt = stmt.options(selectinload(InterviewSession.answers))
    try:
        row = db.execute(stmt).scalar_one_or_none()
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to read session: {e.__class__.__name__}") from e
    if row is None:
        raise SessionNotFound()
    return row


def get_by_external_call_id(db: Session, call_id: str) -> Optional[InterviewSession]:
    try:
        return db.execute(
            select(InterviewSession).where(InterviewSession.external_call_id == call_id)
        ).scalar_one_or_none()
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to read session: {e.__class__.__name__}") from e


def get_owned_by_call_id(db: Session, call_id: str, user_id: str) -> InterviewSession:
    """Session by provider call id, visible only to its owner."""
    try:
        row = db.execute(
            select(InterviewSession).where(
                InterviewSession.external_call_id == call_id,
                InterviewSession.user_id == user_id,
            )
        ).scalar_one_or_none()
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to read session: {e.__class__.__name__}") from e
    if row is None:
        raise SessionNotFound()
    return row


def list_for_user(db: Session, user_id: str, *, limit: int = 20, offset: int = 0) -> List[InterviewSession]:
    try:
        rows = (
            db.execute(
                select(InterviewSession)
                .where(InterviewSession.user_id == user_id)
                .order_by(InterviewSession.created_at.desc(), InterviewSession.id)
                .limit(limit)
                .offset(offset)
            )
            .scalars()
            .all()
        )
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to list sessions: {e.__class__.__name__}") from e
    return list(rows)


# ---------------------------
# Conditional updates
# ---------------------------

def transition(
    db: Session,
    call_id: str,
    *,
    to_status: SessionStatus,
    from_statuses: Iterable[SessionStatus],
) -> bool:
    """Move status forward only if it is currently one of `from_statuses`. Not committed."""
    allowed = list(from_statuses)
    result = db.execute(
        update(InterviewSession)
        .where(
            InterviewSession.external_call_id == call_id,
            InterviewSession.status.in_(allowed),
        )
        .values(status=to_status)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def fill_unset(db: Session, call_id: str, **values: Any) -> List[str]:
    """Set each column only where it is still NULL. None values are skipped. Not committed."""
    filled = []
    for name, value in values.items():
        if value is None:
            continue
        column = getattr(InterviewSession, name)
        result = db.execute(
            update(InterviewSession)
            .where(InterviewSession.external_call_id == call_id, column.is_(None))
            .values({name: value})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            filled.append(name)
    return filled


def overwrite(db: Session, call_id: str, **values: Any) -> bool:
    """Unconditional assignment for fields that may be re-set (provider analysis). Not committed."""
    result = db.execute(
        update(InterviewSession)
        .where(InterviewSession.external_call_id == call_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def commit(db: Session, *, context: Optional[dict] = None) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.exception("session update failed", extra=context or {})
        raise PersistenceError(f"Failed to update session: {e.__class__.__name__}") from e
