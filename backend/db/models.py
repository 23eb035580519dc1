# db/models.py
from uuid import uuid4

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    JSON,
    func,
    ForeignKey,
    CheckConstraint,
)
from sqlalchemy.orm import relationship
from .session import Base

import enum
from sqlalchemy.types import Enum as SAEnum


def _uuid() -> str:
    return str(uuid4())


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("interview_credits >= 0", name="ck_profiles_credits_non_negative"),
    )

    # same id as the authenticated principal
    id = Column(String(64), primary_key=True)
    interview_credits = Column(Integer, nullable=False, default=0, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# --- session lifecycle enum ---
class SessionStatus(str, enum.Enum):
    created = "created"
    started = "started"
    completed = "completed"
    failed = "failed"


class InterviewSession(Base):
    __tablename__ = "interview_sessions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    # webhook correlation key
    external_call_id = Column(String(255), unique=True, nullable=True, index=True)
    agent_id = Column(String(255), nullable=True)

    status = Column(
        SAEnum(SessionStatus, native_enum=False, length=20),
        nullable=False,
        default=SessionStatus.created,
        server_default="created",
    )
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    actual_duration_seconds = Column(Integer, nullable=True)

    transcript = Column(Text, nullable=True)
    analysis = Column(JSON, nullable=True)
    evaluated_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    answers = relationship(
        "AnswerAnalysis",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="AnswerAnalysis.question_number",
    )


class AnswerAnalysis(Base):
    __tablename__ = "interview_answer_analysis"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(
        String(36),
        ForeignKey("interview_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question_number = Column(Integer, nullable=False)
    question_text = Column(Text)
    user_answer = Column(Text)
    performance = Column(String(20), nullable=False)  # perfect / moderate / wrong
    score = Column(Integer, nullable=False, default=0)
    feedback = Column(Text)
    missing_points = Column(JSON, default=list)
    incorrect_points = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    session = relationship("InterviewSession", back_populates="answers")


class CreditTransaction(Base):
    """Append-only audit of credit movements."""
    __tablename__ = "credit_transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    transaction_type = Column(String(20), nullable=False)  # purchase / deduct / refund / adjustment
    amount = Column(Integer, nullable=False)  # negative = consumed
    balance_after = Column(Integer, nullable=False)
    reference_id = Column(String(64), nullable=True)
    reference_type = Column(String(20), nullable=True)  # interview / payment / manual
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)


class Payment(Base):
    """Written by the payment gateway integration; read-only here."""
    __tablename__ = "payments"

    id = Column(String(64), primary_key=True, default=_uuid)
    user_id = Column(String(64), nullable=False, index=True)
    amount = Column(Integer, nullable=False)  # minor units (paise)
    currency = Column(String(8), nullable=False, default="INR")
    status = Column(String(20), nullable=False, default="created")
    receipt_number = Column(String(64), nullable=True)
    credits_purchased = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
