from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from db.models import SessionStatus
from schemas.evaluation import EvaluationResult


class StartInterviewOut(BaseModel):
    success: bool = True
    message: str
    remaining_credits: int
    session_id: str
    call_id: Optional[str] = None
    access_token: Optional[str] = None


class EndCallIn(BaseModel):
    call_id: Optional[str] = None


class EndCallOut(BaseModel):
    success: bool = True
    status: Optional[SessionStatus] = None
    call_duration: int = 0


class ManualEvaluationIn(BaseModel):
    session_id: Optional[str] = None


class ManualEvaluationOut(BaseModel):
    success: bool = True
    message: str
    results: EvaluationResult


class AnswerRowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    question_number: int
    question_text: Optional[str] = None
    user_answer: Optional[str] = None
    performance: str
    score: int
    feedback: Optional[str] = None
    missing_points: List[str] = Field(default_factory=list)
    incorrect_points: List[str] = Field(default_factory=list)


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    external_call_id: Optional[str] = None
    status: SessionStatus
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    actual_duration_seconds: Optional[int] = None
    transcript: Optional[str] = None
    analysis: Optional[Dict[str, Any]] = None
    evaluated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class SessionDetailOut(SessionOut):
    answers: List[AnswerRowOut] = Field(default_factory=list)


class SessionListOut(BaseModel):
    sessions: List[SessionOut]
    limit: int
    offset: int
