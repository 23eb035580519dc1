from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Performance = Literal["perfect", "moderate", "wrong"]

_TEXT_DEFAULTS = {"user_answer": "No answer provided", "feedback": "No feedback available"}


class ScoredAnswer(BaseModel):
    """One answer as returned by a scorer backend. Lenient on purpose: model output is messy."""
    question_number: Optional[int] = None
    user_answer: str = "No answer provided"
    score: int = 0
    performance: Performance = "wrong"
    feedback: str = "No feedback available"
    missing_points: List[str] = Field(default_factory=list)
    incorrect_points: List[str] = Field(default_factory=list)

    @field_validator("score", mode="before")
    @classmethod
    def _clamp_score(cls, v):
        if v is None or v == "":
            return 0
        return max(0, min(100, int(round(float(v)))))

    @field_validator("performance", mode="before")
    @classmethod
    def _normalize_performance(cls, v):
        label = str(v or "").strip().lower()
        return label if label in ("perfect", "moderate", "wrong") else "wrong"

    @field_validator("user_answer", "feedback", mode="before")
    @classmethod
    def _text_or_default(cls, v, info):
        if v is None or (isinstance(v, str) and not v.strip()):
            return _TEXT_DEFAULTS[info.field_name]
        return str(v)


class ScorerResponse(BaseModel):
    evaluations: List[ScoredAnswer] = Field(default_factory=list)


class AnswerResult(BaseModel):
    question_number: int
    question_text: str
    user_answer: str
    performance: Performance
    score: int
    feedback: str
    missing_points: List[str] = Field(default_factory=list)
    incorrect_points: List[str] = Field(default_factory=list)


class OverallScore(BaseModel):
    perfect: int = 0
    moderate: int = 0
    wrong: int = 0
    average_score: float = 0.0


class EvaluationResult(BaseModel):
    success: bool = True
    session_id: str
    overall: OverallScore
    results: List[AnswerResult]
