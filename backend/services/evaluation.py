# backend/services/evaluation.py
from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.config import settings
from core.errors import EvaluationFailed, PersistenceError, SessionNotFound, UpstreamCallFailure
from db.models import AnswerAnalysis, InterviewSession
from schemas.evaluation import (
    AnswerResult,
    EvaluationResult,
    OverallScore,
    ScoredAnswer,
    ScorerResponse,
)

log = logging.getLogger(__name__)


# ------------------------------
# Transcript parsing
# ------------------------------

@dataclass(frozen=True)
class QAPair:
    number: int
    question: str
    answer: str


_QA_MARKER = re.compile(r"\b([QA])\s*(\d+)\s*[:.)]")
_SPEAKER_MARKER = re.compile(
    r"(?:^|\n)\s*(agent|assistant|interviewer|user|candidate)\s*:", re.IGNORECASE
)
_ASKING = {"agent", "assistant", "interviewer"}


def _clean(text: str) -> str:
    return " ".join(text.split())


def _parse_numbered(transcript: str) -> List[QAPair]:
    markers = list(_QA_MARKER.finditer(transcript))
    if not markers:
        return []
    questions: Dict[int, List[str]] = {}
    answers: Dict[int, List[str]] = {}
    for i, m in enumerate(markers):
        end = markers[i + 1].start() if i + 1 < len(markers) else len(transcript)
        body = _clean(transcript[m.end():end])
        bucket = questions if m.group(1).upper() == "Q" else answers
        bucket.setdefault(int(m.group(2)), []).append(body)
    numbers = sorted(set(questions) | set(answers))
    return [
        QAPair(
            number=n,
            question=" ".join(questions.get(n, [])).strip(),
            answer=" ".join(answers.get(n, [])).strip(),
        )
        for n in numbers
    ]


def _parse_speakers(transcript: str) -> List[QAPair]:
    markers = list(_SPEAKER_MARKER.finditer(transcript))
    pairs: List[QAPair] = []
    question: Optional[str] = None
    answer_parts: List[str] = []

    def flush():
        if question is not None and answer_parts:
            pairs.append(QAPair(len(pairs) + 1, question, " ".join(answer_parts)))

    for i, m in enumerate(markers):
        end = markers[i + 1].start() if i + 1 < len(markers) else len(transcript)
        body = _clean(transcript[m.end():end])
        if m.group(1).lower() in _ASKING:
            if answer_parts:
                flush()
                question, answer_parts = body, []
            else:
                # consecutive agent turns read as one prompt
                question = f"{question} {body}".strip() if question else body
        elif question is not None and body:
            answer_parts.append(body)
    flush()
    return pairs


def parse_transcript(transcript: str) -> List[QAPair]:
    """Split a transcript into question/answer pairs.

    Accepts numbered `Q1: ... A1: ...` transcripts and provider speaker
    transcripts (`Agent: ...` / `User: ...`). Raises EvaluationFailed when
    nothing usable is found.
    """
    if not transcript or not transcript.strip():
        raise EvaluationFailed("Transcript is empty")
    pairs = _parse_numbered(transcript) or _parse_speakers(transcript)
    if not pairs:
        raise EvaluationFailed("Transcript could not be parsed into question/answer pairs")
    return pairs


def classify(score: int) -> str:
    if score >= 90:
        return "perfect"
    if score >= 60:
        return "moderate"
    return "wrong"


# ------------------------------
# Scorers
# ------------------------------

_STOPWORDS = {
    "what", "which", "when", "where", "with", "would", "could", "should", "your", "about",
    "explain", "describe", "there", "their", "have", "does", "that", "this", "from", "into",
    "how", "why", "the", "and", "for", "you", "are", "can", "tell",
}
_NON_ANSWERS = ("i don't know", "i do not know", "no idea", "not sure", "pass")
_REASONING = ("because", "therefore", "for example", "first", "then", "finally", "which means")


def _terms(text: str) -> List[str]:
    seen, out = set(), []
    for w in re.findall(r"[a-z][a-z\-]+", text.lower()):
        if len(w) > 3 and w not in _STOPWORDS and w not in seen:
            seen.add(w)
            out.append(w)
    return out


class HeuristicScorer:
    """Deterministic offline scorer (AI_PROVIDER=stub)."""

    name = "stub"

    def score(self, pairs: List[QAPair]) -> ScorerResponse:
        return ScorerResponse(evaluations=[self._score_one(p) for p in pairs])

    def _score_one(self, pair: QAPair) -> ScoredAnswer:
        answer = pair.answer.strip()
        low = answer.lower()
        words = answer.split()
        plain = re.sub(r"[^a-z' ]", "", low).strip()
        if not words or plain in _NON_ANSWERS or plain.startswith(_NON_ANSWERS[:3]):
            return ScoredAnswer(
                question_number=pair.number,
                user_answer=answer or "No answer provided",
                score=0,
                performance="wrong",
                feedback="No answer given.",
                missing_points=_terms(pair.question)[:5],
            )

        q_terms = _terms(pair.question)
        a_terms = set(_terms(answer))
        covered = [t for t in q_terms if t in a_terms]
        missing = [t for t in q_terms if t not in a_terms]

        length_pts = min(50, len(words) * 2)
        overlap_pts = round(30 * len(covered) / len(q_terms)) if q_terms else 15
        reasoning_pts = min(20, 10 * sum(1 for r in _REASONING if r in low))
        score = min(100, length_pts + overlap_pts + reasoning_pts)

        if score >= 90:
            feedback = "Complete, well-structured answer."
        elif score >= 60:
            feedback = "Reasonable answer; add more detail and reasoning."
        else:
            feedback = "Answer is too brief or misses the key points."
        return ScoredAnswer(
            question_number=pair.number,
            user_answer=answer,
            score=score,
            performance=classify(score),
            feedback=feedback,
            missing_points=missing[:5],
        )


SYSTEM_PROMPT = "You are an expert interview evaluator. Return valid JSON only."

EVAL_USER_PROMPT = """Evaluate the candidate's answers from this interview.

QUESTIONS AND ANSWERS:
{pairs}

SCORING CRITERIA:
- Perfect (90-100): all key points covered, accurate, comprehensive
- Moderate (60-89): some key points covered, mostly accurate, missing details
- Wrong (0-59): major gaps, inaccurate, or no answer given

Return JSON:
{{
  "evaluations": [
    {{
      "question_number": 1,
      "user_answer": "answer as given",
      "score": 85,
      "performance": "moderate",
      "feedback": "brief constructive feedback",
      "missing_points": ["point"],
      "incorrect_points": ["error"]
    }}
  ]
}}

If the candidate said "I don't know" or gave no answer: score = 0, performance = "wrong"."""

_JSON_BLOB = re.compile(r"\{[\s\S]*\}")


def _extract_json(raw: str) -> dict:
    m = _JSON_BLOB.search(raw or "")
    if not m:
        raise ValueError("no JSON object in model output")
    return json.loads(m.group(0))


class LLMScorer:
    """Scores through Ollama or OpenAI with retries; deterministic sampling (temperature 0)."""

    def __init__(
        self,
        provider: str,
        *,
        client: Optional[httpx.Client] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.name = provider
        self.timeout = timeout if timeout is not None else settings.eval_timeout_seconds
        self.max_retries = max(1, max_retries if max_retries is not None else settings.eval_max_retries)
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.eval_retry_backoff_seconds
        self._client = client
        self._sleep = sleep

    def score(self, pairs: List[QAPair]) -> ScorerResponse:
        prompt = EVAL_USER_PROMPT.format(
            pairs="\n".join(f"Q{p.number}: {p.question}\nA{p.number}: {p.answer}" for p in pairs)
        )
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                raw = self._call(prompt)
                return ScorerResponse.model_validate(_extract_json(raw))
            except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError, PydanticValidationError) as e:
                # malformed provider bodies (missing choices/message) are retried like bad JSON
                last_error = e
                log.warning("evaluation attempt %d/%d failed: %s", attempt, self.max_retries, e)
                if attempt < self.max_retries:
                    # 1s, 2s, 4s ...
                    self._sleep(self.backoff_seconds * (2 ** (attempt - 1)))
        if isinstance(last_error, httpx.TimeoutException):
            raise UpstreamCallFailure(f"Evaluation service timed out after {self.max_retries} attempts")
        raise UpstreamCallFailure(f"Evaluation service failed: {last_error}")

    def _call(self, prompt: str) -> str:
        if self._client is not None:
            return self._post(self._client, prompt)
        with httpx.Client(timeout=self.timeout) as client:
            return self._post(client, prompt)

    def _post(self, client: httpx.Client, prompt: str) -> str:
        if self.name == "ollama":
            r = client.post(
                f"{settings.ollama_url.rstrip('/')}/api/generate",
                json={
                    "model": settings.ollama_model,
                    "system": SYSTEM_PROMPT,
                    "prompt": prompt,
                    "format": "json",
                    "stream": False,
                    "options": {"temperature": 0},
                },
                timeout=self.timeout,
            )
            r.raise_for_status()
            body = r.json()
            return body.get("response") or ""

        if self.name == "openai":
            if not settings.openai_api_key:
                raise UpstreamCallFailure("OPENAI_API_KEY is not configured")
            r = client.post(
                "https://api.openai.com/v1/chat/completions",
                headers={"Authorization": f"Bearer {settings.openai_api_key}"},
                json={
                    "model": settings.openai_model,
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": prompt},
                    ],
                    "temperature": 0,
                    "response_format": {"type": "json_object"},
                },
                timeout=self.timeout,
            )
            r.raise_for_status()
            return r.json()["choices"][0]["message"]["content"] or ""

        raise UpstreamCallFailure(f"Unknown AI_PROVIDER: {self.name}")


def get_scorer(provider: Optional[str] = None):
    provider = (provider or settings.ai_provider or "stub").lower()
    if provider == "stub":
        return HeuristicScorer()
    return LLMScorer(provider)


# ------------------------------
# Pipeline
# ------------------------------

class EvaluationPipeline:
    def __init__(self, scorer=None):
        self.scorer = scorer or get_scorer()

    def evaluate(self, db: Session, session_id: str, transcript: str) -> EvaluationResult:
        """Score `transcript` and persist the result onto the session before returning."""
        pairs = parse_transcript(transcript)
        log.info(
            "evaluating session",
            extra={"session_id": session_id, "questions": len(pairs), "scorer": self.scorer.name},
        )
        try:
            response = self.scorer.score(pairs)
        except EvaluationFailed:
            raise
        except Exception as e:
            log.exception("scorer crashed", extra={"session_id": session_id})
            raise EvaluationFailed(str(e)) from e

        if not response.evaluations:
            raise EvaluationFailed("No evaluations generated")

        results: List[AnswerResult] = []
        for pair, item in zip(pairs, response.evaluations):
            results.append(
                AnswerResult(
                    question_number=pair.number,
                    question_text=pair.question,
                    user_answer=item.user_answer,
                    performance=item.performance,
                    score=item.score,
                    feedback=item.feedback,
                    missing_points=item.missing_points,
                    incorrect_points=item.incorrect_points,
                )
            )

        overall = OverallScore(
            perfect=sum(1 for r in results if r.performance == "perfect"),
            moderate=sum(1 for r in results if r.performance == "moderate"),
            wrong=sum(1 for r in results if r.performance == "wrong"),
            average_score=round(sum(r.score for r in results) / len(results), 1),
        )
        result = EvaluationResult(session_id=session_id, overall=overall, results=results)
        self._persist(db, session_id, result)

        log.info(
            "evaluation complete",
            extra={"session_id": session_id, **overall.model_dump()},
        )
        return result

    def _persist(self, db: Session, session_id: str, result: EvaluationResult) -> None:
        try:
            session = db.get(InterviewSession, session_id)
            if session is None:
                raise SessionNotFound()
            # a re-run replaces the previous per-answer rows
            db.execute(delete(AnswerAnalysis).where(AnswerAnalysis.session_id == session_id))
            for r in result.results:
                db.add(
                    AnswerAnalysis(
                        session_id=session_id,
                        question_number=r.question_number,
                        question_text=r.question_text,
                        user_answer=r.user_answer,
                        performance=r.performance,
                        score=r.score,
                        feedback=r.feedback,
                        missing_points=r.missing_points,
                        incorrect_points=r.incorrect_points,
                    )
                )
            session.analysis = result.model_dump(mode="json")
            session.evaluated_at = datetime.now(timezone.utc)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            log.exception("failed to persist evaluation", extra={"session_id": session_id})
            raise PersistenceError(f"Failed to save evaluation: {e.__class__.__name__}") from e
