# backend/services/session_lifecycle.py
"""
Interview session state machine.

    created --call_started--> started --call_ended--> completed
    created --call_ended----> completed            (call_started missed / late)
    created|started --call_ended (call_status=error)--> failed

Provider webhooks are at-least-once and unordered, so every handler:
  * looks the session up by external call id and no-ops when there is none,
  * only moves status forward (conditional UPDATE on the current status),
  * only fills timestamps/duration/transcript that are still NULL.
Re-delivering any event therefore leaves the row exactly as it was.
"""
from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.errors import (
    EvaluationFailed,
    NoTranscript,
    PersistenceError,
    ProviderCallFailed,
    ValidationError,
)
from db.models import SessionStatus
from schemas.evaluation import EvaluationResult
from schemas.webhook import ProviderCall, ProviderWebhookIn
from services import credit_ledger, session_store
from services.evaluation import EvaluationPipeline
from services.provider_client import ProviderClient

log = logging.getLogger(__name__)


# ---------------------------
# Webhook event variants
# ---------------------------

@dataclass(frozen=True)
class CallStarted:
    call_id: str
    start_timestamp: Optional[float] = None


@dataclass(frozen=True)
class CallEnded:
    call_id: str
    start_timestamp: Optional[float] = None
    end_timestamp: Optional[float] = None
    transcript: Optional[str] = None
    call_status: Optional[str] = None


@dataclass(frozen=True)
class CallAnalyzed:
    call_id: str
    analysis: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class Unknown:
    raw_event: Optional[str]
    call_id: Optional[str] = None


WebhookEvent = Union[CallStarted, CallEnded, CallAnalyzed, Unknown]


@dataclass
class ApplyOutcome:
    event: str
    call_id: Optional[str]
    matched: bool = False
    session_id: Optional[str] = None
    status: Optional[str] = None
    transcript: Optional[str] = None
    changed: List[str] = field(default_factory=list)


_KNOWN_EVENTS = ("call_started", "call_ended", "call_analyzed")


def parse_event(payload: ProviderWebhookIn) -> WebhookEvent:
    raw_event = payload.event
    kind = raw_event if isinstance(raw_event, str) else None
    raw_call = payload.call

    if kind not in _KNOWN_EVENTS:
        # whatever shape `call` has, an event we don't handle is only acknowledged
        call_id = raw_call.get("call_id") if isinstance(raw_call, dict) else None
        return Unknown(
            raw_event=raw_event if raw_event is None or kind is not None else repr(raw_event),
            call_id=call_id if isinstance(call_id, str) else None,
        )

    try:
        call = ProviderCall.model_validate(raw_call if raw_call is not None else {})
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed {kind} payload") from e
    call_id = call.call_id
    if not call_id:
        raise ValidationError("Missing call_id")

    if kind == "call_started":
        return CallStarted(call_id=call_id, start_timestamp=call.start_timestamp)
    if kind == "call_ended":
        extra = call.model_extra or {}
        return CallEnded(
            call_id=call_id,
            start_timestamp=call.start_timestamp,
            end_timestamp=call.end_timestamp,
            transcript=call.transcript,
            call_status=extra.get("call_status"),
        )
    return CallAnalyzed(call_id=call_id, analysis=call.analysis)


def compute_duration_seconds(start_ms: Optional[float], end_ms: Optional[float]) -> Optional[int]:
    if start_ms is None or end_ms is None:
        return None
    if end_ms < start_ms:
        return None
    return math.floor((end_ms - start_ms) / 1000)


def _from_ms(ms: Optional[float]) -> Optional[datetime]:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------
# Handlers
# ---------------------------

def _apply_call_started(db: Session, event: CallStarted, outcome: ApplyOutcome, now: datetime) -> None:
    moved = session_store.transition(
        db, event.call_id, to_status=SessionStatus.started, from_statuses=[SessionStatus.created]
    )
    if moved:
        outcome.changed.append("status")
        outcome.changed += session_store.fill_unset(db, event.call_id, started_at=now)
    else:
        # late delivery: only the provider's own timestamp may backfill started_at
        outcome.changed += session_store.fill_unset(
            db, event.call_id, started_at=_from_ms(event.start_timestamp)
        )


def _apply_call_ended(db: Session, event: CallEnded, outcome: ApplyOutcome, now: datetime) -> None:
    target = SessionStatus.failed if (event.call_status or "").lower() == "error" else SessionStatus.completed
    moved = session_store.transition(
        db,
        event.call_id,
        to_status=target,
        from_statuses=[SessionStatus.created, SessionStatus.started],
    )
    if moved:
        outcome.changed.append("status")
    if outcome.status == SessionStatus.failed.value and not moved:
        log.info("call_ended for failed session ignored", extra={"call_id": event.call_id})
        return
    outcome.changed += session_store.fill_unset(
        db,
        event.call_id,
        ended_at=now,
        actual_duration_seconds=compute_duration_seconds(event.start_timestamp, event.end_timestamp),
        transcript=event.transcript or None,
    )


def _apply_call_analyzed(db: Session, event: CallAnalyzed, outcome: ApplyOutcome, now: datetime) -> None:
    if event.analysis is None:
        log.info("call_analyzed without analysis payload", extra={"call_id": event.call_id})
        return
    if session_store.overwrite(db, event.call_id, analysis=event.analysis):
        outcome.changed.append("analysis")


_HANDLERS: Dict[type, Callable[[Session, Any, ApplyOutcome, datetime], None]] = {
    CallStarted: _apply_call_started,
    CallEnded: _apply_call_ended,
    CallAnalyzed: _apply_call_analyzed,
}

_EVENT_NAMES = {CallStarted: "call_started", CallEnded: "call_ended", CallAnalyzed: "call_analyzed"}


def apply_event(db: Session, event: WebhookEvent, *, now: Optional[datetime] = None) -> ApplyOutcome:
    """Apply one provider event to the session it correlates with. Never raises for benign cases."""
    if isinstance(event, Unknown):
        log.info("unhandled webhook event ignored", extra={"event": event.raw_event, "call_id": event.call_id})
        return ApplyOutcome(event=event.raw_event or "", call_id=event.call_id)

    name = _EVENT_NAMES[type(event)]
    ctx = {"event": name, "call_id": event.call_id}
    outcome = ApplyOutcome(event=name, call_id=event.call_id)

    session = session_store.get_by_external_call_id(db, event.call_id)
    if session is None:
        log.info("no session for call id; event acknowledged", extra=ctx)
        return outcome

    outcome.matched = True
    outcome.session_id = session.id
    outcome.status = session.status.value
    ctx["session_id"] = session.id

    try:
        _HANDLERS[type(event)](db, event, outcome, now or _now())
    except SQLAlchemyError as e:
        db.rollback()
        log.exception("webhook event application failed", extra=ctx)
        raise PersistenceError(f"Failed to apply {name}: {e.__class__.__name__}") from e
    session_store.commit(db, context=ctx)

    refreshed = session_store.get_by_id(db, session.id)
    outcome.status = refreshed.status.value
    outcome.transcript = refreshed.transcript
    log.info("webhook event applied", extra={**ctx, "status": outcome.status, "changed": outcome.changed})
    return outcome


# ---------------------------
# User-facing entry points
# ---------------------------

def start_session(db: Session, user_id: str, provider: Optional[ProviderClient] = None) -> dict:
    """Reserve a credit, open the provider call, persist the session as `created`.

    Reservation and insert are two writes; if the provider call or the insert
    fails the credit stays consumed (no compensating refund yet).
    """
    provider = provider or ProviderClient()
    session_id = str(uuid.uuid4())

    reserved = credit_ledger.reserve_credit(db, user_id, reference_id=session_id)
    try:
        call = provider.create_web_call(user_id, metadata={"session_id": session_id})
        session = session_store.create_session(
            db,
            session_id=session_id,
            user_id=user_id,
            external_call_id=call.call_id,
            agent_id=call.agent_id,
        )
    except (ProviderCallFailed, PersistenceError):
        log.error(
            "session start failed after credit reservation; credit not refunded",
            extra={"user_id": user_id, "session_id": session_id, "remaining": reserved["remaining"]},
        )
        raise

    log.info(
        "interview session started",
        extra={"user_id": user_id, "session_id": session.id, "call_id": call.call_id, "remaining": reserved["remaining"]},
    )
    return {
        "session_id": session.id,
        "call_id": call.call_id,
        "access_token": call.access_token,
        "remaining_credits": reserved["remaining"],
    }


def end_call(
    db: Session,
    call_id: str,
    caller_user_id: str,
    provider: Optional[ProviderClient] = None,
) -> dict:
    """Client-side hang-up: close the owner's session with the provider's timestamps.

    Goes through the same call_ended handler as the webhook, so whichever of
    the two lands first wins and the other only fills what is still unset.
    """
    session = session_store.get_owned_by_call_id(db, call_id, caller_user_id)
    provider = provider or ProviderClient()
    details = provider.retrieve_call(call_id)

    event = CallEnded(
        call_id=call_id,
        start_timestamp=details.start_timestamp if details else None,
        end_timestamp=details.end_timestamp if details else None,
        call_status=details.call_status if details else None,
    )
    outcome = apply_event(db, event)
    duration = session_store.get_by_id(db, session.id).actual_duration_seconds

    log.info(
        "interview ended by caller",
        extra={"user_id": caller_user_id, "session_id": session.id, "call_id": call_id, "duration": duration or 0},
    )
    return {"success": True, "status": outcome.status, "call_duration": duration or 0}


def trigger_manual_evaluation(
    db: Session,
    session_id: str,
    caller_user_id: str,
    pipeline: Optional[EvaluationPipeline] = None,
) -> EvaluationResult:
    session = session_store.get_owned(db, session_id, caller_user_id)
    if not (session.transcript or "").strip():
        raise NoTranscript()

    log.info("manual evaluation triggered", extra={"session_id": session.id, "user_id": caller_user_id})
    pipeline = pipeline or EvaluationPipeline()
    try:
        return pipeline.evaluate(db, session.id, session.transcript)
    except EvaluationFailed as e:
        log.error("manual evaluation failed: %s", e.message, extra={"session_id": session.id})
        raise


def run_auto_evaluation(
    db: Session,
    outcome: ApplyOutcome,
    mode: str,
    pipeline_factory: Callable[[], EvaluationPipeline] = EvaluationPipeline,
) -> Optional[str]:
    """Hook run after a call_ended delivery that completed a session. Returns "inline", "queued" or None."""
    if mode == "off" or not outcome.matched or outcome.status != SessionStatus.completed.value:
        return None
    if not (outcome.transcript or "").strip():
        return None
    # duplicate deliveries change nothing and must not re-run evaluation
    if not {"status", "transcript"} & set(outcome.changed):
        return None

    ctx = {"session_id": outcome.session_id, "call_id": outcome.call_id}
    if mode == "queued":
        from tasks.evaluate_session import evaluate_session

        try:
            evaluate_session.delay(outcome.session_id)
        except Exception:
            # broker down: the manual trigger remains available
            log.exception("failed to enqueue auto-evaluation", extra=ctx)
            return None
        log.info("auto-evaluation queued", extra=ctx)
        return "queued"

    try:
        pipeline_factory().evaluate(db, outcome.session_id, outcome.transcript)
    except EvaluationFailed as e:
        log.warning("inline auto-evaluation failed: %s", e.message, extra=ctx)
        return None
    return "inline"
