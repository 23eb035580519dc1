# backend/api/interview.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.deps import (
    Principal,
    get_current_principal,
    get_db,
    get_evaluation_pipeline,
    get_provider_client,
)
from core.errors import AppError, ProfileNotFound, ValidationError
from schemas.interview import (
    EndCallIn,
    EndCallOut,
    ManualEvaluationIn,
    ManualEvaluationOut,
    SessionDetailOut,
    SessionListOut,
    SessionOut,
    StartInterviewOut,
)
from services import session_lifecycle, session_store
from services.evaluation import EvaluationPipeline
from services.provider_client import ProviderClient

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/interview", tags=["interview"])


# ---------------------------
# Start
# ---------------------------

@router.post("", response_model=StartInterviewOut)
def start_interview(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    provider: ProviderClient = Depends(get_provider_client),
):
    try:
        started = session_lifecycle.start_session(db, principal.id, provider)
    except ProfileNotFound as e:
        # a principal without a profile row is an account problem, not a missing resource
        log.error("start requested for principal without profile", extra={"user_id": principal.id})
        raise AppError("Failed to fetch your account details") from e

    return StartInterviewOut(
        message="Interview started successfully",
        **started,
    )


# ---------------------------
# End call (client hang-up)
# ---------------------------

@router.post("/end-call", response_model=EndCallOut)
def end_call(
    body: EndCallIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    provider: ProviderClient = Depends(get_provider_client),
):
    if not body.call_id:
        raise ValidationError("Missing call_id")
    return EndCallOut(**session_lifecycle.end_call(db, body.call_id, principal.id, provider))


# ---------------------------
# Manual evaluation
# ---------------------------

@router.post("/evaluate-manual", response_model=ManualEvaluationOut)
def evaluate_manual(
    body: ManualEvaluationIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    pipeline: EvaluationPipeline = Depends(get_evaluation_pipeline),
):
    if not body.session_id:
        raise ValidationError("Session ID is required")

    result = session_lifecycle.trigger_manual_evaluation(db, body.session_id, principal.id, pipeline)
    return ManualEvaluationOut(
        message="Evaluation completed successfully",
        results=result,
    )


# ---------------------------
# Read
# ---------------------------

@router.get("/sessions", response_model=SessionListOut)
def list_sessions(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    rows = session_store.list_for_user(db, principal.id, limit=limit, offset=offset)
    return SessionListOut(
        sessions=[SessionOut.model_validate(r) for r in rows],
        limit=limit,
        offset=offset,
    )


@router.get("/sessions/{session_id}", response_model=SessionDetailOut)
def get_session(
    session_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    row = session_store.get_owned(db, session_id, principal.id, with_answers=True)
    return SessionDetailOut.model_validate(row)
