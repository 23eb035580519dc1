# backend/tasks/evaluate_session.py
from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy.orm import Session

from celery_app import app
from core.errors import AppError
from db.session import ServiceSessionLocal
from services import session_store
from services.evaluation import EvaluationPipeline

log = logging.getLogger(__name__)


@app.task(name="tasks.evaluate_session")
def evaluate_session(session_id: str) -> Dict[str, Any]:
    """
    Queued auto-evaluation after call_ended:
      - load the stored transcript
      - run the evaluation pipeline (persists analysis + per-answer rows)
    Returns {ok, session_id} or {ok: False, session_id, error}. Failures leave the
    session untouched so the manual trigger can retry.
    """
    db: Session = ServiceSessionLocal()
    try:
        session = session_store.get_by_id(db, session_id)
        if session is None:
            return {"ok": False, "session_id": session_id, "error": "session not found"}
        if not (session.transcript or "").strip():
            return {"ok": False, "session_id": session_id, "error": "no transcript"}

        result = EvaluationPipeline().evaluate(db, session_id, session.transcript)
        return {"ok": True, "session_id": session_id, "average_score": result.overall.average_score}
    except AppError as e:
        log.error("queued evaluation failed: %s", e.message, extra={"session_id": session_id})
        return {"ok": False, "session_id": session_id, "error": e.message}
    finally:
        db.close()
