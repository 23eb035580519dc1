# backend/api/provider_webhook.py
"""
Inbound webhooks from the voice-call provider.

The provider is not a logged-in user, so these routes carry no principal
dependency. Writes go through the service-role session factory handed to
`WebhookGateway` at construction; nothing else in the app receives it.
"""
from __future__ import annotations

import json
import logging
from typing import Callable, Mapping, Optional

from fastapi import APIRouter, Request
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from core.config import settings
from core.errors import AppError, Unauthorized, ValidationError
from schemas.webhook import ProviderWebhookIn, WebhookAck
from services import session_lifecycle, webhook_signature
from services.session_lifecycle import ApplyOutcome, CallEnded

log = logging.getLogger(__name__)


class WebhookGateway:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        secret: Optional[str] = None,
        signature_header: Optional[str] = None,
        auto_evaluate: Optional[str] = None,
    ):
        self.session_factory = session_factory
        self.secret = secret if secret is not None else settings.provider_webhook_secret
        self.signature_header = (signature_header or settings.provider_signature_header).lower()
        self.auto_evaluate = auto_evaluate or settings.auto_evaluate_mode

    def verify(self, raw_body: bytes, headers: Mapping[str, str]) -> None:
        if not self.secret:
            log.warning("webhook signature verification disabled; PROVIDER_WEBHOOK_SECRET is not set")
            return
        if not webhook_signature.verify(self.secret, raw_body, headers.get(self.signature_header)):
            log.warning("webhook rejected: bad signature")
            raise Unauthorized("Invalid webhook signature")

    @staticmethod
    def parse(raw_body: bytes) -> ProviderWebhookIn:
        try:
            return ProviderWebhookIn.model_validate(json.loads(raw_body or b"{}"))
        except (ValueError, PydanticValidationError) as e:
            # json.JSONDecodeError is a ValueError
            raise ValidationError("Malformed webhook payload") from e

    def handle(self, raw_body: bytes, headers: Mapping[str, str]) -> ApplyOutcome:
        self.verify(raw_body, headers)
        event = session_lifecycle.parse_event(self.parse(raw_body))

        db = self.session_factory()
        try:
            outcome = session_lifecycle.apply_event(db, event)
            if isinstance(event, CallEnded):
                session_lifecycle.run_auto_evaluation(db, outcome, self.auto_evaluate)
            return outcome
        finally:
            db.close()


def build_router(gateway: WebhookGateway) -> APIRouter:
    router = APIRouter(prefix="/api/provider", tags=["provider-webhook"])

    # providers are configured both with and without the trailing slash
    @router.post("/webhook", response_model=WebhookAck)
    @router.post("/webhook/", response_model=WebhookAck, include_in_schema=False)
    async def receive(request: Request):
        raw = await request.body()
        try:
            await run_in_threadpool(gateway.handle, raw, request.headers)
        except AppError:
            raise
        except Exception as e:
            log.exception("webhook processing failed")
            raise AppError("Webhook processing failed") from e
        return WebhookAck()

    @router.get("/webhook")
    @router.get("/webhook/", include_in_schema=False)
    def liveness():
        return {"status": "ok", "message": "Provider webhook endpoint is active"}

    return router
