# backend/celery_app.py
import logging

from celery import Celery
from dotenv import load_dotenv

load_dotenv(override=False)

from core.config import settings  # noqa: E402  (after .env is loaded)

logger = logging.getLogger("celery_app")

BROKER = settings.celery_broker_url or settings.redis_url or "redis://127.0.0.1:6379/0"
BACKEND = settings.celery_result_backend or settings.redis_url or BROKER

app = Celery(
    "ai_interview_credits",
    broker=BROKER,
    backend=BACKEND,
    include=["tasks.evaluate_session"],
)

# sensible dev defaults
app.conf.task_acks_late = True
app.conf.worker_prefetch_multiplier = 1
app.conf.broker_connection_retry_on_startup = True

app.conf.task_ignore_result = False
app.conf.result_expires = 3600 * 24

logger.info("celery configured (broker=%s)", BROKER)
