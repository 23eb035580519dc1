# backend/main.py
import os
import sys
import logging
from dotenv import load_dotenv

logging.basicConfig(stream=sys.stdout, level=logging.INFO)
_log = logging.getLogger("env_loader")

# Candidate .env locations (in order)
#  - PROJECT_ROOT/.env
#  - BACKEND_DIR/.env
#  - current working directory .env
BASE_DIR = os.path.dirname(os.path.abspath(__file__))        # backend/
PROJECT_ROOT = os.path.dirname(BASE_DIR)                     # project root (parent of backend)
CWD = os.getcwd()

cand_paths = [
    os.path.join(PROJECT_ROOT, ".env"),
    os.path.join(BASE_DIR, ".env"),
    os.path.join(CWD, ".env"),
]

loaded_from = None
for p in cand_paths:
    if os.path.exists(p):
        # real environment wins over the file
        load_dotenv(p, override=False)
        loaded_from = p
        _log.info("Loaded .env from: %s", p)
        break

if not loaded_from:
    load_dotenv(override=False)
# ---------------------------------------------------------

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import credits, interview, payments
from api.provider_webhook import WebhookGateway, build_router
from core.config import settings
from core.errors import AppError
from core.logging import setup_json_logging
from core.request_id import RequestIDMiddleware
from db.init_db import init_db
from db.session import ServiceSessionLocal

setup_json_logging(settings.log_level)
log = logging.getLogger(__name__)

_log.info(
    "[ENV] AI_PROVIDER=%s AUTO_EVALUATE=%s webhook_verification=%s",
    settings.ai_provider,
    settings.auto_evaluate_mode,
    settings.webhook_verification_enabled,
)

app = FastAPI(title="AI Interview Credits API")

# the gateway is the only holder of the service-role session factory
webhook_gateway = WebhookGateway(ServiceSessionLocal)
app.state.webhook_gateway = webhook_gateway

app.include_router(interview.router)
app.include_router(credits.router)
app.include_router(payments.router)
app.include_router(build_router(webhook_gateway))

app.add_middleware(RequestIDMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    log.log(
        level,
        "request failed: %s",
        exc.message,
        extra={"path": request.url.path, "status": exc.status_code, "error_type": type(exc).__name__},
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message}, headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    log.info("invalid request body", extra={"path": request.url.path})
    return JSONResponse(status_code=400, content={"error": "Invalid request"})


init_db()


# Minimal endpoints (always present)
@app.get("/health")
def health():
    return {"ok": True}
