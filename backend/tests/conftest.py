# backend/tests/conftest.py
import os
import sys
import pathlib
import tempfile

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

# -------------------------------------------------------------------------------------------------
# Path & environment setup (must happen BEFORE importing your app)
# -------------------------------------------------------------------------------------------------

# Ensure project root (backend/) is importable
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Temp SQLite DB file for tests
TEST_DB_FILE = str(pathlib.Path(tempfile.gettempdir()) / "interview_credits_test.sqlite")

# Point the app to the test DB; assignments (not setdefault) so a developer .env can't leak in
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_FILE}"
os.environ["SERVICE_DATABASE_URL"] = f"sqlite:///{TEST_DB_FILE}"
os.environ["CORS_ORIGINS"] = "http://localhost:3000"
os.environ["ACCESS_TOKEN_EXPIRE_MINUTES"] = "60"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["AI_PROVIDER"] = "stub"
os.environ["AUTO_EVALUATE"] = "off"
os.environ["PROVIDER_API_KEY"] = ""
os.environ["PROVIDER_WEBHOOK_SECRET"] = ""
# Celery/Redis (never contacted: queued evaluation is stubbed where tested)
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("LOG_LEVEL", "WARNING")


# -------------------------------------------------------------------------------------------------
# Import app & modules AFTER env vars
# -------------------------------------------------------------------------------------------------
from main import app
from api import deps
from db import models as m
from db.session import make_engine
from core import security
from services import credit_ledger, session_store

# -------------------------------------------------------------------------------------------------
# Test DB engine + session factory
# -------------------------------------------------------------------------------------------------
engine = make_engine(f"sqlite:///{TEST_DB_FILE}")
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


# Fresh schema each test
@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """Drop + recreate DB before each test function to ensure isolation"""
    m.Base.metadata.drop_all(bind=engine)
    m.Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(scope="function")
def db():
    """Yield a fresh DB session per test function."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def _override_get_db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


# Override the app's DB dependency
app.dependency_overrides[deps.get_db] = _override_get_db


# -------------------------------------------------------------------------------------------------
# Webhook gateway: service-role factory -> test DB, verification off, no auto-evaluation
# -------------------------------------------------------------------------------------------------
@pytest.fixture(scope="function", autouse=True)
def gateway():
    gw = app.state.webhook_gateway
    saved = (gw.session_factory, gw.secret, gw.auto_evaluate)
    gw.session_factory = TestingSessionLocal
    gw.secret = None
    gw.auto_evaluate = "off"
    try:
        yield gw
    finally:
        gw.session_factory, gw.secret, gw.auto_evaluate = saved


# -------------------------------------------------------------------------------------------------
# TestClient
# -------------------------------------------------------------------------------------------------
@pytest.fixture(scope="session")
def client():
    return TestClient(app)


# -------------------------------------------------------------------------------------------------
# Helpers: principals, tokens, sessions
# -------------------------------------------------------------------------------------------------
def auth_header(user_id: str) -> dict:
    return {"Authorization": f"Bearer {security.create_access_token(user_id)}"}


@pytest.fixture(scope="function")
def make_profile(db):
    def _make(user_id: str = "user-a", credits: int = 3):
        credit_ledger.grant_credits(db, user_id, credits)
        return user_id

    return _make


@pytest.fixture(scope="function")
def make_session(db):
    def _make(user_id: str = "user-a", call_id: str = "call_1", transcript=None, status=None):
        row = session_store.create_session(db, user_id=user_id, external_call_id=call_id)
        if transcript is not None or status is not None:
            if transcript is not None:
                row.transcript = transcript
            if status is not None:
                row.status = status
            db.commit()
        return row.id

    return _make


@pytest.fixture(scope="function")
def user_and_token(make_profile):
    user_id = make_profile("user-a", 3)
    return user_id, auth_header(user_id)


def webhook(client, event: str, **call):
    """POST a provider event; `call` becomes the payload's call object."""
    return client.post("/api/provider/webhook", json={"event": event, "call": call})


def fetch_session(session_id: str) -> m.InterviewSession:
    s = TestingSessionLocal()
    try:
        row = s.get(m.InterviewSession, session_id)
        s.expunge(row)
        return row
    finally:
        s.close()
