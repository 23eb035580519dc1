# backend/tests/test_interview_api.py
from api import deps
from conftest import auth_header, fetch_session, webhook
from core.errors import ProviderCallFailed
from db.models import SessionStatus
from main import app
from services.provider_client import WebCall

TRANSCRIPT = (
    "Q1: What is a race condition?\n"
    "A1: Two threads touch shared state without coordination, so the result depends on timing. "
    "For example two withdrawals that both read the same balance.\n"
    "Q2: How do you prevent it?\n"
    "A2: Make the read and the write one atomic operation, for example a conditional update, "
    "because then the storage layer serialises the callers.\n"
)


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json().get("ok") is True


def test_request_id_header_round_trip(client):
    r = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert r.headers["X-Request-ID"] == "req-123"
    assert client.get("/health").headers.get("X-Request-ID")


def test_start_requires_auth(client):
    assert client.post("/api/interview").status_code == 401


def test_start_without_credits_is_403(client, make_profile):
    make_profile("broke", 0)
    r = client.post("/api/interview", headers=auth_header("broke"))
    assert r.status_code == 403
    assert "credits" in r.json()["error"]


def test_start_without_profile_is_500(client):
    r = client.post("/api/interview", headers=auth_header("ghost"))
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to fetch your account details"}


def test_provider_failure_keeps_credit_consumed(client, make_profile):
    class _DownProvider:
        def create_web_call(self, user_id, metadata=None):
            raise ProviderCallFailed("Failed to create interview call: 503")

    make_profile("user-a", 2)
    app.dependency_overrides[deps.get_provider_client] = lambda: _DownProvider()
    try:
        r = client.post("/api/interview", headers=auth_header("user-a"))
    finally:
        app.dependency_overrides.pop(deps.get_provider_client, None)
    assert r.status_code == 502

    r = client.get("/api/credits", headers=auth_header("user-a"))
    assert r.json()["interview_credits"] == 1
    assert client.get("/api/interview/sessions", headers=auth_header("user-a")).json()["sessions"] == []


def test_start_uses_provider_call_id(client, make_profile):
    class _Provider:
        def create_web_call(self, user_id, metadata=None):
            assert metadata["session_id"]
            return WebCall(call_id="call_abc", access_token="tok", agent_id="agent_1")

    make_profile("user-a", 1)
    app.dependency_overrides[deps.get_provider_client] = lambda: _Provider()
    try:
        r = client.post("/api/interview", headers=auth_header("user-a"))
    finally:
        app.dependency_overrides.pop(deps.get_provider_client, None)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["call_id"] == "call_abc"
    assert body["access_token"] == "tok"
    s = fetch_session(body["session_id"])
    assert s.external_call_id == "call_abc"
    assert s.agent_id == "agent_1"


def test_end_to_end(client, user_and_token):
    user_id, headers = user_and_token

    # start: credits 3 -> 2, session created
    r = client.post("/api/interview", headers=headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["success"] is True
    assert body["remaining_credits"] == 2
    session_id, call_id = body["session_id"], body["call_id"]
    assert call_id.startswith("local_")
    assert fetch_session(session_id).status == SessionStatus.created

    # call_started
    assert webhook(client, "call_started", call_id=call_id).json() == {"received": True}
    s = fetch_session(session_id)
    assert s.status == SessionStatus.started
    assert s.started_at is not None

    # call_ended with transcript
    webhook(client, "call_ended", call_id=call_id, start_timestamp=1000000, end_timestamp=1125000, transcript=TRANSCRIPT)
    s = fetch_session(session_id)
    assert s.status == SessionStatus.completed
    assert s.transcript == TRANSCRIPT
    assert s.actual_duration_seconds == 125
    assert s.analysis is None  # AUTO_EVALUATE=off

    # manual evaluation, twice
    first = client.post("/api/interview/evaluate-manual", json={"session_id": session_id}, headers=headers)
    assert first.status_code == 200, first.text
    overall = first.json()["results"]["overall"]
    assert overall["perfect"] + overall["moderate"] + overall["wrong"] == 2
    assert fetch_session(session_id).analysis["overall"] == overall

    second = client.post("/api/interview/evaluate-manual", json={"session_id": session_id}, headers=headers)
    assert second.status_code == 200
    assert second.json()["results"] == first.json()["results"]

    # read back
    detail = client.get(f"/api/interview/sessions/{session_id}", headers=headers).json()
    assert detail["status"] == "completed"
    assert [a["question_number"] for a in detail["answers"]] == [1, 2]

    listing = client.get("/api/interview/sessions", headers=headers).json()
    assert [row["id"] for row in listing["sessions"]] == [session_id]

    assert client.get("/api/credits", headers=headers).json() == {"user_id": user_id, "interview_credits": 2}
