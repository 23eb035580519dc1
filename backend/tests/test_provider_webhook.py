# backend/tests/test_provider_webhook.py
import json
import types

import pytest

from conftest import fetch_session, webhook
from db.models import SessionStatus
from services import webhook_signature


@pytest.mark.parametrize("path", ["/api/provider/webhook", "/api/provider/webhook/"])
def test_both_paths_route_to_handler(client, make_session, path):
    sid = make_session(call_id="c1")
    r = client.post(path, json={"event": "call_started", "call": {"call_id": "c1"}})
    assert r.status_code == 200, r.text
    assert r.json() == {"received": True}
    assert fetch_session(sid).status == SessionStatus.started


def test_liveness_probe(client):
    for path in ("/api/provider/webhook", "/api/provider/webhook/"):
        r = client.get(path)
        assert r.status_code == 200
        assert r.json()["status"] == "ok"


def test_unknown_call_id_acknowledged(client, make_session):
    sid = make_session(call_id="c1")
    r = webhook(client, "call_ended", call_id="nope", transcript="Q1: a A1: b")
    assert r.status_code == 200
    assert r.json() == {"received": True}
    s = fetch_session(sid)
    assert s.status == SessionStatus.created
    assert s.transcript is None


def test_unknown_event_acknowledged(client):
    r = webhook(client, "call_transferred", call_id="c1")
    assert r.status_code == 200
    assert r.json() == {"received": True}


def test_known_event_without_call_id_rejected(client):
    r = webhook(client, "call_ended")
    assert r.status_code == 400
    assert "error" in r.json()


def test_malformed_body_rejected(client):
    r = client.post("/api/provider/webhook", content=b"not json", headers={"content-type": "application/json"})
    assert r.status_code == 400


def test_out_of_order_delivery(client, make_session):
    sid = make_session(call_id="c1")
    assert webhook(client, "call_analyzed", call_id="c1", analysis={"call_summary": "fine"}).status_code == 200
    assert webhook(
        client, "call_ended", call_id="c1", start_timestamp=1000000, end_timestamp=1125000, transcript="Q1: a A1: b"
    ).status_code == 200
    assert webhook(client, "call_started", call_id="c1").status_code == 200

    s = fetch_session(sid)
    assert s.status == SessionStatus.completed
    assert s.analysis == {"call_summary": "fine"}
    assert s.actual_duration_seconds == 125


def test_duplicate_call_ended(client, make_session):
    sid = make_session(call_id="c1")
    body = dict(call_id="c1", start_timestamp=1000000, end_timestamp=1125000, transcript="Q1: a A1: b")
    webhook(client, "call_ended", **body)
    first = fetch_session(sid)
    webhook(client, "call_ended", **body)
    second = fetch_session(sid)
    assert (first.status, first.ended_at, first.actual_duration_seconds, first.transcript) == (
        second.status,
        second.ended_at,
        second.actual_duration_seconds,
        second.transcript,
    )


def test_signature_required_when_secret_configured(client, gateway, make_session):
    sid = make_session(call_id="c1")
    gateway.secret = "whsec_test"
    raw = json.dumps({"event": "call_started", "call": {"call_id": "c1"}}).encode()

    r = client.post("/api/provider/webhook", content=raw, headers={"content-type": "application/json"})
    assert r.status_code == 401
    r = client.post(
        "/api/provider/webhook",
        content=raw,
        headers={"content-type": "application/json", "x-retell-signature": "deadbeef"},
    )
    assert r.status_code == 401
    assert fetch_session(sid).status == SessionStatus.created

    r = client.post(
        "/api/provider/webhook",
        content=raw,
        headers={
            "content-type": "application/json",
            "x-retell-signature": webhook_signature.sign("whsec_test", raw),
        },
    )
    assert r.status_code == 200
    assert fetch_session(sid).status == SessionStatus.started


def test_signature_verify_accepts_prefixed_digest():
    raw = b'{"event":"call_started"}'
    digest = webhook_signature.sign("s3cret", raw)
    assert webhook_signature.verify("s3cret", raw, digest)
    assert webhook_signature.verify("s3cret", raw, f"sha256={digest}")
    assert not webhook_signature.verify("s3cret", raw, None)
    assert not webhook_signature.verify("other", raw, digest)


def test_persistence_failure_is_500(client, gateway):
    def broken_factory():
        raise RuntimeError("database unreachable")

    gateway.session_factory = broken_factory
    r = webhook(client, "call_started", call_id="c1")
    assert r.status_code == 500
    assert r.json() == {"error": "Webhook processing failed"}


def test_inline_auto_evaluation(client, gateway, make_session):
    gateway.auto_evaluate = "inline"
    sid = make_session(call_id="c1")
    r = webhook(
        client,
        "call_ended",
        call_id="c1",
        transcript="Q1: What is an index? A1: An index speeds up lookups because the database can seek instead of scanning.",
    )
    assert r.status_code == 200
    s = fetch_session(sid)
    assert s.status == SessionStatus.completed
    assert s.analysis["overall"]["perfect"] + s.analysis["overall"]["moderate"] + s.analysis["overall"]["wrong"] == 1
    assert s.evaluated_at is not None


def test_inline_auto_evaluation_failure_still_acknowledged(client, gateway, make_session):
    gateway.auto_evaluate = "inline"
    sid = make_session(call_id="c1")
    # no Q/A markers and no speaker turns: unparseable
    r = webhook(client, "call_ended", call_id="c1", transcript="static noise")
    assert r.status_code == 200
    s = fetch_session(sid)
    assert s.status == SessionStatus.completed
    assert s.analysis is None


def test_queued_auto_evaluation(client, gateway, make_session, monkeypatch):
    from tasks import evaluate_session as task_mod

    queued = []
    monkeypatch.setattr(
        task_mod.evaluate_session, "delay", lambda session_id: queued.append(session_id) or types.SimpleNamespace(id="fake")
    )
    gateway.auto_evaluate = "queued"
    sid = make_session(call_id="c1")
    webhook(client, "call_ended", call_id="c1", transcript="Q1: a A1: b")
    assert queued == [sid]

    # a duplicate delivery changes nothing, so nothing is queued again
    webhook(client, "call_ended", call_id="c1", transcript="Q1: a A1: b")
    assert queued == [sid]


@pytest.mark.parametrize(
    "body",
    [
        {"event": "transcript_updated", "call": {"call_id": "c1", "transcript": [{"role": "agent", "content": "Hi"}]}},
        {"event": "ping", "call": "n/a"},
        {"event": 42, "call": ["c1"]},
        {"call": {"call_id": "c1", "start_timestamp": "yesterday"}},
    ],
)
def test_unhandled_event_with_foreign_call_shape_acknowledged(client, make_session, body):
    sid = make_session(call_id="c1")
    r = client.post("/api/provider/webhook", json=body)
    assert r.status_code == 200, r.text
    assert r.json() == {"received": True}
    s = fetch_session(sid)
    assert s.status == SessionStatus.created
    assert s.transcript is None


def test_handled_event_with_malformed_call_rejected(client, make_session):
    sid = make_session(call_id="c1")
    r = webhook(client, "call_ended", call_id="c1", transcript=[{"role": "user", "content": "hi"}])
    assert r.status_code == 400
    assert fetch_session(sid).status == SessionStatus.created
