# backend/tests/test_credit_ledger.py
import threading

import pytest

from conftest import TestingSessionLocal
from core.errors import InsufficientCredits, ProfileNotFound
from db import models as m
from services import credit_ledger


def test_reserve_decrements_and_records_transaction(db, make_profile):
    make_profile("user-a", 3)

    res = credit_ledger.reserve_credit(db, "user-a", reference_id="sess-1")
    assert res == {"remaining": 2}
    assert credit_ledger.get_balance(db, "user-a") == 2

    rows, total = credit_ledger.list_transactions(db, "user-a", transaction_type="deduct")
    assert total == 1
    assert rows[0].amount == -1
    assert rows[0].balance_after == 2
    assert rows[0].reference_id == "sess-1"
    assert rows[0].reference_type == "interview"


def test_reserve_at_zero_fails_and_leaves_balance(db, make_profile):
    make_profile("user-a", 0)
    with pytest.raises(InsufficientCredits):
        credit_ledger.reserve_credit(db, "user-a")
    assert credit_ledger.get_balance(db, "user-a") == 0


def test_reserve_without_profile(db):
    with pytest.raises(ProfileNotFound):
        credit_ledger.reserve_credit(db, "nobody")


def test_grant_creates_profile(db):
    assert credit_ledger.grant_credits(db, "new-user", 5) == {"balance": 5}
    assert credit_ledger.grant_credits(db, "new-user", 2, transaction_type="purchase") == {"balance": 7}
    _, total = credit_ledger.list_transactions(db, "new-user")
    assert total == 2


def test_concurrent_reservations_never_overspend(make_profile):
    make_profile("user-a", 3)
    n_callers = 8
    barrier = threading.Barrier(n_callers)
    outcomes = []
    lock = threading.Lock()

    def worker():
        s = TestingSessionLocal()
        try:
            barrier.wait()
            try:
                credit_ledger.reserve_credit(s, "user-a")
                result = "ok"
            except InsufficientCredits:
                result = "denied"
        finally:
            s.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=worker) for _ in range(n_callers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    assert len(outcomes) == n_callers
    assert outcomes.count("ok") == 3
    assert outcomes.count("denied") == n_callers - 3

    s = TestingSessionLocal()
    try:
        assert s.get(m.Profile, "user-a").interview_credits == 0
        _, deducts = credit_ledger.list_transactions(s, "user-a", transaction_type="deduct")
        assert deducts == 3
    finally:
        s.close()
