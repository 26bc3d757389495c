# ------------------------------------------------------------------------
# tests/test_submissions.py
# ------------------------------------------------------------------------
# Submission ledger: append-only writes, read-side reconciliation with
# success-over-failure precedence, and failure removal.
# ------------------------------------------------------------------------

import itertools
import json
from datetime import timedelta

import pytest

from hashcourier.miner.models import Failed, SolutionKey, Succeeded
from hashcourier.miner.submissions import FAILURES_FILE, RECEIPTS_FILE, SubmissionLedger

from conftest import T0, failure, receipt

KEY = SolutionKey("addr1alice", "**D06C01", "00000000000000aa")


@pytest.fixture
def ledger(store, clock):
    return SubmissionLedger(store, clock)


# ───── idempotent reconciliation ───────────────────────────────────── #

def _events():
    return [
        ("f", failure(T0 - timedelta(minutes=30), error="first")),
        ("f", failure(T0 - timedelta(minutes=20), error="second")),
        ("f", failure(T0 - timedelta(minutes=10), error="third")),
        ("r", receipt(T0 - timedelta(minutes=5))),
    ]


@pytest.mark.parametrize("order", list(itertools.permutations(range(4))))
def test_receipt_supersedes_failures_in_any_order(store, clock, order):
    ledger = SubmissionLedger(store, clock)
    events = _events()
    for i in order:
        kind, ev = events[i]
        if kind == "f":
            ledger.record_failure(ev)
        else:
            ledger.record_receipt(ev)

    rec = ledger.reconcile()
    assert [f.key for f in rec.active_failures] == []
    assert [r.key for r in rec.receipts] == [KEY]
    outcome = rec.outcome(KEY)
    assert isinstance(outcome, Succeeded)
    assert outcome.superseded_failure.retry_count == 3
    assert rec.total_retry_attempts == 3
    assert rec.success_rate == 1.0


def test_failures_fold_per_key(ledger):
    ledger.record_failure(failure(T0 - timedelta(minutes=10), error="late"))
    ledger.record_failure(failure(T0 - timedelta(hours=2), error="early"))
    ledger.record_failure(failure(T0 - timedelta(hours=1), error="middle"))
    ledger.record_failure(failure(T0 - timedelta(hours=1), nonce="00000000000000bb"))

    rec = ledger.reconcile()
    assert len(rec.active_failures) == 2
    folded = rec.outcome(KEY)
    assert isinstance(folded, Failed)
    assert folded.record.retry_count == 3
    assert folded.record.error == "late"
    assert folded.record.ts == T0 - timedelta(hours=2)
    assert folded.record.last_attempt == T0 - timedelta(minutes=10)
    # newest last attempt first
    assert rec.active_failures[0].key == KEY
    assert rec.total_retry_attempts == 4
    assert rec.recent_failure_count == 2


def test_duplicate_receipts_count_once(ledger):
    ledger.record_receipt(receipt(T0 - timedelta(minutes=3)))
    ledger.record_receipt(receipt(T0 - timedelta(minutes=1)))
    rec = ledger.reconcile()
    assert len(rec.receipts) == 1
    assert rec.receipts[0].ts == T0 - timedelta(minutes=3)


def test_reconcile_does_not_touch_logs(ledger, store):
    ledger.record_failure(failure(T0 - timedelta(minutes=10)))
    ledger.record_receipt(receipt(T0 - timedelta(minutes=5)))
    before = (store.path(RECEIPTS_FILE).read_text(), store.path(FAILURES_FILE).read_text())
    first = ledger.reconcile()
    second = ledger.reconcile()
    after = (store.path(RECEIPTS_FILE).read_text(), store.path(FAILURES_FILE).read_text())
    assert before == after
    assert first.summary() == second.summary()


def test_success_rate_and_recent_failures(ledger):
    ledger.record_receipt(receipt(T0 - timedelta(hours=1), nonce="0000000000000001"))
    ledger.record_failure(failure(T0 - timedelta(hours=2), nonce="0000000000000002"))
    ledger.record_failure(failure(T0 - timedelta(hours=30), nonce="0000000000000003"))
    ledger.record_failure(failure(T0 - timedelta(hours=29), nonce="0000000000000003"))
    rec = ledger.reconcile()
    assert rec.success_rate == pytest.approx(1 / 3)
    assert rec.recent_failure_count == 1


# ───── address history ─────────────────────────────────────────────── #

def test_address_history_groups_by_index_and_challenge(ledger):
    ledger.record_receipt(receipt(T0 - timedelta(minutes=5), nonce="0000000000000001", address_index=0))
    ledger.record_failure(failure(T0 - timedelta(minutes=50), nonce="0000000000000002", address_index=0))
    ledger.record_failure(failure(T0 - timedelta(minutes=40), address="addr1bob", nonce="0000000000000003",
                                  address_index=1))
    ledger.record_failure(failure(T0 - timedelta(minutes=30), address="addr1carol", nonce="0000000000000004",
                                  address_index=None, challenge_id="**D06C02"))

    hist = {(h.address_index, h.challenge_id): h for h in ledger.reconcile().address_history}
    mixed = hist[(0, "**D06C01")]
    assert mixed.status == "success"
    assert (mixed.success_count, mixed.failure_count, mixed.total_attempts) == (1, 1, 2)
    assert mixed.success_timestamp == T0 - timedelta(minutes=5)
    assert hist[(1, "**D06C01")].status == "failed"
    assert hist[(-1, "**D06C02")].status == "failed"


# ───── queries ─────────────────────────────────────────────────────── #

def test_recent_and_per_challenge_receipts(ledger):
    for i in range(5):
        ledger.record_receipt(receipt(T0 - timedelta(minutes=10 - i), nonce=f"{i:016x}",
                                      challenge_id="**D06C01" if i % 2 else "**D06C02"))
    assert [r.nonce for r in ledger.recent_receipts(2)] == [f"{4:016x}", f"{3:016x}"]
    assert [r.nonce for r in ledger.receipts_for_challenge("**D06C01")] == [f"{3:016x}", f"{1:016x}"]
    assert len(ledger.receipts_for_challenge("**D06C02", n=1)) == 1


# ───── malformed lines & removal ───────────────────────────────────── #

def test_malformed_lines_are_skipped_on_read(ledger, store):
    ledger.record_failure(failure(T0 - timedelta(minutes=10)))
    with open(store.path(FAILURES_FILE), "a", encoding="utf-8") as f:
        f.write("{not json\n")
        f.write(json.dumps({"address": "addr1x"}) + "\n")
    ledger.record_failure(failure(T0 - timedelta(minutes=5), nonce="00000000000000bb"))
    assert len(ledger.read_failures()) == 2
    assert len(ledger.reconcile().active_failures) == 2


def test_remove_failure_keeps_malformed_lines(ledger, store):
    ledger.record_failure(failure(T0 - timedelta(minutes=10)))
    with open(store.path(FAILURES_FILE), "a", encoding="utf-8") as f:
        f.write("{not json\n")
    ledger.record_failure(failure(T0 - timedelta(minutes=5)))
    ledger.record_failure(failure(T0 - timedelta(minutes=5), nonce="00000000000000bb"))

    assert ledger.remove_failure(*KEY) == 2
    assert KEY not in {f.key for f in ledger.reconcile().active_failures}
    lines = store.path(FAILURES_FILE).read_text().splitlines()
    assert "{not json" in lines
    assert len(lines) == 2
    assert ledger.remove_failure(*KEY) == 0
