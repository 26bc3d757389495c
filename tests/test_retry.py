# ------------------------------------------------------------------------
# tests/test_retry.py
# ------------------------------------------------------------------------
# Retry coordinator: candidate selection, sequential replay, per-item
# failure isolation and cleanup of resolved failures.
# ------------------------------------------------------------------------

import asyncio
import threading
from datetime import timedelta

import pytest

from hashcourier.miner.errors import ValidationError
from hashcourier.miner.retry import RetryCoordinator
from hashcourier.miner.submissions import SubmissionLedger

from conftest import T0, FakeAuthority, failure, receipt


@pytest.fixture
def ledger(store, clock):
    return SubmissionLedger(store, clock)


# ───── candidate selection ─────────────────────────────────────────── #

def test_candidates_latest_event_per_key_within_window(ledger, authority):
    ledger.record_failure(failure(T0 - timedelta(hours=3), error="old"))
    ledger.record_failure(failure(T0 - timedelta(hours=1), error="new"))
    ledger.record_failure(failure(T0 - timedelta(hours=30), nonce="00000000000000bb"))
    ledger.record_failure(failure(T0 - timedelta(hours=2), nonce="00000000000000cc"))
    ledger.record_receipt(receipt(T0 - timedelta(minutes=30), nonce="00000000000000cc"))

    cands = RetryCoordinator(ledger, authority, pacing_s=0).select_candidates(24)
    assert [(c.nonce, c.error) for c in cands] == [("00000000000000aa", "new")]


@pytest.mark.parametrize("window", [0, -1])
def test_non_positive_window_is_rejected(ledger, authority, window):
    with pytest.raises(ValidationError):
        RetryCoordinator(ledger, authority, pacing_s=0).select_candidates(window)


# ───── replay ──────────────────────────────────────────────────────── #

@pytest.mark.asyncio
async def test_all_old_failures_make_no_calls(ledger, authority):
    for i in range(3):
        ledger.record_failure(failure(T0 - timedelta(hours=25 + i), nonce=f"{i:016x}"))
    summary = await RetryCoordinator(ledger, authority, pacing_s=0).retry_recent(24)
    assert (summary.total, summary.succeeded, summary.failed) == (0, 0, 0)
    assert authority.calls == []


@pytest.mark.asyncio
async def test_success_logs_receipt_and_removes_failure(ledger, authority):
    ledger.record_failure(failure(T0 - timedelta(hours=2)))
    ledger.record_failure(failure(T0 - timedelta(hours=1)))

    summary = await RetryCoordinator(ledger, authority, pacing_s=0).retry_recent(24)
    assert (summary.total, summary.succeeded, summary.failed) == (1, 1, 0)
    assert ledger.read_failures() == []
    receipts = ledger.read_receipts()
    assert len(receipts) == 1
    assert receipts[0].ts == T0
    assert receipts[0].crypto_receipt == {"sig": "r-00000000000000aa"}
    assert receipts[0].is_fee_solution is False


@pytest.mark.asyncio
async def test_one_failure_does_not_abort_the_batch(ledger):
    authority = FakeAuthority()
    authority.reject[("addr1alice", "**D06C01", "00000000000000bb")] = "Solution already exists"
    for i, nonce in enumerate(["00000000000000aa", "00000000000000bb", "00000000000000cc"]):
        ledger.record_failure(failure(T0 - timedelta(minutes=30 + i), nonce=nonce))

    summary = await RetryCoordinator(ledger, authority, pacing_s=0).retry_recent(24)
    assert (summary.total, summary.succeeded, summary.failed) == (3, 2, 1)
    assert len(authority.calls) == 3
    failed = [r for r in summary.results if not r.success]
    assert failed[0].key.nonce == "00000000000000bb"
    assert "already exists" in failed[0].error

    rec = ledger.reconcile()
    assert [f.nonce for f in rec.active_failures] == ["00000000000000bb"]
    assert rec.active_failures[0].retry_count == 2
    assert rec.active_failures[0].error == "Solution already exists"


@pytest.mark.asyncio
async def test_stream_yields_each_result(ledger, authority):
    ledger.record_failure(failure(T0 - timedelta(minutes=5)))
    ledger.record_failure(failure(T0 - timedelta(minutes=6), nonce="00000000000000bb"))
    coord = RetryCoordinator(ledger, authority, pacing_s=0)
    seen = [item async for item in coord.stream(24)]
    assert len(seen) == 2
    assert all(item.success for item in seen)
    assert coord.select_candidates(24) == []


@pytest.mark.asyncio
async def test_calls_are_paced_between_items(ledger, authority, monkeypatch):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    for i in range(3):
        ledger.record_failure(failure(T0 - timedelta(minutes=10 + i), nonce=f"{i:016x}"))
    summary = await RetryCoordinator(ledger, authority, pacing_s=0.25).retry_recent(24)
    assert summary.total == 3
    assert delays == [0.25, 0.25]


@pytest.mark.asyncio
async def test_ledger_writes_run_off_the_event_loop(ledger, monkeypatch):
    authority = FakeAuthority()
    authority.reject[("addr1alice", "**D06C01", "00000000000000bb")] = "rejected"
    ledger.record_failure(failure(T0 - timedelta(minutes=5)))
    ledger.record_failure(failure(T0 - timedelta(minutes=6), nonce="00000000000000bb"))

    loop_thread = threading.get_ident()
    writers = []
    for name in ("record_receipt", "record_failure", "remove_failure"):
        original = getattr(ledger, name)

        def _wrapped(*a, _name=name, _original=original, **kw):
            writers.append((_name, threading.get_ident()))
            return _original(*a, **kw)

        monkeypatch.setattr(ledger, name, _wrapped)

    await RetryCoordinator(ledger, authority, pacing_s=0).retry_recent(24)
    assert sorted(n for n, _ in writers) == ["record_failure", "record_receipt", "remove_failure"]
    assert all(ident != loop_thread for _, ident in writers)
