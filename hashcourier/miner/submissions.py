# hashcourier/miner/submissions.py
"""
Submission ledger: two append-only logs (receipts, failures) and the
read-side reconciliation that turns them into one outcome per
(address, challenge, nonce).

Writes never deduplicate. All dedup and the "success wins over failure"
rule live in `reconcile()`, which is a pure function of a point-in-time read
of both logs and never touches them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple, Type, TypeVar

from hashcourier.config import RECENT_FAILURE_HOURS
from hashcourier.miner.logging import LogLevel, log_submissions
from hashcourier.miner.models import (
    AddressHistory,
    Failed,
    FailureEvent,
    FailureRecord,
    Outcome,
    Receipt,
    SolutionKey,
    Succeeded,
)
from hashcourier.miner.state import Store
from hashcourier.utils.helpers import utc_now

RECEIPTS_FILE = "receipts.jsonl"
FAILURES_FILE = "errors.jsonl"

T = TypeVar("T", Receipt, FailureEvent)


@dataclass
class Reconciliation:
    receipts: List[Receipt]                      # one per key, newest first
    active_failures: List[FailureRecord]         # newest last attempt first
    address_history: List[AddressHistory]        # newest last attempt first
    outcomes: Dict[SolutionKey, Outcome] = field(default_factory=dict)
    success_rate: float = 0.0
    recent_failure_count: int = 0
    total_retry_attempts: int = 0

    def outcome(self, key: SolutionKey) -> Optional[Outcome]:
        return self.outcomes.get(key)

    def summary(self) -> Dict[str, Any]:
        return {
            "total_solutions": len(self.receipts),
            "total_errors": len(self.active_failures),
            "total_retry_attempts": self.total_retry_attempts,
            "success_rate": round(self.success_rate * 100, 2),
            "recent_failure_count": self.recent_failure_count,
        }


def fold_failures(events: List[FailureEvent]) -> Dict[SolutionKey, FailureRecord]:
    """
    Collapse raw events per key: retry_count counts every event, error and
    last_attempt come from the newest event, ts from the oldest.
    """
    folded: Dict[SolutionKey, FailureRecord] = {}
    for ev in events:
        rec = folded.get(ev.key)
        if rec is None:
            folded[ev.key] = FailureRecord(
                ts=ev.ts,
                last_attempt=ev.ts,
                address=ev.address,
                challenge_id=ev.challenge_id,
                nonce=ev.nonce,
                error=ev.error,
                hash=ev.hash,
                address_index=ev.address_index,
            )
            continue
        rec.retry_count += 1
        if ev.ts > rec.last_attempt:
            rec.last_attempt = ev.ts
            rec.error = ev.error
        if ev.ts < rec.ts:
            rec.ts = ev.ts
        if rec.address_index is None:
            rec.address_index = ev.address_index
    return folded


class SubmissionLedger:
    def __init__(self, store: Store, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock
        self.receipts_log = store.log(RECEIPTS_FILE)
        self.failures_log = store.log(FAILURES_FILE)

    # ---------------------- writes ----------------------

    def record_receipt(self, receipt: Receipt) -> None:
        self.receipts_log.append(receipt.to_dict())
        log_submissions(LogLevel.MEDIUM, "Receipt logged", "ledger", {
            "challenge": receipt.challenge_id,
            "nonce": receipt.nonce,
            "fee": receipt.is_fee_solution,
        })

    def record_failure(self, event: FailureEvent) -> None:
        self.failures_log.append(event.to_dict())
        log_submissions(LogLevel.HIGH, "Submission failure logged", "ledger", {
            "challenge": event.challenge_id,
            "nonce": event.nonce,
            "error": event.error[:80],
        })

    def remove_failure(self, address: str, challenge_id: str, nonce: str) -> int:
        """Physically delete every raw failure event for the key. Malformed lines stay."""
        removed = self.failures_log.remove_where(
            lambda r: r.get("address") == address
            and r.get("challenge_id") == challenge_id
            and r.get("nonce") == nonce
        )
        if removed:
            log_submissions(LogLevel.LOW, "Removed resolved failure events", "ledger", {
                "challenge": challenge_id,
                "nonce": nonce,
                "removed": removed,
            })
        return removed

    # ---------------------- reads ----------------------

    @staticmethod
    def _typed(records: List[Dict[str, Any]], cls: Type[T], source: str) -> List[T]:
        out: List[T] = []
        for r in records:
            try:
                out.append(cls.from_dict(r))
            except (KeyError, TypeError, ValueError) as e:
                log_submissions(LogLevel.HIGH, "Skipping malformed record", "ledger", {
                    "file": source,
                    "error": str(e),
                })
        return out

    def read_receipts(self) -> List[Receipt]:
        return self._typed(self.receipts_log.read(), Receipt, RECEIPTS_FILE)

    def read_failures(self) -> List[FailureEvent]:
        return self._typed(self.failures_log.read(), FailureEvent, FAILURES_FILE)

    def recent_receipts(self, n: int) -> List[Receipt]:
        return sorted(self.read_receipts(), key=lambda r: r.ts, reverse=True)[: max(0, n)]

    def receipts_for_challenge(self, challenge_id: str, n: Optional[int] = None) -> List[Receipt]:
        matching = sorted(
            (r for r in self.read_receipts() if r.challenge_id == challenge_id),
            key=lambda r: r.ts,
            reverse=True,
        )
        return matching if n is None else matching[: max(0, n)]

    # ---------------------- reconciliation ----------------------

    def reconcile(self) -> Reconciliation:
        receipts_raw = self.read_receipts()
        events = self.read_failures()
        now = self.clock()

        # earliest accepted receipt stands for its key
        receipts_by_key: Dict[SolutionKey, Receipt] = {}
        for r in sorted(receipts_raw, key=lambda r: r.ts):
            receipts_by_key.setdefault(r.key, r)

        folded = fold_failures(events)

        outcomes: Dict[SolutionKey, Outcome] = {}
        for key, rec in folded.items():
            outcomes[key] = Failed(key=key, record=rec)
        for key, receipt in receipts_by_key.items():
            prior = folded.get(key)
            outcomes[key] = Succeeded(key=key, receipt=receipt, superseded_failure=prior)

        receipts = sorted(receipts_by_key.values(), key=lambda r: r.ts, reverse=True)
        active = sorted(
            (o.record for o in outcomes.values() if isinstance(o, Failed)),
            key=lambda f: f.last_attempt,
            reverse=True,
        )

        history = self._address_history(receipts, active)

        unique = len(receipts) + len(active)
        cutoff = now - timedelta(hours=RECENT_FAILURE_HOURS)
        return Reconciliation(
            receipts=receipts,
            active_failures=active,
            address_history=history,
            outcomes=outcomes,
            success_rate=(len(receipts) / unique) if unique else 0.0,
            recent_failure_count=sum(1 for f in active if f.last_attempt > cutoff),
            total_retry_attempts=len(events),
        )

    @staticmethod
    def _address_history(receipts: List[Receipt], active: List[FailureRecord]) -> List[AddressHistory]:
        groups: Dict[Tuple[Any, str], AddressHistory] = {}

        def _group(address_index: Optional[int], address: str, challenge_id: str, ts: datetime) -> AddressHistory:
            gk = (address_index if address_index is not None else "?", challenge_id)
            h = groups.get(gk)
            if h is None:
                h = AddressHistory(
                    address_index=address_index if address_index is not None else -1,
                    address=address,
                    challenge_id=challenge_id,
                    last_attempt=ts,
                )
                groups[gk] = h
            elif ts > h.last_attempt:
                h.last_attempt = ts
            return h

        for f in active:
            h = _group(f.address_index, f.address, f.challenge_id, f.last_attempt)
            h.failure_count += 1
            h.total_attempts += 1
            h.failures.append(f)

        for r in receipts:
            h = _group(r.address_index, r.address, r.challenge_id, r.ts)
            h.success_count += 1
            h.total_attempts += 1
            if h.success_timestamp is None or r.ts > h.success_timestamp:
                h.success_timestamp = r.ts

        for h in groups.values():
            if h.success_count:
                h.status = "success"
            elif h.failure_count:
                h.status = "failed"

        return sorted(groups.values(), key=lambda h: h.last_attempt, reverse=True)
