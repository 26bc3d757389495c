# hashcourier/miner/retry.py
from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import AsyncIterator, Dict, List

import requests

from hashcourier.config import RETRY_PACING_S, RETRY_WINDOW_HOURS
from hashcourier.miner.errors import AuthorityError, ValidationError
from hashcourier.miner.logging import LogLevel, MinerPhase, log_submissions, miner_logger
from hashcourier.miner.models import FailureEvent, Receipt, RetryItemResult, RetrySummary, SolutionKey
from hashcourier.miner.submissions import SubmissionLedger
from hashcourier.protocol import Submitter
from hashcourier.utils.pretty_logs import mask


class RetryCoordinator:
    """
    Sequential, paced replay of recent failed submissions.

    Submissions never run concurrently; a fixed delay separates consecutive
    calls. Per-item errors are recorded and the batch continues. Side effects
    of items already processed stay valid if the caller stops consuming
    `stream()` early.
    """

    def __init__(self, ledger: SubmissionLedger, submitter: Submitter, pacing_s: float = RETRY_PACING_S):
        self.ledger = ledger
        self.submitter = submitter
        self.pacing_s = pacing_s

    def select_candidates(self, window_hours: float = RETRY_WINDOW_HOURS) -> List[FailureEvent]:
        """Most recent raw failure per key, not yet receipted, newer than the window."""
        if window_hours <= 0:
            raise ValidationError("window_hours must be > 0")
        receipted = {r.key for r in self.ledger.read_receipts()}
        latest: Dict[SolutionKey, FailureEvent] = {}
        for ev in self.ledger.read_failures():
            if ev.key in receipted:
                continue
            cur = latest.get(ev.key)
            if cur is None or ev.ts > cur.ts:
                latest[ev.key] = ev
        cutoff = self.ledger.clock() - timedelta(hours=window_hours)
        return [ev for ev in latest.values() if ev.ts > cutoff]

    async def _retry_one(self, ev: FailureEvent) -> RetryItemResult:
        try:
            resp = await asyncio.to_thread(self.submitter.submit_solution, ev.address, ev.challenge_id, ev.nonce)
        except (AuthorityError, requests.RequestException) as e:
            await asyncio.to_thread(self.ledger.record_failure, FailureEvent(
                ts=self.ledger.clock(),
                address=ev.address,
                challenge_id=ev.challenge_id,
                nonce=ev.nonce,
                error=str(e),
                hash=ev.hash,
                address_index=ev.address_index,
            ))
            log_submissions(LogLevel.HIGH, "Retry failed", "retry", {
                "address": mask(ev.address),
                "challenge": ev.challenge_id,
                "error": str(e)[:80],
            })
            return RetryItemResult(key=ev.key, success=False, error=str(e))

        await asyncio.to_thread(self.ledger.record_receipt, Receipt(
            ts=self.ledger.clock(),
            address=ev.address,
            challenge_id=ev.challenge_id,
            nonce=ev.nonce,
            hash=ev.hash,
            address_index=ev.address_index,
            crypto_receipt=resp.crypto_receipt,
        ))
        await asyncio.to_thread(self.ledger.remove_failure, ev.address, ev.challenge_id, ev.nonce)
        miner_logger.success(MinerPhase.SUBMISSIONS, "Retry accepted", "retry", {
            "address": mask(ev.address),
            "challenge": ev.challenge_id,
        })
        return RetryItemResult(key=ev.key, success=True)

    async def _run(self, candidates: List[FailureEvent]) -> AsyncIterator[RetryItemResult]:
        for i, ev in enumerate(candidates):
            if i:
                await asyncio.sleep(self.pacing_s)
            yield await self._retry_one(ev)

    async def stream(self, window_hours: float = RETRY_WINDOW_HOURS) -> AsyncIterator[RetryItemResult]:
        """Yield one result per candidate as it completes."""
        async for item in self._run(self.select_candidates(window_hours)):
            yield item

    async def retry_recent(self, window_hours: float = RETRY_WINDOW_HOURS) -> RetrySummary:
        candidates = self.select_candidates(window_hours)
        summary = RetrySummary(total=len(candidates))
        if not candidates:
            log_submissions(LogLevel.LOW, "No failures to retry", "retry", {"window_hours": window_hours})
            return summary
        log_submissions(LogLevel.MEDIUM, "Retrying failed submissions", "retry", {"count": summary.total})
        async for item in self._run(candidates):
            summary.add(item)
        miner_logger.retry_summary(summary.total, summary.succeeded, summary.failed, int(window_hours))
        return summary
