# hashcourier/miner/runtime.py
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import requests

from hashcourier.authority import AuthorityClient, FeeAllocationClient
from hashcourier.config import (
    FEE_POOL_SIZE,
    HASHCOURIER_HOME,
    MIN_MINUTES_REMAINING,
    RETENTION_DAYS,
    RETRY_WINDOW_HOURS,
)
from hashcourier.miner.challenges import ChallengeLedger, ChallengeSelector
from hashcourier.miner.errors import AuthorityError, PoolUnavailableError, ValidationError
from hashcourier.miner.fee_pool import FeePoolRotator
from hashcourier.miner.logging import LogLevel, MinerPhase, log_challenges, log_init, log_stats, miner_logger
from hashcourier.miner.mining_config import MiningConfigStore
from hashcourier.miner.models import (
    Challenge,
    FailureEvent,
    PrefetchResult,
    Receipt,
    RetrySummary,
    SeedResult,
    SubmitResult,
)
from hashcourier.miner.profile import Profile
from hashcourier.miner.registry import AddressRegistry
from hashcourier.miner.retry import RetryCoordinator
from hashcourier.miner.state import Store
from hashcourier.miner.stats import StatsAggregator
from hashcourier.miner.submissions import Reconciliation, SubmissionLedger
from hashcourier.protocol import Allocator, WalletCapability
from hashcourier.utils.helpers import utc_now
from hashcourier.utils.pretty_logs import mask

# HTTP status the authority uses for "already registered"
ALREADY_REGISTERED = 409


class Coordinator:
    """
    The coordinator's outward surface for one project:
      - challenge polling, best-challenge selection, seeding and retention
      - solution submission into the receipt / failure logs
      - reconciliation and paced retry of recent failures
      - fee-pool status and routing
      - statistics snapshot
    External failures are converted to structured results here.
    """

    def __init__(
        self,
        store: Store,
        profile: Profile,
        authority: AuthorityClient,
        allocator: Optional[Allocator] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.profile = profile
        self.authority = authority
        self.clock = clock

        self.challenges = ChallengeLedger(store, clock)
        self.selector = ChallengeSelector(self.challenges)
        self.submissions = SubmissionLedger(store, clock)
        self.retry = RetryCoordinator(self.submissions, authority)
        self.fee_pool = FeePoolRotator(
            store,
            allocator,
            enabled=profile.fee_pool_enabled,
            ratio=profile.fee_pool_ratio,
            clock=clock,
        )
        self.stats = StatsAggregator(profile.mining_start_date, profile.token_decimals, clock)
        self.mining_config = MiningConfigStore(store)
        self.registry = AddressRegistry(store)

    @classmethod
    def build(cls, profile: Profile, base_dir: Union[Path, str] = HASHCOURIER_HOME,
              session: Optional[requests.Session] = None,
              clock: Callable[[], datetime] = utc_now) -> "Coordinator":
        store = Store(base_dir, profile.id)
        store.migrate_flat_layout()
        authority = AuthorityClient(profile.api_base_url, session)
        allocator = FeeAllocationClient(profile.fee_pool_api_url, session) if profile.fee_pool_enabled else None
        log_init(LogLevel.MEDIUM, "Coordinator ready", "runtime", {
            "project": profile.id,
            "storage": str(store.storage_dir),
        })
        return cls(store, profile, authority, allocator, clock)

    # ---------------------- Challenges ----------------------

    def poll_challenge(self) -> Optional[Challenge]:
        """One authority poll folded into the ledger; None if unavailable."""
        try:
            poll = self.authority.fetch_challenge()
        except AuthorityError as e:
            miner_logger.warning(MinerPhase.CHALLENGES, "Challenge poll failed", "runtime", {"error": str(e)})
            return None
        if poll is None:
            log_challenges(LogLevel.LOW, "No active challenge", "runtime")
            return None
        try:
            return self.challenges.record(poll, self.profile.id, self.profile.validity_hours)
        except ValidationError as e:
            miner_logger.warning(MinerPhase.CHALLENGES, "Malformed challenge poll ignored", "runtime", {
                "challenge": poll.challenge_id,
                "error": str(e),
            })
            return None

    def best_challenge(self, min_minutes: float = MIN_MINUTES_REMAINING) -> Optional[Challenge]:
        return self.selector.select_best(self.profile.id, min_minutes)

    def export_valid_challenges(self) -> List[Dict[str, Any]]:
        return self.challenges.export(self.profile.id)

    def seed_challenges(self, source: Union[str, Sequence[Dict[str, Any]]]) -> SeedResult:
        """Import exported entries given directly or fetched from a URL."""
        if isinstance(source, str):
            try:
                entries: Sequence[Dict[str, Any]] = self.authority.fetch_challenge_export(source)
            except AuthorityError as e:
                miner_logger.warning(MinerPhase.CHALLENGES, "Seed fetch failed", "runtime", {"error": str(e)})
                valid = self.challenges.valid_challenges(self.profile.id)
                return SeedResult(imported=0, total_valid=len(valid), best=self.best_challenge(), error=str(e))
        else:
            entries = source
        imported = self.challenges.import_entries(entries, self.profile.id)
        valid = self.challenges.valid_challenges(self.profile.id)
        return SeedResult(imported=imported, total_valid=len(valid), best=self.best_challenge())

    def sweep(self, max_age_days: int = RETENTION_DAYS) -> int:
        return self.challenges.retention_sweep(max_age_days)

    # ---------------------- Submissions ----------------------

    def destination_for(self, solve_number: int, own_address: str) -> Tuple[str, bool]:
        """(address to credit, is fee solution) for the `solve_number`-th solve."""
        if self.fee_pool.should_route(solve_number):
            try:
                return self.fee_pool.next_address(), True
            except PoolUnavailableError as e:
                miner_logger.warning(MinerPhase.FEE_POOL, "Fee routing skipped", "runtime", {"error": str(e)})
        return own_address, False

    def submit_solution(self, address: str, address_index: Optional[int], challenge_id: str,
                        nonce: str, hash: str = "", fee_solution: bool = False) -> SubmitResult:
        try:
            resp = self.authority.submit_solution(address, challenge_id, nonce)
        except AuthorityError as e:
            self.submissions.record_failure(FailureEvent(
                ts=self.clock(),
                address=address,
                challenge_id=challenge_id,
                nonce=nonce,
                error=str(e),
                hash=hash,
                address_index=address_index,
            ))
            return SubmitResult(accepted=False, message=str(e))

        receipt = Receipt(
            ts=self.clock(),
            address=address,
            challenge_id=challenge_id,
            nonce=nonce,
            hash=hash,
            address_index=address_index,
            crypto_receipt=resp.crypto_receipt,
            is_fee_solution=fee_solution,
        )
        self.submissions.record_receipt(receipt)
        if fee_solution:
            try:
                self.fee_pool.record_fee_solution()
            except PoolUnavailableError as e:
                miner_logger.warning(MinerPhase.FEE_POOL, "Fee solution not counted", "runtime", {"error": str(e)})
        return SubmitResult(accepted=True, message=resp.message, receipt=receipt)

    def reconcile_submissions(self) -> Reconciliation:
        return self.submissions.reconcile()

    async def retry_recent_failures(self, window_hours: float = RETRY_WINDOW_HOURS) -> RetrySummary:
        return await self.retry.retry_recent(window_hours)

    # ---------------------- Registration ----------------------

    def ensure_registered(self, wallet: WalletCapability, index: int, message: str) -> bool:
        """Register the wallet address at `index` with this project once."""
        derived = wallet.derive_address(index)
        if self.registry.is_registered(derived.bech32, self.profile.id):
            return True
        signature = wallet.sign(index, message)
        try:
            self.authority.register(derived.bech32, signature, derived.public_key_hex)
        except AuthorityError as e:
            if e.status_code != ALREADY_REGISTERED:
                miner_logger.warning(MinerPhase.INITIALIZATION, "Registration failed", "runtime", {
                    "address": mask(derived.bech32),
                    "error": str(e),
                })
                return False
        self.registry.mark_registered(derived.bech32, self.profile.id)
        return True

    # ---------------------- Fee pool / stats ----------------------

    def fee_pool_status(self) -> Dict[str, Any]:
        return self.fee_pool.status()

    async def prefetch_fee_pool(self, on_progress: Optional[Callable[[int, bool], None]] = None) -> PrefetchResult:
        return await self.fee_pool.prefetch_pool(FEE_POOL_SIZE, on_progress=on_progress)

    def stats_snapshot(self, rates: Optional[Sequence[int]] = None) -> Dict[str, Any]:
        if rates is None:
            try:
                rates = self.authority.fetch_rates()
            except AuthorityError as e:
                log_stats(LogLevel.HIGH, "Rates unavailable; rewards count as zero", "runtime", {"error": str(e)})
                rates = []
        rec = self.submissions.reconcile()
        return self.stats.snapshot(rec.receipts, rates, failure_total=len(rec.active_failures))
