# hashcourier/miner/models.py: shared dataclasses for coordinator components
# --------------------------------------------------------------------------- #
# Kept free of I/O so they can be serialised to the JSON / JSONL stores and
# built directly in tests.
# --------------------------------------------------------------------------- #

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, NamedTuple, Optional, Union

from hashcourier.config import (
    AUTO_WORKERS_PER_ADDRESS,
    DEFAULT_WORKER_THREADS,
    DEFAULT_WORKERS_PER_ADDRESS,
)
from hashcourier.utils.helpers import format_ts, parse_hex, parse_ts, as_int


class SolutionKey(NamedTuple):
    """(address, challenge, nonce): one logical solution, however often tried."""
    address: str
    challenge_id: str
    nonce: str


# --------------------------------------------------------------------------- #
# Challenges
# --------------------------------------------------------------------------- #

@dataclass
class DifficultyChange:
    timestamp: datetime
    old: str
    new: str

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": format_ts(self.timestamp), "oldDifficulty": self.old, "newDifficulty": self.new}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DifficultyChange":
        return cls(
            timestamp=parse_ts(data["timestamp"]),
            old=str(data.get("oldDifficulty", data.get("old", ""))),
            new=str(data.get("newDifficulty", data.get("new", ""))),
        )


@dataclass
class Challenge:
    """
    One challenge as recorded in the ledger.

    `deadline` is the authority's `latest_submission`; `validity_hours` is
    only the hint that was supplied when the entry was first recorded.
    """
    challenge_id: str
    difficulty: str
    profile_id: str
    issued_at: datetime
    last_seen_at: datetime
    deadline: datetime
    no_pre_mine: str = ""
    no_pre_mine_hour: str = ""
    validity_hours: Optional[int] = None
    difficulty_changes: List[DifficultyChange] = field(default_factory=list)

    @property
    def difficulty_value(self) -> int:
        return parse_hex(self.difficulty)

    @property
    def key(self) -> tuple[str, str]:
        return (self.profile_id, self.challenge_id)

    def minutes_remaining(self, now: datetime) -> float:
        return (self.deadline - now).total_seconds() / 60.0

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "challenge_id": self.challenge_id,
            "difficulty": self.difficulty,
            "no_pre_mine": self.no_pre_mine,
            "no_pre_mine_hour": self.no_pre_mine_hour,
            "latest_submission": format_ts(self.deadline),
            "profileId": self.profile_id,
            "firstSeenAt": format_ts(self.issued_at),
            "lastSeenAt": format_ts(self.last_seen_at),
            "validityHours": self.validity_hours,
        }
        if self.difficulty_changes:
            data["difficultyChanges"] = [c.to_dict() for c in self.difficulty_changes]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], profile_id: Optional[str] = None) -> "Challenge":
        """
        Accepts current records and the legacy shape that carried a derived
        `expiresAt` next to `latest_submission`; the authority field wins.
        """
        issued_at = parse_ts(data.get("firstSeenAt") or data.get("issuedAt"))
        deadline_raw = data.get("latest_submission") or data.get("deadline") or data.get("expiresAt")
        return cls(
            challenge_id=str(data["challenge_id"]),
            difficulty=str(data["difficulty"]),
            profile_id=str(profile_id or data.get("profileId") or ""),
            issued_at=issued_at,
            last_seen_at=parse_ts(data.get("lastSeenAt") or data.get("firstSeenAt") or data.get("issuedAt")),
            deadline=parse_ts(deadline_raw),
            no_pre_mine=str(data.get("no_pre_mine") or ""),
            no_pre_mine_hour=str(data.get("no_pre_mine_hour") or ""),
            validity_hours=as_int(data.get("validityHours")),
            difficulty_changes=[DifficultyChange.from_dict(c) for c in data.get("difficultyChanges") or []],
        )


# --------------------------------------------------------------------------- #
# Submissions
# --------------------------------------------------------------------------- #

@dataclass
class Receipt:
    """Accepted submission. Append-only; never mutated after it is logged."""
    ts: datetime
    address: str
    challenge_id: str
    nonce: str
    hash: str = ""
    address_index: Optional[int] = None
    crypto_receipt: Any = None
    is_fee_solution: bool = False

    @property
    def key(self) -> SolutionKey:
        return SolutionKey(self.address, self.challenge_id, self.nonce)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "ts": format_ts(self.ts),
            "address": self.address,
            "addressIndex": self.address_index,
            "challenge_id": self.challenge_id,
            "nonce": self.nonce,
            "hash": self.hash,
            "isDevFee": self.is_fee_solution,
        }
        if self.crypto_receipt is not None:
            data["crypto_receipt"] = self.crypto_receipt
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Receipt":
        return cls(
            ts=parse_ts(data["ts"]),
            address=str(data["address"]),
            challenge_id=str(data["challenge_id"]),
            nonce=str(data["nonce"]),
            hash=str(data.get("hash") or ""),
            address_index=as_int(data.get("addressIndex")),
            crypto_receipt=data.get("crypto_receipt"),
            is_fee_solution=bool(data.get("isDevFee", False)),
        )


@dataclass
class FailureEvent:
    """One raw rejected submission, exactly as appended to the failure log."""
    ts: datetime
    address: str
    challenge_id: str
    nonce: str
    error: str
    hash: str = ""
    address_index: Optional[int] = None
    response: Any = None

    @property
    def key(self) -> SolutionKey:
        return SolutionKey(self.address, self.challenge_id, self.nonce)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "ts": format_ts(self.ts),
            "address": self.address,
            "addressIndex": self.address_index,
            "challenge_id": self.challenge_id,
            "nonce": self.nonce,
            "hash": self.hash,
            "error": self.error,
        }
        if self.response is not None:
            data["response"] = self.response
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FailureEvent":
        return cls(
            ts=parse_ts(data["ts"]),
            address=str(data["address"]),
            challenge_id=str(data["challenge_id"]),
            nonce=str(data["nonce"]),
            error=str(data.get("error") or ""),
            hash=str(data.get("hash") or ""),
            address_index=as_int(data.get("addressIndex")),
            response=data.get("response"),
        )


@dataclass
class FailureRecord:
    """
    All raw failure events of one key folded together: `ts` is the earliest
    event, `last_attempt`/`error` come from the most recent one.
    """
    ts: datetime
    last_attempt: datetime
    address: str
    challenge_id: str
    nonce: str
    error: str
    hash: str = ""
    address_index: Optional[int] = None
    retry_count: int = 1

    @property
    def key(self) -> SolutionKey:
        return SolutionKey(self.address, self.challenge_id, self.nonce)


# Per-key outcome, computed once during reconciliation.
@dataclass(frozen=True)
class Pending:
    key: SolutionKey


@dataclass(frozen=True)
class Failed:
    key: SolutionKey
    record: FailureRecord


@dataclass(frozen=True)
class Succeeded:
    key: SolutionKey
    receipt: Receipt
    superseded_failure: Optional[FailureRecord] = None


Outcome = Union[Pending, Failed, Succeeded]


@dataclass
class AddressHistory:
    address_index: int
    address: str
    challenge_id: str
    last_attempt: datetime
    success_count: int = 0
    failure_count: int = 0
    total_attempts: int = 0
    status: str = "pending"
    success_timestamp: Optional[datetime] = None
    failures: List[FailureRecord] = field(default_factory=list)


# --------------------------------------------------------------------------- #
# Fee pool
# --------------------------------------------------------------------------- #

@dataclass
class AddressPoolSlot:
    address: str
    address_index: int
    fetched_at: datetime
    used_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "addressIndex": self.address_index,
            "fetchedAt": format_ts(self.fetched_at),
            "usedCount": self.used_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AddressPoolSlot":
        return cls(
            address=str(data["address"]),
            address_index=int(data.get("addressIndex", -1)),
            fetched_at=parse_ts(data["fetchedAt"]),
            used_count=int(data.get("usedCount", 0) or 0),
        )


# --------------------------------------------------------------------------- #
# Mining config
# --------------------------------------------------------------------------- #

@dataclass
class MiningConfig:
    worker_threads: int = DEFAULT_WORKER_THREADS
    batch_size: Optional[int] = None          # None -> authority default
    worker_grouping_mode: str = "auto"        # auto | all-on-one | grouped
    workers_per_address: int = DEFAULT_WORKERS_PER_ADDRESS

    def group_count(self) -> int:
        """How many addresses are mined in parallel."""
        if self.worker_grouping_mode == "all-on-one":
            return 1
        per = self.workers_per_address if self.worker_grouping_mode == "grouped" else AUTO_WORKERS_PER_ADDRESS
        return max(1, self.worker_threads // per)

    def assign_workers(self, address_indices: List[int]) -> Dict[int, int]:
        """
        worker id -> address index. Workers are spread round-robin over the
        first `group_count()` addresses.
        """
        if not address_indices:
            return {}
        groups = address_indices[: self.group_count()]
        return {wid: groups[wid % len(groups)] for wid in range(self.worker_threads)}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workerThreads": self.worker_threads,
            "batchSize": self.batch_size,
            "workerGroupingMode": self.worker_grouping_mode,
            "workersPerAddress": self.workers_per_address,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MiningConfig":
        base = cls()
        return cls(
            worker_threads=int(data.get("workerThreads", base.worker_threads)),
            batch_size=as_int(data.get("batchSize")),
            worker_grouping_mode=str(data.get("workerGroupingMode", base.worker_grouping_mode)),
            workers_per_address=int(data.get("workersPerAddress", base.workers_per_address)),
        )


# --------------------------------------------------------------------------- #
# Structured operation results
# --------------------------------------------------------------------------- #

@dataclass
class SubmitResult:
    accepted: bool
    message: str = ""
    receipt: Optional[Receipt] = None


@dataclass
class RetryItemResult:
    key: SolutionKey
    success: bool
    error: Optional[str] = None


@dataclass
class RetrySummary:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    results: List[RetryItemResult] = field(default_factory=list)

    def add(self, item: RetryItemResult) -> None:
        self.results.append(item)
        if item.success:
            self.succeeded += 1
        else:
            self.failed += 1


@dataclass
class PrefetchResult:
    success: bool
    fetched: int
    requested: int
    error: Optional[str] = None


@dataclass
class SeedResult:
    imported: int
    total_valid: int
    best: Optional[Challenge] = None
    error: Optional[str] = None
