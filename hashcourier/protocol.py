# hashcourier/protocol.py
# ╭────────────────────────────────────────────────────────────────────╮
# │ Wire shapes exchanged with the remote authority, the fee-address   │
# │ allocator and the wallet capability.                               │
# ╰────────────────────────────────────────────────────────────────────╯

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol


@dataclass
class ChallengePoll:
    """One `GET /challenge` answer. `latest_submission` is the deadline."""
    challenge_id: str
    difficulty: str
    latest_submission: Optional[str] = None
    no_pre_mine: str = ""
    no_pre_mine_hour: str = ""

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "ChallengePoll":
        if "challenge" in data and isinstance(data["challenge"], dict):
            data = data["challenge"]
        return cls(
            challenge_id=str(data.get("challenge_id") or data.get("challengeId") or ""),
            difficulty=str(data.get("difficulty") or ""),
            latest_submission=data.get("latest_submission") or data.get("deadline"),
            no_pre_mine=str(data.get("no_pre_mine") or ""),
            no_pre_mine_hour=str(data.get("no_pre_mine_hour") or ""),
        )


@dataclass
class SubmissionResponse:
    accepted: bool
    message: str = ""
    crypto_receipt: Any = None


@dataclass
class Allocation:
    address: str
    address_index: int
    is_new_assignment: bool = False


@dataclass
class DerivedAddress:
    index: int
    bech32: str
    public_key_hex: str


class Submitter(Protocol):
    def submit_solution(self, address: str, challenge_id: str, nonce: str) -> SubmissionResponse: ...


class Allocator(Protocol):
    def allocate(self, client_id: str) -> Allocation: ...


class WalletCapability(Protocol):
    """Key derivation and signing live outside this package."""

    def derive_address(self, index: int) -> DerivedAddress: ...

    def sign(self, address_index: int, message: str) -> str: ...
