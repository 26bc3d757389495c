# ──────────────────────────────────────────────────────────────────────────
# tests/conftest.py
# --------------------------------------------------------------------------
"""
Shared fixtures: a tmp_path-backed Store, a settable clock and in-memory
stand-ins for the authority and the fee-address allocator. Nothing here
touches the network.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from hashcourier.miner.errors import AuthorityError
from hashcourier.miner.models import FailureEvent, Receipt
from hashcourier.miner.state import Store
from hashcourier.protocol import Allocation, ChallengePoll, DerivedAddress, SubmissionResponse

T0 = datetime(2025, 11, 25, 12, 30, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kw) -> None:
        self.now = self.now + timedelta(**kw)


class FakeAuthority:
    """Accepts everything unless told otherwise; records every call."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.reject: Dict[tuple, str] = {}
        self.challenge: Optional[ChallengePoll] = None
        self.rates: List[int] = []
        self.export: List[dict] = []
        self.registered: List[tuple] = []
        self.register_status: Optional[int] = None

    def submit_solution(self, address: str, challenge_id: str, nonce: str) -> SubmissionResponse:
        self.calls.append((address, challenge_id, nonce))
        msg = self.reject.get((address, challenge_id, nonce))
        if msg is not None:
            raise AuthorityError(msg, 400)
        return SubmissionResponse(accepted=True, crypto_receipt={"sig": f"r-{nonce}"})

    def fetch_challenge(self) -> Optional[ChallengePoll]:
        return self.challenge

    def fetch_rates(self) -> List[int]:
        return list(self.rates)

    def fetch_challenge_export(self, url: str) -> List[dict]:
        if url.endswith("/broken"):
            raise AuthorityError("seed source unreachable")
        return list(self.export)

    def register(self, address: str, signature: str, public_key: str) -> dict:
        self.registered.append((address, signature, public_key))
        if self.register_status is not None:
            raise AuthorityError("registration refused", self.register_status)
        return {"status": "registered"}


class FakeAllocator:
    """Hands out `good` valid addresses, then fails every further request."""

    def __init__(self, good: int = 10, prefix: str = "tnight1"):
        self.good = good
        self.prefix = prefix
        self.calls = 0

    def allocate(self, client_id: str) -> Allocation:
        self.calls += 1
        if self.calls > self.good:
            raise AuthorityError("allocator exhausted", 503)
        return Allocation(address=f"{self.prefix}q{self.calls:040d}", address_index=self.calls, is_new_assignment=True)


class FakeWallet:
    def derive_address(self, index: int) -> DerivedAddress:
        return DerivedAddress(index=index, bech32=f"addr1w{index:050d}", public_key_hex="ab" * 32)

    def sign(self, address_index: int, message: str) -> str:
        return f"sig-{address_index}-{len(message)}"


def receipt(ts: datetime, address: str = "addr1alice", challenge_id: str = "**D06C01",
            nonce: str = "00000000000000aa", address_index: Optional[int] = 0, fee: bool = False) -> Receipt:
    return Receipt(ts=ts, address=address, challenge_id=challenge_id, nonce=nonce,
                   hash="h", address_index=address_index, is_fee_solution=fee)


def failure(ts: datetime, address: str = "addr1alice", challenge_id: str = "**D06C01",
            nonce: str = "00000000000000aa", error: str = "rejected",
            address_index: Optional[int] = 0) -> FailureEvent:
    return FailureEvent(ts=ts, address=address, challenge_id=challenge_id, nonce=nonce,
                        error=error, hash="h", address_index=address_index)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path) -> Store:
    return Store(tmp_path / "home", "defensio")


@pytest.fixture
def authority() -> FakeAuthority:
    return FakeAuthority()
