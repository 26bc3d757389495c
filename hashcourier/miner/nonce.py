# hashcourier/miner/nonce.py
"""
Nonce space partitioning.

A nonce is 8 bytes rendered as 16 lowercase hex characters. The top byte is
the worker id, so workers with different ids can never draw the same value;
the low 7 bytes are uniform random (collision avoidance, not security).
"""

from __future__ import annotations

import random
from typing import Iterator, Optional

from hashcourier.miner.errors import NonceFormatError, ValidationError

NONCE_HEX_LEN = 16
MAX_WORKER_ID = 0xFF


def _check_worker_id(worker_id: int) -> None:
    if isinstance(worker_id, bool) or not isinstance(worker_id, int):
        raise ValidationError(f"worker_id must be an int, got {type(worker_id).__name__}")
    if not 0 <= worker_id <= MAX_WORKER_ID:
        raise ValidationError(f"worker_id {worker_id} outside [0, {MAX_WORKER_ID}]")


def generate_nonce(worker_id: int = 0, rng: Optional[random.Random] = None) -> str:
    _check_worker_id(worker_id)
    low = (rng or random).getrandbits(56)
    nonce = f"{worker_id:02x}{low:014x}"
    if len(nonce) != NONCE_HEX_LEN:
        raise NonceFormatError(f"generated nonce has length {len(nonce)}, expected {NONCE_HEX_LEN}")
    return nonce


def partition(worker_id: int, rng: Optional[random.Random] = None) -> Iterator[str]:
    """Endless stream of nonce candidates owned by `worker_id`."""
    _check_worker_id(worker_id)
    while True:
        yield generate_nonce(worker_id, rng)


def worker_of(nonce: str) -> int:
    """Top byte of a rendered nonce, i.e. the worker that owns it."""
    if len(nonce) != NONCE_HEX_LEN:
        raise NonceFormatError(f"nonce {nonce!r} is not {NONCE_HEX_LEN} hex characters")
    return int(nonce[:2], 16)
