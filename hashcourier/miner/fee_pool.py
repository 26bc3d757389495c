# hashcourier/miner/fee_pool.py
"""
Fee-pool rotator.

A fixed-size pool of incentive-recipient addresses is prefetched once per
session. Routing only happens when the pool is complete; a partial prefetch
discards everything and disables routing rather than rotating over fewer
addresses. Rotation is keyed off the global fee-solution counter, not off
per-slot usage, so it stays stable however unevenly slots are used.
"""

from __future__ import annotations

import asyncio
import secrets
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import requests

from hashcourier.config import (
    FEE_ADDRESS_PREFIXES,
    FEE_POOL_ENABLED,
    FEE_POOL_PACING_S,
    FEE_POOL_RATIO,
    FEE_POOL_SIZE,
)
from hashcourier.miner.errors import AuthorityError, PoolUnavailableError, ValidationError
from hashcourier.miner.logging import LogLevel, MinerPhase, log_fee_pool, miner_logger
from hashcourier.miner.models import AddressPoolSlot, PrefetchResult
from hashcourier.miner.state import Store
from hashcourier.protocol import Allocator
from hashcourier.utils.helpers import format_ts, parse_ts, utc_now
from hashcourier.utils.pretty_logs import mask

CACHE_FILE = "fee-pool-cache.json"


def new_client_id() -> str:
    return f"desktop-{secrets.token_hex(16)}"


def _empty_cache() -> Dict[str, Any]:
    return {"totalDevFeeSolutions": 0, "addressPool": []}


class FeePoolRotator:
    def __init__(
        self,
        store: Store,
        allocator: Optional[Allocator] = None,
        *,
        enabled: bool = FEE_POOL_ENABLED,
        ratio: int = FEE_POOL_RATIO,
        pacing_s: float = FEE_POOL_PACING_S,
        clock: Callable[[], datetime] = utc_now,
    ):
        if ratio < 1:
            raise ValidationError(f"fee ratio must be >= 1, got {ratio}")
        self.store = store
        self.allocator = allocator
        self.enabled = enabled
        self.ratio = ratio
        self.pacing_s = pacing_s
        self.clock = clock
        self.doc = store.document(CACHE_FILE)
        self.client_id = self._ensure_client_id()

    # ---------------------- cache ----------------------

    def _cache(self) -> Dict[str, Any]:
        data = self.doc.read(_empty_cache)
        return data if isinstance(data, dict) else _empty_cache()

    def _ensure_client_id(self) -> str:
        cid = self._cache().get("clientId")
        if cid:
            return str(cid)
        with self.doc.edit(_empty_cache) as data:
            if not data.get("clientId"):
                data["clientId"] = new_client_id()
            return str(data["clientId"])

    def pool(self) -> List[AddressPoolSlot]:
        out: List[AddressPoolSlot] = []
        for raw in self._cache().get("addressPool") or []:
            try:
                out.append(AddressPoolSlot.from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                log_fee_pool(LogLevel.HIGH, "Skipping malformed pool slot", "fee_pool", {"error": str(e)})
        return out

    @property
    def total_fee_solutions(self) -> int:
        return int(self._cache().get("totalDevFeeSolutions", 0) or 0)

    @property
    def last_fetch_error(self) -> Optional[str]:
        return self._cache().get("lastFetchError")

    @property
    def pool_fetched_at(self) -> Optional[datetime]:
        raw = self._cache().get("poolFetchedAt")
        return parse_ts(raw) if raw else None

    # ---------------------- prefetch ----------------------

    async def _fetch_one(self) -> AddressPoolSlot:
        if self.allocator is None:
            raise AuthorityError("no fee-address allocator configured")
        alloc = await asyncio.to_thread(self.allocator.allocate, self.client_id)
        if not alloc.address.startswith(FEE_ADDRESS_PREFIXES):
            raise AuthorityError(f"invalid address format: {alloc.address}")
        return AddressPoolSlot(address=alloc.address, address_index=alloc.address_index, fetched_at=self.clock())

    def _store_pool(self, slots: List[AddressPoolSlot], n: int) -> None:
        with self.doc.edit(_empty_cache) as data:
            if len(slots) < n:
                data["addressPool"] = []
                data.pop("poolFetchedAt", None)
                data["lastFetchError"] = f"Only fetched {len(slots)}/{n} addresses"
            else:
                data["addressPool"] = [s.to_dict() for s in slots]
                data["poolFetchedAt"] = format_ts(self.clock())
                data.pop("lastFetchError", None)

    async def prefetch_pool(self, n: int = FEE_POOL_SIZE,
                            on_progress: Optional[Callable[[int, bool], None]] = None) -> PrefetchResult:
        """
        Fetch `n` addresses one after another. All-or-nothing: anything short
        of the full pool clears the stored pool and disables routing.
        `on_progress(i, ok)` is called after each request.
        """
        if n != FEE_POOL_SIZE:
            raise ValidationError(f"pool size must be exactly {FEE_POOL_SIZE}, got {n}")
        if not self.enabled:
            log_fee_pool(LogLevel.MEDIUM, "Fee pool disabled; skipping prefetch", "fee_pool")
            return PrefetchResult(success=False, fetched=0, requested=n, error="fee pool disabled")

        log_fee_pool(LogLevel.MEDIUM, "Prefetching fee addresses", "fee_pool", {"count": n})
        slots: List[AddressPoolSlot] = []
        for i in range(n):
            if i:
                await asyncio.sleep(self.pacing_s)
            ok = False
            try:
                slot = await self._fetch_one()
                slots.append(slot)
                ok = True
                log_fee_pool(LogLevel.LOW, f"Address {i + 1}/{n} fetched", "fee_pool", {
                    "address": mask(slot.address),
                })
            except (AuthorityError, requests.RequestException) as e:
                log_fee_pool(LogLevel.HIGH, f"Address {i + 1}/{n} failed", "fee_pool", {"error": str(e)[:80]})
            if on_progress is not None:
                on_progress(i, ok)

        await asyncio.to_thread(self._store_pool, slots, n)

        if len(slots) < n:
            miner_logger.error(MinerPhase.FEE_POOL, "Partial prefetch; fee routing disabled for this session",
                               "fee_pool", {"fetched": len(slots), "requested": n})
            return PrefetchResult(success=False, fetched=len(slots), requested=n,
                                  error=f"Only fetched {len(slots)}/{n} addresses")

        miner_logger.success(MinerPhase.FEE_POOL, "Fee pool ready", "fee_pool", {"size": n})
        return PrefetchResult(success=True, fetched=n, requested=n)

    # ---------------------- rotation ----------------------

    def has_valid_pool(self) -> bool:
        return len(self.pool()) == FEE_POOL_SIZE

    def should_route(self, solve_number: int) -> bool:
        """True for every `ratio`-th solve (1-based) while a full pool exists."""
        if not self.enabled or solve_number < 1 or solve_number % self.ratio:
            return False
        return self.has_valid_pool()

    def next_address(self) -> str:
        pool = self.pool()
        if len(pool) != FEE_POOL_SIZE:
            raise PoolUnavailableError("No valid address pool available; fee routing disabled")
        return pool[self.total_fee_solutions % FEE_POOL_SIZE].address

    def record_fee_solution(self) -> int:
        """Advance the global counter and the used slot's count. Returns the new total."""
        if not self.has_valid_pool():
            raise PoolUnavailableError("No valid address pool available; fee routing disabled")
        with self.doc.edit(_empty_cache) as data:
            pool = data.get("addressPool") or []
            if len(pool) != FEE_POOL_SIZE:
                raise PoolUnavailableError("No valid address pool available; fee routing disabled")
            total = int(data.get("totalDevFeeSolutions", 0) or 0)
            slot = pool[total % FEE_POOL_SIZE]
            slot["usedCount"] = int(slot.get("usedCount", 0) or 0) + 1
            data["totalDevFeeSolutions"] = total + 1
        log_fee_pool(LogLevel.LOW, "Fee solution recorded", "fee_pool", {"total": total + 1})
        return total + 1

    def status(self) -> Dict[str, Any]:
        cache = self._cache()
        pool = cache.get("addressPool") or []
        return {
            "enabled": self.enabled,
            "ratio": self.ratio,
            "client_id": self.client_id,
            "total_fee_solutions": int(cache.get("totalDevFeeSolutions", 0) or 0),
            "pool_size": len(pool),
            "pool_valid": self.has_valid_pool(),
            "pool_fetched_at": cache.get("poolFetchedAt"),
            "last_fetch_error": cache.get("lastFetchError"),
        }
