# hashcourier/miner/stats.py
"""
Read-side statistics over accepted receipts.

Receipts are bucketed by *submission* time (UTC): submission day
`floor((ts - start) / 1 day) + 1`, and the reward of a receipt is the
published rate of that day (`rates[day - 1]`), or nothing if the day's rate
is not out yet. Everything is recomputed from the receipts on each call.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from hashcourier.config import MINING_START_DATE, STATS_LAST_HOURS, TOKEN_DECIMALS
from hashcourier.miner.errors import ValidationError
from hashcourier.miner.models import Receipt
from hashcourier.utils.helpers import format_ts, utc_now

DAY = timedelta(days=1)
HOUR = timedelta(hours=1)


@dataclass
class DayStats:
    day: int
    date: str
    receipts: int = 0
    addresses: int = 0
    reward: int = 0


@dataclass
class HourStats:
    hour: str
    receipts: int = 0
    addresses: int = 0
    reward: int = 0


@dataclass
class AddressStats:
    address: str
    days: List[DayStats] = field(default_factory=list)
    total_receipts: int = 0
    total_reward: int = 0
    first_solution: Optional[str] = None
    last_solution: Optional[str] = None


@dataclass
class GlobalStats:
    total_receipts: int = 0
    total_addresses: int = 0
    days: List[DayStats] = field(default_factory=list)
    by_address: List[AddressStats] = field(default_factory=list)
    grand_total_receipts: int = 0
    grand_total_reward: int = 0
    start_date: Optional[str] = None
    end_date: Optional[str] = None


def _start_of(d: str) -> datetime:
    try:
        parsed = date.fromisoformat(d)
    except ValueError as e:
        raise ValidationError(f"mining start date {d!r} is not YYYY-MM-DD") from e
    return datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)


def _hour_floor(ts: datetime) -> datetime:
    return ts.astimezone(timezone.utc).replace(minute=0, second=0, microsecond=0)


class StatsAggregator:
    def __init__(self, mining_start_date: str = MINING_START_DATE,
                 token_decimals: int = TOKEN_DECIMALS,
                 clock: Callable[[], datetime] = utc_now):
        if token_decimals < 0:
            raise ValidationError("token_decimals must be >= 0")
        self.start = _start_of(mining_start_date)
        self.token_decimals = token_decimals
        self.clock = clock

    # ---------------------- bucketing ----------------------

    def submission_day(self, ts: datetime) -> int:
        return (ts - self.start) // DAY + 1

    def date_of_day(self, day: int) -> str:
        return (self.start + (day - 1) * DAY).date().isoformat()

    def rate_for(self, ts: datetime, rates: Sequence[int]) -> int:
        idx = self.submission_day(ts) - 1
        return rates[idx] if 0 <= idx < len(rates) else 0

    def to_display(self, raw: int) -> float:
        return raw / (10 ** self.token_decimals)

    # ---------------------- views ----------------------

    def compute_global(self, receipts: List[Receipt], rates: Sequence[int]) -> GlobalStats:
        if not receipts:
            return GlobalStats()

        global_days: Dict[int, DayStats] = {}
        global_addrs: Dict[int, set] = {}
        per_address: Dict[str, Dict[int, DayStats]] = {}
        stamps: Dict[str, List[datetime]] = {}

        for r in receipts:
            day = self.submission_day(r.ts)
            reward = self.rate_for(r.ts, rates)

            g = global_days.setdefault(day, DayStats(day=day, date=self.date_of_day(day)))
            g.receipts += 1
            g.reward += reward
            global_addrs.setdefault(day, set()).add(r.address)

            a = per_address.setdefault(r.address, {}).setdefault(day, DayStats(day=day, date=self.date_of_day(day)))
            a.receipts += 1
            a.reward += reward
            stamps.setdefault(r.address, []).append(r.ts)

        for day, g in global_days.items():
            g.addresses = len(global_addrs[day])

        by_address: List[AddressStats] = []
        for address, days in per_address.items():
            ts_sorted = sorted(stamps[address])
            rows = sorted(days.values(), key=lambda d: d.day, reverse=True)
            by_address.append(AddressStats(
                address=address,
                days=rows,
                total_receipts=sum(d.receipts for d in rows),
                total_reward=sum(d.reward for d in rows),
                first_solution=format_ts(ts_sorted[0]),
                last_solution=format_ts(ts_sorted[-1]),
            ))
        by_address.sort(key=lambda a: a.total_receipts, reverse=True)

        days_desc = sorted(global_days.values(), key=lambda d: d.day, reverse=True)
        return GlobalStats(
            total_receipts=len(receipts),
            total_addresses=len(per_address),
            days=days_desc,
            by_address=by_address,
            grand_total_receipts=len(receipts),
            grand_total_reward=sum(a.total_reward for a in by_address),
            start_date=days_desc[-1].date,
            end_date=days_desc[0].date,
        )

    def _hour_bucket(self, receipts: List[Receipt], rates: Sequence[int], start: datetime) -> HourStats:
        end = start + HOUR
        inside = [r for r in receipts if start <= r.ts < end]
        return HourStats(
            hour=format_ts(start),
            receipts=len(inside),
            addresses=len({r.address for r in inside}),
            reward=sum(self.rate_for(r.ts, rates) for r in inside),
        )

    def previous_hour(self, receipts: List[Receipt], rates: Sequence[int]) -> Optional[HourStats]:
        """The last complete hour: at 11:22 that is 10:00-11:00."""
        if not receipts:
            return None
        return self._hour_bucket(receipts, rates, _hour_floor(self.clock()) - HOUR)

    def last_hours(self, receipts: List[Receipt], rates: Sequence[int],
                   hours: int = STATS_LAST_HOURS) -> List[HourStats]:
        """The last `hours` complete hours, oldest first."""
        if not receipts or hours <= 0:
            return []
        top = _hour_floor(self.clock())
        return [self._hour_bucket(receipts, rates, top - (i + 1) * HOUR) for i in range(hours - 1, -1, -1)]

    def today(self, receipts: List[Receipt], rates: Sequence[int]) -> Optional[DayStats]:
        today = self.clock().astimezone(timezone.utc).date()
        todays = [r for r in receipts if r.ts.astimezone(timezone.utc).date() == today]
        if not todays:
            return None
        day = self.submission_day(todays[0].ts)
        return DayStats(
            day=day,
            date=today.isoformat(),
            receipts=len(todays),
            addresses=len({r.address for r in todays}),
            reward=len(todays) * self.rate_for(todays[0].ts, rates),
        )

    def solutions_per_hour(self, receipts: List[Receipt], hours: float = 24) -> float:
        if hours <= 0:
            raise ValidationError("hours must be > 0")
        if not receipts:
            return 0.0
        cutoff = self.clock() - timedelta(hours=hours)
        return sum(1 for r in receipts if r.ts >= cutoff) / hours

    # ---------------------- snapshot ----------------------

    def _scaled(self, row: Any) -> Dict[str, Any]:
        data = asdict(row)
        for key in ("reward", "total_reward"):
            if key in data:
                data[key] = self.to_display(data[key])
        if "days" in data:
            for d in data["days"]:
                d["reward"] = self.to_display(d["reward"])
        return data

    def snapshot(self, receipts: List[Receipt], rates: Sequence[int], failure_total: int = 0) -> Dict[str, Any]:
        """Everything the dashboard shows, rewards in display units. Fee receipts are excluded."""
        own = [r for r in receipts if not r.is_fee_solution]
        g = self.compute_global(own, rates)
        hourly = self.previous_hour(own, rates)
        today = self.today(own, rates)
        return {
            "global": {
                "total_receipts": g.total_receipts,
                "total_addresses": g.total_addresses,
                "days": [self._scaled(d) for d in g.days],
                "by_address": [self._scaled(a) for a in g.by_address],
                "grand_total": {
                    "receipts": g.grand_total_receipts,
                    "reward": self.to_display(g.grand_total_reward),
                },
                "start_date": g.start_date,
                "end_date": g.end_date,
            },
            "hourly": self._scaled(hourly) if hourly else None,
            "last_hours": [self._scaled(h) for h in self.last_hours(own, rates)],
            "today": self._scaled(today) if today else None,
            "rate": {
                "per_hour_24h": self.solutions_per_hour(own, 24),
                "per_hour_1h": self.solutions_per_hour(own, 1),
            },
            "failures": {"total": failure_total},
        }
