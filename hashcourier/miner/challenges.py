# hashcourier/miner/challenges.py
"""
Challenge ledger and selector.

The ledger keeps every challenge ever observed, per (profile, challenge id),
in one JSON document. The authority's `latest_submission` is the deadline of
record; a locally derived "first seen + validity hours" window is only used
when a poll carries no deadline at all, and `repair_deadlines` rewrites
legacy entries whose stored expiry drifted from the authority value.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from hashcourier.config import DEFAULT_VALIDITY_HOURS, MIN_MINUTES_REMAINING
from hashcourier.miner.errors import ValidationError
from hashcourier.miner.logging import LogLevel, log_challenges
from hashcourier.miner.models import Challenge, DifficultyChange
from hashcourier.miner.state import Store
from hashcourier.protocol import ChallengePoll
from hashcourier.utils.helpers import parse_hex, parse_ts, utc_now

HISTORY_FILE = "challenge-history.json"


def _parse_entry(raw: Any) -> Optional[Challenge]:
    try:
        c = Challenge.from_dict(raw)
        parse_hex(c.difficulty)
        return c
    except (KeyError, TypeError, ValueError) as e:
        log_challenges(LogLevel.HIGH, "Skipping malformed ledger entry", "ledger", {
            "entry": str(raw)[:80],
            "error": str(e),
        })
        return None


def best_first(challenges: Iterable[Challenge]) -> List[Challenge]:
    """Easiest first (larger hex target), then the one expiring soonest."""
    return sorted(challenges, key=lambda c: (-c.difficulty_value, c.deadline))


class ChallengeLedger:
    def __init__(self, store: Store, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock
        self.doc = store.document(HISTORY_FILE)

    # ---------------------- reads ----------------------

    def _entries(self) -> List[Challenge]:
        raw = self.doc.read(list)
        if not isinstance(raw, list):
            log_challenges(LogLevel.HIGH, "Ledger document is not a list; ignoring it", "ledger")
            return []
        return [c for c in (_parse_entry(r) for r in raw) if c is not None]

    def all(self) -> List[Challenge]:
        return sorted(self._entries(), key=lambda c: c.issued_at, reverse=True)

    def count(self) -> int:
        return len(self._entries())

    def get(self, challenge_id: str, profile_id: Optional[str] = None) -> Optional[Challenge]:
        for c in self._entries():
            if c.challenge_id == challenge_id and (profile_id is None or c.profile_id == profile_id):
                return c
        return None

    def for_profile(self, profile_id: str) -> List[Challenge]:
        return [c for c in self.all() if c.profile_id == profile_id]

    def valid_challenges(self, profile_id: str) -> List[Challenge]:
        """Entries of `profile_id` whose deadline is still ahead, newest issued first."""
        now = self.clock()
        return [c for c in self.for_profile(profile_id) if c.deadline > now]

    # ---------------------- writes ----------------------

    @staticmethod
    def _find(raw: List[Any], profile_id: str, challenge_id: str) -> Tuple[int, Optional[Challenge]]:
        for i, item in enumerate(raw):
            if not isinstance(item, dict):
                continue
            if item.get("challenge_id") == challenge_id and item.get("profileId") == profile_id:
                return i, _parse_entry(item)
        return -1, None

    def record(self, challenge: ChallengePoll, profile_id: str,
               validity_hours_hint: int = DEFAULT_VALIDITY_HOURS) -> Challenge:
        """Upsert one polled challenge by (profile, challenge id)."""
        if not challenge.challenge_id:
            raise ValidationError("challenge_id is required")
        try:
            parse_hex(challenge.difficulty)
        except ValueError as e:
            raise ValidationError(f"difficulty {challenge.difficulty!r} is not hex") from e

        now = self.clock()
        try:
            deadline = parse_ts(challenge.latest_submission) if challenge.latest_submission else None
        except ValueError as e:
            raise ValidationError(f"latest_submission {challenge.latest_submission!r} is not a timestamp") from e

        with self.doc.edit(list) as raw:
            idx, existing = self._find(raw, profile_id, challenge.challenge_id)

            if existing is not None:
                existing.last_seen_at = now
                if deadline is not None:
                    existing.deadline = deadline
                if challenge.no_pre_mine_hour:
                    existing.no_pre_mine_hour = challenge.no_pre_mine_hour
                if challenge.difficulty != existing.difficulty:
                    existing.difficulty_changes.append(
                        DifficultyChange(timestamp=now, old=existing.difficulty, new=challenge.difficulty)
                    )
                    log_challenges(LogLevel.MEDIUM, "Difficulty changed", "ledger", {
                        "challenge": challenge.challenge_id,
                        "old": existing.difficulty,
                        "new": challenge.difficulty,
                    })
                    existing.difficulty = challenge.difficulty
                raw[idx] = existing.to_dict()
                return existing

            if deadline is None:
                deadline = now + timedelta(hours=validity_hours_hint)
                log_challenges(LogLevel.HIGH, "Poll carried no deadline; using validity hint", "ledger", {
                    "challenge": challenge.challenge_id,
                    "hours": validity_hours_hint,
                })

            entry = Challenge(
                challenge_id=challenge.challenge_id,
                difficulty=challenge.difficulty,
                profile_id=profile_id,
                issued_at=now,
                last_seen_at=now,
                deadline=deadline,
                no_pre_mine=challenge.no_pre_mine,
                no_pre_mine_hour=challenge.no_pre_mine_hour,
                validity_hours=validity_hours_hint,
            )
            if idx >= 0:
                # unreadable entry under the same key; replace it
                raw[idx] = entry.to_dict()
            else:
                raw.append(entry.to_dict())

        log_challenges(LogLevel.MEDIUM, "New challenge logged", "ledger", {
            "challenge": entry.challenge_id,
            "difficulty": entry.difficulty,
            "deadline": entry.deadline.isoformat(),
        })
        return entry

    def retention_sweep(self, max_age_days: int) -> int:
        """Drop entries first seen more than `max_age_days` ago, expired or not."""
        if max_age_days < 0:
            raise ValidationError("max_age_days must be >= 0")
        cutoff = self.clock() - timedelta(days=max_age_days)
        removed = 0
        with self.doc.edit(list) as raw:
            kept = []
            for item in raw:
                c = _parse_entry(item) if isinstance(item, dict) else None
                if c is not None and c.issued_at < cutoff:
                    removed += 1
                    continue
                kept.append(item)
            raw[:] = kept
        if removed:
            log_challenges(LogLevel.MEDIUM, "Retention sweep", "ledger", {
                "removed": removed,
                "max_age_days": max_age_days,
            })
        return removed

    def repair_deadlines(self) -> int:
        """
        Rewrite legacy entries so the stored deadline is the authority's
        `latest_submission` rather than a derived `expiresAt`. Returns how many
        entries had a deadline that actually differed.
        """
        corrected = 0
        with self.doc.edit(list) as raw:
            for i, item in enumerate(raw):
                if not isinstance(item, dict) or "expiresAt" not in item:
                    continue
                if not item.get("latest_submission"):
                    continue
                c = _parse_entry(item)
                if c is None:
                    continue
                try:
                    if parse_ts(item["expiresAt"]) != c.deadline:
                        corrected += 1
                except ValueError:
                    corrected += 1
                raw[i] = c.to_dict()
        if corrected:
            log_challenges(LogLevel.MEDIUM, "Corrected derived deadlines", "ledger", {"corrected": corrected})
        return corrected

    # ---------------------- seeding ----------------------

    def export(self, profile_id: str) -> List[Dict[str, Any]]:
        return [c.to_dict() for c in self.valid_challenges(profile_id)]

    def import_entries(self, entries: Iterable[Dict[str, Any]], profile_id: str) -> int:
        """
        Merge exported entries from another instance. Ids already present for
        the profile and entries whose deadline has passed are skipped.
        """
        now = self.clock()
        imported = 0
        with self.doc.edit(list) as raw:
            present = {
                item.get("challenge_id") for item in raw
                if isinstance(item, dict) and item.get("profileId") == profile_id
            }
            for item in entries:
                if not isinstance(item, dict):
                    continue
                c = _parse_entry({**item, "profileId": profile_id})
                if c is None or c.challenge_id in present or c.deadline <= now:
                    continue
                c.last_seen_at = now
                raw.append(c.to_dict())
                present.add(c.challenge_id)
                imported += 1
        log_challenges(LogLevel.MEDIUM, "Seeded challenges", "ledger", {
            "profile": profile_id,
            "imported": imported,
        })
        return imported


class ChallengeSelector:
    def __init__(self, ledger: ChallengeLedger):
        self.ledger = ledger

    def select_best(self, profile_id: str,
                    min_minutes_remaining: float = MIN_MINUTES_REMAINING) -> Optional[Challenge]:
        """
        The easiest valid challenge with more than `min_minutes_remaining`
        left; ties go to the earlier deadline. None when nothing qualifies.
        """
        now = self.ledger.clock()
        floor = timedelta(minutes=min_minutes_remaining)
        candidates = [c for c in self.ledger.valid_challenges(profile_id) if c.deadline - now > floor]
        ranked = best_first(candidates)
        return ranked[0] if ranked else None

    def same_cohort(self, no_pre_mine: str, profile_id: str) -> List[Challenge]:
        """Valid challenges sharing `no_pre_mine`, mineable back-to-back."""
        return best_first(c for c in self.ledger.valid_challenges(profile_id) if c.no_pre_mine == no_pre_mine)
