# hashcourier/miner/logging.py
"""
Phase-aware logging for the mining coordinator.
Every ledger, the retry coordinator and the fee pool log through here so
the console keeps one consistent colour/icon per phase.
"""

from __future__ import annotations

from typing import Any, Iterable, List, Tuple, Dict, Optional
from enum import Enum

from hashcourier.utils.pretty_logs import pretty, mask


class MinerPhase(Enum):
    """Coordinator phases with associated colors and icons."""
    INITIALIZATION = ("init", "🔧", "bold magenta")
    CHALLENGES = ("challenges", "🎯", "bold cyan")
    SUBMISSIONS = ("submissions", "📋", "bold blue")
    FEE_POOL = ("fee_pool", "💰", "bold green")
    STATS = ("stats", "📈", "bold white")


class LogLevel(Enum):
    """Log importance levels - kept for call-site readability, not displayed."""
    CRITICAL = ("CRITICAL", "bold red")
    HIGH = ("HIGH", "bold yellow")
    MEDIUM = ("MEDIUM", "bold white")
    LOW = ("LOW", "dim white")
    DEBUG = ("DEBUG", "dim gray")


class MinerLogger:
    """
    Phase-aware logger. Formats `icon [component] message | k=v` lines and
    renders phase-coloured tables and panels.
    """

    def __init__(self, component_name: str = "miner"):
        self.component_name = component_name

    def _format_message(self, phase: MinerPhase, message: str,
                        component: Optional[str] = None, details: Optional[Dict[str, Any]] = None,
                        color: Optional[str] = None) -> str:
        _name, icon, phase_color = phase.value
        style = color or phase_color
        comp = f"[{component or self.component_name}]"
        formatted = f"[{style}]{icon}[/{style}] {comp} {message}"

        if details:
            parts = []
            for key, value in details.items():
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    parts.append(f"{key}={value}")
                else:
                    parts.append(f"{key}='{value}'")
            formatted += f" | {' | '.join(parts)}"
        return formatted

    def log(self, phase: MinerPhase, message: str,
            component: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        pretty.log(self._format_message(phase, message, component, details))

    def success(self, phase: MinerPhase, message: str, component: Optional[str] = None,
                details: Optional[Dict[str, Any]] = None):
        pretty.log(self._format_message(phase, message, component, details, color="bold green"))

    def warning(self, phase: MinerPhase, message: str, component: Optional[str] = None,
                details: Optional[Dict[str, Any]] = None):
        pretty.log(self._format_message(phase, message, component, details, color="bold yellow"))

    def error(self, phase: MinerPhase, message: str, component: Optional[str] = None,
              details: Optional[Dict[str, Any]] = None):
        pretty.log(self._format_message(phase, message, component, details, color="bold red"))

    def phase_panel(self, phase: MinerPhase, title: str, items: Iterable[Tuple[str, Any]],
                    color: Optional[str] = None):
        _name, icon, phase_color = phase.value
        pretty.kv_panel(f"{icon} {title}", items, style=color or phase_color)

    def phase_table(self, phase: MinerPhase, title: str, columns: List[str], rows: List[List[Any]],
                    caption: Optional[str] = None, limit: Optional[int] = None):
        _name, icon, _color = phase.value
        if limit is None:
            pretty.table(f"{icon} {title}", columns, rows, caption)
        else:
            pretty.table(f"{icon} {title}", columns, rows, caption, limit=limit)

    # ---------------------- domain summaries ----------------------

    def challenge_table(self, title: str, challenges: List[Any], now) -> None:
        rows = []
        for c in challenges:
            minutes_left = int((c.deadline - now).total_seconds() // 60)
            rows.append([
                c.challenge_id,
                c.difficulty,
                c.no_pre_mine[:10] + ("…" if len(c.no_pre_mine) > 10 else ""),
                c.deadline.strftime("%Y-%m-%d %H:%M"),
                f"{minutes_left} min" if minutes_left > 0 else "expired",
                len(c.difficulty_changes),
            ])
        if rows:
            self.phase_table(MinerPhase.CHALLENGES, title,
                             ["Challenge", "Difficulty", "Cohort", "Deadline (UTC)", "Left", "ΔDiff"], rows)
        else:
            self.log(MinerPhase.CHALLENGES, f"{title}: none")

    def failure_table(self, failures: List[Any]) -> None:
        rows = [[
            mask(f.address),
            f.address_index if f.address_index is not None else "?",
            f.challenge_id,
            f.nonce,
            f.retry_count,
            f.last_attempt.strftime("%m-%d %H:%M"),
            (f.error or "")[:32],
        ] for f in failures]
        if rows:
            self.phase_table(MinerPhase.SUBMISSIONS, "Active Failures",
                             ["Address", "Idx", "Challenge", "Nonce", "Tries", "Last", "Error"], rows)

    def retry_summary(self, total: int, succeeded: int, failed: int, window_hours: int) -> None:
        items = [
            ("window", f"{window_hours} h"),
            ("total", total),
            ("succeeded", succeeded),
            ("failed", failed),
        ]
        color = "bold green" if failed == 0 else "bold yellow"
        self.phase_panel(MinerPhase.SUBMISSIONS, "Retry Summary", items, color=color)

    def pool_summary(self, status: Dict[str, Any]) -> None:
        items = [(k, v if v is not None else "-") for k, v in status.items()]
        color = "bold green" if status.get("pool_valid") else "bold red"
        self.phase_panel(MinerPhase.FEE_POOL, "Fee Pool", items, color=color)


# Global logger instance for coordinator components
miner_logger = MinerLogger("courier")


def log_init(level: LogLevel, message: str, component: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
    """Log an initialization phase message."""
    miner_logger.log(MinerPhase.INITIALIZATION, message, component, details)


def log_challenges(level: LogLevel, message: str, component: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
    """Log a challenge ledger / selector message."""
    miner_logger.log(MinerPhase.CHALLENGES, message, component, details)


def log_submissions(level: LogLevel, message: str, component: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
    """Log a submission ledger / retry message."""
    miner_logger.log(MinerPhase.SUBMISSIONS, message, component, details)


def log_fee_pool(level: LogLevel, message: str, component: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
    """Log a fee pool message."""
    miner_logger.log(MinerPhase.FEE_POOL, message, component, details)


def log_stats(level: LogLevel, message: str, component: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
    """Log a statistics message."""
    miner_logger.log(MinerPhase.STATS, message, component, details)
