"""
hashcourier/config.py: global constants
(challenge ledger, submission ledger, fee pool, stats, pretty logs)
"""

from __future__ import annotations
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()

# ╭─────────────────────────── ENVIRONMENT ────────────────────────────╮
HASHCOURIER_HOME: Path = Path(
    os.getenv("HASHCOURIER_HOME", str(Path.home() / "Documents" / "HashCourier"))
).expanduser()
DEFAULT_PROJECT_ID: str = os.getenv("HASHCOURIER_PROJECT", "defensio")
DEFAULT_API_BASE_URL: str = os.getenv("HASHCOURIER_API_BASE_URL", "https://mine.defensio.io/api")
# ╰────────────────────────────────────────────────────────────────────╯


# ╭───────────────────────────── HTTP ─────────────────────────────────╮
CHALLENGE_TIMEOUT_S: float = float(os.getenv("CHALLENGE_TIMEOUT_S", "30"))
SUBMIT_TIMEOUT_S: float = float(os.getenv("SUBMIT_TIMEOUT_S", "30"))
RATES_TIMEOUT_S: float = float(os.getenv("RATES_TIMEOUT_S", "5"))
ALLOCATE_TIMEOUT_S: float = float(os.getenv("ALLOCATE_TIMEOUT_S", "10"))
SEED_TIMEOUT_S: float = float(os.getenv("SEED_TIMEOUT_S", "15"))
HTTP_POOL_SIZE: int = int(os.getenv("HTTP_POOL_SIZE", "20"))
# ╰────────────────────────────────────────────────────────────────────╯


# ╭─────────────────────────── CHALLENGES ─────────────────────────────╮
DEFAULT_VALIDITY_HOURS: int = int(os.getenv("DEFAULT_VALIDITY_HOURS", "24"))
MIN_MINUTES_REMAINING: int = int(os.getenv("MIN_MINUTES_REMAINING", "15"))
RETENTION_DAYS: int = int(os.getenv("RETENTION_DAYS", "30"))
# ╰────────────────────────────────────────────────────────────────────╯


# ╭─────────────────────────── SUBMISSIONS ────────────────────────────╮
RETRY_WINDOW_HOURS: int = int(os.getenv("RETRY_WINDOW_HOURS", "24"))
RETRY_PACING_S: float = float(os.getenv("RETRY_PACING_S", "0.2"))
RECENT_FAILURE_HOURS: int = 24
# ╰────────────────────────────────────────────────────────────────────╯


# ╭──────────────────────────── FEE POOL ──────────────────────────────╮
# Fixed; a pool of any other size is never used.
FEE_POOL_SIZE: int = 10
FEE_POOL_ENABLED: bool = os.getenv("FEE_POOL_ENABLED", "true").lower() == "true"
FEE_POOL_RATIO: int = int(os.getenv("FEE_POOL_RATIO", "24"))
FEE_POOL_API_URL: str = os.getenv("FEE_POOL_API_URL", "https://miner.ada.markets/api/get-dev-address")
FEE_POOL_PACING_S: float = float(os.getenv("FEE_POOL_PACING_S", "0.5"))
FEE_ADDRESS_PREFIXES: tuple[str, ...] = ("tnight1", "addr1")
# ╰────────────────────────────────────────────────────────────────────╯


# ╭────────────────────────────── STATS ───────────────────────────────╮
MINING_START_DATE: str = os.getenv("MINING_START_DATE", "2025-11-20")
TOKEN_DECIMALS: int = int(os.getenv("TOKEN_DECIMALS", "6"))
STATS_LAST_HOURS: int = int(os.getenv("STATS_LAST_HOURS", "8"))
# ╰────────────────────────────────────────────────────────────────────╯


# ╭───────────────────────── MINING CONFIG ────────────────────────────╮
DEFAULT_WORKER_THREADS: int = 11
DEFAULT_WORKERS_PER_ADDRESS: int = 5
AUTO_WORKERS_PER_ADDRESS: int = 5
BATCH_SIZE_MIN: int = 50
BATCH_SIZE_MAX: int = 10_000
GROUPING_MODES: tuple[str, ...] = ("auto", "all-on-one", "grouped")
# ╰────────────────────────────────────────────────────────────────────╯


# ╭──────────────────────────── LOGGING (pretty) ──────────────────────╮
PRETTY_LOGS: bool = os.getenv("PRETTY_LOGS", "true").lower() == "true"
LOG_TOP_N: int = int(os.getenv("LOG_TOP_N", "12"))
MASK_ADDRESSES: bool = os.getenv("MASK_ADDRESSES", "true").lower() == "true"
# ╰────────────────────────────────────────────────────────────────────╯
