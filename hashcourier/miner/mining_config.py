# hashcourier/miner/mining_config.py
from __future__ import annotations

from typing import Any, Dict

from hashcourier.config import BATCH_SIZE_MAX, BATCH_SIZE_MIN, GROUPING_MODES
from hashcourier.miner.errors import ConfigError
from hashcourier.miner.logging import LogLevel, log_init
from hashcourier.miner.models import MiningConfig
from hashcourier.miner.state import Store

CONFIG_FILE = "mining-config.json"

_FIELDS = ("worker_threads", "batch_size", "worker_grouping_mode", "workers_per_address")


def validate(cfg: MiningConfig) -> MiningConfig:
    """Raise ConfigError for any out-of-contract value. Nothing is clamped."""
    if isinstance(cfg.worker_threads, bool) or not isinstance(cfg.worker_threads, int) or cfg.worker_threads < 1:
        raise ConfigError(f"worker_threads must be an int >= 1, got {cfg.worker_threads!r}")
    if cfg.batch_size is not None and (
        isinstance(cfg.batch_size, bool)
        or not isinstance(cfg.batch_size, int)
        or not BATCH_SIZE_MIN <= cfg.batch_size <= BATCH_SIZE_MAX
    ):
        raise ConfigError(f"batch_size must be None or {BATCH_SIZE_MIN}..{BATCH_SIZE_MAX}, got {cfg.batch_size!r}")
    if cfg.worker_grouping_mode not in GROUPING_MODES:
        raise ConfigError(f"worker_grouping_mode must be one of {GROUPING_MODES}, got {cfg.worker_grouping_mode!r}")
    if (
        isinstance(cfg.workers_per_address, bool)
        or not isinstance(cfg.workers_per_address, int)
        or not 1 <= cfg.workers_per_address <= cfg.worker_threads
    ):
        raise ConfigError(
            f"workers_per_address must be 1..{cfg.worker_threads}, got {cfg.workers_per_address!r}"
        )
    return cfg


class MiningConfigStore:
    """
    Persisted worker/batch/grouping tunables. Every mutation is written
    through immediately; nothing is cached across calls.
    """

    def __init__(self, store: Store):
        self.doc = store.document(CONFIG_FILE)

    def load(self) -> MiningConfig:
        return self.load_from(self.doc.read(dict))

    def save(self, cfg: MiningConfig) -> MiningConfig:
        validate(cfg)
        self.doc.write(cfg.to_dict())
        return cfg

    def update(self, **changes: Any) -> MiningConfig:
        unknown = set(changes) - set(_FIELDS)
        if unknown:
            raise ConfigError(f"unknown mining config field(s): {', '.join(sorted(unknown))}")
        with self.doc.edit(dict) as data:
            current = self.load_from(data)
            merged: Dict[str, Any] = {f: getattr(current, f) for f in _FIELDS}
            merged.update(changes)
            cfg = validate(MiningConfig(**merged))
            data.clear()
            data.update(cfg.to_dict())
        log_init(LogLevel.MEDIUM, "Mining config updated", "config", cfg.to_dict())
        return cfg

    @staticmethod
    def load_from(data: Any) -> MiningConfig:
        if not isinstance(data, dict) or not data:
            return MiningConfig()
        try:
            return validate(MiningConfig.from_dict(data))
        except (TypeError, ValueError) as e:
            log_init(LogLevel.HIGH, "Stored mining config invalid, using defaults", "config", {"error": str(e)})
            return MiningConfig()
