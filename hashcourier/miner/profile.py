# hashcourier/miner/profile.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import yaml

from hashcourier.config import (
    DEFAULT_API_BASE_URL,
    DEFAULT_VALIDITY_HOURS,
    FEE_POOL_API_URL,
    FEE_POOL_ENABLED,
    FEE_POOL_RATIO,
    MINING_START_DATE,
    TOKEN_DECIMALS,
)
from hashcourier.miner.errors import ProfileError

# ------------------------------------------------------------------ #
#  Project profile (one YAML file per mining project)                #
# ------------------------------------------------------------------ #


@dataclass
class Profile:
    id: str
    name: str
    api_base_url: str = DEFAULT_API_BASE_URL
    mining_start_date: str = MINING_START_DATE
    validity_hours: int = DEFAULT_VALIDITY_HOURS
    token_decimals: int = TOKEN_DECIMALS
    fee_pool_enabled: bool = FEE_POOL_ENABLED
    fee_pool_ratio: int = FEE_POOL_RATIO
    fee_pool_api_url: str = FEE_POOL_API_URL


def profile_from_dict(raw: Dict[str, Any]) -> Profile:
    """
    Accepts either flat keys or the nested `api` / `token` / `challenge` /
    `fee_pool` blocks:

        id: defensio
        name: Defensio
        api: {base_url: https://mine.defensio.io/api}
        token: {decimals: 6}
        challenge: {start_date: 2025-11-20, validity_hours: 24}
        fee_pool: {enabled: true, ratio: 24}
    """
    if not isinstance(raw, dict):
        raise ProfileError("profile must be a mapping")
    pid = raw.get("id")
    if not pid or not isinstance(pid, str):
        raise ProfileError("profile 'id' is required")

    api = raw.get("api") or {}
    token = raw.get("token") or {}
    challenge = raw.get("challenge") or {}
    fee = raw.get("fee_pool") or {}

    try:
        p = Profile(
            id=pid,
            name=str(raw.get("name") or pid),
            api_base_url=str(api.get("base_url") or raw.get("api_base_url") or DEFAULT_API_BASE_URL).rstrip("/"),
            mining_start_date=str(challenge.get("start_date") or raw.get("mining_start_date") or MINING_START_DATE),
            validity_hours=int(challenge.get("validity_hours", raw.get("validity_hours", DEFAULT_VALIDITY_HOURS))),
            token_decimals=int(token.get("decimals", raw.get("token_decimals", TOKEN_DECIMALS))),
            fee_pool_enabled=bool(fee.get("enabled", FEE_POOL_ENABLED)),
            fee_pool_ratio=int(fee.get("ratio", FEE_POOL_RATIO)),
            fee_pool_api_url=str(fee.get("api_url") or FEE_POOL_API_URL),
        )
    except (AttributeError, TypeError, ValueError) as e:
        raise ProfileError(f"bad profile {pid!r}: {e}") from e

    if p.validity_hours < 1:
        raise ProfileError("validity_hours must be >= 1")
    if p.token_decimals < 0:
        raise ProfileError("token decimals must be >= 0")
    if p.fee_pool_ratio < 1:
        raise ProfileError("fee_pool ratio must be >= 1")
    if not p.api_base_url.startswith(("http://", "https://")):
        raise ProfileError(f"api base url {p.api_base_url!r} is not http(s)")
    return p


def load_profile(path: str | Path) -> Profile:
    path = Path(path)
    if not path.exists():
        raise ProfileError(f"{path} not found")
    try:
        raw = yaml.safe_load(path.read_text()) or {}
    except yaml.YAMLError as e:
        raise ProfileError(f"{path}: {e}") from e
    return profile_from_dict(raw)
