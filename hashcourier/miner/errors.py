# hashcourier/miner/errors.py
from __future__ import annotations


class CourierError(Exception):
    """Base class for coordinator errors."""


class ValidationError(CourierError, ValueError):
    """Caller-supplied parameter outside its contract. Never clamped."""


class NonceFormatError(ValidationError):
    """Rendered nonce is not exactly 16 hex characters."""


class ConfigError(ValidationError):
    pass


class ProfileError(ValidationError):
    pass


class PoolUnavailableError(CourierError):
    """No full fee-address pool is available for this session."""


class AuthorityError(CourierError):
    """The remote authority was unreachable, timed out or answered non-2xx."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
