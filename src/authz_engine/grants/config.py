"""Runtime configuration for the grant engine.

Only operational knobs are configurable.  The authorization code policy
(26 random bytes, 10 minute TTL) is fixed in :mod:`authz_engine.grants.codes`
and deliberately has no environment override.

Environment variables
---------------------
AUTHZ_ACCESS_TOKEN_TTL
    Lifetime of issued access tokens in seconds (default ``3600``).
AUTHZ_STORAGE_DIR
    Base directory of the on-disk repository.
    Defaults to ``~/.authz-engine/store`` when unset.
AUTHZ_TOKEN_CACHE_SIZE
    Maximum number of access tokens held in the ephemeral cache
    (default ``100000``).
AUTHZ_USER_HEADER
    Request header carrying the user id established by the login
    front-end (default ``X-Authenticated-User``).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger("authz-engine.grants.config")

DEFAULT_ACCESS_TOKEN_TTL = 3600
DEFAULT_TOKEN_CACHE_SIZE = 100_000
DEFAULT_USER_HEADER = "X-Authenticated-User"


def _default_storage_dir() -> Path:
    return Path.home() / ".authz-engine" / "store"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s=%s, using %s", name, value, default)
        return default
    return value


@dataclass(frozen=True)
class EngineConfig:
    """Operational settings shared by the service, repository and HTTP layer."""

    access_token_ttl: int = DEFAULT_ACCESS_TOKEN_TTL
    storage_dir: Path = field(default_factory=_default_storage_dir)
    token_cache_size: int = DEFAULT_TOKEN_CACHE_SIZE
    user_header: str = DEFAULT_USER_HEADER

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Build a configuration from ``AUTHZ_*`` environment variables."""
        storage_raw = os.getenv("AUTHZ_STORAGE_DIR")
        storage_dir = (
            Path(storage_raw).expanduser() if storage_raw else _default_storage_dir()
        )
        return cls(
            access_token_ttl=_int_env("AUTHZ_ACCESS_TOKEN_TTL", DEFAULT_ACCESS_TOKEN_TTL),
            storage_dir=storage_dir,
            token_cache_size=_int_env("AUTHZ_TOKEN_CACHE_SIZE", DEFAULT_TOKEN_CACHE_SIZE),
            user_header=os.getenv("AUTHZ_USER_HEADER") or DEFAULT_USER_HEADER,
        )
