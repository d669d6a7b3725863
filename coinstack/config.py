"""Global configuration for the coinstack data layer.

All tunables can be overridden via environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from .backoff import BackoffPolicy


def _env_float(key: str, default: float) -> float:
    """Read an env var as float, returning *default* on parse failure."""
    try:
        return float(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


def _env_int(key: str, default: int) -> int:
    """Read an env var as int, returning *default* on parse failure."""
    try:
        return int(os.getenv(key, str(default)))
    except (ValueError, TypeError):
        return default


@dataclass(frozen=True)
class Config:
    """Central configuration – one instance per process.

    Environment variables are read at **instantiation** time (not module
    import time) so callers can set them programmatically before
    creating a ``Config``.
    """

    # ── Credentials (repr=False to prevent accidental logging) ──
    coingecko_api_key: str = field(default_factory=lambda: os.getenv("COINGECKO_API_KEY", ""), repr=False)
    ethplorer_api_key: str = field(default_factory=lambda: os.getenv("ETHPLORER_API_KEY", "freekey"), repr=False)

    # ── Upstreams ───────────────────────────────────────────────
    coingecko_base: str = field(default_factory=lambda: os.getenv(
        "COINGECKO_BASE", "https://api.coingecko.com/api/v3",
    ))
    http_timeout_s: float = field(default_factory=lambda: _env_float("HTTP_TIMEOUT_S", 15.0))

    # ── Cache ───────────────────────────────────────────────────
    cache_ttl_s: float = field(default_factory=lambda: _env_float("CACHE_TTL_S", 120.0))

    # ── Retry / backoff ─────────────────────────────────────────
    backoff_growth: float = field(default_factory=lambda: _env_float("BACKOFF_GROWTH", 1.5))
    backoff_jitter_ms: float = field(default_factory=lambda: _env_float("BACKOFF_JITTER_MS", 200.0))
    # With a key the free-tier limits no longer apply, so every call
    # starts from this base instead of its own.
    keyed_backoff_ms: float = field(default_factory=lambda: _env_float("KEYED_BACKOFF_MS", 500.0))
    unkeyed_backoff_multiplier: float = field(default_factory=lambda: _env_float("UNKEYED_BACKOFF_MULTIPLIER", 2.0))

    # ── News aggregation ────────────────────────────────────────
    news_min_items: int = field(default_factory=lambda: _env_int("NEWS_MIN_ITEMS", 5))
    flash_limit: int = field(default_factory=lambda: _env_int("NEWS_FLASH_LIMIT", 20))
    article_limit: int = field(default_factory=lambda: _env_int("NEWS_ARTICLE_LIMIT", 10))

    # ── Wallet lookup ───────────────────────────────────────────
    dust_threshold: float = field(default_factory=lambda: _env_float("WALLET_DUST_THRESHOLD", 0.0001))

    # ── Persisted preferences ───────────────────────────────────
    prefs_path: str = field(default_factory=lambda: os.getenv("PREFS_PATH", "coinstack/prefs.db"))

    # ── Derived helpers ─────────────────────────────────────────

    def backoff_policy(self, has_key: bool) -> BackoffPolicy:
        """Retry timing for market-data calls, tuned by key presence."""
        if has_key:
            return BackoffPolicy(
                base_ms=self.keyed_backoff_ms,
                growth=self.backoff_growth,
                jitter_ms=self.backoff_jitter_ms,
            )
        return BackoffPolicy(
            growth=self.backoff_growth,
            jitter_ms=self.backoff_jitter_ms,
            multiplier=self.unkeyed_backoff_multiplier,
        )

    @property
    def default_policy(self) -> BackoffPolicy:
        """Policy for keyless upstreams (news, sentiment, wallet)."""
        return BackoffPolicy(growth=self.backoff_growth, jitter_ms=self.backoff_jitter_ms)
