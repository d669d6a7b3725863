"""Crypto Fear & Greed index from alternative.me (free, no key needed)."""

from __future__ import annotations

import logging

from ._http import as_dict_list, log_fetch_warning
from .common_types import FearGreed
from .config import Config
from .errors import CoinstackError
from .fetch_core import ResilientFetcher

logger = logging.getLogger(__name__)

FNG_URL = "https://api.alternative.me/fng/"


class FearGreedAdapter:
    """The index moves once a day, so a cached value is always good enough."""

    def __init__(self, fetcher: ResilientFetcher, config: Config) -> None:
        self.fetcher = fetcher
        self.config = config

    async def fetch(self) -> FearGreed | None:
        try:
            body = await self.fetcher.fetch(
                FNG_URL,
                params={"limit": 1},
                max_retries=2,
                backoff_ms=1000,
                use_cache=True,
                policy=self.config.default_policy,
            )
        except CoinstackError as exc:
            log_fetch_warning("fear_greed", exc)
            return None
        if not isinstance(body, dict):
            logger.warning("Fear & Greed API returned non-dict: %r", type(body))
            return None
        rows = as_dict_list(body.get("data"), "Fear & Greed")
        if not rows:
            return None
        d = rows[0]
        try:
            value = int(float(d.get("value", 0)))
        except (TypeError, ValueError):
            logger.warning("Fear & Greed value %r is not numeric.", d.get("value"))
            return None
        return FearGreed(
            value=value,
            classification=str(d.get("value_classification") or ""),
            timestamp=str(d.get("timestamp") or ""),
        )
