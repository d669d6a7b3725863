"""Shared HTTP helpers for the coinstack adapters.

Centralises URL/exception sanitisation so that API keys are never logged
in plain text, regardless of which adapter raises the error, and builds
the stable request keys used by the cache and the in-flight registry.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping

import httpx

from .errors import NotFound

logger = logging.getLogger(__name__)

# Regex to strip API keys/tokens from URLs before logging.
_TOKEN_RE = re.compile(r"(apikey|api_key|x_cg_demo_api_key|token|key)=[^&\s]+", re.IGNORECASE)

# ── Once-per-endpoint error suppression ─────────────────────────
# A 404 for the same endpoint label usually repeats on every refresh
# (unknown id, retired feed).  Warn once, then suppress to avoid log spam.
_WARNED_ENDPOINTS: set[str] = set()


def sanitize_url(url: str) -> str:
    """Remove apikey/token query params from a URL for safe logging."""
    return _TOKEN_RE.sub(r"\1=***", url)


def sanitize_exc(exc: BaseException) -> str:
    """Strip API keys/tokens from exception text for safe logging."""
    return _TOKEN_RE.sub(r"\1=***", str(exc))


def cache_key(url: str, params: Mapping[str, Any] | None = None) -> str:
    """Full request URL including stable query params.

    Parameter order is preserved as given so that the same adapter call
    always produces the same key.
    """
    if not params:
        return url
    return str(httpx.URL(url, params={k: str(v) for k, v in params.items()}))


def log_fetch_warning(label: str, exc: BaseException) -> None:
    """Log an adapter failure, suppressing repeated not-found errors.

    The first ``NotFound`` for a given *label* is logged at WARNING with a
    note that further occurrences will be suppressed; later ones go to
    DEBUG.  Everything else is always logged at WARNING.
    """
    msg = sanitize_exc(exc)
    if isinstance(exc, NotFound):
        already_warned = label in _WARNED_ENDPOINTS
        _WARNED_ENDPOINTS.add(label)
        if not already_warned:
            logger.warning(
                "%s fetch failed (not found); suppressing further warnings: %s",
                label, msg,
            )
        else:
            logger.debug("%s fetch failed (not found, suppressed): %s", label, msg)
    else:
        logger.warning("%s fetch failed: %s", label, msg)


def as_dict_list(x: Any, label: str) -> list[dict[str, Any]]:
    """Safely coerce *x* to a list of dicts."""
    if not isinstance(x, list):
        if x is not None:
            logger.warning(
                "%s returned %s instead of list — 0 items ingested.",
                label, type(x).__name__,
            )
        return []
    return [item for item in x if isinstance(item, dict)]
