"""Normalisation functions: raw provider payloads → NewsItem.

Each provider has its own normaliser.  The functions are intentionally
**schema-tolerant**: they try multiple field names so that minor API
changes don't silently drop data.

CryptoCompare (/data/v2/news/):
    title, url, body, source, source_info.name, published_on (Unix s), imageurl

rss2json (/v1/api.json):
    title, link, pubDate ("YYYY-MM-DD HH:MM:SS", UTC), author, thumbnail,
    enclosure.link, description (HTML)

feedparser entries (raw RSS/XML):
    title, link, published (RFC-822), summary (HTML), media_content,
    media_thumbnail, enclosures
"""

from __future__ import annotations

import html
import logging
import math
import re
from datetime import timezone
from typing import Any, Dict

from dateutil import parser as dtparser

from .common_types import NewsItem

logger = logging.getLogger(__name__)


# ── Shared helpers ──────────────────────────────────────────────

# Shortest valid date string: "YYYYMMDD" = 8 chars.  Shorter strings
# like "5" are ambiguously parsed by dateutil (e.g. "5" → the 5th of
# the current month).
_MIN_DATE_LEN = 8

# Numbers at or above this are already epoch milliseconds.
_MS_THRESHOLD = 1e12

_HTML_TAG_RE = re.compile(r"<[^>]+>")
_IMG_SRC_RE = re.compile(r"<img[^>]+src\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)

SNIPPET_LIMIT = 300


def to_epoch_ms(value: Any) -> int:
    """Convert Unix seconds/ms, ISO-8601 or RFC-822 input to epoch ms.

    Returns ``0`` for empty, too-short, or unparseable input so the
    caller always gets a number (such items sort last).

    Naive datetimes (no timezone info) are assumed UTC to guarantee
    deterministic results regardless of host timezone.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return _numeric_to_ms(float(value))

    s = str(value).strip()
    if not s:
        return 0
    # Compact ISO dates ("20240115") are dates, not Unix seconds.
    if not (len(s) == _MIN_DATE_LEN and s.isdigit()):
        try:
            return _numeric_to_ms(float(s))
        except ValueError:
            pass
    if len(s) < _MIN_DATE_LEN:
        logger.warning("Date string too short (%d chars): %r — returning epoch 0.", len(s), s)
        return 0
    try:
        dt = dtparser.parse(s)
    except (ValueError, OverflowError):
        logger.warning("Unparseable date %r — returning epoch 0.", s[:80])
        return 0
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _numeric_to_ms(n: float) -> int:
    if not math.isfinite(n) or n <= 0:
        return 0
    return int(n) if n >= _MS_THRESHOLD else int(n * 1000)


def strip_html(text: Any, limit: int = SNIPPET_LIMIT) -> str:
    """Plain-text snippet: tags removed, entities decoded, whitespace collapsed."""
    if not text:
        return ""
    s = _HTML_TAG_RE.sub(" ", str(text))
    s = " ".join(html.unescape(s).split())
    if len(s) > limit:
        s = s[: limit - 1].rstrip() + "…"
    return s


def first_image(fragment: Any) -> str | None:
    """``src`` of the first ``<img>`` in an HTML fragment, if any."""
    if not fragment:
        return None
    m = _IMG_SRC_RE.search(str(fragment))
    return m.group(1) if m else None


# ── CryptoCompare ───────────────────────────────────────────────

def normalize_cryptocompare(it: Dict[str, Any]) -> NewsItem:
    """Normalise one raw CryptoCompare news item."""
    source_info = it.get("source_info") if isinstance(it.get("source_info"), dict) else {}
    source = str(source_info.get("name") or it.get("source") or "").strip()
    return NewsItem(
        title=str(it.get("title") or "").strip(),
        url=str(it.get("url") or it.get("guid") or "").strip(),
        description=strip_html(it.get("body")),
        source=source,
        created_at=to_epoch_ms(it.get("published_on")),
        image_url=str(it.get("imageurl") or "").strip() or None,
        provider="cryptocompare",
    )


# ── rss2json ────────────────────────────────────────────────────

def normalize_rss2json(it: Dict[str, Any], source_label: str) -> NewsItem:
    """Normalise one item of an rss2json envelope."""
    enclosure = it.get("enclosure") if isinstance(it.get("enclosure"), dict) else {}
    enclosure_img = None
    if str(enclosure.get("type") or "image").startswith("image"):
        enclosure_img = enclosure.get("link") or enclosure.get("url")
    description = it.get("description") or it.get("content") or ""
    image = it.get("thumbnail") or enclosure_img or first_image(description) or first_image(it.get("content"))
    return NewsItem(
        title=strip_html(it.get("title"), limit=500),
        url=str(it.get("link") or it.get("guid") or "").strip(),
        description=strip_html(description),
        source=source_label or str(it.get("author") or "").strip(),
        created_at=to_epoch_ms(it.get("pubDate") or it.get("published")),
        image_url=str(image).strip() if image else None,
        provider="rss2json",
    )


# ── Raw RSS (feedparser) ────────────────────────────────────────

def _entry_image(entry: Any) -> str | None:
    for media in entry.get("media_content") or []:
        url = media.get("url")
        medium = str(media.get("medium") or media.get("type") or "image")
        if url and medium.startswith("image"):
            return url
    for thumb in entry.get("media_thumbnail") or []:
        if thumb.get("url"):
            return thumb["url"]
    for enc in entry.get("enclosures") or []:
        href = enc.get("href") or enc.get("url")
        if href and str(enc.get("type") or "").startswith("image"):
            return href
    summary = entry.get("summary") or ""
    content = entry.get("content") or []
    return first_image(summary) or next(
        (img for img in (first_image(c.get("value")) for c in content) if img), None,
    )


def normalize_feed_entry(entry: Any, source_label: str) -> NewsItem:
    """Normalise one ``feedparser`` entry."""
    return NewsItem(
        title=strip_html(entry.get("title"), limit=500),
        url=str(entry.get("link") or entry.get("id") or "").strip(),
        description=strip_html(entry.get("summary") or entry.get("description")),
        source=source_label or str(entry.get("author") or "").strip(),
        created_at=to_epoch_ms(entry.get("published") or entry.get("updated")),
        image_url=_entry_image(entry),
        provider="rss_raw",
    )
