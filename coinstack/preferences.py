"""SQLite-backed user preferences: favourites, theme, holdings, wallet, key.

Values are JSON strings in a single ``kv`` table.  Anything missing or
unreadable falls back to the default for that preference; a database
file that cannot be opened at all falls back to an in-memory store so
the session still works.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import sqlite3
from typing import Any, List, Optional

from .common_types import PortfolioItem

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
  k TEXT PRIMARY KEY,
  v TEXT NOT NULL
);
"""

DEFAULT_THEME = "dark"


def _connect(path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(path, isolation_level=None)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA busy_timeout=5000;")
    conn.executescript(SCHEMA)
    return conn


class PreferenceStore:
    """Key-value preference store backed by SQLite."""

    def __init__(self, path: str = ":memory:") -> None:
        try:
            if path != ":memory:":
                os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            self.conn = _connect(path)
        except (sqlite3.DatabaseError, OSError) as exc:
            logger.warning("Preferences at %s unreadable (%s) — using in-memory defaults.", path, exc)
            self.conn = _connect(":memory:")

    # ── Key-value ───────────────────────────────────────────────

    def get_kv(self, k: str) -> Optional[str]:
        row = self.conn.execute("SELECT v FROM kv WHERE k=?", (k,)).fetchone()
        return row[0] if row else None

    def set_kv(self, k: str, v: str) -> None:
        self.conn.execute(
            "INSERT INTO kv(k,v) VALUES(?,?) ON CONFLICT(k) DO UPDATE SET v=excluded.v",
            (k, v),
        )

    def delete_kv(self, k: str) -> None:
        self.conn.execute("DELETE FROM kv WHERE k=?", (k,))

    def _get_json(self, k: str, default: Any, expected: type) -> Any:
        raw = self.get_kv(k)
        if raw is None:
            return default
        try:
            value = json.loads(raw)
        except (json.JSONDecodeError, ValueError):
            logger.warning("Corrupt preference %r — using default.", k)
            return default
        if not isinstance(value, expected):
            logger.warning("Preference %r has type %s, expected %s — using default.",
                           k, type(value).__name__, expected.__name__)
            return default
        return value

    def _set_json(self, k: str, value: Any) -> None:
        self.set_kv(k, json.dumps(value, ensure_ascii=False))

    # ── Typed preferences ───────────────────────────────────────

    def favorites(self) -> List[str]:
        return [f for f in self._get_json("favorites", [], list) if isinstance(f, str)]

    def set_favorites(self, ids: List[str]) -> None:
        self._set_json("favorites", list(dict.fromkeys(ids)))

    def theme(self) -> str:
        return self._get_json("theme", DEFAULT_THEME, str)

    def set_theme(self, theme: str) -> None:
        self._set_json("theme", theme)

    def wallet_address(self) -> str:
        return self._get_json("wallet_address", "", str)

    def set_wallet_address(self, address: str) -> None:
        self._set_json("wallet_address", address.strip())

    def api_key(self) -> str:
        return self._get_json("coingecko_api_key", "", str)

    def set_api_key(self, key: str) -> None:
        if key:
            self._set_json("coingecko_api_key", key)
        else:
            self.delete_kv("coingecko_api_key")

    def portfolio(self) -> List[PortfolioItem]:
        """Manually entered holdings; malformed rows are skipped."""
        names = {f.name for f in dataclasses.fields(PortfolioItem)}
        items: List[PortfolioItem] = []
        for row in self._get_json("portfolio", [], list):
            if not isinstance(row, dict):
                continue
            try:
                item = PortfolioItem(**{k: v for k, v in row.items() if k in names})
                item.amount = float(item.amount)
                item.avg_buy_price = float(item.avg_buy_price)
            except (TypeError, ValueError):
                logger.warning("Skipping malformed portfolio row: %r", row)
                continue
            items.append(item)
        return items

    def set_portfolio(self, items: List[PortfolioItem]) -> None:
        self._set_json("portfolio", [dataclasses.asdict(it) for it in items if it.source == "manual"])

    def close(self) -> None:
        self.conn.close()
