"""On-chain heuristic snapshot derived from a CoinRecord.

Nothing here is fetched.  Unlock progress, whale activity and the FDV
gap are deterministic functions of the record's supply/volume fields.
Net flow and holder count are *simulated*: they come from a
``SimulatedMetrics`` source (random noise in production, a stub in
tests) and are listed in ``OnChainSnapshot.simulated_fields`` so the UI
can label them as such.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Literal, Protocol

from .common_types import CoinRecord

WhaleActivity = Literal["Low", "Medium", "High", "Very High"]
NetFlowStatus = Literal["Inflow", "Outflow", "Neutral"]

SIMULATED_FIELDS: tuple[str, ...] = ("net_flow_status", "net_flow_score", "holders")

# Turnover (24h volume / market cap) tier boundaries.
_TURNOVER_TIERS: tuple[tuple[float, WhaleActivity], ...] = (
    (0.30, "Very High"),
    (0.15, "High"),
    (0.05, "Medium"),
)
_FLOW_BAND = 15


@dataclass(frozen=True)
class OnChainSnapshot:
    unlock_progress: float  # 0-100
    locked_percent: float
    whale_activity: WhaleActivity
    whale_score: int  # 0-100
    net_flow_status: NetFlowStatus
    net_flow_score: int  # -100..100
    holders: int
    fdv_gap: float  # FDV / market cap
    simulated_fields: tuple[str, ...] = SIMULATED_FIELDS


class SimulatedMetrics(Protocol):
    """Source of the presentational (non-upstream) on-chain numbers."""

    def net_flow(self, record: CoinRecord) -> int: ...

    def holders(self, record: CoinRecord) -> int: ...


class RandomSimulatedMetrics:
    """Noise biased by the 24h move and market cap.  Not real data."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self.rng = rng or random.Random()

    def net_flow(self, record: CoinRecord) -> int:
        score = record.price_change_percentage_24h * 5 + self.rng.uniform(-30, 30)
        return int(round(max(-100.0, min(100.0, score))))

    def holders(self, record: CoinRecord) -> int:
        if record.market_cap <= 0:
            return 0
        return int(record.market_cap / self.rng.uniform(800, 1200))


def unlock_progress(record: CoinRecord) -> float:
    cap = record.max_supply or record.total_supply
    if not cap or record.circulating_supply is None:
        return 100.0
    return max(0.0, min(100.0, record.circulating_supply / cap * 100))


def whale_activity(record: CoinRecord) -> tuple[WhaleActivity, int]:
    if record.market_cap <= 0:
        return "Low", 0
    turnover = record.total_volume / record.market_cap
    score = min(100, int(round(turnover * 250)))
    for bound, tier in _TURNOVER_TIERS:
        if turnover > bound:
            return tier, score
    return "Low", score


def fdv_gap(record: CoinRecord) -> float:
    if not record.fully_diluted_valuation or record.market_cap <= 0:
        return 1.0
    return record.fully_diluted_valuation / record.market_cap


def build_snapshot(record: CoinRecord, simulated: SimulatedMetrics) -> OnChainSnapshot:
    unlock = unlock_progress(record)
    tier, whale_score = whale_activity(record)
    flow = simulated.net_flow(record)
    if flow > _FLOW_BAND:
        flow_status: NetFlowStatus = "Inflow"
    elif flow < -_FLOW_BAND:
        flow_status = "Outflow"
    else:
        flow_status = "Neutral"
    return OnChainSnapshot(
        unlock_progress=round(unlock, 2),
        locked_percent=round(100.0 - unlock, 2),
        whale_activity=tier,
        whale_score=whale_score,
        net_flow_status=flow_status,
        net_flow_score=flow,
        holders=simulated.holders(record),
        fdv_gap=round(fdv_gap(record), 4),
    )
