"""
Deterministic allocation rules.

Allocations are plain ``{vault_id: percent}`` dicts over the five vault
ids. Every path that produces one ends in ``clamp_and_normalize`` so the
result sums to 100 and never exceeds a risk ceiling.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from execution.intel.market_signals import MarketSignals
from treasury.vaults import BUFFER, COMMODITY, GROWTH, SPECULATIVE, VAULT_ORDER, YIELD

LOG = logging.getLogger("allocation_rules")

RISK_ON = "risk-on"
RISK_OFF = "risk-off"
NEUTRAL = "neutral"

RISK_PROFILES = ("low", "medium", "high")

_EPS = 1e-9


@dataclass(frozen=True)
class RiskLimits:
    buffer_max: float
    yield_max: float
    growth_max: float
    speculative_max: float
    commodity_max: float

    def ceilings(self) -> Dict[str, float]:
        return {
            BUFFER: self.buffer_max,
            YIELD: self.yield_max,
            GROWTH: self.growth_max,
            SPECULATIVE: self.speculative_max,
            COMMODITY: self.commodity_max,
        }

    def to_dict(self) -> Dict[str, float]:
        return self.ceilings()


RISK_LIMITS: Dict[str, RiskLimits] = {
    "low": RiskLimits(buffer_max=70, yield_max=30, growth_max=20, speculative_max=0, commodity_max=10),
    "medium": RiskLimits(buffer_max=50, yield_max=40, growth_max=30, speculative_max=10, commodity_max=15),
    "high": RiskLimits(buffer_max=30, yield_max=40, growth_max=40, speculative_max=30, commodity_max=20),
}

BASELINE: Dict[str, float] = {
    BUFFER: 40.0,
    YIELD: 30.0,
    GROWTH: 20.0,
    SPECULATIVE: 10.0,
    COMMODITY: 0.0,
}


def normalize_risk(risk: Optional[str], default: str = "medium") -> str:
    value = str(risk or default).strip().lower()
    return value if value in RISK_PROFILES else default


def get_risk_limits(risk: Optional[str]) -> RiskLimits:
    return RISK_LIMITS[normalize_risk(risk)]


def macro_mood(signals: MarketSignals) -> str:
    """Coarse regime: capitulation reads as risk-on, euphoria or downtrend as risk-off."""
    if signals.volatility == "high" and signals.momentum_index < 30:
        return RISK_ON
    if signals.volatility == "high" and signals.momentum_index > 70:
        return RISK_OFF
    if signals.trend == "bearish":
        return RISK_OFF
    return NEUTRAL


def _complete(values: Mapping[str, float]) -> Dict[str, float]:
    out: Dict[str, float] = {}
    for vid in VAULT_ORDER:
        try:
            out[vid] = float(values.get(vid, 0.0) or 0.0)
        except (TypeError, ValueError):
            out[vid] = 0.0
    return out


def clamp_and_normalize(values: Mapping[str, float], limits: RiskLimits) -> Dict[str, float]:
    """
    Clamp each vault to [0, ceiling] then rescale the clamped vector to 100.

    When rescaling pushes a vault back over its ceiling, that vault is pinned
    at the ceiling and the remainder is spread over the others in proportion
    to their clamped weights (same headroom redistribution as a capped
    allocator). An all-zero vector uses the ceilings as weights.
    """
    caps = limits.ceilings()
    clamped = {vid: min(max(v, 0.0), caps[vid]) for vid, v in _complete(values).items()}
    if sum(clamped.values()) <= _EPS:
        clamped = dict(caps)

    pinned: Dict[str, float] = {}
    free = [vid for vid in VAULT_ORDER if caps[vid] > _EPS]
    result: Dict[str, float] = {vid: 0.0 for vid in VAULT_ORDER}

    for _ in range(len(VAULT_ORDER) + 1):
        remaining = 100.0 - sum(pinned.values())
        weights = {vid: clamped[vid] for vid in free}
        base = sum(weights.values())
        if base <= _EPS:
            # Weighted vaults are all pinned; fill what is left by headroom.
            weights = {vid: caps[vid] for vid in free}
            base = sum(weights.values())
        if base <= _EPS:
            break
        for vid in free:
            result[vid] = weights[vid] / base * remaining
        over = [vid for vid in free if result[vid] > caps[vid] + _EPS]
        if not over:
            break
        for vid in over:
            pinned[vid] = caps[vid]
            result[vid] = caps[vid]
        free = [vid for vid in free if vid not in pinned]

    for vid, cap in pinned.items():
        result[vid] = cap
    return result


def rule_allocation(signals: MarketSignals, risk: Optional[str]) -> Dict[str, float]:
    """Baseline plus mood and signal adjustments, clamped to the profile's ceilings."""
    alloc = dict(BASELINE)
    mood = macro_mood(signals)

    if mood == RISK_ON:
        alloc[GROWTH] += 10
        alloc[SPECULATIVE] += 5
        alloc[BUFFER] -= 15
    elif mood == RISK_OFF:
        alloc[BUFFER] += 20
        alloc[GROWTH] -= 10
        alloc[SPECULATIVE] -= 10

    if signals.momentum_index < 30:
        alloc[GROWTH] += 10
        alloc[BUFFER] -= 10

    if signals.hype_level == "high":
        alloc[SPECULATIVE] += 5
        alloc[BUFFER] -= 5

    return clamp_and_normalize(alloc, get_risk_limits(risk))


def defer_sub_minimum_targets(
    allocation: Mapping[str, float], total_value: float, minimum: float
) -> Dict[str, float]:
    """
    Fold any non-buffer target worth less than ``minimum`` dollars into buffer.

    Used in live mode so sub-floor targets never reach the planner; the funds
    simply stay in the buffer until the portfolio can clear the floor.
    """
    out = _complete(allocation)
    if total_value <= 0:
        return out
    for vid in VAULT_ORDER:
        if vid == BUFFER:
            continue
        pct = out[vid]
        if pct > 0 and pct / 100.0 * total_value < minimum:
            LOG.info("[rules] deferring %s target %.2f%% below minimum %.2f", vid, pct, minimum)
            out[BUFFER] += pct
            out[vid] = 0.0
    return out


def allocation_total(allocation: Mapping[str, float]) -> float:
    return sum(_complete(allocation).values())


__all__ = [
    "BASELINE",
    "NEUTRAL",
    "RISK_LIMITS",
    "RISK_OFF",
    "RISK_ON",
    "RISK_PROFILES",
    "RiskLimits",
    "allocation_total",
    "clamp_and_normalize",
    "defer_sub_minimum_targets",
    "get_risk_limits",
    "macro_mood",
    "normalize_risk",
    "rule_allocation",
]
