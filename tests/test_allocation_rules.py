import itertools

import pytest

from execution.intel.allocation_rules import (
    RISK_LIMITS,
    RISK_OFF,
    RISK_ON,
    NEUTRAL,
    clamp_and_normalize,
    defer_sub_minimum_targets,
    get_risk_limits,
    macro_mood,
    normalize_risk,
    rule_allocation,
)
from execution.intel.market_signals import DEFAULT_SIGNALS, MarketSignals
from treasury.vaults import VAULT_ORDER

TRENDS = ("bullish", "bearish")
MOMENTUM = (0.0, 20.0, 50.0, 80.0, 100.0)
HYPE = ("low", "medium", "high")
VOLATILITY = ("low", "medium", "high")


def _all_signals():
    for trend, rsi, hype, vol in itertools.product(TRENDS, MOMENTUM, HYPE, VOLATILITY):
        yield MarketSignals(trend=trend, momentum_index=rsi, hype_level=hype, volatility=vol)


@pytest.mark.parametrize("risk", ["low", "medium", "high"])
def test_rule_allocation_sums_to_100_and_respects_ceilings(risk):
    caps = get_risk_limits(risk).ceilings()
    for signals in _all_signals():
        alloc = rule_allocation(signals, risk)
        assert set(alloc) == set(VAULT_ORDER)
        assert sum(alloc.values()) == pytest.approx(100.0, abs=1e-9)
        for vid, pct in alloc.items():
            assert pct >= 0.0
            assert pct <= caps[vid] + 1e-9, (risk, signals, vid, pct)


def test_low_risk_default_signals_zeroes_speculative():
    alloc = rule_allocation(DEFAULT_SIGNALS, "low")
    assert alloc["speculative"] == 0.0
    assert alloc == pytest.approx(
        {"buffer": 60.0, "yield": 30.0, "growth": 10.0, "speculative": 0.0, "commodity": 0.0}
    )


def test_low_risk_euphoric_signals_pin_ceilings():
    signals = MarketSignals(trend="bullish", momentum_index=20.0, hype_level="high", volatility="high")
    assert macro_mood(signals) == RISK_ON
    alloc = rule_allocation(signals, "low")
    assert alloc == pytest.approx(
        {"buffer": 50.0, "yield": 30.0, "growth": 20.0, "speculative": 0.0, "commodity": 0.0}
    )


def test_high_risk_capitulation_keeps_unclamped_table():
    signals = MarketSignals(trend="bearish", momentum_index=20.0, hype_level="high", volatility="high")
    alloc = rule_allocation(signals, "high")
    assert alloc == pytest.approx(
        {"buffer": 10.0, "yield": 30.0, "growth": 40.0, "speculative": 20.0, "commodity": 0.0}
    )


@pytest.mark.parametrize(
    "signals,expected",
    [
        (MarketSignals("bullish", 25.0, "low", "high"), RISK_ON),
        (MarketSignals("bullish", 75.0, "low", "high"), RISK_OFF),
        (MarketSignals("bearish", 50.0, "low", "low"), RISK_OFF),
        (MarketSignals("bullish", 50.0, "low", "medium"), NEUTRAL),
    ],
)
def test_macro_mood(signals, expected):
    assert macro_mood(signals) == expected


def test_clamp_all_zero_uses_ceilings_as_weights():
    alloc = clamp_and_normalize({}, RISK_LIMITS["medium"])
    assert sum(alloc.values()) == pytest.approx(100.0)
    for vid, cap in RISK_LIMITS["medium"].ceilings().items():
        assert alloc[vid] <= cap + 1e-9


def test_clamp_negative_and_oversized_inputs():
    alloc = clamp_and_normalize(
        {"buffer": -20, "yield": 500, "growth": 10, "speculative": 10, "commodity": 0},
        RISK_LIMITS["medium"],
    )
    assert alloc["yield"] == pytest.approx(40.0)
    assert alloc["growth"] == pytest.approx(30.0)
    assert alloc["speculative"] == pytest.approx(10.0)
    # nothing weighted is left, so the remainder spreads by headroom
    assert alloc["buffer"] + alloc["commodity"] == pytest.approx(20.0)
    assert sum(alloc.values()) == pytest.approx(100.0)


def test_normalize_risk_falls_back_to_medium():
    assert normalize_risk(None) == "medium"
    assert normalize_risk(" HIGH ") == "high"
    assert normalize_risk("yolo") == "medium"


def test_defer_sub_minimum_targets_moves_small_slices_to_buffer():
    alloc = {"buffer": 40.0, "yield": 30.0, "growth": 20.0, "speculative": 10.0, "commodity": 0.0}
    deferred = defer_sub_minimum_targets(alloc, total_value=30.0, minimum=5.0)
    # yield 9.00 and growth 6.00 clear the floor; speculative 3.00 does not
    assert deferred["speculative"] == 0.0
    assert deferred["buffer"] == pytest.approx(50.0)
    assert deferred["yield"] == pytest.approx(30.0)
    assert sum(deferred.values()) == pytest.approx(100.0)
