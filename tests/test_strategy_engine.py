from types import SimpleNamespace

import pytest

from execution.intel.ai_advisor import (
    ANALYSIS_FALLBACK,
    AdvisorError,
    AdvisorParseError,
    AdvisorRateLimited,
    AllocationAdvisor,
    is_rate_limit_error,
    parse_recommendation,
    parse_retry_delay,
    strip_markdown,
)
from execution.intel.allocation_rules import RISK_LIMITS, rule_allocation
from execution.intel.market_signals import DEFAULT_SIGNALS
from execution.intel.strategy_engine import (
    RULES_CONFIDENCE,
    RULES_REASONING,
    StrategyEngine,
    TTLCache,
)
from execution.runtime_config import AdvisorConfig

GOOD_RESPONSE = """```json
{"allocation": {"buffer": 30, "yield": 30, "growth": 25, "speculative": 10, "commodity": 5},
 "reasoning": "Balanced tilt", "confidence": 82, "macroMood": "neutral",
 "insights": ["volatility contained"]}
```"""


class ScriptedAdvisor:
    """Plays back a list of outcomes; exceptions are raised, strings are parsed."""

    available = True

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def recommend(self, signals, risk, limits):
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else GOOD_RESPONSE
        if isinstance(outcome, BaseException):
            raise outcome
        return parse_recommendation(outcome, limits)

    def market_analysis(self, signals):
        return "calm"


class _RateLimitError(Exception):
    def __init__(self, message, headers=None, body=None, status_code=429):
        super().__init__(message)
        self.response = SimpleNamespace(headers=headers or {})
        self.body = body
        self.status_code = status_code


def _engine(advisor, collector, clock):
    return StrategyEngine(collector=collector, advisor=advisor, config=AdvisorConfig(), clock=clock)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def test_strip_markdown_removes_fences():
    assert strip_markdown('```json\n{"a": 1}\n```') == '{"a": 1}'


def test_parse_recommendation_reads_fenced_json():
    rec = parse_recommendation(GOOD_RESPONSE, RISK_LIMITS["medium"])
    assert rec.allocation == pytest.approx(
        {"buffer": 30.0, "yield": 30.0, "growth": 25.0, "speculative": 10.0, "commodity": 5.0}
    )
    assert rec.confidence == 82.0
    assert rec.reasoning == "Balanced tilt"
    assert rec.insights == ["volatility contained"]


def test_parse_recommendation_normalizes_and_clamps():
    text = 'Sure! {"allocation": {"reserve": 10, "lending": 80, "growth": 60, "degen": 50}}'
    rec = parse_recommendation(text, RISK_LIMITS["low"])
    caps = RISK_LIMITS["low"].ceilings()
    assert sum(rec.allocation.values()) == pytest.approx(100.0)
    for vid, pct in rec.allocation.items():
        assert pct <= caps[vid] + 1e-9
    assert rec.allocation["speculative"] == 0.0


@pytest.mark.parametrize(
    "text",
    [
        "no json here",
        '{"allocation": {"buffer": 50, "yield": 50}}',
        '{"allocation": {"buffer": "lots", "yield": 30, "growth": 20, "speculative": 10}}',
        '{"allocation": [1, 2, 3]}',
    ],
)
def test_parse_recommendation_rejects_bad_shapes(text):
    with pytest.raises(AdvisorParseError):
        parse_recommendation(text, RISK_LIMITS["medium"])


def test_retry_delay_prefers_millisecond_header():
    exc = _RateLimitError("slow down", headers={"retry-after-ms": "1500", "retry-after": "9"})
    assert parse_retry_delay(exc) == pytest.approx(1.5)


def test_retry_delay_from_seconds_header():
    assert parse_retry_delay(_RateLimitError("slow down", headers={"retry-after": "30"})) == 30.0


@pytest.mark.parametrize(
    "message,expected",
    [
        ('quota exceeded {"retryDelay": "30s"}', 30.0),
        ("RESOURCE_EXHAUSTED retryDelay: '500ms'", 0.5),
        ("too many requests", None),
    ],
)
def test_retry_delay_from_message(message, expected):
    assert parse_retry_delay(_RateLimitError(message)) == expected


def test_rate_limit_classification():
    assert is_rate_limit_error(_RateLimitError("anything"))
    assert is_rate_limit_error(Exception("Too Many Requests"))
    assert is_rate_limit_error(Exception("monthly quota reached"))
    assert not is_rate_limit_error(Exception("connection reset"))


def test_advisor_maps_provider_429_to_rate_limited():
    def create(**kwargs):
        raise _RateLimitError("rate limit", headers={"retry-after": "12"})

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    advisor = AllocationAdvisor(client=client, config=AdvisorConfig())
    with pytest.raises(AdvisorRateLimited) as info:
        advisor.recommend(DEFAULT_SIGNALS, "medium", RISK_LIMITS["medium"])
    assert info.value.retry_after == 12.0


def test_advisor_unavailable_without_key():
    advisor = AllocationAdvisor(config=AdvisorConfig(), api_key="")
    assert not advisor.available
    assert advisor.market_analysis(DEFAULT_SIGNALS) == ANALYSIS_FALLBACK


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def test_offline_engine_uses_rules(engine, collector):
    result = engine.get_strategy("medium")
    assert result.source == "rules"
    assert result.reasoning == RULES_REASONING
    assert result.confidence == RULES_CONFIDENCE
    assert result.allocation == rule_allocation(DEFAULT_SIGNALS, "medium")
    # fallbacks are never cached
    engine.get_strategy("medium")
    assert collector.calls == 2


class BrokenCollector:
    def collect(self):
        raise AttributeError("'str' object has no attribute 'get'")


def test_raising_collector_falls_back_to_default_signals(clock):
    engine = _engine(ScriptedAdvisor(GOOD_RESPONSE), BrokenCollector(), clock)
    result = engine.get_strategy("medium")
    assert result.source == "ai"
    assert result.signals == DEFAULT_SIGNALS


def test_ai_result_is_cached_per_risk_profile(collector, clock):
    advisor = ScriptedAdvisor(GOOD_RESPONSE)
    engine = _engine(advisor, collector, clock)

    first = engine.get_strategy("medium")
    assert first.source == "ai"
    assert first.confidence == 82.0

    second = engine.get_strategy("medium")
    assert second.source == "cache"
    assert second.allocation == first.allocation
    assert advisor.calls == 1

    engine.get_strategy("high")
    assert advisor.calls == 2

    clock.advance(301)
    assert engine.get_strategy("medium").source == "ai"
    assert advisor.calls == 3


def test_rate_limit_cooldown_suppresses_advisor_until_retry_delay(collector, clock):
    advisor = ScriptedAdvisor(AdvisorRateLimited("429", retry_after=30.0), GOOD_RESPONSE)
    engine = _engine(advisor, collector, clock)

    assert engine.get_strategy("medium").source == "rules"
    assert advisor.calls == 1

    clock.advance(10)
    assert engine.get_strategy("medium").source == "rules"
    clock.advance(19)
    assert engine.get_strategy("medium").source == "rules"
    assert advisor.calls == 1

    clock.advance(2)
    assert engine.get_strategy("medium").source == "ai"
    assert advisor.calls == 2


def test_rate_limit_without_delay_uses_default_cooldown(collector, clock):
    advisor = ScriptedAdvisor(AdvisorRateLimited("429"))
    engine = _engine(advisor, collector, clock)
    engine.get_strategy("low")
    assert engine.cooldown.remaining() == pytest.approx(60.0)


def test_other_advisor_failure_falls_back_without_cooldown(collector, clock):
    advisor = ScriptedAdvisor(AdvisorError("boom"), GOOD_RESPONSE)
    engine = _engine(advisor, collector, clock)
    assert engine.get_strategy("medium").source == "rules"
    assert not engine.cooldown.active()
    assert engine.get_strategy("medium").source == "ai"


def test_ttl_cache_expires_entries(clock):
    cache = TTLCache(5.0, clock=clock)
    cache.set("k", 1)
    assert cache.get("k") == 1
    clock.advance(5.0)
    assert cache.get("k") is None
