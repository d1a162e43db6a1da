"""
Allocation strategy engine.

Per call: cache lookup, then signals, then the advisor (when configured and
not cooling down), falling back to the rule table. Only advisor results are
cached; a fallback is recomputed on the next call so the advisor path is
retried as soon as it can be. Cache and cooldown are process-wide state
shared across requests and are lock-guarded.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from execution.intel.ai_advisor import (
    AdvisorError,
    AdvisorRateLimited,
    AllocationAdvisor,
)
from execution.intel.allocation_rules import (
    get_risk_limits,
    macro_mood,
    normalize_risk,
    rule_allocation,
)
from execution.intel.market_signals import DEFAULT_SIGNALS, MarketSignalCollector, MarketSignals
from execution.runtime_config import AdvisorConfig, get_advisor_config

LOG = logging.getLogger("strategy_engine")

RULES_REASONING = "Strategy generated using rule-based analysis"
RULES_CONFIDENCE = 75.0

SOURCE_AI = "ai"
SOURCE_RULES = "rules"
SOURCE_CACHE = "cache"

Clock = Callable[[], float]
V = TypeVar("V")


class TTLCache(Generic[V]):
    """key -> (value, expiry) map; expired entries are evicted on read."""

    def __init__(self, ttl_s: float, clock: Clock = time.monotonic) -> None:
        self.ttl_s = ttl_s
        self._clock = clock
        self._data: Dict[str, Tuple[V, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[V]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: V) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + self.ttl_s)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()


class Cooldown:
    """Single deadline; ``active`` until the clock passes it."""

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._until = 0.0
        self._lock = threading.Lock()

    def trigger(self, seconds: float) -> float:
        with self._lock:
            self._until = max(self._until, self._clock() + max(0.0, seconds))
            return self._until

    def active(self) -> bool:
        with self._lock:
            return self._clock() < self._until

    def remaining(self) -> float:
        with self._lock:
            return max(0.0, self._until - self._clock())

    def reset(self) -> None:
        with self._lock:
            self._until = 0.0


@dataclass
class StrategyResult:
    risk_profile: str
    allocation: Dict[str, float]
    reasoning: str
    confidence: float
    source: str
    macro_mood: str
    signals: MarketSignals
    insights: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "riskProfile": self.risk_profile,
            "allocation": dict(self.allocation),
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "source": self.source,
            "macroMood": self.macro_mood,
            "insights": list(self.insights),
            "signals": self.signals.to_dict(),
        }


class StrategyEngine:
    def __init__(
        self,
        collector: Optional[MarketSignalCollector] = None,
        advisor: Optional[AllocationAdvisor] = None,
        config: Optional[AdvisorConfig] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.config = config or get_advisor_config()
        self.collector = collector or MarketSignalCollector()
        self.advisor = advisor if advisor is not None else AllocationAdvisor(config=self.config)
        self.cache: TTLCache[StrategyResult] = TTLCache(self.config.cache_ttl_s, clock=clock)
        self.cooldown = Cooldown(clock=clock)

    def _signals(self) -> MarketSignals:
        # Collectors are pluggable; one that raises still yields neutral signals.
        try:
            return self.collector.collect()
        except Exception as exc:
            LOG.warning("[strategy] signal collection failed, using defaults: %s", exc)
            return DEFAULT_SIGNALS

    def _fallback(self, risk: str, signals: MarketSignals) -> StrategyResult:
        return StrategyResult(
            risk_profile=risk,
            allocation=rule_allocation(signals, risk),
            reasoning=RULES_REASONING,
            confidence=RULES_CONFIDENCE,
            source=SOURCE_RULES,
            macro_mood=macro_mood(signals),
            signals=signals,
        )

    def get_strategy(self, risk: Optional[str]) -> StrategyResult:
        risk = normalize_risk(risk)
        cached = self.cache.get(risk)
        if cached is not None:
            LOG.debug("[strategy] cache hit for %s", risk)
            return replace(cached, source=SOURCE_CACHE)

        signals = self._signals()

        if not self.advisor.available:
            return self._fallback(risk, signals)
        if self.cooldown.active():
            LOG.info("[strategy] advisor cooling down %.0fs, using rules", self.cooldown.remaining())
            return self._fallback(risk, signals)

        limits = get_risk_limits(risk)
        try:
            rec = self.advisor.recommend(signals, risk, limits)
        except AdvisorRateLimited as exc:
            delay = exc.retry_after if exc.retry_after else self.config.default_cooldown_s
            self.cooldown.trigger(delay)
            LOG.warning("[strategy] advisor rate limited, cooling down %.0fs", delay)
            return self._fallback(risk, signals)
        except AdvisorError as exc:
            LOG.warning("[strategy] advisor failed, using rules: %s", exc)
            return self._fallback(risk, signals)

        result = StrategyResult(
            risk_profile=risk,
            allocation=rec.allocation,
            reasoning=rec.reasoning,
            confidence=rec.confidence,
            source=SOURCE_AI,
            macro_mood=rec.macro_mood,
            signals=signals,
            insights=rec.insights,
        )
        self.cache.set(risk, result)
        return result

    def market_analysis(self) -> str:
        return self.advisor.market_analysis(self._signals())


__all__ = [
    "Cooldown",
    "RULES_CONFIDENCE",
    "RULES_REASONING",
    "SOURCE_AI",
    "SOURCE_CACHE",
    "SOURCE_RULES",
    "StrategyEngine",
    "StrategyResult",
    "TTLCache",
]
