"""
Generative allocation advisor (OpenAI chat completions).

The model is asked for a JSON object only. Responses are stripped of
markdown fences, the first JSON object is extracted and schema-checked;
anything that does not fit becomes an ``AdvisorParseError`` instead of a
loosely-typed dict leaking inward. Provider backpressure surfaces as
``AdvisorRateLimited`` carrying the retry delay the provider asked for.
"""
from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import openai

from execution.intel.allocation_rules import (
    NEUTRAL,
    RISK_OFF,
    RISK_ON,
    RiskLimits,
    clamp_and_normalize,
)
from execution.intel.market_signals import MarketSignals
from execution.runtime_config import AdvisorConfig, get_advisor_config
from treasury.vaults import BUFFER, COMMODITY, GROWTH, SPECULATIVE, VAULT_ORDER, YIELD

LOG = logging.getLogger("ai_advisor")

ANALYSIS_FALLBACK = "Market analysis temporarily unavailable."

_REQUIRED_KEYS = (BUFFER, YIELD, GROWTH, SPECULATIVE)
_KEY_ALIASES = {"reserve": BUFFER, "degen": SPECULATIVE, "rwa": COMMODITY, "lending": YIELD}
_RATE_LIMIT_MARKERS = ("too many requests", "quota", "rate limit", "resource_exhausted")
_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_RETRY_DELAY_RE = re.compile(
    r"retry_?delay[\"']?\s*[:=]\s*[\"']?(\d+(?:\.\d+)?)\s*(ms|s)?", re.IGNORECASE
)


class AdvisorError(Exception):
    """Advisor call failed for a reason other than backpressure."""


class AdvisorParseError(AdvisorError):
    """Advisor returned text that does not match the allocation schema."""

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class AdvisorRateLimited(AdvisorError):
    """Provider signalled backpressure; ``retry_after`` is seconds or None."""

    def __init__(self, message: str, retry_after: Optional[float] = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


@dataclass
class AdvisorRecommendation:
    allocation: Dict[str, float]
    reasoning: str
    confidence: float
    macro_mood: str = NEUTRAL
    insights: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def strip_markdown(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def extract_json_object(text: str) -> Dict[str, Any]:
    cleaned = strip_markdown(text)
    match = _OBJECT_RE.search(cleaned)
    if not match:
        raise AdvisorParseError("no JSON object in advisor response", raw=text)
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise AdvisorParseError(f"invalid JSON: {exc}", raw=text) from exc
    if not isinstance(data, dict):
        raise AdvisorParseError("advisor response is not an object", raw=text)
    return data


def _coerce_allocation(raw: Any, text: str) -> Dict[str, float]:
    if not isinstance(raw, Mapping):
        raise AdvisorParseError("missing allocation object", raw=text)
    values: Dict[str, float] = {vid: 0.0 for vid in VAULT_ORDER}
    seen = set()
    for key, value in raw.items():
        vid = _KEY_ALIASES.get(str(key).lower(), str(key).lower())
        if vid not in values:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise AdvisorParseError(f"allocation.{key} is not numeric", raw=text)
        values[vid] = float(value)
        seen.add(vid)
    missing = [k for k in _REQUIRED_KEYS if k not in seen]
    if missing:
        raise AdvisorParseError(f"allocation missing keys: {', '.join(missing)}", raw=text)
    return values


def parse_recommendation(text: str, limits: RiskLimits) -> AdvisorRecommendation:
    """Validate advisor output and bring it inside the risk ceilings."""
    data = extract_json_object(text)
    allocation = _coerce_allocation(data.get("allocation"), text)

    total = sum(allocation.values())
    if total <= 0:
        raise AdvisorParseError("allocation sums to zero", raw=text)
    if abs(total - 100.0) > 0.1:
        allocation = {vid: v / total * 100.0 for vid, v in allocation.items()}

    try:
        confidence = float(data.get("confidence", 50))
    except (TypeError, ValueError):
        confidence = 50.0
    mood = str(data.get("macroMood") or data.get("macro_mood") or NEUTRAL).lower()
    if mood not in (RISK_ON, RISK_OFF, NEUTRAL):
        mood = NEUTRAL
    insights = data.get("insights") or []
    if not isinstance(insights, list):
        insights = [str(insights)]

    return AdvisorRecommendation(
        allocation=clamp_and_normalize(allocation, limits),
        reasoning=str(data.get("reasoning") or ""),
        confidence=max(0.0, min(100.0, confidence)),
        macro_mood=mood,
        insights=[str(item) for item in insights][:5],
    )


# ---------------------------------------------------------------------------
# Backpressure classification
# ---------------------------------------------------------------------------


def _header(headers: Any, name: str) -> Optional[str]:
    if headers is None:
        return None
    try:
        value = headers.get(name)
    except AttributeError:
        return None
    return str(value) if value is not None else None


def parse_retry_delay(exc: BaseException) -> Optional[float]:
    """Seconds the provider asked us to wait, from headers or error body."""
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)

    ms = _header(headers, "retry-after-ms")
    if ms:
        try:
            return float(ms) / 1000.0
        except ValueError:
            pass
    secs = _header(headers, "retry-after")
    if secs:
        try:
            return float(secs)
        except ValueError:
            pass

    body = getattr(exc, "body", None)
    haystack = f"{json.dumps(body) if isinstance(body, (dict, list)) else body or ''} {exc}"
    match = _RETRY_DELAY_RE.search(haystack)
    if match:
        value = float(match.group(1))
        return value / 1000.0 if (match.group(2) or "s").lower() == "ms" else value
    return None


def is_rate_limit_error(exc: BaseException) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if status == 429:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in _RATE_LIMIT_MARKERS)


# ---------------------------------------------------------------------------
# Advisor
# ---------------------------------------------------------------------------


def build_prompt(signals: MarketSignals, risk: str, limits: RiskLimits) -> str:
    return (
        "You allocate a user's capital across five vaults: buffer (stable cash), "
        "yield (lending), growth (diversified large caps), speculative (meme basket) "
        "and commodity (tokenized metals).\n"
        f"Risk profile: {risk}\n"
        f"Risk ceilings (percent): {json.dumps(limits.ceilings())}\n"
        f"Market signals: {json.dumps(signals.to_dict())}\n"
        "Respond with JSON only, no prose, in this shape:\n"
        '{"allocation": {"buffer": n, "yield": n, "growth": n, "speculative": n, "commodity": n}, '
        '"reasoning": "...", "confidence": 0-100, '
        '"macroMood": "risk-on|risk-off|neutral", "insights": ["..."]}\n'
        "Percentages must sum to 100 and respect the ceilings."
    )


class AllocationAdvisor:
    """Thin wrapper over the chat completions API."""

    def __init__(
        self,
        client: Any = None,
        config: Optional[AdvisorConfig] = None,
        api_key: Optional[str] = None,
    ) -> None:
        self.config = config or get_advisor_config()
        self._api_key = api_key if api_key is not None else os.getenv("OPENAI_API_KEY", "")
        self._client = client

    @property
    def available(self) -> bool:
        return bool(self.config.enabled and (self._client is not None or self._api_key))

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = openai.OpenAI(api_key=self._api_key)
        return self._client

    def _complete(self, prompt: str, max_tokens: Optional[int] = None) -> str:
        try:
            resp = self._get_client().chat.completions.create(
                model=self.config.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.config.temperature,
                max_tokens=max_tokens or self.config.max_tokens,
            )
        except Exception as exc:
            if is_rate_limit_error(exc):
                raise AdvisorRateLimited(str(exc), retry_after=parse_retry_delay(exc)) from exc
            raise AdvisorError(str(exc)) from exc
        content = resp.choices[0].message.content if resp.choices else None
        if not content:
            raise AdvisorParseError("empty advisor response")
        return content

    def recommend(self, signals: MarketSignals, risk: str, limits: RiskLimits) -> AdvisorRecommendation:
        text = self._complete(build_prompt(signals, risk, limits))
        return parse_recommendation(text, limits)

    def market_analysis(self, signals: MarketSignals) -> str:
        if not self.available:
            return ANALYSIS_FALLBACK
        prompt = (
            "In two or three sentences, summarize current Solana market conditions "
            f"for a cautious allocator given these signals: {json.dumps(signals.to_dict())}. "
            "No recommendations."
        )
        try:
            return self._complete(prompt, max_tokens=160).strip()
        except AdvisorError as exc:
            LOG.warning("[advisor] market analysis failed: %s", exc)
            return ANALYSIS_FALLBACK


__all__ = [
    "ANALYSIS_FALLBACK",
    "AdvisorError",
    "AdvisorParseError",
    "AdvisorRateLimited",
    "AdvisorRecommendation",
    "AllocationAdvisor",
    "build_prompt",
    "extract_json_object",
    "is_rate_limit_error",
    "parse_recommendation",
    "parse_retry_delay",
    "strip_markdown",
]
