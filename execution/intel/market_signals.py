"""
Market signal collector.

Pulls an hourly price history and aggregate DEX pair volume, then reduces
them to four coarse indicators (trend, momentum index, volatility bucket,
hype bucket). Every failure degrades to neutral defaults; signals are
advisory only.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd
import requests

from execution.runtime_config import SignalConfig, get_signal_config

LOG = logging.getLogger("market_signals")

RSI_PERIOD = 14
VOL_WINDOW = 24
TREND_LOOKBACK = 24
HYPE_PAIR_LIMIT = 50
HIGH_VOL = 0.06
MEDIUM_VOL = 0.03
HIGH_HYPE_USD = 50_000_000
MEDIUM_HYPE_USD = 10_000_000


@dataclass(frozen=True)
class MarketSignals:
    trend: str = "bearish"
    momentum_index: float = 50.0
    hype_level: str = "low"
    volatility: str = "medium"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_SIGNALS = MarketSignals()


# ---------------------------------------------------------------------------
# Indicators
# ---------------------------------------------------------------------------


def compute_rsi(prices: Sequence[float], period: int = RSI_PERIOD) -> float:
    """Simple-average RSI over the last ``period`` price changes."""
    series = pd.Series(list(prices), dtype="float64").dropna()
    if len(series) < period + 1:
        return 50.0
    changes = series.iloc[-(period + 1):].diff().dropna()
    gains = changes.clip(lower=0.0).sum() / period
    losses = (-changes.clip(upper=0.0)).sum() / period
    if losses == 0:
        return 100.0
    rs = gains / losses
    return float(100.0 - 100.0 / (1.0 + rs))


def classify_volatility(prices: Sequence[float], window: int = VOL_WINDOW) -> str:
    series = pd.Series(list(prices), dtype="float64").dropna().iloc[-window:]
    if len(series) < 2:
        return "low"
    returns = series.pct_change().dropna().to_numpy()
    if returns.size == 0:
        return "low"
    std = float(np.std(returns))
    if std > HIGH_VOL:
        return "high"
    if std > MEDIUM_VOL:
        return "medium"
    return "low"


def classify_trend(prices: Sequence[float], lookback: int = TREND_LOOKBACK) -> str:
    if len(prices) < 2:
        return "bearish"
    anchor = prices[-lookback] if len(prices) >= lookback else prices[0]
    return "bullish" if prices[-1] > anchor else "bearish"


def classify_hype(total_volume_usd: float) -> str:
    if total_volume_usd > HIGH_HYPE_USD:
        return "high"
    if total_volume_usd > MEDIUM_HYPE_USD:
        return "medium"
    return "low"


def signals_from_prices(prices: Sequence[float], hype_level: str = "low") -> MarketSignals:
    if len(prices) < RSI_PERIOD + 1:
        return DEFAULT_SIGNALS
    return MarketSignals(
        trend=classify_trend(prices),
        momentum_index=round(compute_rsi(prices), 2),
        hype_level=hype_level,
        volatility=classify_volatility(prices),
    )


# ---------------------------------------------------------------------------
# Collector
# ---------------------------------------------------------------------------


class MarketSignalCollector:
    """Fetches market data over HTTP; never raises out of ``collect``."""

    def __init__(
        self,
        config: Optional[SignalConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config or get_signal_config()
        self._session = session or requests.Session()

    def _payload_list(self, resp: requests.Response, key: str) -> List[Any]:
        body = resp.json()
        if not isinstance(body, dict):
            raise ValueError(f"expected an object with '{key}', got {type(body).__name__}")
        rows = body.get(key)
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise ValueError(f"'{key}' is {type(rows).__name__}, not a list")
        return rows

    def fetch_prices(self) -> List[float]:
        params = {"vs_currency": "usd", "days": self.config.history_days, "interval": "hourly"}
        resp = self._session.get(self.config.price_url, params=params, timeout=self.config.timeout_s)
        resp.raise_for_status()
        rows = self._payload_list(resp, "prices")
        return [float(row[1]) for row in rows if isinstance(row, (list, tuple)) and len(row) > 1]

    def fetch_pair_volume(self) -> float:
        resp = self._session.get(self.config.pairs_url, timeout=self.config.timeout_s)
        resp.raise_for_status()
        pairs = self._payload_list(resp, "pairs")
        total = 0.0
        for pair in pairs[:HYPE_PAIR_LIMIT]:
            if not isinstance(pair, dict):
                continue
            volume = pair.get("volume")
            if not isinstance(volume, dict):
                continue
            try:
                total += float(volume.get("h24") or 0.0)
            except (TypeError, ValueError):
                continue
        return total

    def hype_level(self) -> str:
        try:
            return classify_hype(self.fetch_pair_volume())
        except (requests.RequestException, ValueError, TypeError) as exc:
            LOG.warning("[signals] pair volume unavailable: %s", exc)
            return DEFAULT_SIGNALS.hype_level

    def collect(self) -> MarketSignals:
        try:
            prices = self.fetch_prices()
            if len(prices) < RSI_PERIOD + 1:
                LOG.info("[signals] only %d prices, using defaults", len(prices))
                return DEFAULT_SIGNALS
            signals = signals_from_prices(prices, hype_level=self.hype_level())
        except (requests.RequestException, ValueError, TypeError, KeyError, AttributeError) as exc:
            LOG.warning("[signals] market data unusable, using defaults: %s", exc)
            return DEFAULT_SIGNALS
        LOG.info(
            "[signals] trend=%s rsi=%.1f vol=%s hype=%s",
            signals.trend,
            signals.momentum_index,
            signals.volatility,
            signals.hype_level,
        )
        return signals


__all__ = [
    "DEFAULT_SIGNALS",
    "MarketSignalCollector",
    "MarketSignals",
    "classify_hype",
    "classify_trend",
    "classify_volatility",
    "compute_rsi",
    "signals_from_prices",
]
