from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

load_dotenv()

_DEFAULT_PATH = Path(os.getenv("REBALANCE_CONFIG") or "config/rebalance.yaml")

DEMO = "demo"
LIVE = "live"
_MODES = (DEMO, LIVE)

# Rail-level floor for any private transfer, in stable units.
RAIL_MINIMUM_USD = 0.01
DEFAULT_LIVE_MINIMUM_USD = 5.0


@lru_cache(maxsize=1)
def load_runtime_config(path: Path | str | None = None) -> Dict[str, Any]:
    """
    Load rebalance.yaml once per process.

    Returns {} on any read/parse error so a missing or broken file never
    blocks a rebalance; every getter below carries its own defaults.
    """
    cfg_path = Path(path) if path is not None else _DEFAULT_PATH
    if not cfg_path.exists():
        return {}
    try:
        with cfg_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


def _section(cfg: Dict[str, Any] | None, name: str) -> Dict[str, Any]:
    if cfg is None:
        cfg = load_runtime_config()
    value = cfg.get(name, {}) or {}
    return value if isinstance(value, dict) else {}


def _env_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Runtime mode
# ---------------------------------------------------------------------------

_MODE_OVERRIDE: Optional[str] = None


def normalize_mode(value: Any) -> Optional[str]:
    text = str(value or "").strip().lower()
    if text in ("real", "prod", "production", "mainnet"):
        return LIVE
    if text in ("mock", "test", "sim", "simulated"):
        return DEMO
    return text if text in _MODES else None


def get_runtime_mode(cfg: Dict[str, Any] | None = None) -> str:
    """Resolve demo/live: explicit override, then env, then yaml, then demo."""
    if _MODE_OVERRIDE:
        return _MODE_OVERRIDE
    env_mode = normalize_mode(os.getenv("VAULT_RUNTIME_MODE"))
    if env_mode:
        return env_mode
    yaml_mode = normalize_mode(_section(cfg, "runtime").get("mode"))
    return yaml_mode or DEMO


def set_runtime_mode(mode: Optional[str]) -> None:
    global _MODE_OVERRIDE
    _MODE_OVERRIDE = normalize_mode(mode) if mode else None


def is_live(cfg: Dict[str, Any] | None = None) -> bool:
    return get_runtime_mode(cfg) == LIVE


def minimum_transfer_usd(mode: Optional[str] = None, cfg: Dict[str, Any] | None = None) -> float:
    """
    Operating anti-spam floor for internal transfers.

    Demo mode uses the rail floor; live mode uses the provider-mandated
    floor from env, then yaml, then 5.0.
    """
    mode = normalize_mode(mode) or get_runtime_mode(cfg)
    if mode != LIVE:
        return RAIL_MINIMUM_USD
    env_min = _env_float("VAULT_MIN_INTERNAL_TRANSFER_USD")
    if env_min is not None and env_min > 0:
        return env_min
    try:
        yaml_min = float(_section(cfg, "runtime").get("min_internal_transfer_usd", 0.0))
    except (TypeError, ValueError):
        yaml_min = 0.0
    return yaml_min if yaml_min > 0 else DEFAULT_LIVE_MINIMUM_USD


# ---------------------------------------------------------------------------
# Rebalance service
# ---------------------------------------------------------------------------

@dataclass
class RebalanceConfig:
    """Orchestrator settings."""
    signature_window_s: float = 60.0
    require_signature: bool = False
    bridge_threshold_usd: float = 1.0
    audit_log_path: str = "logs/rebalance_audit.jsonl"
    default_risk: str = "medium"


def get_rebalance_config(cfg: Dict[str, Any] | None = None) -> RebalanceConfig:
    section = _section(cfg, "rebalance")
    window = float(section.get("signature_window_s", 60.0))
    bridge = float(section.get("bridge_threshold_usd", 1.0))
    risk = str(section.get("default_risk", "medium")).lower()
    if risk not in ("low", "medium", "high"):
        risk = "medium"
    return RebalanceConfig(
        signature_window_s=max(1.0, window),
        require_signature=bool(section.get("require_signature", False)),
        bridge_threshold_usd=max(0.0, bridge),
        audit_log_path=str(section.get("audit_log_path") or "logs/rebalance_audit.jsonl"),
        default_risk=risk,
    )


# ---------------------------------------------------------------------------
# Allocation advisor
# ---------------------------------------------------------------------------

@dataclass
class AdvisorConfig:
    """Generative allocation advisor settings."""
    enabled: bool = True
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    max_tokens: int = 600
    cache_ttl_s: float = 300.0
    default_cooldown_s: float = 60.0


def get_advisor_config(cfg: Dict[str, Any] | None = None) -> AdvisorConfig:
    section = _section(cfg, "advisor")
    model = os.getenv("OPENAI_MODEL") or str(section.get("model", "gpt-4o-mini"))
    return AdvisorConfig(
        enabled=bool(section.get("enabled", True)),
        model=model,
        temperature=min(2.0, max(0.0, float(section.get("temperature", 0.2)))),
        max_tokens=max(64, int(section.get("max_tokens", 600))),
        cache_ttl_s=max(0.0, float(section.get("cache_ttl_s", 300.0))),
        default_cooldown_s=max(1.0, float(section.get("default_cooldown_s", 60.0))),
    )


# ---------------------------------------------------------------------------
# Market signals
# ---------------------------------------------------------------------------

@dataclass
class SignalConfig:
    """Market data endpoints."""
    price_url: str = "https://api.coingecko.com/api/v3/coins/solana/market_chart"
    pairs_url: str = "https://api.dexscreener.com/latest/dex/pairs/solana"
    timeout_s: float = 10.0
    history_days: int = 7


def get_signal_config(cfg: Dict[str, Any] | None = None) -> SignalConfig:
    section = _section(cfg, "signals")
    defaults = SignalConfig()
    return SignalConfig(
        price_url=str(section.get("price_url") or defaults.price_url),
        pairs_url=str(section.get("pairs_url") or defaults.pairs_url),
        timeout_s=max(1.0, float(section.get("timeout_s", defaults.timeout_s))),
        history_days=max(2, int(section.get("history_days", defaults.history_days))),
    )


# ---------------------------------------------------------------------------
# Vault executors
# ---------------------------------------------------------------------------

@dataclass
class ExecutorConfig:
    """Per-vault execution thresholds and baskets."""
    lending_threshold_usd: float = 1.0
    growth_threshold_usd: float = 10.0
    speculative_threshold_usd: float = 1.0
    commodity_threshold_usd: float = 1.0
    growth_slippage_bps: int = 80
    speculative_slippage_bps: int = 100
    commodity_slippage_bps: int = 80
    min_slice_usd: float = 0.1
    fallback_apy: float = 8.5
    growth_weights: Dict[str, float] = field(
        default_factory=lambda: {"SOL": 40.0, "RADR": 25.0, "ORE": 20.0, "ANON": 15.0}
    )
    speculative_symbols: tuple = ("SOL", "BONK", "RADR", "JIM", "POKI")


def get_executor_config(cfg: Dict[str, Any] | None = None) -> ExecutorConfig:
    section = _section(cfg, "executors")
    defaults = ExecutorConfig()
    weights = section.get("growth_weights") or defaults.growth_weights
    symbols = section.get("speculative_symbols") or defaults.speculative_symbols
    return ExecutorConfig(
        lending_threshold_usd=max(0.0, float(section.get("lending_threshold_usd", 1.0))),
        growth_threshold_usd=max(0.0, float(section.get("growth_threshold_usd", 10.0))),
        speculative_threshold_usd=max(0.0, float(section.get("speculative_threshold_usd", 1.0))),
        commodity_threshold_usd=max(0.0, float(section.get("commodity_threshold_usd", 1.0))),
        growth_slippage_bps=int(section.get("growth_slippage_bps", 80)),
        speculative_slippage_bps=int(section.get("speculative_slippage_bps", 100)),
        commodity_slippage_bps=int(section.get("commodity_slippage_bps", 80)),
        min_slice_usd=max(0.0, float(section.get("min_slice_usd", 0.1))),
        fallback_apy=max(0.0, float(section.get("fallback_apy", 8.5))),
        growth_weights={str(k).upper(): float(v) for k, v in dict(weights).items()},
        speculative_symbols=tuple(str(s).upper() for s in symbols),
    )


__all__ = [
    "DEMO",
    "LIVE",
    "RAIL_MINIMUM_USD",
    "AdvisorConfig",
    "ExecutorConfig",
    "RebalanceConfig",
    "SignalConfig",
    "get_advisor_config",
    "get_executor_config",
    "get_rebalance_config",
    "get_runtime_mode",
    "get_signal_config",
    "is_live",
    "load_runtime_config",
    "minimum_transfer_usd",
    "normalize_mode",
    "set_runtime_mode",
]
