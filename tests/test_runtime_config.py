import pytest

from execution import runtime_config
from execution.runtime_config import (
    DEFAULT_LIVE_MINIMUM_USD,
    RAIL_MINIMUM_USD,
    get_advisor_config,
    get_executor_config,
    get_rebalance_config,
    get_runtime_mode,
    minimum_transfer_usd,
    normalize_mode,
)


@pytest.mark.parametrize(
    "raw,mode",
    [("live", "live"), ("MAINNET", "live"), ("sim", "demo"), ("demo", "demo"), ("", None), ("paper", None)],
)
def test_normalize_mode(raw, mode):
    assert normalize_mode(raw) == mode


def test_mode_resolution_order(monkeypatch):
    monkeypatch.setenv("VAULT_RUNTIME_MODE", "live")
    assert get_runtime_mode({"runtime": {"mode": "demo"}}) == "live"
    monkeypatch.delenv("VAULT_RUNTIME_MODE")
    assert get_runtime_mode({"runtime": {"mode": "live"}}) == "live"
    assert get_runtime_mode({}) == "demo"
    runtime_config.set_runtime_mode("demo")
    assert get_runtime_mode({"runtime": {"mode": "live"}}) == "demo"


def test_minimum_transfer_by_mode(monkeypatch):
    assert minimum_transfer_usd("demo", {}) == RAIL_MINIMUM_USD
    assert minimum_transfer_usd("live", {}) == DEFAULT_LIVE_MINIMUM_USD
    assert minimum_transfer_usd("live", {"runtime": {"min_internal_transfer_usd": 2.5}}) == 2.5
    monkeypatch.setenv("VAULT_MIN_INTERNAL_TRANSFER_USD", "7")
    assert minimum_transfer_usd("live", {"runtime": {"min_internal_transfer_usd": 2.5}}) == 7.0
    monkeypatch.setenv("VAULT_MIN_INTERNAL_TRANSFER_USD", "junk")
    assert minimum_transfer_usd("live", {}) == DEFAULT_LIVE_MINIMUM_USD


def test_missing_yaml_reads_as_empty(tmp_path):
    assert runtime_config.load_runtime_config(tmp_path / "absent.yaml") == {}


def test_broken_yaml_reads_as_empty(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("runtime: [unclosed\n", encoding="utf-8")
    assert runtime_config.load_runtime_config(path) == {}


def test_section_getters_clamp_values():
    cfg = {
        "rebalance": {"signature_window_s": 0, "default_risk": "YOLO", "require_signature": True},
        "advisor": {"temperature": 5, "max_tokens": 10, "default_cooldown_s": 0},
        "executors": {"growth_weights": {"sol": 60, "bonk": 40}, "growth_threshold_usd": -3},
    }
    rebalance = get_rebalance_config(cfg)
    assert rebalance.signature_window_s == 1.0
    assert rebalance.default_risk == "medium"
    assert rebalance.require_signature is True

    advisor = get_advisor_config(cfg)
    assert advisor.temperature == 2.0
    assert advisor.max_tokens == 64
    assert advisor.default_cooldown_s == 1.0

    executors = get_executor_config(cfg)
    assert executors.growth_weights == {"SOL": 60.0, "BONK": 40.0}
    assert executors.growth_threshold_usd == 0.0
