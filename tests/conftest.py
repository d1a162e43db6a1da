"""
Pytest configuration and shared fixtures for test suite.
"""
from __future__ import annotations

import os
import uuid
from typing import Dict, List, Optional

import pytest

# Force demo mode even if .env sets production values.
os.environ["VAULT_RUNTIME_MODE"] = "demo"
os.environ.pop("VAULT_MIN_INTERNAL_TRANSFER_USD", None)

from solders.keypair import Keypair  # noqa: E402

from execution import runtime_config  # noqa: E402
from execution.intel.market_signals import DEFAULT_SIGNALS, MarketSignals  # noqa: E402
from execution.intel.strategy_engine import StrategyEngine  # noqa: E402
from execution.position_memo import InMemoryMemoStore  # noqa: E402
from execution.protocols.lending import KaminoLendingClient  # noqa: E402
from execution.protocols.types import (  # noqa: E402
    FALLBACK_PRICES,
    SwapRequest,
    SwapResult,
    stable_mint,
    symbol_for_mint,
)
from execution.rail import SimulatedRail  # noqa: E402
from execution.rebalance import RebalanceService  # noqa: E402
from execution.runtime_config import AdvisorConfig, ExecutorConfig, RebalanceConfig  # noqa: E402
from execution.strategies import build_registry  # noqa: E402
from treasury.loader import TreasuryLoader  # noqa: E402


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSwap:
    """Fills at fixed prices with no slippage; ``fail`` lists symbols whose swaps fail."""

    def __init__(self, prices: Optional[Dict[str, float]] = None) -> None:
        self.prices = dict(FALLBACK_PRICES)
        self.prices.update(prices or {})
        self.fail: set = set()
        self.calls: List[SwapRequest] = []

    def _price(self, mint: str) -> Optional[float]:
        symbol = symbol_for_mint(mint)
        return self.prices.get(symbol) if symbol else None

    def get_token_prices(self, mints: List[str]) -> Dict[str, float]:
        out = {}
        for mint in mints:
            price = self._price(mint)
            if price:
                out[mint] = price
        return out

    def get_token_price(self, mint: str) -> Optional[float]:
        return self._price(mint)

    def execute_swap(self, request: SwapRequest, wallet: str) -> SwapResult:
        self.calls.append(request)
        for mint in (request.input_mint, request.output_mint):
            if symbol_for_mint(mint) in self.fail:
                return SwapResult(False, error="route not found")
        in_price = self._price(request.input_mint)
        out_price = self._price(request.output_mint)
        out_amount = request.amount * in_price / out_price
        return SwapResult(
            success=True,
            input_amount=request.amount,
            output_amount=out_amount,
            price=out_price,
            signature=f"fake_swap_{uuid.uuid4().hex[:8]}",
        )

    def swap_to_stable(self, mint: str, amount: float, decimals: int, wallet: str) -> SwapResult:
        return self.execute_swap(SwapRequest(mint, stable_mint(), amount, 100), wallet)


class StaticCollector:
    def __init__(self, signals: MarketSignals = DEFAULT_SIGNALS) -> None:
        self.signals = signals
        self.calls = 0

    def collect(self) -> MarketSignals:
        self.calls += 1
        return self.signals


class OfflineAdvisor:
    available = False

    def recommend(self, signals, risk, limits):
        raise AssertionError("offline advisor should never be called")

    def market_analysis(self, signals) -> str:
        return "Market analysis temporarily unavailable."


@pytest.fixture(autouse=True)
def _reset_runtime_state():
    """Clear mode overrides and the cached yaml before and after each test."""
    os.environ["VAULT_RUNTIME_MODE"] = "demo"
    runtime_config.set_runtime_mode(None)
    runtime_config.load_runtime_config.cache_clear()
    yield
    runtime_config.set_runtime_mode(None)
    runtime_config.load_runtime_config.cache_clear()


@pytest.fixture
def keypair() -> Keypair:
    return Keypair()


@pytest.fixture
def wallet(keypair: Keypair) -> str:
    return str(keypair.pubkey())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rail() -> SimulatedRail:
    return SimulatedRail()


@pytest.fixture
def swap() -> FakeSwap:
    return FakeSwap()


@pytest.fixture
def lending(clock: FakeClock) -> KaminoLendingClient:
    return KaminoLendingClient(simulate=True, fallback_apy=10.0, clock=clock)


@pytest.fixture
def memo_store() -> InMemoryMemoStore:
    return InMemoryMemoStore()


@pytest.fixture
def executor_config() -> ExecutorConfig:
    return ExecutorConfig()


@pytest.fixture
def registry(rail, swap, lending, memo_store, executor_config):
    return build_registry(rail, swap, lending, memo_store, config=executor_config)


@pytest.fixture
def collector() -> StaticCollector:
    return StaticCollector()


@pytest.fixture
def engine(collector, clock) -> StrategyEngine:
    return StrategyEngine(collector=collector, advisor=OfflineAdvisor(), config=AdvisorConfig(), clock=clock)


@pytest.fixture
def service(tmp_path, rail, registry, engine) -> RebalanceService:
    loader = TreasuryLoader(rail, {ex.vault_id: ex for ex in registry.ordered()})
    config = RebalanceConfig(audit_log_path=str(tmp_path / "audit.jsonl"))
    return RebalanceService(loader, engine, rail, registry, config=config)
