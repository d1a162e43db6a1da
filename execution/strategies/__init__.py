"""
Vault strategy executors.

Executors run one at a time in ``VAULT_ORDER``: later vaults depend on
transfers that must have landed before their targets are measured, and
sequential balance reads keep the rail's rate-limited read path calm.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from execution.position_memo import MemoStore
from execution.protocols.types import LendingClient, SwapClient
from execution.rail import TransferRail
from execution.runtime_config import ExecutorConfig, get_executor_config
from execution.strategies.base import StrategyExecutionResult, VaultExecutor
from execution.strategies.basket import BasketExecutor, GrowthExecutor, SpeculativeExecutor
from execution.strategies.buffer import BufferExecutor
from execution.strategies.commodity import CommodityExecutor
from execution.strategies.lending import LendingExecutor
from treasury.vaults import VAULT_ORDER, short_wallet

LOG = logging.getLogger("strategies")


class VaultRegistry:
    """Executors keyed by vault id, iterated in execution order."""

    def __init__(self, executors: Mapping[str, VaultExecutor]) -> None:
        missing = [vid for vid in VAULT_ORDER if vid not in executors]
        if missing:
            raise ValueError(f"missing executors: {', '.join(missing)}")
        self._executors = dict(executors)

    def __getitem__(self, vault_id: str) -> VaultExecutor:
        return self._executors[vault_id]

    def get(self, vault_id: str) -> Optional[VaultExecutor]:
        return self._executors.get(vault_id)

    def ordered(self) -> List[VaultExecutor]:
        return [self._executors[vid] for vid in VAULT_ORDER]


def build_registry(
    rail: TransferRail,
    swap: SwapClient,
    lending: LendingClient,
    memo_store: MemoStore,
    config: Optional[ExecutorConfig] = None,
) -> VaultRegistry:
    cfg = config or get_executor_config()
    executors: List[VaultExecutor] = [
        BufferExecutor(rail),
        LendingExecutor(rail, lending, config=cfg),
        GrowthExecutor(rail, swap, memo_store, config=cfg),
        SpeculativeExecutor(rail, swap, memo_store, config=cfg),
        CommodityExecutor(rail, swap, memo_store, config=cfg),
    ]
    return VaultRegistry({ex.vault_id: ex for ex in executors})


def execute_all_strategies(
    registry: VaultRegistry,
    wallet: str,
    total_value: float,
    allocation: Mapping[str, float],
) -> List[StrategyExecutionResult]:
    """
    Drive every vault toward ``pct/100 * total_value``.

    One vault raising never stops the others; its failure is captured as an
    unsuccessful result so every vault is always represented.
    """
    results: List[StrategyExecutionResult] = []
    for executor in registry.ordered():
        target = float(allocation.get(executor.vault_id, 0.0) or 0.0) / 100.0 * total_value
        try:
            result = executor.execute(wallet, target)
        except Exception as exc:
            LOG.warning(
                "[strategies] %s failed for %s: %s", executor.vault_id, short_wallet(wallet), exc
            )
            result = StrategyExecutionResult(
                vault_id=executor.vault_id, success=False, amount_in=target, error=str(exc)
            )
        results.append(result)
    return results


def commit_position_memos(
    registry: VaultRegistry, wallet: str, results: List[StrategyExecutionResult]
) -> None:
    """Build one memo commit per basket result that handed its memos back."""
    for result in results:
        executor = registry.get(result.vault_id)
        if result.memos and isinstance(executor, BasketExecutor):
            executor.commit_result_memos(wallet, result)


def get_vault_stats(registry: VaultRegistry, wallet: str) -> Dict[str, Any]:
    """Balance, share, P&L and position count per vault, read sequentially."""
    per_vault: Dict[str, Dict[str, Any]] = {}
    for executor in registry.ordered():
        try:
            per_vault[executor.vault_id] = executor.get_stats(wallet)
        except Exception as exc:
            LOG.warning("[strategies] stats for %s unavailable: %s", executor.vault_id, exc)
            per_vault[executor.vault_id] = {
                "balance": 0.0,
                "pnl": 0.0,
                "positions": 0,
                "error": str(exc),
            }

    total = sum(float(stats.get("balance", 0.0)) for stats in per_vault.values())
    for stats in per_vault.values():
        balance = float(stats.get("balance", 0.0))
        stats["percentage"] = (balance / total * 100.0) if total > 0 else 0.0
    return {
        "totalValue": total,
        "totalPnl": sum(float(s.get("pnl", 0.0)) for s in per_vault.values()),
        "vaults": per_vault,
    }


__all__ = [
    "BasketExecutor",
    "BufferExecutor",
    "CommodityExecutor",
    "GrowthExecutor",
    "LendingExecutor",
    "SpeculativeExecutor",
    "StrategyExecutionResult",
    "VaultExecutor",
    "VaultRegistry",
    "build_registry",
    "commit_position_memos",
    "execute_all_strategies",
    "get_vault_stats",
]
