"""
Lending vault.

The vault is an accounting label over the user's single lending position:
cash lands at the vault's derived address first, then is supplied to the
lending market under the user's own wallet. Pending yield is accrued and
compounded before any value is reported.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from execution.protocols.lending import DEFAULT_MARKET
from execution.protocols.types import LendingClient
from execution.rail import TransferRail
from execution.runtime_config import ExecutorConfig, get_executor_config
from execution.strategies.base import Liquidation, StrategyExecutionResult, VaultExecutor
from treasury.vaults import YIELD

LOG = logging.getLogger("strategies.lending")


class LendingExecutor(VaultExecutor):
    vault_id = YIELD

    def __init__(
        self,
        rail: TransferRail,
        lending: LendingClient,
        config: Optional[ExecutorConfig] = None,
        market: str = DEFAULT_MARKET,
    ) -> None:
        super().__init__(rail)
        self.lending = lending
        self.market = market
        cfg = config or get_executor_config()
        self.threshold = cfg.lending_threshold_usd

    def invested_value(self, wallet: str) -> float:
        self.lending.accrue_yield(wallet, self.market)
        pos = self.lending.get_position(wallet, self.market)
        return pos.value if pos else 0.0

    def cost_basis(self, wallet: str) -> float:
        pos = self.lending.get_position(wallet, self.market)
        return pos.principal if pos else 0.0

    def position_summaries(self, wallet: str) -> List[Dict[str, Any]]:
        pos = self.lending.get_position(wallet, self.market)
        if pos is None or pos.value <= 0:
            return []
        return [
            {
                "market": pos.market,
                "principal": round(pos.principal, 6),
                "earned": round(pos.earned, 6),
                "value": round(pos.value, 6),
                "apy": pos.apy,
            }
        ]

    def _deploy(self, wallet: str, amount: float, result: StrategyExecutionResult) -> float:
        tx = self.lending.deposit(wallet, amount, self.market)
        if not tx.success:
            result.success = False
            result.error = tx.error or "Lending deposit failed"
            return 0.0
        if tx.signature:
            result.tx_refs.append(tx.signature)
        if tx.unsigned_tx:
            result.unsigned_txs.append(tx.unsigned_tx)
        result.deployed += amount
        return amount

    def _liquidate(self, wallet: str, amount: float) -> Liquidation:
        sold = Liquidation()
        available = self.invested_value(wallet)
        amount = min(amount, available)
        if amount <= 0:
            return sold
        tx = self.lending.withdraw(wallet, amount, self.market)
        if not tx.success:
            sold.errors.append(tx.error or "Lending withdraw failed")
            return sold
        if tx.signature:
            sold.tx_refs.append(tx.signature)
        if tx.unsigned_tx:
            sold.unsigned_txs.append(tx.unsigned_tx)
        sold.received = amount
        return sold

    def get_stats(self, wallet: str) -> Dict[str, Any]:
        stats = super().get_stats(wallet)
        pos = self.lending.get_position(wallet, self.market)
        stats["apy"] = self.lending.get_current_apy(self.market)
        stats["earned"] = pos.earned if pos else 0.0
        return stats


__all__ = ["LendingExecutor"]
