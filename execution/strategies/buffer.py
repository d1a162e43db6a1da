"""Cash buffer vault: holds idle stable value; all movement goes through the planner."""
from __future__ import annotations

from typing import Any, Dict

from execution.strategies.base import HOLD, StrategyExecutionResult, VaultExecutor
from treasury.vaults import BUFFER


class BufferExecutor(VaultExecutor):
    vault_id = BUFFER
    threshold = 0.0

    def execute(self, wallet: str, target: float) -> StrategyExecutionResult:
        current = self.cash(wallet)
        return StrategyExecutionResult(
            vault_id=self.vault_id,
            success=True,
            amount_in=target,
            amount_out=current,
            action=HOLD,
        )

    def get_stats(self, wallet: str) -> Dict[str, Any]:
        cash = self.cash(wallet)
        return {"balance": cash, "cash": cash, "invested": 0.0, "pnl": 0.0, "positions": 0}


__all__ = ["BufferExecutor"]
