"""
Vault executor contract.

Each vault's value is idle cash at its derived address on the rail plus
whatever that cash has been invested into. ``execute`` converges the
invested part toward a dollar target: it deploys idle cash when below
target and liquidates back to vault cash when above it. Moving cash
between vaults is the planner's job, not the executor's.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from execution.rail import TransferRail, floor_amount
from treasury.vaults import derive_vault_address, short_wallet

LOG = logging.getLogger("strategies")

HOLD = "hold"
DEPLOY = "deploy"
REDUCE = "reduce"


@dataclass
class StrategyExecutionResult:
    vault_id: str
    success: bool
    amount_in: float = 0.0
    amount_out: float = 0.0
    tx_refs: List[str] = field(default_factory=list)
    positions: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    unsigned_txs: List[str] = field(default_factory=list)
    memos: List[str] = field(default_factory=list)
    action: str = HOLD
    # Drawn cash that actually landed in positions; kept current slice by slice.
    deployed: float = 0.0
    # Proceeds too small for the rail to credit back to the vault.
    undeposited: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "vaultId": self.vault_id,
            "success": self.success,
            "action": self.action,
            "amountIn": round(self.amount_in, 6),
            "amountOut": round(self.amount_out, 6),
            "txRefs": list(self.tx_refs),
            "positions": list(self.positions),
        }
        if self.unsigned_txs:
            payload["unsignedTxs"] = list(self.unsigned_txs)
        if self.memos:
            payload["positionMemos"] = list(self.memos)
        if self.undeposited > 0:
            payload["undeposited"] = round(self.undeposited, 6)
        if self.error:
            payload["error"] = self.error
        return payload


@dataclass
class Liquidation:
    """Stable proceeds of selling invested value."""
    received: float = 0.0
    tx_refs: List[str] = field(default_factory=list)
    unsigned_txs: List[str] = field(default_factory=list)
    memos: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class VaultExecutor:
    vault_id: str = ""
    threshold: float = 1.0

    def __init__(self, rail: TransferRail) -> None:
        self.rail = rail

    # ------------------------------------------------------------------ values

    def address(self, wallet: str) -> str:
        return derive_vault_address(wallet, self.vault_id)

    def cash(self, wallet: str) -> float:
        return self.rail.get_balance(self.address(wallet))

    def invested_value(self, wallet: str) -> float:
        return 0.0

    def cost_basis(self, wallet: str) -> float:
        return self.invested_value(wallet)

    def get_value(self, wallet: str) -> float:
        return self.cash(wallet) + self.invested_value(wallet)

    def position_summaries(self, wallet: str) -> List[Dict[str, Any]]:
        return []

    def get_stats(self, wallet: str) -> Dict[str, Any]:
        invested = self.invested_value(wallet)
        cash = self.cash(wallet)
        positions = self.position_summaries(wallet)
        return {
            "balance": cash + invested,
            "cash": cash,
            "invested": invested,
            "pnl": invested - self.cost_basis(wallet),
            "positions": len(positions),
        }

    # ---------------------------------------------------------------- actions

    def _deploy(self, wallet: str, amount: float, result: StrategyExecutionResult) -> float:
        """Invest ``amount`` of drawn cash; returns how much was actually spent.

        Implementations add each filled piece to ``result.deployed`` as it
        lands so a failure part way through still knows what was spent.
        """
        raise NotImplementedError

    def _deployable(self, wallet: str, amount: float) -> float:
        """How much of ``amount`` the vault can actually put to work right now."""
        return amount

    def _liquidate(self, wallet: str, amount: float) -> Liquidation:
        raise NotImplementedError

    def _draw_cash(self, wallet: str, amount: float, result: StrategyExecutionResult) -> float:
        """Pull idle vault cash off the rail for investment; returns the net amount."""
        rail_result = self.rail.withdraw(self.address(wallet), amount)
        if not rail_result.success:
            raise RuntimeError(rail_result.error or "rail withdraw failed")
        if rail_result.reference:
            result.tx_refs.append(rail_result.reference)
        return rail_result.amount

    def _return_cash(self, wallet: str, amount: float, result: StrategyExecutionResult) -> float:
        """Credit cash back to the vault's address; returns the net amount."""
        if amount < self.rail.minimum_amount:
            if amount > 1e-6:
                result.undeposited += amount
                LOG.warning(
                    "[%s] %.6f below rail minimum %.2f, left undeposited",
                    self.vault_id,
                    amount,
                    self.rail.minimum_amount,
                )
            return 0.0
        rail_result = self.rail.deposit(self.address(wallet), amount)
        if not rail_result.success:
            raise RuntimeError(rail_result.error or "rail deposit failed")
        if rail_result.reference:
            result.tx_refs.append(rail_result.reference)
        return rail_result.amount

    def execute(self, wallet: str, target: float) -> StrategyExecutionResult:
        result = StrategyExecutionResult(vault_id=self.vault_id, success=True)
        invested = self.invested_value(wallet)
        delta = target - invested

        if abs(delta) <= self.threshold:
            LOG.debug("[%s] within threshold (delta=%.2f)", self.vault_id, delta)
        elif delta > 0:
            idle = floor_amount(min(delta, self.cash(wallet)))
            available = floor_amount(self._deployable(wallet, idle)) if idle > 0 else 0.0
            if available >= max(self.rail.minimum_amount, 1e-6):
                result.action = DEPLOY
                result.amount_in = available
                net = self._draw_cash(wallet, available, result)
                try:
                    spent = self._deploy(wallet, net, result)
                except Exception as exc:
                    LOG.warning("[%s] deploy failed after drawing %.2f: %s", self.vault_id, net, exc)
                    result.success = False
                    result.error = str(exc)
                    spent = result.deployed
                # Unspent cash goes back to the vault so nothing drawn is lost.
                if net - spent > 1e-6:
                    result.amount_out = self._return_cash(wallet, net - spent, result)
            elif idle > 0:
                LOG.info("[%s] nothing buyable with %.2f idle, holding", self.vault_id, idle)
            else:
                LOG.info("[%s] %s below target by %.2f with no idle cash", self.vault_id, short_wallet(wallet), delta)
        else:
            result.action = REDUCE
            sold = self._liquidate(wallet, -delta)
            result.tx_refs.extend(sold.tx_refs)
            result.unsigned_txs.extend(sold.unsigned_txs)
            result.memos.extend(sold.memos)
            if sold.errors:
                result.success = False
                result.error = "; ".join(sold.errors)
            result.amount_out = self._return_cash(wallet, sold.received, result)

        result.positions = self.position_summaries(wallet)
        return result

    def withdraw(self, wallet: str, amount: float) -> StrategyExecutionResult:
        """Pay ``amount`` of vault value out to the wallet's private balance."""
        result = StrategyExecutionResult(vault_id=self.vault_id, success=True, action=REDUCE)
        value = self.get_value(wallet)
        if amount > value + 1e-6:
            result.success = False
            result.error = f"Insufficient value. Available: ${value:.2f}"
            return result

        received = 0.0
        from_cash = floor_amount(min(self.cash(wallet), amount))
        if from_cash >= self.rail.minimum_amount:
            moved = self.rail.transfer(self.address(wallet), wallet, from_cash)
            if not moved.success:
                result.success = False
                result.error = moved.error or "Transfer failed"
                return result
            if moved.reference:
                result.tx_refs.append(moved.reference)
            received += moved.amount
        else:
            from_cash = 0.0

        remainder = amount - from_cash
        if remainder > 1e-6:
            sold = self._liquidate(wallet, remainder)
            result.tx_refs.extend(sold.tx_refs)
            result.unsigned_txs.extend(sold.unsigned_txs)
            result.memos.extend(sold.memos)
            if sold.errors:
                result.success = False
                result.error = "; ".join(sold.errors)
            if sold.received >= self.rail.minimum_amount:
                credited = self.rail.deposit(wallet, sold.received)
                if credited.success:
                    received += credited.amount
                    if credited.reference:
                        result.tx_refs.append(credited.reference)
                else:
                    result.success = False
                    result.error = credited.error or "Deposit failed"
            elif sold.received > 1e-6:
                result.undeposited += sold.received
                LOG.warning("[%s] %.6f of proceeds below rail minimum, left undeposited", self.vault_id, sold.received)

        result.amount_out = received
        result.positions = self.position_summaries(wallet)
        return result


__all__ = [
    "DEPLOY",
    "HOLD",
    "Liquidation",
    "REDUCE",
    "StrategyExecutionResult",
    "VaultExecutor",
]
