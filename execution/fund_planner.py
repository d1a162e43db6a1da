"""
Fund Movement Planner

Diffs each non-buffer vault's balance against its target and turns the
differences into transfer instructions on the rail.

Rules:
    - |diff| below the operating minimum is deferred, never sent to the rail
    - diff > 0 is funded by the buffer, or by the raw wallet when the buffer
      is empty; diff < 0 returns vault cash to the buffer
    - amounts are floored to rail micro-units and capped at what the source
      actually holds, so a transfer never asks for more than exists
    - a rail rejection for size is reclassified as a deferral; any other
      failure is an error for that vault only and planning carries on

Outflows are planned and executed before inflows so cash released from
over-weight vaults can fund under-weight ones in the same pass.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from execution.rail import TransferRail, floor_amount, is_below_minimum_error
from treasury.loader import Treasury
from treasury.vaults import BUFFER, VAULT_ORDER, derive_vault_address, short_wallet

LOG = logging.getLogger("fund_planner")

IN = "in"
OUT = "out"

SOURCE_BUFFER = "buffer"
SOURCE_WALLET = "wallet"
SOURCE_VAULT = "vault"

REASON_RAIL_MINIMUM = "rail_minimum"
REASON_INSUFFICIENT_SOURCE = "insufficient_source"
REASON_AWAITING_LIQUIDATION = "awaiting_liquidation"


def below_minimum_reason(minimum: float) -> str:
    return f"below_minimum_{minimum:.2f}"


# ---------------------------------------------------------------------------
# Plan entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlannedTransfer:
    vault_id: str
    from_address: str
    to_address: str
    amount: float
    direction: str
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vault": self.vault_id,
            "from": self.from_address,
            "to": self.to_address,
            "amount": self.amount,
            "direction": self.direction,
            "source": self.source,
        }


@dataclass(frozen=True)
class DeferredTransfer:
    vault_id: str
    diff: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"vault": self.vault_id, "diff": round(self.diff, 6), "reason": self.reason}


@dataclass(frozen=True)
class TransferError:
    vault_id: str
    error: str
    amount: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {"vault": self.vault_id, "error": self.error, "amount": self.amount}


@dataclass(frozen=True)
class ExecutedTransfer:
    transfer: PlannedTransfer
    reference: Optional[str]

    @property
    def amount(self) -> float:
        return self.transfer.amount

    def to_dict(self) -> Dict[str, Any]:
        payload = self.transfer.to_dict()
        payload["reference"] = self.reference
        return payload


@dataclass
class PlanOutcome:
    executed: List[ExecutedTransfer] = field(default_factory=list)
    deferred: List[DeferredTransfer] = field(default_factory=list)
    errors: List[TransferError] = field(default_factory=list)

    @property
    def net_buffer_change(self) -> float:
        """Cash that landed in the buffer minus cash the buffer paid out."""
        change = 0.0
        for item in self.executed:
            t = item.transfer
            if t.direction == OUT:
                change += t.amount
            elif t.source == SOURCE_BUFFER:
                change -= t.amount
        return change

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "executed": [t.to_dict() for t in self.executed],
            "deferred": [d.to_dict() for d in self.deferred],
            "errors": [e.to_dict() for e in self.errors],
            "netBufferChange": round(self.net_buffer_change, 6),
        }


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def plan_movements(
    treasury: Treasury,
    allocation: Mapping[str, float],
    minimum: float,
    buffer_liquid: Optional[float] = None,
    wallet_liquid: Optional[float] = None,
    vault_liquid: Optional[Mapping[str, float]] = None,
) -> Tuple[List[PlannedTransfer], List[DeferredTransfer]]:
    """
    Pure planning step: no rail calls.

    ``buffer_liquid``/``wallet_liquid``/``vault_liquid`` are the cash amounts
    each source can actually send; they default to the snapshot balances.
    """
    wallet = treasury.wallet
    total = treasury.total_value
    buffer_address = derive_vault_address(wallet, BUFFER)
    buffer_cash = treasury.balance_of(BUFFER) if buffer_liquid is None else buffer_liquid
    wallet_cash = treasury.wallet_balance if wallet_liquid is None else wallet_liquid

    outflows: List[PlannedTransfer] = []
    inflows: List[Tuple[str, float, str]] = []
    deferred: List[DeferredTransfer] = []

    for vault_id in VAULT_ORDER:
        if vault_id == BUFFER:
            continue
        vault = treasury.vault(vault_id)
        balance = vault.balance if vault else 0.0
        address = vault.address if vault and vault.address else derive_vault_address(wallet, vault_id)
        target = float(allocation.get(vault_id, 0.0) or 0.0) / 100.0 * total
        diff = target - balance

        if abs(diff) < minimum:
            if abs(diff) > 0:
                deferred.append(DeferredTransfer(vault_id, diff, below_minimum_reason(minimum)))
            continue

        if diff > 0:
            inflows.append((vault_id, diff, address))
            continue

        liquid = balance if vault_liquid is None else float(vault_liquid.get(vault_id, 0.0))
        amount = floor_amount(min(-diff, max(0.0, liquid)))
        if amount < minimum:
            deferred.append(DeferredTransfer(vault_id, diff, REASON_AWAITING_LIQUIDATION))
            continue
        outflows.append(PlannedTransfer(vault_id, address, buffer_address, amount, OUT, SOURCE_VAULT))
        buffer_cash += amount

    planned: List[PlannedTransfer] = list(outflows)
    for vault_id, diff, address in inflows:
        if buffer_cash > 0:
            source, from_address, available = SOURCE_BUFFER, buffer_address, buffer_cash
        elif wallet_cash > 0:
            source, from_address, available = SOURCE_WALLET, wallet, wallet_cash
        else:
            deferred.append(DeferredTransfer(vault_id, diff, REASON_INSUFFICIENT_SOURCE))
            continue

        amount = floor_amount(min(diff, available))
        if amount < minimum:
            deferred.append(DeferredTransfer(vault_id, diff, REASON_INSUFFICIENT_SOURCE))
            continue
        if source == SOURCE_BUFFER:
            buffer_cash -= amount
        else:
            wallet_cash -= amount
        planned.append(PlannedTransfer(vault_id, from_address, address, amount, IN, source))

    planned = [t for t in planned if t.from_address != t.to_address]
    return planned, deferred


def execute_plan(
    rail: TransferRail,
    planned: List[PlannedTransfer],
    deferred: Optional[List[DeferredTransfer]] = None,
) -> PlanOutcome:
    """Send each planned transfer in order; failures are isolated per vault."""
    outcome = PlanOutcome(deferred=list(deferred or []))
    for transfer in planned:
        if transfer.from_address == transfer.to_address:
            continue
        try:
            result = rail.transfer(transfer.from_address, transfer.to_address, transfer.amount)
        except Exception as exc:
            LOG.warning("[planner] %s transfer raised: %s", transfer.vault_id, exc)
            outcome.errors.append(TransferError(transfer.vault_id, str(exc), transfer.amount))
            continue

        if result.success:
            outcome.executed.append(ExecutedTransfer(transfer, result.reference))
            LOG.info(
                "[planner] %s %s %.2f (%s)",
                transfer.vault_id,
                transfer.direction,
                transfer.amount,
                transfer.source,
            )
            continue

        signed = transfer.amount if transfer.direction == IN else -transfer.amount
        if is_below_minimum_error(result.error):
            outcome.deferred.append(DeferredTransfer(transfer.vault_id, signed, REASON_RAIL_MINIMUM))
            LOG.info("[planner] %s deferred by rail minimum", transfer.vault_id)
        else:
            outcome.errors.append(
                TransferError(transfer.vault_id, result.error or "Transfer failed", transfer.amount)
            )
            LOG.warning("[planner] %s transfer failed: %s", transfer.vault_id, result.error)
    return outcome


def rebalance_funds(
    rail: TransferRail,
    treasury: Treasury,
    allocation: Mapping[str, float],
    minimum: float,
    vault_liquid: Optional[Mapping[str, float]] = None,
) -> PlanOutcome:
    """Plan against live buffer/wallet cash and execute in one step."""
    buffer_cash = rail.get_balance(derive_vault_address(treasury.wallet, BUFFER))
    planned, deferred = plan_movements(
        treasury,
        allocation,
        minimum,
        buffer_liquid=buffer_cash,
        wallet_liquid=treasury.wallet_balance,
        vault_liquid=vault_liquid,
    )
    LOG.info(
        "[planner] %s planned=%d deferred=%d",
        short_wallet(treasury.wallet),
        len(planned),
        len(deferred),
    )
    return execute_plan(rail, planned, deferred)


__all__ = [
    "DeferredTransfer",
    "ExecutedTransfer",
    "IN",
    "OUT",
    "PlanOutcome",
    "PlannedTransfer",
    "REASON_AWAITING_LIQUIDATION",
    "REASON_INSUFFICIENT_SOURCE",
    "REASON_RAIL_MINIMUM",
    "TransferError",
    "below_minimum_reason",
    "execute_plan",
    "plan_movements",
    "rebalance_funds",
]
