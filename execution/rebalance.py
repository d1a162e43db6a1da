"""
Rebalance Orchestrator

One request flows through:
    validate -> authorize -> load treasury -> bridge public funds ->
    strategy -> plan + execute transfers -> run vault executors -> stats

Once past authorization a rebalance always runs to completion: partial
failures are collected per vault and reported with ``ok=False`` because
fund movements that already landed cannot be rolled back. Only unexpected
exceptions escape, and the ``run_*`` wrappers turn those into an opaque 500.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from execution.fund_planner import PlanOutcome, rebalance_funds
from execution.intel.allocation_rules import RISK_PROFILES, defer_sub_minimum_targets
from execution.intel.strategy_engine import StrategyEngine
from execution.log_utils import audit_event
from execution.position_memo import JsonlMemoStore, MemoStore
from execution.protocols.lending import KaminoLendingClient
from execution.protocols.swap import JupiterSwapClient
from execution.rail import DEFAULT_FEE_PCT, SimulatedRail, TransferRail, fee_info, floor_amount
from execution.runtime_config import (
    LIVE,
    RebalanceConfig,
    get_rebalance_config,
    get_runtime_mode,
    minimum_transfer_usd,
    normalize_mode,
)
from execution.signature import SignatureError, authorize
from execution.strategies import (
    StrategyExecutionResult,
    VaultRegistry,
    build_registry,
    commit_position_memos,
    execute_all_strategies,
    get_vault_stats,
)
from treasury.loader import Treasury, TreasuryLoader
from treasury.vaults import BUFFER, INVESTABLE_VAULTS, derive_vault_address, is_vault_id, parse_wallet, short_wallet

LOG = logging.getLogger("rebalance")

_AMOUNT_EPS = 1e-6


class RequestRejected(Exception):
    """Validation (400) or authorization (401) failure; nothing was touched."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
        self.message = message


# ---------------------------------------------------------------------------
# Request parsing
# ---------------------------------------------------------------------------


def _field(payload: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in payload and payload[name] is not None:
            return payload[name]
    return None


def _wallet(payload: Mapping[str, Any]) -> str:
    wallet = _field(payload, "wallet", "walletAddress")
    if not wallet:
        raise RequestRejected(400, "Wallet address required")
    try:
        parse_wallet(str(wallet))
    except ValueError:
        raise RequestRejected(400, "Invalid wallet address")
    return str(wallet).strip()


def _risk(payload: Mapping[str, Any], default: str) -> str:
    raw = _field(payload, "riskProfile", "risk")
    if raw is None or str(raw).strip() == "":
        return default
    risk = str(raw).strip().lower()
    if risk not in RISK_PROFILES:
        raise RequestRejected(400, f"Invalid risk profile: {raw}")
    return risk


def _amount(payload: Mapping[str, Any]) -> float:
    raw = _field(payload, "amount")
    try:
        amount = float(raw)
    except (TypeError, ValueError):
        raise RequestRejected(400, "Amount must be a number")
    if not amount > 0:
        raise RequestRejected(400, "Amount must be positive")
    return amount


def parse_allocations(
    allocations: Optional[Mapping[str, Any]],
    selected_vaults: Optional[Iterable[str]] = None,
) -> Dict[str, float]:
    """
    Resolve an invest request into percentages over the investable vaults.

    Positive percentages select vaults and are normalized to 100. When only
    a selection is given the amount is split equally across it.
    """
    allocations = dict(allocations or {})
    selected = [str(v) for v in (selected_vaults or [])]
    for vid in list(allocations) + selected:
        if vid not in INVESTABLE_VAULTS:
            raise RequestRejected(400, f"Vault not available for investment: {vid}")

    shares: Dict[str, float] = {}
    for vid in INVESTABLE_VAULTS:
        raw = allocations.get(vid)
        if raw is None:
            continue
        try:
            pct = float(raw)
        except (TypeError, ValueError):
            raise RequestRejected(400, f"Invalid allocation for {vid}")
        if pct < 0:
            raise RequestRejected(400, f"Invalid allocation for {vid}")
        if pct > 0 and (not selected or vid in selected):
            shares[vid] = pct

    if not shares and selected:
        shares = {vid: 1.0 for vid in INVESTABLE_VAULTS if vid in selected}
    if not shares:
        raise RequestRejected(400, "Select at least one vault")

    total = sum(shares.values())
    return {vid: pct / total * 100.0 for vid, pct in shares.items()}


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class RebalanceService:
    def __init__(
        self,
        loader: TreasuryLoader,
        engine: StrategyEngine,
        rail: TransferRail,
        registry: VaultRegistry,
        config: Optional[RebalanceConfig] = None,
    ) -> None:
        self.loader = loader
        self.engine = engine
        self.rail = rail
        self.registry = registry
        self.config = config or get_rebalance_config()

    # ---------------------------------------------------------------- helpers

    def _authorize(self, action: str, wallet: str, payload: Mapping[str, Any]) -> None:
        signature = _field(payload, "signature")
        if not signature:
            if self.config.require_signature:
                raise RequestRejected(401, "Signature required")
            return
        try:
            authorize(
                action,
                wallet,
                _field(payload, "timestamp"),
                str(signature),
                window_s=self.config.signature_window_s,
            )
        except SignatureError as exc:
            raise RequestRejected(401, str(exc))

    def _mode(self, payload: Mapping[str, Any]) -> str:
        # The process decides the mode; a request cannot lower its own minimum.
        requested = normalize_mode(_field(payload, "mode"))
        mode = get_runtime_mode()
        if requested and requested != mode:
            LOG.warning("[rebalance] ignoring requested mode %s, running %s", requested, mode)
        return mode

    def _fees(self) -> Dict[str, float]:
        return fee_info(getattr(self.rail, "fee_pct", DEFAULT_FEE_PCT), self.rail.minimum_amount)

    def _audit(self, event_type: str, payload: Mapping[str, Any]) -> None:
        audit_event(self.config.audit_log_path, event_type, payload)

    def _bridge(self, treasury: Treasury) -> Optional[Dict[str, Any]]:
        """Shield public funds into the private wallet when nothing is private yet."""
        if treasury.public_balance <= 0 or treasury.total_value >= self.config.bridge_threshold_usd:
            return None
        result = self.rail.deposit(treasury.wallet, treasury.public_balance)
        if result.success:
            LOG.info(
                "[rebalance] bridged %.2f public funds for %s",
                result.amount,
                short_wallet(treasury.wallet),
            )
        else:
            LOG.warning("[rebalance] bridge failed for %s: %s", short_wallet(treasury.wallet), result.error)
        return result.to_dict()

    def _vault_cash(self, wallet: str) -> Dict[str, float]:
        cash: Dict[str, float] = {}
        for executor in self.registry.ordered():
            if executor.vault_id == BUFFER:
                continue
            cash[executor.vault_id] = executor.cash(wallet)
        return cash

    # -------------------------------------------------------------- rebalance

    def rebalance(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        started = time.monotonic()
        wallet = _wallet(payload)
        risk = _risk(payload, self.config.default_risk)
        self._authorize("rebalance", wallet, payload)
        mode = self._mode(payload)
        minimum = minimum_transfer_usd(mode)

        treasury = self.loader.load(wallet, risk)
        bridge = self._bridge(treasury)
        if bridge and bridge.get("success"):
            treasury = self.loader.load(wallet, risk)

        strategy = self.engine.get_strategy(risk)
        allocation = dict(strategy.allocation)
        if mode == LIVE:
            allocation = defer_sub_minimum_targets(allocation, treasury.total_value, minimum)

        outcome: PlanOutcome = rebalance_funds(
            self.rail, treasury, allocation, minimum, vault_liquid=self._vault_cash(wallet)
        )
        results = execute_all_strategies(self.registry, wallet, treasury.total_value, allocation)
        commit_position_memos(self.registry, wallet, results)
        stats = get_vault_stats(self.registry, wallet)

        unsigned_txs: List[str] = []
        for result in results:
            unsigned_txs.extend(result.unsigned_txs)
        failed = [r.vault_id for r in results if not r.success]
        ok = not outcome.errors and not failed
        duration_ms = (time.monotonic() - started) * 1000.0

        response: Dict[str, Any] = {
            "ok": ok,
            "wallet": wallet,
            "mode": mode,
            "riskProfile": risk,
            "allocation": allocation,
            "reasoning": strategy.reasoning,
            "confidence": strategy.confidence,
            "source": strategy.source,
            "macroMood": strategy.macro_mood,
            "insights": list(strategy.insights),
            "signals": strategy.signals.to_dict(),
            "treasury": treasury.to_dict(),
            "bridge": bridge,
            "transfers": outcome.to_dict(),
            "strategyResults": [r.to_dict() for r in results],
            "unsignedTxs": unsigned_txs,
            "vaultStats": stats,
            "fees": self._fees(),
            "minimumTransfer": minimum,
            "durationMs": round(duration_ms, 1),
        }
        LOG.info(
            "[rebalance] %s risk=%s source=%s executed=%d deferred=%d errors=%d failed_vaults=%s %.0fms",
            short_wallet(wallet),
            risk,
            strategy.source,
            len(outcome.executed),
            len(outcome.deferred),
            len(outcome.errors),
            failed,
            duration_ms,
        )
        self._audit(
            "rebalance",
            {
                "wallet": short_wallet(wallet),
                "ok": ok,
                "mode": mode,
                "risk": risk,
                "source": strategy.source,
                "allocation": allocation,
                "total_value": treasury.total_value,
                "executed": len(outcome.executed),
                "deferred": [d.to_dict() for d in outcome.deferred],
                "errors": [e.to_dict() for e in outcome.errors],
                "failed_vaults": failed,
                "duration_ms": round(duration_ms, 1),
            },
        )
        return response

    # --------------------------------------------------------------- withdraw

    def withdraw_from_vault(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        started = time.monotonic()
        wallet = _wallet(payload)
        vault_id = str(_field(payload, "vault", "vaultId") or "")
        if not is_vault_id(vault_id) or vault_id == BUFFER:
            raise RequestRejected(400, f"Invalid vault: {vault_id or 'missing'}")
        amount = _amount(payload)
        self._authorize("withdraw", wallet, payload)

        executor = self.registry[vault_id]
        value = executor.get_value(wallet)
        if amount > value + _AMOUNT_EPS:
            raise RequestRejected(400, f"Insufficient vault balance. Available: ${value:.2f}")

        result = executor.withdraw(wallet, amount)
        commit_position_memos(self.registry, wallet, [result])
        duration_ms = (time.monotonic() - started) * 1000.0
        response = {
            "ok": result.success,
            "vault": vault_id,
            "requested": amount,
            "received": result.amount_out,
            "result": result.to_dict(),
            "fees": self._fees(),
            "durationMs": round(duration_ms, 1),
        }
        if result.error:
            response["error"] = result.error
        LOG.info(
            "[withdraw] %s %s requested=%.2f received=%.2f ok=%s",
            short_wallet(wallet),
            vault_id,
            amount,
            result.amount_out,
            result.success,
        )
        self._audit(
            "withdraw",
            {
                "wallet": short_wallet(wallet),
                "vault": vault_id,
                "requested": amount,
                "received": result.amount_out,
                "ok": result.success,
                "error": result.error,
            },
        )
        return response

    # ----------------------------------------------------------------- invest

    def invest(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        started = time.monotonic()
        wallet = _wallet(payload)
        amount = _amount(payload)
        risk = _risk(payload, self.config.default_risk)
        shares = parse_allocations(
            _field(payload, "allocations"), _field(payload, "selectedVaults", "selected_vaults")
        )
        self._authorize("invest", wallet, payload)
        mode = self._mode(payload)
        minimum = minimum_transfer_usd(mode)

        treasury = self.loader.load(wallet, risk)
        if amount > treasury.total_value + _AMOUNT_EPS:
            raise RequestRejected(400, f"Insufficient balance. Available: ${treasury.total_value:.2f}")

        slices = {vid: floor_amount(amount * pct / 100.0) for vid, pct in shares.items()}
        if mode == LIVE:
            for vid, value in slices.items():
                if value < minimum:
                    raise RequestRejected(
                        400, f"Allocation to {vid} (${value:.2f}) is below the ${minimum:.2f} minimum"
                    )

        buffer_address = derive_vault_address(wallet, BUFFER)
        transfers: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []
        results: List[StrategyExecutionResult] = []

        for vid in INVESTABLE_VAULTS:
            value = slices.get(vid, 0.0)
            if value <= 0:
                continue
            executor = self.registry[vid]
            if self.rail.get_balance(wallet) >= value:
                source, from_address = "wallet", wallet
            elif self.rail.get_balance(buffer_address) >= value:
                source, from_address = "buffer", buffer_address
            else:
                errors.append({"vault": vid, "error": "Insufficient funds in wallet or buffer", "amount": value})
                continue

            moved = self.rail.transfer(from_address, executor.address(wallet), value)
            if not moved.success:
                errors.append({"vault": vid, "error": moved.error or "Transfer failed", "amount": value})
                continue
            transfers.append(
                {"vault": vid, "source": source, "amount": moved.amount, "reference": moved.reference}
            )

            try:
                current = executor.invested_value(wallet)
                result = executor.execute(wallet, current + moved.amount)
            except Exception as exc:
                LOG.warning("[invest] %s executor failed for %s: %s", vid, short_wallet(wallet), exc)
                result = StrategyExecutionResult(vault_id=vid, success=False, amount_in=value, error=str(exc))
            results.append(result)

        commit_position_memos(self.registry, wallet, results)
        ok = not errors and all(r.success for r in results)
        duration_ms = (time.monotonic() - started) * 1000.0
        LOG.info(
            "[invest] %s amount=%.2f vaults=%s ok=%s",
            short_wallet(wallet),
            amount,
            sorted(slices),
            ok,
        )
        self._audit(
            "invest",
            {
                "wallet": short_wallet(wallet),
                "amount": amount,
                "allocations": shares,
                "transfers": transfers,
                "errors": errors,
                "ok": ok,
            },
        )
        return {
            "ok": ok,
            "amount": amount,
            "allocations": shares,
            "transfers": transfers,
            "errors": errors,
            "strategyResults": [r.to_dict() for r in results],
            "vaultStats": get_vault_stats(self.registry, wallet),
            "fees": self._fees(),
            "durationMs": round(duration_ms, 1),
        }


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def _run(action: str, fn, payload: Mapping[str, Any], failure: str) -> Tuple[int, Dict[str, Any]]:
    try:
        return 200, fn(payload)
    except RequestRejected as exc:
        LOG.info("[%s] rejected (%d): %s", action, exc.status, exc.message)
        return exc.status, {"ok": False, "error": exc.message}
    except Exception:
        LOG.exception("[%s] unexpected failure", action)
        return 500, {"ok": False, "error": failure}


def run_rebalance(service: RebalanceService, payload: Mapping[str, Any]) -> Tuple[int, Dict[str, Any]]:
    return _run("rebalance", service.rebalance, payload, "Rebalance failed")


def run_withdraw(service: RebalanceService, payload: Mapping[str, Any]) -> Tuple[int, Dict[str, Any]]:
    return _run("withdraw", service.withdraw_from_vault, payload, "Withdraw failed")


def run_invest(service: RebalanceService, payload: Mapping[str, Any]) -> Tuple[int, Dict[str, Any]]:
    return _run("invest", service.invest, payload, "Invest failed")


def build_demo_service(
    rail: Optional[SimulatedRail] = None,
    memo_store: Optional[MemoStore] = None,
    engine: Optional[StrategyEngine] = None,
) -> RebalanceService:
    """Wire a service over the simulated rail with simulated swaps and lending."""
    rail = rail or SimulatedRail()
    registry = build_registry(
        rail,
        JupiterSwapClient(simulate=True),
        KaminoLendingClient(simulate=True),
        memo_store or JsonlMemoStore(),
    )
    loader = TreasuryLoader(rail, {ex.vault_id: ex for ex in registry.ordered()})
    return RebalanceService(loader, engine or StrategyEngine(), rail, registry)


__all__ = [
    "RebalanceService",
    "RequestRejected",
    "build_demo_service",
    "parse_allocations",
    "run_invest",
    "run_rebalance",
    "run_withdraw",
]
