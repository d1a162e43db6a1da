"""
Token basket vaults.

A basket splits deployed cash across fixed weights, swaps each slice into
its token and records the fill in the vault's position ledger. Reducing
sells the same fraction of every held position so the basket keeps its
shape.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from execution.position_ledger import PositionLedger
from execution.position_memo import DUST_EPSILON, MemoStore, PositionMemo, parse_memo
from execution.protocols.types import TOKENS, SwapClient, SwapRequest, stable_mint
from execution.rail import TransferRail
from execution.runtime_config import ExecutorConfig, get_executor_config
from execution.strategies.base import Liquidation, StrategyExecutionResult, VaultExecutor
from treasury.vaults import GROWTH, SPECULATIVE, short_wallet

LOG = logging.getLogger("strategies.basket")


class BasketExecutor(VaultExecutor):
    """Weighted token basket backed by a position ledger."""

    slippage_bps: int = 100
    # Pending memos are committed through the memo store when True; otherwise
    # they are handed back on the result for the caller to attach.
    commit_memos: bool = False

    def __init__(
        self,
        rail: TransferRail,
        swap: SwapClient,
        memo_store: MemoStore,
        weights: Dict[str, float],
        threshold: float,
        slippage_bps: int,
        min_slice_usd: float = 0.1,
        commit_memos: Optional[bool] = None,
    ) -> None:
        super().__init__(rail)
        self.swap = swap
        self.memo_store = memo_store
        self.ledger = PositionLedger(self.vault_id, memo_store)
        self.weights = {sym: w for sym, w in weights.items() if w > 0 and sym in TOKENS}
        self.threshold = threshold
        self.slippage_bps = slippage_bps
        self.min_slice_usd = min_slice_usd
        if commit_memos is not None:
            self.commit_memos = commit_memos

    # ------------------------------------------------------------------ values

    def min_token_amount(self, symbol: str) -> float:
        return 0.0

    def _prices(self, mints: List[str]) -> Dict[str, float]:
        return self.swap.get_token_prices(mints) if mints else {}

    def invested_value(self, wallet: str) -> float:
        positions = self.ledger.positions(wallet)
        prices = self._prices([p.token_mint for p in positions])
        return sum(p.amount * prices.get(p.token_mint, p.entry_price) for p in positions)

    def cost_basis(self, wallet: str) -> float:
        return self.ledger.cost_basis(wallet)

    def position_summaries(self, wallet: str) -> List[Dict[str, Any]]:
        positions = self.ledger.positions(wallet)
        prices = self._prices([p.token_mint for p in positions])
        out = []
        for pos in positions:
            price = prices.get(pos.token_mint, pos.entry_price)
            row = pos.to_dict()
            row["price"] = price
            row["value"] = pos.amount * price
            row["pnl"] = pos.amount * (price - pos.entry_price)
            out.append(row)
        return out

    # ---------------------------------------------------------------- memos

    def _commit(
        self, wallet: str, memos: List[PositionMemo], tx_refs: List[str], unsigned_txs: List[str]
    ) -> bool:
        try:
            ref = self.memo_store.build_commit_transaction(wallet, memos)
        except Exception as exc:
            LOG.warning("[%s] memo commit build failed: %s", self.vault_id, exc)
            return False
        if ref and ref.startswith("local_"):
            tx_refs.append(ref)
        elif ref:
            unsigned_txs.append(ref)
        return True

    def _flush_memos(self, wallet: str, tx_refs: List[str], unsigned_txs: List[str], memos: List[str]) -> None:
        pending = self.ledger.drain_pending(wallet)
        if not pending:
            return
        if self.commit_memos and self._commit(wallet, pending, tx_refs, unsigned_txs):
            return
        # The in-memory book already holds the change; the memo text goes back
        # to the caller so it can still be persisted.
        memos.extend(m.encode() for m in pending)

    def commit_result_memos(self, wallet: str, result: StrategyExecutionResult) -> None:
        """Commit the memo text handed back on ``result`` as one store transaction.

        Local commits land in ``tx_refs``; anything else is an unsigned
        transaction for the wallet to sign. Memos stay on the result when the
        commit cannot be built.
        """
        parsed = [m for m in (parse_memo(text) for text in result.memos) if m is not None]
        if parsed and self._commit(wallet, parsed, result.tx_refs, result.unsigned_txs):
            result.memos = []

    # ---------------------------------------------------------------- actions

    def _plan_slices(self, amount: float, prices: Dict[str, float]) -> Dict[str, float]:
        """Split ``amount`` by weight over the tokens a slice can actually buy.

        Tokens without a price, or whose slice falls under the slice floor
        or the token minimum, are dropped and their weight is spread over
        the rest until every remaining slice is buyable.
        """
        weights = {sym: w for sym, w in self.weights.items() if prices.get(TOKENS[sym].mint, 0.0) > 0}
        while weights:
            total_weight = sum(weights.values())
            slices = {sym: amount * w / total_weight for sym, w in weights.items()}
            short = [
                sym
                for sym, usd in slices.items()
                if usd < self.min_slice_usd or usd / prices[TOKENS[sym].mint] < self.min_token_amount(sym)
            ]
            if not short:
                return slices
            for sym in short:
                weights.pop(sym)
        return {}

    def _deployable(self, wallet: str, amount: float) -> float:
        # Any buyable slice means the whole amount is spread over buyable tokens.
        prices = self._prices([TOKENS[sym].mint for sym in self.weights])
        return amount if self._plan_slices(amount, prices) else 0.0

    def _deploy(self, wallet: str, amount: float, result: StrategyExecutionResult) -> float:
        prices = self._prices([TOKENS[sym].mint for sym in self.weights])
        plan = self._plan_slices(amount, prices)
        skipped = sorted(set(self.weights) - set(plan))
        if skipped:
            LOG.info("[%s] nothing buyable for %s at %.2f", self.vault_id, ", ".join(skipped), amount)
        spent = 0.0
        errors: List[str] = []

        for symbol, slice_usd in plan.items():
            info = TOKENS[symbol]
            price = prices[info.mint]
            try:
                swap = self.swap.execute_swap(
                    SwapRequest(stable_mint(), info.mint, slice_usd, self.slippage_bps), wallet
                )
            except Exception as exc:
                LOG.warning("[%s] %s swap raised: %s", self.vault_id, symbol, exc)
                errors.append(f"{symbol}: {exc}")
                continue
            if not swap.success:
                errors.append(f"{symbol}: {swap.error or 'swap failed'}")
                continue
            qty = swap.output_amount if swap.output_amount > 0 else slice_usd / price
            self.ledger.apply_deposit(wallet, info.mint, symbol, qty, slice_usd / qty)
            if swap.signature:
                result.tx_refs.append(swap.signature)
            if swap.unsigned_tx:
                result.unsigned_txs.append(swap.unsigned_tx)
            spent += slice_usd
            result.deployed += slice_usd

        self._flush_memos(wallet, result.tx_refs, result.unsigned_txs, result.memos)
        if errors:
            result.success = False
            result.error = "; ".join(errors)
        LOG.info("[%s] deployed %.2f of %.2f for %s", self.vault_id, spent, amount, short_wallet(wallet))
        return spent

    def _liquidate(self, wallet: str, amount: float) -> Liquidation:
        sold = Liquidation()
        positions = self.ledger.positions(wallet)
        prices = self._prices([p.token_mint for p in positions])
        invested = sum(p.amount * prices.get(p.token_mint, p.entry_price) for p in positions)
        if invested <= 0:
            if amount > DUST_EPSILON:
                sold.errors.append("No positions to sell")
            return sold

        sell_pct = min(1.0, amount / invested)
        for pos in positions:
            qty = pos.amount * sell_pct
            if pos.amount - qty <= DUST_EPSILON:
                qty = pos.amount
            if qty <= DUST_EPSILON:
                continue
            price = prices.get(pos.token_mint, pos.entry_price)
            info = TOKENS.get(pos.symbol)
            decimals = info.decimals if info else 6
            try:
                swap = self.swap.swap_to_stable(pos.token_mint, qty, decimals, wallet)
            except Exception as exc:
                LOG.warning("[%s] %s sell raised: %s", self.vault_id, pos.symbol, exc)
                sold.errors.append(f"{pos.symbol}: {exc}")
                continue
            if not swap.success:
                sold.errors.append(f"{pos.symbol}: {swap.error or 'swap failed'}")
                continue
            self.ledger.apply_withdraw(wallet, pos.token_mint, qty, price)
            sold.received += swap.output_amount if swap.output_amount > 0 else qty * price
            if swap.signature:
                sold.tx_refs.append(swap.signature)
            if swap.unsigned_tx:
                sold.unsigned_txs.append(swap.unsigned_tx)

        self._flush_memos(wallet, sold.tx_refs, sold.unsigned_txs, sold.memos)
        LOG.info("[%s] sold %.1f%% for %.2f", self.vault_id, sell_pct * 100.0, sold.received)
        return sold


class GrowthExecutor(BasketExecutor):
    vault_id = GROWTH

    def __init__(
        self,
        rail: TransferRail,
        swap: SwapClient,
        memo_store: MemoStore,
        config: Optional[ExecutorConfig] = None,
    ) -> None:
        cfg = config or get_executor_config()
        super().__init__(
            rail,
            swap,
            memo_store,
            weights=cfg.growth_weights,
            threshold=cfg.growth_threshold_usd,
            slippage_bps=cfg.growth_slippage_bps,
            min_slice_usd=cfg.min_slice_usd,
        )


class SpeculativeExecutor(BasketExecutor):
    vault_id = SPECULATIVE

    def __init__(
        self,
        rail: TransferRail,
        swap: SwapClient,
        memo_store: MemoStore,
        config: Optional[ExecutorConfig] = None,
    ) -> None:
        cfg = config or get_executor_config()
        super().__init__(
            rail,
            swap,
            memo_store,
            weights={sym: 1.0 for sym in cfg.speculative_symbols},
            threshold=cfg.speculative_threshold_usd,
            slippage_bps=cfg.speculative_slippage_bps,
            min_slice_usd=cfg.min_slice_usd,
        )


__all__ = ["BasketExecutor", "GrowthExecutor", "SpeculativeExecutor"]
