"""
Commodity-backed vault: tokenized metals in equal weights.

Same deposit/withdraw shape as the other baskets, but every position change
is committed to the durable memo store so the book survives restarts.
"""
from __future__ import annotations

from typing import Dict, Optional

from execution.position_memo import MemoStore
from execution.protocols.types import SwapClient
from execution.rail import TransferRail
from execution.runtime_config import ExecutorConfig, get_executor_config
from execution.strategies.basket import BasketExecutor
from treasury.vaults import COMMODITY

# Smallest token amount worth buying per metal.
COMMODITY_MINIMUMS: Dict[str, float] = {"GLDr": 0.02, "SLVr": 0.05, "CPERr": 0.1}


class CommodityExecutor(BasketExecutor):
    vault_id = COMMODITY
    commit_memos = True

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
            weights={sym: 1.0 for sym in COMMODITY_MINIMUMS},
            threshold=cfg.commodity_threshold_usd,
            slippage_bps=cfg.commodity_slippage_bps,
            min_slice_usd=cfg.min_slice_usd,
        )

    def min_token_amount(self, symbol: str) -> float:
        return COMMODITY_MINIMUMS.get(symbol, 0.0)


__all__ = ["COMMODITY_MINIMUMS", "CommodityExecutor"]
