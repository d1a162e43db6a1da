"""
Swap aggregator client (Jupiter HTTP API).

In demo mode swaps are priced and simulated locally; in live mode the
client fetches a quote and an unsigned swap transaction for the user to
sign.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

import requests

from execution.protocols.types import (
    FALLBACK_PRICES,
    SwapRequest,
    SwapResult,
    TOKENS,
    stable_mint,
    symbol_for_mint,
)
from execution.runtime_config import is_live

LOG = logging.getLogger("swap")

QUOTE_API = "https://quote-api.jup.ag/v6"
PRICE_API = "https://api.jup.ag/price/v2"


def _decimals(mint: str) -> int:
    symbol = symbol_for_mint(mint)
    return TOKENS[symbol].decimals if symbol else 6


class JupiterSwapClient:
    def __init__(
        self,
        simulate: Optional[bool] = None,
        quote_api: str = QUOTE_API,
        price_api: str = PRICE_API,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.simulate = (not is_live()) if simulate is None else simulate
        self.quote_api = quote_api.rstrip("/")
        self.price_api = price_api.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    # ------------------------------------------------------------------ prices

    def _fallback_price(self, mint: str) -> Optional[float]:
        symbol = symbol_for_mint(mint)
        return FALLBACK_PRICES.get(symbol) if symbol else None

    def get_token_prices(self, mints: List[str]) -> Dict[str, float]:
        unique = sorted({m for m in mints if m})
        prices: Dict[str, float] = {}
        if not unique:
            return prices
        try:
            resp = self._session.get(
                self.price_api, params={"ids": ",".join(unique)}, timeout=self.timeout
            )
            resp.raise_for_status()
            data = resp.json().get("data") or {}
            for mint in unique:
                entry = data.get(mint) or {}
                try:
                    price = float(entry.get("price") or 0.0)
                except (TypeError, ValueError):
                    price = 0.0
                if price > 0:
                    prices[mint] = price
        except (requests.RequestException, ValueError) as exc:
            LOG.warning("[swap] price API unavailable: %s", exc)
        for mint in unique:
            if mint not in prices:
                fallback = self._fallback_price(mint)
                if fallback:
                    prices[mint] = fallback
        return prices

    def get_token_price(self, mint: str) -> Optional[float]:
        return self.get_token_prices([mint]).get(mint)

    # ------------------------------------------------------------------- swaps

    def _simulate(self, request: SwapRequest) -> SwapResult:
        prices = self.get_token_prices([request.input_mint, request.output_mint])
        in_price = prices.get(request.input_mint)
        out_price = prices.get(request.output_mint)
        if not in_price or not out_price:
            return SwapResult(False, error="No price available for simulated swap")
        slip = 1.0 - request.slippage_bps / 10_000.0 / 2.0
        out_amount = request.amount * in_price / out_price * slip
        return SwapResult(
            success=True,
            input_amount=request.amount,
            output_amount=out_amount,
            price=out_price,
            signature=f"sim_swap_{uuid.uuid4().hex[:16]}",
        )

    def _quote(self, request: SwapRequest) -> Dict[str, Any]:
        raw_amount = int(request.amount * 10 ** _decimals(request.input_mint))
        resp = self._session.get(
            f"{self.quote_api}/quote",
            params={
                "inputMint": request.input_mint,
                "outputMint": request.output_mint,
                "amount": raw_amount,
                "slippageBps": request.slippage_bps,
            },
            timeout=self.timeout,
        )
        resp.raise_for_status()
        return resp.json()

    def execute_swap(self, request: SwapRequest, wallet: str) -> SwapResult:
        if request.amount <= 0:
            return SwapResult(False, error="Swap amount must be positive")
        if self.simulate:
            return self._simulate(request)
        try:
            quote = self._quote(request)
            resp = self._session.post(
                f"{self.quote_api}/swap",
                json={
                    "quoteResponse": quote,
                    "userPublicKey": wallet,
                    "wrapAndUnwrapSol": True,
                },
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as exc:
            return SwapResult(False, error=f"Swap failed: {exc}")
        out_amount = float(quote.get("outAmount") or 0) / 10 ** _decimals(request.output_mint)
        unsigned = body.get("swapTransaction")
        if not unsigned:
            return SwapResult(False, error="Swap API returned no transaction")
        price = request.amount / out_amount if out_amount > 0 else 0.0
        return SwapResult(
            success=True,
            input_amount=request.amount,
            output_amount=out_amount,
            price=price,
            unsigned_tx=unsigned,
        )

    def swap_to_stable(self, mint: str, amount: float, decimals: int, wallet: str) -> SwapResult:
        return self.execute_swap(
            SwapRequest(input_mint=mint, output_mint=stable_mint(), amount=amount, slippage_bps=100),
            wallet,
        )


__all__ = ["JupiterSwapClient", "PRICE_API", "QUOTE_API"]
