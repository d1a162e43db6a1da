"""
Lending protocol client (Kamino markets).

Positions are tracked per wallet in memory and accrue yield by elapsed time,
compounding earned interest into the position each time ``accrue_yield``
runs. Live mode additionally asks the transaction API for an unsigned
deposit/withdraw transaction the user signs.
"""
from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Callable, Dict, Optional, Tuple

import requests

from execution.protocols.types import STABLE_SYMBOL, LendingPosition, TxResult
from execution.runtime_config import get_executor_config, is_live

LOG = logging.getLogger("lending")

SECONDS_PER_YEAR = 365.0 * 24.0 * 3600.0
MARKET_API = "https://api.kamino.finance"
DEFAULT_MARKET = "main"
_APY_TTL_S = 300.0


def accrued_interest(value: float, apy_pct: float, elapsed_s: float) -> float:
    """Simple interest on ``value`` for ``elapsed_s`` at ``apy_pct`` percent per year."""
    if value <= 0 or apy_pct <= 0 or elapsed_s <= 0:
        return 0.0
    return value * (apy_pct / 100.0) * (elapsed_s / SECONDS_PER_YEAR)


class KaminoLendingClient:
    def __init__(
        self,
        simulate: Optional[bool] = None,
        api_base: str = MARKET_API,
        fallback_apy: Optional[float] = None,
        timeout: float = 10.0,
        clock: Callable[[], float] = time.time,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.simulate = (not is_live()) if simulate is None else simulate
        self.api_base = api_base.rstrip("/")
        self.fallback_apy = fallback_apy if fallback_apy is not None else get_executor_config().fallback_apy
        self.timeout = timeout
        self._clock = clock
        self._session = session or requests.Session()
        self._positions: Dict[Tuple[str, str], LendingPosition] = {}
        self._apy_cache: Dict[str, Tuple[float, float]] = {}
        self._lock = threading.RLock()

    # --------------------------------------------------------------------- APY

    def _fetch_apy(self, market: str) -> Optional[float]:
        resp = self._session.get(
            f"{self.api_base}/kamino-market/{market}/reserves/metrics", timeout=self.timeout
        )
        resp.raise_for_status()
        for reserve in resp.json() or []:
            if str(reserve.get("liquidityToken", "")).upper() != STABLE_SYMBOL:
                continue
            raw = float(reserve.get("supplyApy") or 0.0)
            # API reports a fraction; positions use percent.
            return raw * 100.0 if raw < 1.0 else raw
        return None

    def get_current_apy(self, market: str = DEFAULT_MARKET) -> float:
        now = self._clock()
        with self._lock:
            cached = self._apy_cache.get(market)
            if cached and now - cached[1] < _APY_TTL_S:
                return cached[0]
        apy: Optional[float] = None
        if not self.simulate:
            try:
                apy = self._fetch_apy(market)
            except (requests.RequestException, ValueError, TypeError) as exc:
                LOG.warning("[lending] APY lookup failed for %s: %s", market, exc)
        if apy is None or apy <= 0:
            apy = self.fallback_apy
        with self._lock:
            self._apy_cache[market] = (apy, now)
        return apy

    # --------------------------------------------------------------- positions

    def get_position(self, wallet: str, market: str = DEFAULT_MARKET) -> Optional[LendingPosition]:
        with self._lock:
            return self._positions.get((wallet, market))

    def accrue_yield(self, wallet: str, market: str = DEFAULT_MARKET) -> float:
        """Compound interest since the last accrual into the position; returns the amount added."""
        apy = self.get_current_apy(market)
        now = self._clock()
        with self._lock:
            pos = self._positions.get((wallet, market))
            if pos is None:
                return 0.0
            gained = accrued_interest(pos.value, apy, now - pos.last_accrual)
            pos.earned += gained
            pos.apy = apy
            pos.last_accrual = now
            return gained

    def _tx(self, action: str, wallet: str, amount: float, market: str) -> TxResult:
        if self.simulate:
            return TxResult(True, signature=f"sim_{action}_{uuid.uuid4().hex[:16]}", amount=amount)
        try:
            resp = self._session.post(
                f"{self.api_base}/ktx/klend/{action}",
                json={"wallet": wallet, "market": market, "token": STABLE_SYMBOL, "amount": str(amount)},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as exc:
            return TxResult(False, error=f"{action} failed: {exc}")
        unsigned = body.get("transaction")
        if not unsigned:
            return TxResult(False, error=f"{action} returned no transaction")
        return TxResult(True, unsigned_tx=unsigned, amount=amount)

    def deposit(self, wallet: str, amount: float, market: str = DEFAULT_MARKET) -> TxResult:
        if amount <= 0:
            return TxResult(False, error="Deposit amount must be positive")
        self.accrue_yield(wallet, market)
        result = self._tx("deposit", wallet, amount, market)
        if not result.success:
            return result
        now = self._clock()
        with self._lock:
            pos = self._positions.get((wallet, market))
            if pos is None:
                pos = LendingPosition(wallet=wallet, market=market, last_accrual=now)
                self._positions[(wallet, market)] = pos
            pos.principal += amount
            pos.apy = self.get_current_apy(market)
            pos.history.append({"ts": now, "amount": amount})
        LOG.info("[lending] deposit %.2f into %s", amount, market)
        return result

    def withdraw(self, wallet: str, amount: float, market: str = DEFAULT_MARKET) -> TxResult:
        self.accrue_yield(wallet, market)
        with self._lock:
            pos = self._positions.get((wallet, market))
            available = pos.value if pos else 0.0
        if amount <= 0:
            return TxResult(False, error="Withdraw amount must be positive")
        if pos is None or amount > available + 1e-9:
            return TxResult(False, error=f"Insufficient lending balance: {available:.2f}")
        result = self._tx("withdraw", wallet, amount, market)
        if not result.success:
            return result
        with self._lock:
            # Earned interest is paid out before principal.
            from_earned = min(pos.earned, amount)
            pos.earned -= from_earned
            pos.principal = max(0.0, pos.principal - (amount - from_earned))
            pos.history.append({"ts": self._clock(), "amount": -amount})
        LOG.info("[lending] withdraw %.2f from %s", amount, market)
        return result


__all__ = ["KaminoLendingClient", "SECONDS_PER_YEAR", "accrued_interest"]
