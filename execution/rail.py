"""
Private transfer rail clients.

The rail moves stable value between the user's wallet and vault-derived
addresses. It enforces its own minimum transfer size; callers treat
"below minimum" rejections as a recoverable deferral rather than an error.
"""
from __future__ import annotations

import logging
import os
import threading
import uuid
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Any, Dict, Optional, Protocol

import requests

from execution.runtime_config import RAIL_MINIMUM_USD

LOG = logging.getLogger("rail")

MICRO = 1_000_000
DEFAULT_FEE_PCT = 0.01

_MINIMUM_MARKERS = ("below minimum", "anti-spam", "minimum")


class RailError(Exception):
    """Transport-level failure talking to the rail."""


@dataclass
class RailResult:
    success: bool
    reference: Optional[str] = None
    error: Optional[str] = None
    amount: float = 0.0
    fee: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "reference": self.reference,
            "error": self.error,
            "amount": self.amount,
            "fee": self.fee,
        }


class TransferRail(Protocol):
    minimum_amount: float

    def get_balance(self, address: str) -> float: ...

    def transfer(self, from_address: str, to_address: str, amount: float) -> RailResult: ...

    def deposit(self, address: str, amount: float) -> RailResult: ...

    def withdraw(self, address: str, amount: float) -> RailResult: ...


def to_micro(amount: float) -> int:
    """Floor a stable amount to integer micro-units."""
    return int((Decimal(str(amount)) * MICRO).to_integral_value(rounding=ROUND_DOWN))


def from_micro(units: int) -> float:
    return units / MICRO


def floor_amount(amount: float) -> float:
    return from_micro(to_micro(amount))


def is_below_minimum_error(text: Optional[str]) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in _MINIMUM_MARKERS)


def fee_info(fee_pct: float = DEFAULT_FEE_PCT, minimum: float = RAIL_MINIMUM_USD) -> Dict[str, float]:
    return {"feePercentage": fee_pct * 100.0, "minimumAmount": minimum}


# ---------------------------------------------------------------------------
# In-process rail
# ---------------------------------------------------------------------------


class SimulatedRail:
    """
    In-memory rail used in demo mode and tests.

    Balances are integer micro-units so internal transfers conserve value
    exactly. Transfers are fee-free; deposit/withdraw charge ``fee_pct``.
    """

    def __init__(
        self,
        balances: Optional[Dict[str, float]] = None,
        minimum_amount: float = RAIL_MINIMUM_USD,
        fee_pct: float = DEFAULT_FEE_PCT,
    ) -> None:
        self.minimum_amount = minimum_amount
        self.fee_pct = fee_pct
        self._balances: Dict[str, int] = {}
        self._lock = threading.Lock()
        self.calls: list = []
        for address, amount in (balances or {}).items():
            self._balances[address] = to_micro(amount)

    def set_balance(self, address: str, amount: float) -> None:
        with self._lock:
            self._balances[address] = to_micro(amount)

    def get_balance(self, address: str) -> float:
        with self._lock:
            return from_micro(self._balances.get(address, 0))

    def _reference(self, kind: str) -> str:
        return f"sim_{kind}_{uuid.uuid4().hex[:16]}"

    def transfer(self, from_address: str, to_address: str, amount: float) -> RailResult:
        self.calls.append(("transfer", from_address, to_address, amount))
        if amount < self.minimum_amount:
            return RailResult(False, error=f"Amount below minimum ({self.minimum_amount})")
        units = to_micro(amount)
        with self._lock:
            available = self._balances.get(from_address, 0)
            if available < units:
                return RailResult(False, error="Insufficient balance")
            self._balances[from_address] = available - units
            self._balances[to_address] = self._balances.get(to_address, 0) + units
        return RailResult(True, reference=self._reference("transfer"), amount=from_micro(units))

    def deposit(self, address: str, amount: float) -> RailResult:
        """Shield public funds into the private pool, net of fee."""
        self.calls.append(("deposit", address, amount))
        if amount < self.minimum_amount:
            return RailResult(False, error=f"Amount below minimum ({self.minimum_amount})")
        units = to_micro(amount)
        fee = to_micro(from_micro(units) * self.fee_pct)
        with self._lock:
            self._balances[address] = self._balances.get(address, 0) + units - fee
        return RailResult(
            True,
            reference=self._reference("deposit"),
            amount=from_micro(units - fee),
            fee=from_micro(fee),
        )

    def withdraw(self, address: str, amount: float) -> RailResult:
        """Unshield private funds; the full amount is debited and the net paid out."""
        self.calls.append(("withdraw", address, amount))
        if amount < self.minimum_amount:
            return RailResult(False, error=f"Amount below minimum ({self.minimum_amount})")
        units = to_micro(amount)
        fee = to_micro(from_micro(units) * self.fee_pct)
        with self._lock:
            available = self._balances.get(address, 0)
            if available < units:
                return RailResult(False, error="Insufficient balance")
            self._balances[address] = available - units
        return RailResult(
            True,
            reference=self._reference("withdraw"),
            amount=from_micro(units - fee),
            fee=from_micro(fee),
        )

    def snapshot(self) -> Dict[str, float]:
        with self._lock:
            return {addr: from_micro(units) for addr, units in self._balances.items()}


# ---------------------------------------------------------------------------
# HTTP relayer
# ---------------------------------------------------------------------------


class HttpTransferRail:
    """Relayer client; non-2xx responses come back as failed RailResults."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        token: str = "USD1",
        timeout: float = 15.0,
        minimum_amount: float = RAIL_MINIMUM_USD,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("RAIL_API_URL", "")).rstrip("/")
        self.api_key = api_key or os.getenv("RAIL_API_KEY", "")
        self.token = token
        self.timeout = timeout
        self.minimum_amount = minimum_amount
        self._session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        if not self.base_url:
            raise RailError("RAIL_API_URL not configured")
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise RailError(f"{method} {path} failed: {exc}") from exc
        try:
            body = resp.json()
        except ValueError:
            body = {"error": resp.text}
        if not resp.ok:
            detail = body.get("error") or body.get("message") or resp.text
            return {"success": False, "error": f"HTTP {resp.status_code}: {detail}"}
        return body if isinstance(body, dict) else {"data": body}

    def _result(self, body: Dict[str, Any], amount: float) -> RailResult:
        success = bool(body.get("success", "error" not in body))
        return RailResult(
            success=success,
            reference=body.get("txHash") or body.get("tx_signature") or body.get("reference"),
            error=None if success else str(body.get("error") or "Transfer failed"),
            amount=float(body.get("amount", amount) or 0.0) if success else 0.0,
            fee=float(body.get("fee", 0.0) or 0.0),
        )

    def get_balance(self, address: str) -> float:
        body = self._request("GET", f"/balance/{address}", params={"token": self.token})
        if body.get("success") is False:
            raise RailError(str(body.get("error")))
        raw = body.get("available", body.get("balance", 0))
        return float(raw or 0.0)

    def transfer(self, from_address: str, to_address: str, amount: float) -> RailResult:
        payload = {
            "sender": from_address,
            "recipient": to_address,
            "amount": amount,
            "token": self.token,
            "type": "internal",
        }
        try:
            return self._result(self._request("POST", "/transfer", json=payload), amount)
        except RailError as exc:
            return RailResult(False, error=str(exc))

    def deposit(self, address: str, amount: float) -> RailResult:
        payload = {"wallet": address, "amount": amount, "token": self.token}
        try:
            return self._result(self._request("POST", "/deposit", json=payload), amount)
        except RailError as exc:
            return RailResult(False, error=str(exc))

    def withdraw(self, address: str, amount: float) -> RailResult:
        payload = {"wallet": address, "amount": amount, "token": self.token}
        try:
            return self._result(self._request("POST", "/withdraw", json=payload), amount)
        except RailError as exc:
            return RailResult(False, error=str(exc))


__all__ = [
    "HttpTransferRail",
    "RailError",
    "RailResult",
    "SimulatedRail",
    "TransferRail",
    "fee_info",
    "floor_amount",
    "from_micro",
    "is_below_minimum_error",
    "to_micro",
]
