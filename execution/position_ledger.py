"""
Position Ledger

Per-wallet, per-vault cache of open token positions for non-cash vaults.

The ledger:
- Reconstructs a wallet's positions from the durable memo stream on first
  access, exactly once per process lifetime
- Treats the in-memory book as authoritative after that
- Applies deposits with weighted-average entry price math
- Applies withdrawals as proportional reductions
- Queues one pending memo per mutation for the caller to commit
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from execution.position_memo import DUST_EPSILON, MemoStore, Position, PositionMemo
from treasury.vaults import short_wallet

LOG = logging.getLogger("position_ledger")


class LoadState(str, Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"


@dataclass
class _WalletBook:
    state: LoadState = LoadState.UNLOADED
    ready: threading.Event = field(default_factory=threading.Event)
    positions: Dict[str, Position] = field(default_factory=dict)
    pending: List[PositionMemo] = field(default_factory=list)


def _safe_float(val: Any) -> Optional[float]:
    """Convert value to float, returning None if invalid."""
    if val is None:
        return None
    try:
        return float(val)
    except (TypeError, ValueError):
        return None


def _now_ms() -> int:
    return int(time.time() * 1000)


class PositionLedger:
    """In-memory position book for one vault kind, keyed by wallet."""

    def __init__(self, vault: str, memo_store: MemoStore) -> None:
        self.vault = vault
        self.memo_store = memo_store
        self._books: Dict[str, _WalletBook] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def state(self, wallet: str) -> LoadState:
        with self._lock:
            book = self._books.get(wallet)
            return book.state if book else LoadState.UNLOADED

    def load_once(self, wallet: str) -> None:
        """
        Reconstruct ``wallet`` from memos unless already loaded.

        A concurrent first access waits for the loading thread instead of
        reconstructing again. Reconstruction failure leaves an empty book.
        """
        with self._lock:
            book = self._books.setdefault(wallet, _WalletBook())
            if book.state == LoadState.LOADED:
                return
            if book.state == LoadState.LOADING:
                waiter = book.ready
            else:
                book.state = LoadState.LOADING
                waiter = None

        if waiter is not None:
            waiter.wait()
            return

        positions: Dict[str, Position] = {}
        try:
            for pos in self.memo_store.reconstruct(wallet, self.vault):
                positions[pos.token_mint] = pos
            LOG.info(
                "[ledger] %s reconstructed %d positions for %s",
                self.vault,
                len(positions),
                short_wallet(wallet),
            )
        except Exception as exc:
            LOG.warning(
                "[ledger] %s reconstruction failed for %s, starting empty: %s",
                self.vault,
                short_wallet(wallet),
                exc,
            )
            positions = {}

        with self._lock:
            book.positions = positions
            book.state = LoadState.LOADED
        book.ready.set()

    def _book(self, wallet: str) -> _WalletBook:
        self.load_once(wallet)
        with self._lock:
            return self._books[wallet]

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def positions(self, wallet: str) -> List[Position]:
        book = self._book(wallet)
        with self._lock:
            return [Position(**vars(p)) for p in book.positions.values()]

    def get(self, wallet: str, mint: str) -> Optional[Position]:
        book = self._book(wallet)
        with self._lock:
            pos = book.positions.get(mint)
            return Position(**vars(pos)) if pos else None

    def cost_basis(self, wallet: str) -> float:
        return sum(p.amount * p.entry_price for p in self.positions(wallet))

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def apply_deposit(
        self,
        wallet: str,
        mint: str,
        symbol: str,
        amount: float,
        price: float,
        timestamp: Optional[int] = None,
    ) -> PositionMemo:
        """Add ``amount`` at ``price``; entry price becomes the weighted average."""
        qty = _safe_float(amount) or 0.0
        px = _safe_float(price) or 0.0
        if qty <= 0:
            raise ValueError("deposit amount must be positive")
        ts = timestamp if timestamp is not None else _now_ms()
        book = self._book(wallet)
        with self._lock:
            pos = book.positions.get(mint)
            if pos is None:
                book.positions[mint] = Position(mint, symbol, qty, px, ts, qty * px)
                action = "open"
            else:
                new_amount = pos.amount + qty
                pos.entry_price = (pos.amount * pos.entry_price + qty * px) / new_amount
                pos.amount = new_amount
                pos.total_cost = pos.amount * pos.entry_price
                action = "add"
            memo = PositionMemo(self.vault, action, symbol, mint, qty, px, ts)
            book.pending.append(memo)
        LOG.debug("[ledger] %s %s %s %.8f @ %.6f", self.vault, action, symbol, qty, px)
        return memo

    def apply_withdraw(
        self,
        wallet: str,
        mint: str,
        amount: float,
        price: float,
        timestamp: Optional[int] = None,
    ) -> Optional[PositionMemo]:
        """Reduce a position by ``amount``; removes it once below dust."""
        qty = _safe_float(amount) or 0.0
        px = _safe_float(price) or 0.0
        ts = timestamp if timestamp is not None else _now_ms()
        book = self._book(wallet)
        with self._lock:
            pos = book.positions.get(mint)
            if pos is None or qty <= 0:
                return None
            qty = min(qty, pos.amount)
            remaining = pos.amount - qty
            if remaining <= DUST_EPSILON:
                del book.positions[mint]
                action = "close"
            else:
                pos.amount = remaining
                pos.total_cost = remaining * pos.entry_price
                action = "reduce"
            memo = PositionMemo(self.vault, action, pos.symbol, mint, qty, px, ts)
            book.pending.append(memo)
        LOG.debug("[ledger] %s %s %s %.8f @ %.6f", self.vault, action, pos.symbol, qty, px)
        return memo

    # -------------------------------------------------------------------------
    # Pending memos
    # -------------------------------------------------------------------------

    def pending(self, wallet: str) -> List[PositionMemo]:
        with self._lock:
            book = self._books.get(wallet)
            return list(book.pending) if book else []

    def drain_pending(self, wallet: str) -> List[PositionMemo]:
        with self._lock:
            book = self._books.get(wallet)
            if book is None:
                return []
            drained, book.pending = book.pending, []
            return drained

    def reset(self, wallet: Optional[str] = None) -> None:
        with self._lock:
            if wallet is None:
                self._books.clear()
            else:
                self._books.pop(wallet, None)


__all__ = ["LoadState", "PositionLedger"]
