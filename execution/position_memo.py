"""
Durable position memos.

Every position change is described by one pipe-delimited memo line:

    SHADOWFUND|vault|action|symbol|mint|amount|price|timestamp

``amount`` carries 8 decimals, ``price`` 6, ``timestamp`` is epoch ms.
Replaying a wallet's memos in timestamp order reconstructs its open
positions. Stores are append-only and wallet-scoped.
"""
from __future__ import annotations

import base64
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from solana.rpc.api import Client
from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from execution.log_utils import append_jsonl, read_jsonl

LOG = logging.getLogger("position_memo")

MEMO_PREFIX = "SHADOWFUND"
MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")
ACTIONS = ("open", "add", "reduce", "close")
DUST_EPSILON = 1e-6

_MEMO_RE = re.compile(re.escape(MEMO_PREFIX) + r"\|[^\s;\"]+")


@dataclass
class Position:
    token_mint: str
    symbol: str
    amount: float
    entry_price: float
    entry_timestamp: int
    total_cost: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tokenMint": self.token_mint,
            "symbol": self.symbol,
            "amount": self.amount,
            "entryPrice": self.entry_price,
            "entryTimestamp": self.entry_timestamp,
        }


@dataclass
class PositionMemo:
    vault: str
    action: str
    symbol: str
    mint: str
    amount: float
    price: float
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))
    signature: Optional[str] = None

    def encode(self) -> str:
        return encode_memo(self)


def encode_memo(memo: PositionMemo) -> str:
    if memo.action not in ACTIONS:
        raise ValueError(f"unknown memo action: {memo.action}")
    return "|".join(
        [
            MEMO_PREFIX,
            memo.vault,
            memo.action,
            memo.symbol,
            memo.mint,
            f"{memo.amount:.8f}",
            f"{memo.price:.6f}",
            str(int(memo.timestamp)),
        ]
    )


def parse_memo(text: str, signature: Optional[str] = None) -> Optional[PositionMemo]:
    """Parse one memo line; anything malformed returns None."""
    parts = (text or "").strip().split("|")
    if len(parts) < 8 or parts[0] != MEMO_PREFIX or parts[2] not in ACTIONS:
        return None
    try:
        return PositionMemo(
            vault=parts[1],
            action=parts[2],
            symbol=parts[3],
            mint=parts[4],
            amount=float(parts[5]),
            price=float(parts[6]),
            timestamp=int(parts[7]),
            signature=signature,
        )
    except ValueError:
        return None


def find_memos(text: str, signature: Optional[str] = None) -> List[PositionMemo]:
    """Extract every memo embedded in free text (RPC memo fields, program logs)."""
    found = []
    for match in _MEMO_RE.finditer(text or ""):
        memo = parse_memo(match.group(0), signature=signature)
        if memo is not None:
            found.append(memo)
    return found


def reconstruct_positions(memos: Iterable[PositionMemo]) -> List[Position]:
    """Replay memos in timestamp order into open positions keyed by mint."""
    book: Dict[str, Position] = {}
    for memo in sorted(memos, key=lambda m: m.timestamp):
        pos = book.get(memo.mint)
        if memo.action in ("open", "add"):
            if pos is None:
                pos = Position(memo.mint, memo.symbol, 0.0, 0.0, memo.timestamp, 0.0)
                book[memo.mint] = pos
            pos.amount += memo.amount
            pos.total_cost += memo.amount * memo.price
            pos.entry_price = pos.total_cost / pos.amount if pos.amount > 0 else 0.0
        elif memo.action == "reduce" and pos is not None:
            fraction = min(1.0, memo.amount / pos.amount) if pos.amount > 0 else 1.0
            pos.total_cost -= pos.total_cost * fraction
            pos.amount -= memo.amount
            if pos.amount <= DUST_EPSILON:
                del book[memo.mint]
        elif memo.action == "close" and pos is not None:
            del book[memo.mint]
    return [pos for pos in book.values() if pos.amount > DUST_EPSILON]


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


class MemoStore(Protocol):
    def fetch(self, wallet: str, vault: Optional[str] = None) -> List[PositionMemo]: ...

    def reconstruct(self, wallet: str, vault: str) -> List[Position]: ...

    def build_commit_transaction(self, wallet: str, memos: List[PositionMemo]) -> Optional[str]: ...


class _StoreBase(ABC):
    """Shared reconstruction over a concrete store's ``fetch``."""

    @abstractmethod
    def fetch(self, wallet: str, vault: Optional[str] = None) -> List[PositionMemo]:
        """Every memo recorded for ``wallet``, optionally for one vault, oldest first."""

    @abstractmethod
    def build_commit_transaction(self, wallet: str, memos: List[PositionMemo]) -> Optional[str]:
        """Commit ``memos``; returns a ``local_`` ref or an unsigned transaction."""

    def reconstruct(self, wallet: str, vault: str) -> List[Position]:
        return reconstruct_positions(self.fetch(wallet, vault))


class InMemoryMemoStore(_StoreBase):
    """Process-local store; commit appends immediately."""

    def __init__(self) -> None:
        self._memos: Dict[str, List[PositionMemo]] = {}
        self._lock = threading.Lock()
        self.fetch_count = 0

    def fetch(self, wallet: str, vault: Optional[str] = None) -> List[PositionMemo]:
        with self._lock:
            self.fetch_count += 1
            rows = list(self._memos.get(wallet, []))
        return [m for m in rows if vault is None or m.vault == vault]

    def build_commit_transaction(self, wallet: str, memos: List[PositionMemo]) -> Optional[str]:
        if not memos:
            return None
        with self._lock:
            self._memos.setdefault(wallet, []).extend(memos)
            count = len(self._memos[wallet])
        return f"local_memo_{count}"


class JsonlMemoStore(_StoreBase):
    """Append-only JSONL file of encoded memos; the demo-mode substrate."""

    def __init__(self, path: Path | str = "logs/state/position_memos.jsonl") -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def fetch(self, wallet: str, vault: Optional[str] = None) -> List[PositionMemo]:
        with self._lock:
            rows = read_jsonl(self.path)
        memos = []
        for row in rows:
            if row.get("wallet") != wallet:
                continue
            memo = parse_memo(str(row.get("memo", "")), signature=row.get("ref"))
            if memo is not None and (vault is None or memo.vault == vault):
                memos.append(memo)
        return memos

    def build_commit_transaction(self, wallet: str, memos: List[PositionMemo]) -> Optional[str]:
        if not memos:
            return None
        ref = f"local_memo_{int(time.time() * 1000)}"
        with self._lock:
            for memo in memos:
                append_jsonl(self.path, {"wallet": wallet, "memo": memo.encode(), "ref": ref})
        LOG.info("[memo] committed %d memos locally (%s)", len(memos), ref)
        return ref


def build_memo_transaction(
    wallet: str, memos: List[PositionMemo], recent_blockhash: Any = None
) -> str:
    """Unsigned memo-program transaction (base64) with the wallet as fee payer and signer."""
    payer = Pubkey.from_string(wallet)
    instructions = [
        Instruction(MEMO_PROGRAM_ID, memo.encode().encode("utf-8"), [AccountMeta(payer, True, True)])
        for memo in memos
    ]
    if recent_blockhash is not None:
        message = Message.new_with_blockhash(instructions, payer, recent_blockhash)
    else:
        message = Message(instructions, payer)
    tx = Transaction.new_unsigned(message)
    return base64.b64encode(bytes(tx)).decode("ascii")


class RpcMemoStore(_StoreBase):
    """
    On-chain memo stream read through the wallet's signature history.

    Commits are returned as unsigned transactions; the memos become durable
    once the user signs and submits them.
    """

    def __init__(self, client: Optional[Client] = None, rpc_url: Optional[str] = None, limit: int = 100) -> None:
        self.client = client or Client(rpc_url or "https://api.mainnet-beta.solana.com")
        self.limit = limit

    def fetch(self, wallet: str, vault: Optional[str] = None) -> List[PositionMemo]:
        resp = self.client.get_signatures_for_address(Pubkey.from_string(wallet), limit=self.limit)
        memos: List[PositionMemo] = []
        for status in resp.value or []:
            if status.err is not None or not status.memo:
                continue
            for memo in find_memos(status.memo, signature=str(status.signature)):
                if vault is None or memo.vault == vault:
                    memos.append(memo)
        LOG.debug("[memo] %d memos for vault=%s", len(memos), vault)
        return sorted(memos, key=lambda m: m.timestamp)

    def build_commit_transaction(self, wallet: str, memos: List[PositionMemo]) -> Optional[str]:
        if not memos:
            return None
        blockhash = None
        try:
            blockhash = self.client.get_latest_blockhash().value.blockhash
        except Exception as exc:
            LOG.warning("[memo] blockhash unavailable, caller must set it: %s", exc)
        return build_memo_transaction(wallet, memos, recent_blockhash=blockhash)


__all__ = [
    "ACTIONS",
    "DUST_EPSILON",
    "InMemoryMemoStore",
    "JsonlMemoStore",
    "MEMO_PREFIX",
    "MemoStore",
    "Position",
    "PositionMemo",
    "RpcMemoStore",
    "build_memo_transaction",
    "encode_memo",
    "find_memos",
    "parse_memo",
    "reconstruct_positions",
]
