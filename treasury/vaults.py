"""
Vault identity: ids, fixed execution order and deterministic addresses.

A vault address is always recomputed from ``(wallet, vault_id)`` and never
stored, so it cannot drift from the wallet that owns it.
"""
from __future__ import annotations

import hashlib
import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, List, Tuple

import base58
from solders.pubkey import Pubkey

LOG = logging.getLogger("vaults")

BUFFER = "buffer"
YIELD = "yield"
GROWTH = "growth"
SPECULATIVE = "speculative"
COMMODITY = "commodity"

# Execution order: later vaults are funded by transfers that must land first.
VAULT_ORDER: Tuple[str, ...] = (BUFFER, YIELD, GROWTH, SPECULATIVE, COMMODITY)
INVESTABLE_VAULTS: Tuple[str, ...] = (YIELD, GROWTH, SPECULATIVE, COMMODITY)

_PROGRAM_SEED = b"vault-rebalancer:program"


def _program_id() -> Pubkey:
    raw = os.getenv("VAULT_PROGRAM_ID", "").strip()
    if raw:
        try:
            return Pubkey.from_string(raw)
        except ValueError:
            LOG.warning("[vaults] invalid VAULT_PROGRAM_ID=%s, using derived default", raw)
    return Pubkey.from_bytes(hashlib.sha256(_PROGRAM_SEED).digest())


def is_vault_id(value: str) -> bool:
    return value in VAULT_ORDER


def parse_wallet(wallet: str) -> Pubkey:
    """Parse a base58 wallet address; raises ValueError when malformed."""
    if not isinstance(wallet, str) or not wallet.strip():
        raise ValueError("wallet required")
    try:
        return Pubkey.from_string(wallet.strip())
    except Exception as exc:
        raise ValueError(f"invalid wallet address: {wallet}") from exc


def is_valid_wallet(wallet: str) -> bool:
    try:
        parse_wallet(wallet)
    except ValueError:
        return False
    return True


def _fallback_address(wallet: str, vault_id: str) -> str:
    digest = hashlib.sha256(f"shadowfund:{wallet}:{vault_id}".encode("utf-8")).digest()
    return base58.b58encode(digest).decode("ascii")


@lru_cache(maxsize=4096)
def derive_vault_address(wallet: str, vault_id: str) -> str:
    """
    Program-derived address for ``vault_id`` owned by ``wallet``.

    Seeds are ``[wallet pubkey bytes, vault id bytes]``. If derivation fails
    (no off-curve bump found) a sha256 based address is used instead; both
    paths are pure functions of the inputs.
    """
    if not is_vault_id(vault_id):
        raise ValueError(f"unknown vault id: {vault_id}")
    owner = parse_wallet(wallet)
    try:
        address, _bump = Pubkey.find_program_address(
            [bytes(owner), vault_id.encode("utf-8")], _program_id()
        )
        return str(address)
    except Exception as exc:
        LOG.warning("[vaults] PDA derivation failed for %s: %s", vault_id, exc)
        return _fallback_address(wallet, vault_id)


def vault_addresses(wallet: str) -> Dict[str, str]:
    return {vid: derive_vault_address(wallet, vid) for vid in VAULT_ORDER}


def short_wallet(wallet: str) -> str:
    if not wallet or len(wallet) <= 10:
        return wallet or ""
    return f"{wallet[:4]}...{wallet[-4:]}"


@dataclass(frozen=True)
class VaultBalance:
    id: str
    address: str
    balance: float

    def to_dict(self) -> Dict[str, object]:
        return {"id": self.id, "address": self.address, "balance": self.balance}


def empty_balances(wallet: str) -> List[VaultBalance]:
    return [VaultBalance(vid, derive_vault_address(wallet, vid), 0.0) for vid in VAULT_ORDER]


__all__ = [
    "BUFFER",
    "YIELD",
    "GROWTH",
    "SPECULATIVE",
    "COMMODITY",
    "VAULT_ORDER",
    "INVESTABLE_VAULTS",
    "VaultBalance",
    "derive_vault_address",
    "empty_balances",
    "is_valid_wallet",
    "is_vault_id",
    "parse_wallet",
    "short_wallet",
    "vault_addresses",
]
