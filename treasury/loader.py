"""
Treasury State Loader

Builds one consistent snapshot of a wallet's capital:
    - private (shielded) wallet balance on the rail
    - public token balance on-chain
    - per-vault value (idle vault cash + invested value)

The snapshot is read-only and request-scoped. Any failing balance query
yields the all-zero snapshot rather than a partially summed one.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, Tuple

from solana.rpc.api import Client
from solana.rpc.types import TokenAccountOpts
from solders.pubkey import Pubkey

from execution.protocols.types import stable_mint
from treasury.vaults import VAULT_ORDER, VaultBalance, derive_vault_address, short_wallet

LOG = logging.getLogger("treasury.loader")


@dataclass(frozen=True)
class Treasury:
    wallet: str
    total_value: float = 0.0
    wallet_balance: float = 0.0
    public_balance: float = 0.0
    vaults: Tuple[VaultBalance, ...] = field(default_factory=tuple)
    risk_profile: str = "medium"

    def vault(self, vault_id: str) -> Optional[VaultBalance]:
        for v in self.vaults:
            if v.id == vault_id:
                return v
        return None

    def balance_of(self, vault_id: str) -> float:
        v = self.vault(vault_id)
        return v.balance if v else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalValue": self.total_value,
            "walletBalance": self.wallet_balance,
            "publicBalance": self.public_balance,
            "riskProfile": self.risk_profile,
            "vaults": [v.to_dict() for v in self.vaults],
        }


class BalanceSource(Protocol):
    def get_balance(self, address: str) -> float: ...


class ValueSource(Protocol):
    def get_value(self, wallet: str) -> float: ...


class SplBalanceReader:
    """Public SPL balance of the stable mint across the wallet's token accounts."""

    def __init__(self, client: Optional[Client] = None, mint: Optional[str] = None) -> None:
        self.client = client or Client(os.getenv("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com"))
        self.mint = mint or stable_mint()

    def get_balance(self, address: str) -> float:
        resp = self.client.get_token_accounts_by_owner_json_parsed(
            Pubkey.from_string(address), TokenAccountOpts(mint=Pubkey.from_string(self.mint))
        )
        total = 0.0
        for account in resp.value or []:
            parsed = account.account.data.parsed or {}
            amount = ((parsed.get("info") or {}).get("tokenAmount") or {}).get("uiAmount")
            total += float(amount or 0.0)
        return total


def zero_treasury(wallet: str, risk: str) -> Treasury:
    vaults = []
    for vid in VAULT_ORDER:
        try:
            address = derive_vault_address(wallet, vid)
        except ValueError:
            address = ""
        vaults.append(VaultBalance(vid, address, 0.0))
    return Treasury(wallet=wallet, vaults=tuple(vaults), risk_profile=risk)


class TreasuryLoader:
    def __init__(
        self,
        rail: BalanceSource,
        vault_values: Dict[str, ValueSource],
        public_balances: Optional[BalanceSource] = None,
    ) -> None:
        self.rail = rail
        self.vault_values = vault_values
        self.public_balances = public_balances

    def load(self, wallet: str, risk: str = "medium") -> Treasury:
        """Snapshot ``wallet``; never raises."""
        try:
            wallet_balance = float(self.rail.get_balance(wallet))
            public_balance = (
                float(self.public_balances.get_balance(wallet)) if self.public_balances else 0.0
            )
            vaults = []
            for vid in VAULT_ORDER:
                source = self.vault_values.get(vid)
                value = float(source.get_value(wallet)) if source else 0.0
                vaults.append(VaultBalance(vid, derive_vault_address(wallet, vid), value))
        except Exception as exc:
            LOG.warning("[treasury] load failed for %s, using zeros: %s", short_wallet(wallet), exc)
            return zero_treasury(wallet, risk)

        total = wallet_balance + sum(v.balance for v in vaults)
        LOG.info(
            "[treasury] %s total=%.2f wallet=%.2f public=%.2f",
            short_wallet(wallet),
            total,
            wallet_balance,
            public_balance,
        )
        return Treasury(
            wallet=wallet,
            total_value=total,
            wallet_balance=wallet_balance,
            public_balance=public_balance,
            vaults=tuple(vaults),
            risk_profile=risk,
        )


__all__ = ["SplBalanceReader", "Treasury", "TreasuryLoader", "zero_treasury"]
