"""
Treasury Package

Vault identity and per-wallet balance snapshots.

Components:
    vaults.py   - Vault ids, execution order, derived vault addresses
    loader.py   - Treasury snapshot (wallet + public + per-vault balances)
"""
from treasury.loader import SplBalanceReader, Treasury, TreasuryLoader
from treasury.vaults import VAULT_ORDER, VaultBalance, derive_vault_address

__all__ = [
    "SplBalanceReader",
    "Treasury",
    "TreasuryLoader",
    "VAULT_ORDER",
    "VaultBalance",
    "derive_vault_address",
]
