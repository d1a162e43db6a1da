from types import SimpleNamespace

import pytest

from treasury.loader import SplBalanceReader, TreasuryLoader
from treasury.vaults import (
    VAULT_ORDER,
    derive_vault_address,
    is_valid_wallet,
    short_wallet,
    vault_addresses,
)


class FixedValue:
    def __init__(self, value: float) -> None:
        self.value = value

    def get_value(self, wallet: str) -> float:
        return self.value


class FailingValue:
    def get_value(self, wallet: str) -> float:
        raise TimeoutError("balance read timed out")


class FixedBalance:
    def __init__(self, balance: float) -> None:
        self.balance = balance

    def get_balance(self, address: str) -> float:
        return self.balance


def test_vault_addresses_are_deterministic_and_distinct(wallet):
    first = vault_addresses(wallet)
    assert first == vault_addresses(wallet)
    assert len(set(first.values())) == len(VAULT_ORDER)
    assert is_valid_wallet(first["growth"])


def test_vault_address_rejects_unknown_vault_and_bad_wallet(wallet):
    with pytest.raises(ValueError):
        derive_vault_address(wallet, "casino")
    with pytest.raises(ValueError):
        derive_vault_address("not-a-wallet", "buffer")


def test_short_wallet():
    assert short_wallet("ABCDEFGHIJKLMNOP") == "ABCD...MNOP"
    assert short_wallet("short") == "short"


def test_loader_sums_wallet_and_vault_values(wallet):
    values = {vid: FixedValue(10.0) for vid in VAULT_ORDER}
    loader = TreasuryLoader(FixedBalance(25.0), values, public_balances=FixedBalance(7.0))
    treasury = loader.load(wallet, "high")

    assert treasury.total_value == pytest.approx(75.0)
    assert treasury.wallet_balance == 25.0
    assert treasury.public_balance == 7.0
    assert treasury.risk_profile == "high"
    assert [v.id for v in treasury.vaults] == list(VAULT_ORDER)
    assert treasury.vault("yield").address == derive_vault_address(wallet, "yield")
    assert treasury.total_value == pytest.approx(
        treasury.wallet_balance + sum(v.balance for v in treasury.vaults)
    )


def test_loader_returns_zero_snapshot_on_any_failure(wallet):
    values = {vid: FixedValue(10.0) for vid in VAULT_ORDER}
    values["speculative"] = FailingValue()
    treasury = TreasuryLoader(FixedBalance(25.0), values).load(wallet)

    assert treasury.total_value == 0.0
    assert treasury.wallet_balance == 0.0
    assert all(v.balance == 0.0 for v in treasury.vaults)
    assert treasury.vault("buffer").address == derive_vault_address(wallet, "buffer")


def test_loader_tolerates_invalid_wallet():
    treasury = TreasuryLoader(FixedBalance(1.0), {}).load("nope")
    assert treasury.total_value == 0.0
    assert {v.address for v in treasury.vaults} == {""}


def test_loader_reads_executor_values(registry, rail, wallet):
    rail.set_balance(wallet, 12.0)
    rail.set_balance(derive_vault_address(wallet, "buffer"), 8.0)
    loader = TreasuryLoader(rail, {ex.vault_id: ex for ex in registry.ordered()})
    treasury = loader.load(wallet)
    assert treasury.total_value == pytest.approx(20.0)
    assert treasury.balance_of("buffer") == pytest.approx(8.0)


def test_spl_reader_sums_token_accounts(wallet):
    def account(amount):
        parsed = {"info": {"tokenAmount": {"uiAmount": amount}}}
        return SimpleNamespace(account=SimpleNamespace(data=SimpleNamespace(parsed=parsed)))

    class FakeClient:
        def get_token_accounts_by_owner_json_parsed(self, owner, opts):
            return SimpleNamespace(value=[account(1.25), account(None), account(3.0)])

    reader = SplBalanceReader(client=FakeClient())
    assert reader.get_balance(wallet) == pytest.approx(4.25)
