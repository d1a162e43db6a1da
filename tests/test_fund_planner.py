from typing import Dict

import pytest

from execution.fund_planner import (
    IN,
    OUT,
    REASON_AWAITING_LIQUIDATION,
    REASON_INSUFFICIENT_SOURCE,
    REASON_RAIL_MINIMUM,
    execute_plan,
    plan_movements,
    rebalance_funds,
)
from execution.rail import SimulatedRail
from treasury.loader import Treasury
from treasury.vaults import VAULT_ORDER, VaultBalance, derive_vault_address

BASE_ALLOC = {"buffer": 40.0, "yield": 30.0, "growth": 20.0, "speculative": 10.0, "commodity": 0.0}


def _treasury(wallet: str, balances: Dict[str, float], wallet_balance: float = 0.0) -> Treasury:
    vaults = tuple(
        VaultBalance(vid, derive_vault_address(wallet, vid), float(balances.get(vid, 0.0)))
        for vid in VAULT_ORDER
    )
    total = wallet_balance + sum(v.balance for v in vaults)
    return Treasury(wallet=wallet, total_value=total, wallet_balance=wallet_balance, vaults=vaults)


def _funded_rail(wallet: str, balances: Dict[str, float], wallet_balance: float = 0.0, **kwargs) -> SimulatedRail:
    seed = {derive_vault_address(wallet, vid): amount for vid, amount in balances.items()}
    if wallet_balance:
        seed[wallet] = wallet_balance
    return SimulatedRail(seed, **kwargs)


def _treasury_from_rail(wallet: str, rail: SimulatedRail) -> Treasury:
    balances = {vid: rail.get_balance(derive_vault_address(wallet, vid)) for vid in VAULT_ORDER}
    return _treasury(wallet, balances, wallet_balance=rail.get_balance(wallet))


def test_buffer_funds_under_weight_vault(wallet):
    treasury = _treasury(wallet, {"buffer": 100.0})
    planned, deferred = plan_movements(
        treasury, {"buffer": 60.0, "yield": 40.0}, minimum=5.0
    )
    assert deferred == []
    assert len(planned) == 1
    transfer = planned[0]
    assert transfer.vault_id == "yield"
    assert transfer.direction == IN
    assert transfer.source == "buffer"
    assert transfer.amount == pytest.approx(40.0)
    assert transfer.from_address == derive_vault_address(wallet, "buffer")
    assert transfer.to_address == derive_vault_address(wallet, "yield")


def test_sub_minimum_diff_is_deferred_and_never_sent(wallet):
    rail = _funded_rail(wallet, {"buffer": 3.0})
    treasury = _treasury(wallet, {"buffer": 3.0})
    planned, deferred = plan_movements(treasury, {"buffer": 70.0, "growth": 30.0}, minimum=5.0)
    assert planned == []
    assert len(deferred) == 1
    assert deferred[0].vault_id == "growth"
    assert deferred[0].reason == "below_minimum_5.00"
    assert deferred[0].diff == pytest.approx(0.9)

    outcome = execute_plan(rail, planned, deferred)
    assert outcome.errors == []
    assert outcome.executed == []
    assert rail.calls == []


def test_zero_diff_vaults_are_not_recorded(wallet):
    treasury = _treasury(wallet, {"buffer": 40.0, "yield": 30.0, "growth": 20.0, "speculative": 10.0})
    planned, deferred = plan_movements(treasury, BASE_ALLOC, minimum=0.01)
    assert planned == []
    assert deferred == []


def test_second_pass_plans_nothing(wallet):
    rail = _funded_rail(wallet, {"buffer": 100.0})
    first = rebalance_funds(rail, _treasury_from_rail(wallet, rail), BASE_ALLOC, minimum=5.0)
    assert len(first.executed) == 3
    assert first.errors == []

    planned, deferred = plan_movements(_treasury_from_rail(wallet, rail), BASE_ALLOC, minimum=5.0)
    assert planned == []
    assert all(abs(d.diff) < 5.0 for d in deferred)


def test_transfers_conserve_value_and_match_buffer_change(wallet):
    balances = {"buffer": 10.0, "yield": 50.0, "growth": 40.0}
    rail = _funded_rail(wallet, balances)
    buffer_address = derive_vault_address(wallet, "buffer")
    total_before = sum(rail.snapshot().values())
    buffer_before = rail.get_balance(buffer_address)

    outcome = rebalance_funds(rail, _treasury(wallet, balances), BASE_ALLOC, minimum=1.0)

    assert outcome.errors == []
    directions = sorted((t.transfer.vault_id, t.transfer.direction) for t in outcome.executed)
    assert directions == [("growth", OUT), ("speculative", IN), ("yield", OUT)]
    assert sum(rail.snapshot().values()) == pytest.approx(total_before)
    buffer_change = rail.get_balance(buffer_address) - buffer_before
    assert outcome.net_buffer_change == pytest.approx(buffer_change)
    assert buffer_change == pytest.approx(30.0)


def test_outflows_run_before_inflows(wallet):
    treasury = _treasury(wallet, {"yield": 100.0})
    planned, _ = plan_movements(treasury, BASE_ALLOC, minimum=1.0)
    assert planned[0].direction == OUT
    assert [t.direction for t in planned[1:]] == [IN, IN]
    # buffer had nothing until yield's outflow landed
    assert all(t.source == "buffer" for t in planned[1:])


def test_wallet_funds_when_buffer_is_empty(wallet):
    treasury = _treasury(wallet, {}, wallet_balance=100.0)
    planned, deferred = plan_movements(treasury, {"buffer": 70.0, "yield": 30.0}, minimum=5.0)
    assert deferred == []
    assert len(planned) == 1
    assert planned[0].source == "wallet"
    assert planned[0].from_address == wallet
    assert planned[0].amount == pytest.approx(30.0)


def test_unfunded_inflows_and_illiquid_outflows_are_deferred(wallet):
    treasury = _treasury(wallet, {"yield": 100.0})
    planned, deferred = plan_movements(
        treasury, BASE_ALLOC, minimum=1.0, vault_liquid={"yield": 0.0}
    )
    assert planned == []
    reasons = {d.vault_id: d.reason for d in deferred}
    assert reasons == {
        "yield": REASON_AWAITING_LIQUIDATION,
        "growth": REASON_INSUFFICIENT_SOURCE,
        "speculative": REASON_INSUFFICIENT_SOURCE,
    }


def test_inflows_are_capped_at_running_buffer_cash(wallet):
    treasury = _treasury(wallet, {"buffer": 100.0})
    planned, _ = plan_movements(treasury, BASE_ALLOC, minimum=1.0, buffer_liquid=45.0)
    amounts = {t.vault_id: t.amount for t in planned}
    assert amounts["yield"] == pytest.approx(30.0)
    assert amounts["growth"] == pytest.approx(15.0)
    assert "speculative" not in amounts


def test_rail_minimum_rejection_becomes_deferral(wallet):
    rail = _funded_rail(wallet, {"buffer": 10.0}, minimum_amount=1.0)
    treasury = _treasury(wallet, {"buffer": 10.0})
    planned, deferred = plan_movements(treasury, {"buffer": 95.0, "yield": 5.0}, minimum=0.01)
    assert len(planned) == 1

    outcome = execute_plan(rail, planned, deferred)
    assert outcome.errors == []
    assert outcome.executed == []
    assert [(d.vault_id, d.reason) for d in outcome.deferred] == [("yield", REASON_RAIL_MINIMUM)]


def test_rail_failure_is_isolated_per_vault(wallet):
    rail = _funded_rail(wallet, {"buffer": 5.0})
    treasury = _treasury(wallet, {"buffer": 100.0})
    planned, deferred = plan_movements(treasury, BASE_ALLOC, minimum=1.0)
    assert len(planned) == 3

    outcome = execute_plan(rail, planned, deferred)
    # only 5.00 is really there: every transfer is attempted, each fails alone
    assert len(rail.calls) == 3
    assert [e.vault_id for e in outcome.errors] == ["yield", "growth", "speculative"]
    assert all(e.error == "Insufficient balance" for e in outcome.errors)
    assert outcome.net_buffer_change == 0.0
