import time

import pytest
from solders.keypair import Keypair

from execution.signature import SignatureError, authorize, build_message, is_fresh, verify_signature


def _sign(keypair: Keypair, message: str) -> str:
    return str(keypair.sign_message(message.encode("utf-8")))


def test_valid_signature_verifies(keypair, wallet):
    message = build_message("rebalance", wallet, 1_700_000_000_000)
    assert message == f"rebalance|{wallet}|1700000000000"
    assert verify_signature(message, _sign(keypair, message), wallet)


def test_signature_from_other_key_fails(wallet):
    message = build_message("rebalance", wallet, 1)
    assert not verify_signature(message, _sign(Keypair(), message), wallet)


def test_tampered_message_fails(keypair, wallet):
    signature = _sign(keypair, build_message("rebalance", wallet, 1))
    assert not verify_signature(build_message("withdraw", wallet, 1), signature, wallet)


@pytest.mark.parametrize("signature", ["", "not-base58-0OIl", "abc"])
def test_undecodable_signature_fails(wallet, signature):
    assert not verify_signature("rebalance|x|1", signature, wallet)


def test_malformed_wallet_fails(keypair):
    assert not verify_signature("m", _sign(keypair, "m"), "not-a-wallet")


@pytest.mark.parametrize(
    "timestamp,fresh",
    [(1_000_000, True), (1_000_000 - 60_000, True), (1_000_000 - 60_001, False), (1_000_000 + 61_000, False), ("soon", False)],
)
def test_freshness_window(timestamp, fresh):
    assert is_fresh(timestamp, window_s=60.0, now_ms=1_000_000) is fresh


def test_authorize_accepts_fresh_signed_request(keypair, wallet):
    ts = int(time.time() * 1000)
    authorize("invest", wallet, ts, _sign(keypair, build_message("invest", wallet, ts)))


def test_authorize_rejects_expired_before_checking_signature(keypair, wallet):
    ts = int(time.time() * 1000) - 120_000
    with pytest.raises(SignatureError, match="Signature expired"):
        authorize("invest", wallet, ts, _sign(keypair, build_message("invest", wallet, ts)))


def test_authorize_rejects_bad_signature(wallet):
    ts = int(time.time() * 1000)
    with pytest.raises(SignatureError, match="Invalid signature"):
        authorize("invest", wallet, ts, str(Keypair().sign_message(b"other")))
