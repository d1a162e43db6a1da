"""
Detached ed25519 signature checks for privileged wallet requests.

The signed message is ``action|wallet|timestamp`` where ``timestamp`` is
milliseconds since the epoch; signatures are base58 encoded.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Optional

from solders.pubkey import Pubkey
from solders.signature import Signature

LOG = logging.getLogger("signature")

DEFAULT_WINDOW_S = 60.0


class SignatureError(Exception):
    """Raised when a signed request is stale or does not verify."""


def build_message(action: str, wallet: str, timestamp: Any) -> str:
    return f"{action}|{wallet}|{timestamp}"


def verify_signature(message: str, signature: str, wallet: str) -> bool:
    try:
        pubkey = Pubkey.from_string(wallet)
        sig = Signature.from_string(signature)
    except Exception as exc:
        LOG.debug("[signature] undecodable input: %s", exc)
        return False
    return bool(sig.verify(pubkey, message.encode("utf-8")))


def is_fresh(timestamp: Any, window_s: float = DEFAULT_WINDOW_S, now_ms: Optional[float] = None) -> bool:
    try:
        ts = float(timestamp)
    except (TypeError, ValueError):
        return False
    now = now_ms if now_ms is not None else time.time() * 1000.0
    return abs(now - ts) <= window_s * 1000.0


def authorize(
    action: str,
    wallet: str,
    timestamp: Any,
    signature: str,
    window_s: float = DEFAULT_WINDOW_S,
    now_ms: Optional[float] = None,
) -> None:
    """Raise SignatureError unless the request is fresh and correctly signed."""
    if not is_fresh(timestamp, window_s=window_s, now_ms=now_ms):
        raise SignatureError("Signature expired")
    if not verify_signature(build_message(action, wallet, timestamp), signature, wallet):
        raise SignatureError("Invalid signature")


__all__ = ["SignatureError", "authorize", "build_message", "is_fresh", "verify_signature"]
