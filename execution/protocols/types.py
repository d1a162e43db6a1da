"""Shared result types and token registry for external protocol clients."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

STABLE_SYMBOL = "USD1"


@dataclass(frozen=True)
class TokenInfo:
    symbol: str
    mint: str
    decimals: int


def _mint(symbol: str, default: str) -> str:
    return os.getenv(f"{symbol.upper()}_MINT", default)


TOKENS: Dict[str, TokenInfo] = {
    "USD1": TokenInfo("USD1", _mint("USD1", "USD1ttGY1N17NEEHLmELoaybftRBUSErhqYiQzvEmuB"), 6),
    "USDC": TokenInfo("USDC", _mint("USDC", "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"), 6),
    "SOL": TokenInfo("SOL", "So11111111111111111111111111111111111111112", 9),
    "RADR": TokenInfo("RADR", _mint("RADR", "CzFvsLdUazabdiu9TYXujj4EY495fG7VgJJ3vQs6bonk"), 9),
    "ORE": TokenInfo("ORE", _mint("ORE", "oreoU2P8bN6jkk3jbaiVxYnG1dCXcYxwhwyK9jSybcp"), 11),
    "ANON": TokenInfo("ANON", _mint("ANON", "D25bi7oHQjqkVrzbfuM6k2gzVNHTSpBLhtakDCzCCDUB"), 9),
    "BONK": TokenInfo("BONK", "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263", 5),
    "JIM": TokenInfo("JIM", _mint("JIM", "H9muD33usLGYv1tHvxCVpFwwVSn27x67tBQYH1ANbonk"), 9),
    "POKI": TokenInfo("POKI", _mint("POKI", "6vK6cL9C66Bsqw7SC2hcCdkgm1UKBDUE6DCYJ4kubonk"), 9),
    "GLDr": TokenInfo("GLDr", _mint("GLDR", "AEv6xLECJ2KKmwFGX85mHb9S2c2BQE7dqE5midyrXHBb"), 6),
    "SLVr": TokenInfo("SLVr", _mint("SLVR", "7C56WnJ94iEP7YeH2iKiYpvsS5zkcpP9rJBBEBoUGdzj"), 6),
    "CPERr": TokenInfo("CPERr", _mint("CPER", "C3VLBJB2FhEb47s1WEgroyn3BnSYXaezqtBuu5WNmUGw"), 6),
}

# Used when the price API is unreachable; keyed by symbol.
FALLBACK_PRICES: Dict[str, float] = {
    "USD1": 1.0,
    "USDC": 1.0,
    "SOL": 145.20,
    "RADR": 0.15,
    "BONK": 0.00002,
    "ORE": 0.02,
    "ANON": 0.01,
    "JIM": 0.005,
    "POKI": 0.001,
    "GLDr": 2650.0,
    "SLVr": 31.0,
    "CPERr": 4.5,
}


def token(symbol: str) -> TokenInfo:
    return TOKENS[symbol]


def symbol_for_mint(mint: str) -> Optional[str]:
    for info in TOKENS.values():
        if info.mint == mint:
            return info.symbol
    return None


def stable_mint() -> str:
    return TOKENS[STABLE_SYMBOL].mint


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class TxResult:
    success: bool
    signature: Optional[str] = None
    error: Optional[str] = None
    unsigned_tx: Optional[str] = None
    amount: float = 0.0


@dataclass
class SwapRequest:
    input_mint: str
    output_mint: str
    amount: float
    slippage_bps: int = 50


@dataclass
class SwapResult:
    success: bool
    input_amount: float = 0.0
    output_amount: float = 0.0
    price: float = 0.0
    signature: Optional[str] = None
    unsigned_tx: Optional[str] = None
    error: Optional[str] = None


@dataclass
class LendingPosition:
    wallet: str
    market: str
    principal: float = 0.0
    earned: float = 0.0
    apy: float = 0.0
    last_accrual: float = 0.0
    history: List[Dict[str, float]] = field(default_factory=list)

    @property
    def value(self) -> float:
        return self.principal + self.earned


# ---------------------------------------------------------------------------
# Client contracts
# ---------------------------------------------------------------------------


class SwapClient(Protocol):
    def get_token_price(self, mint: str) -> Optional[float]: ...

    def get_token_prices(self, mints: List[str]) -> Dict[str, float]: ...

    def execute_swap(self, request: SwapRequest, wallet: str) -> SwapResult: ...

    def swap_to_stable(self, mint: str, amount: float, decimals: int, wallet: str) -> SwapResult: ...


class LendingClient(Protocol):
    def deposit(self, wallet: str, amount: float, market: str = "main") -> TxResult: ...

    def withdraw(self, wallet: str, amount: float, market: str = "main") -> TxResult: ...

    def get_position(self, wallet: str, market: str = "main") -> Optional[LendingPosition]: ...

    def accrue_yield(self, wallet: str, market: str = "main") -> float: ...

    def get_current_apy(self, market: str = "main") -> float: ...


__all__ = [
    "FALLBACK_PRICES",
    "LendingClient",
    "LendingPosition",
    "STABLE_SYMBOL",
    "SwapClient",
    "SwapRequest",
    "SwapResult",
    "TOKENS",
    "TokenInfo",
    "TxResult",
    "stable_mint",
    "symbol_for_mint",
    "token",
]
