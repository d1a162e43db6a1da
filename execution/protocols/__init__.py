"""External protocol clients: swap aggregator and lending market."""
from execution.protocols.lending import KaminoLendingClient
from execution.protocols.swap import JupiterSwapClient
from execution.protocols.types import (
    LendingClient,
    LendingPosition,
    SwapClient,
    SwapRequest,
    SwapResult,
    TxResult,
)

__all__ = [
    "JupiterSwapClient",
    "KaminoLendingClient",
    "LendingClient",
    "LendingPosition",
    "SwapClient",
    "SwapRequest",
    "SwapResult",
    "TxResult",
]
