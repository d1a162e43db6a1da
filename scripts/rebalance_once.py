#!/usr/bin/env python3
"""Demo-mode runner: run a rebalance, print signals or vault stats as JSON."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from execution.intel.market_signals import MarketSignalCollector
from execution.rail import SimulatedRail
from execution.rebalance import build_demo_service, run_rebalance
from execution.runtime_config import DEMO, set_runtime_mode
from execution.strategies import get_vault_stats


def _print(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True, default=str))


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Vault rebalancer, one shot on a demo rail")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable INFO logging")
    sub = parser.add_subparsers(dest="command", required=True)

    reb = sub.add_parser("rebalance", help="run one rebalance on a simulated rail")
    reb.add_argument("wallet", help="base58 wallet address")
    reb.add_argument("--risk", default="medium", choices=["low", "medium", "high"])
    reb.add_argument("--seed", type=float, default=100.0, help="private wallet balance to start from")

    sub.add_parser("signals", help="print current market signals")

    stats = sub.add_parser("stats", help="print per-vault stats after an optional rebalance")
    stats.add_argument("wallet", help="base58 wallet address")
    stats.add_argument("--seed", type=float, default=0.0)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)
    set_runtime_mode(DEMO)

    if args.command == "signals":
        _print(MarketSignalCollector().collect().to_dict())
        return 0

    rail = SimulatedRail({args.wallet: args.seed} if args.seed > 0 else None)
    service = build_demo_service(rail=rail)

    if args.command == "rebalance":
        status, body = run_rebalance(service, {"wallet": args.wallet, "riskProfile": args.risk})
        _print(body)
        return 0 if status == 200 else 1

    if args.seed > 0:
        status, body = run_rebalance(service, {"wallet": args.wallet})
        if status != 200:
            _print(body)
            return 1
    _print(get_vault_stats(service.registry, args.wallet))
    return 0


if __name__ == "__main__":
    sys.exit(main())
