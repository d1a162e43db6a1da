"""
Allocation intelligence.

Market signals, the rule table and the AI advisor that together decide how
a wallet's capital should be split across vaults. All logic here should be:

- Pure functions where possible (rules, clamping, parsing).
- Tolerant of upstream failure: every fetch or advisor call has a default.
- Covered by tests/test_allocation_rules.py and tests/test_strategy_engine.py.
"""

__all__ = ["ai_advisor", "allocation_rules", "market_signals", "strategy_engine"]
