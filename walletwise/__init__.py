"""
Walletwise - Source Package

A personal multi-wallet ledger with a forward-looking affordability engine.

DESIGN PRINCIPLES:
1. Balances are exact: every wallet balance is the signed sum of its transactions
2. Mutations are all-or-nothing
3. Projections are read-only and explain every number they produce
4. AI text is optional; the deterministic advice is always available
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Walletwise Team"
