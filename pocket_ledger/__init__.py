"""
Pocket Ledger - Source Package

A personal finance tracker: wallets, categories, income, expenses and
transfers, with statistics over time windows and a natural-language
front end for entering transactions.

DESIGN PRINCIPLES:
1. Money is never created or lost by the ledger itself
2. AI proposes → Human confirms → Ledger commits
3. Fail early, fail visibly
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Pocket Ledger Team"
