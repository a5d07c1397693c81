"""
Expense Ledger

Consolidates personal money movements from bank emails, a banking API
and a bill-splitting service into one spreadsheet ledger, then
categorizes, splits and settles them.

DESIGN PRINCIPLES:
1. Re-ingesting a record is always a no-op
2. AI output is validated before anything is written
3. Splits conserve every amount exactly
4. Every automated edit is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
