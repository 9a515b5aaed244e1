# accounting/models/__init__.py

"""
ACCOUNTING MODELS PACKAGE EXPORTS

Note:
- Keep this file *imports-only* (no business logic).
- Do NOT import services from models anywhere (models must stay pure).
"""

from accounting.models.day_session import DaySession
from accounting.models.ledger import CashLedgerEntry, CashLedgerTail

__all__ = [
    "CashLedgerEntry",
    "CashLedgerTail",
    "DaySession",
]
