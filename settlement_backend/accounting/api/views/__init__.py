from .ledger import CashLedgerListView
from .shifts import (
    CashMovementCreateView,
    ShiftCloseView,
    ShiftDetailView,
    ShiftHistoryView,
    ShiftOpenView,
    ShiftStatusView,
)

__all__ = [
    "CashLedgerListView",
    "CashMovementCreateView",
    "ShiftCloseView",
    "ShiftDetailView",
    "ShiftHistoryView",
    "ShiftOpenView",
    "ShiftStatusView",
]
