from .ledger_entries import CashLedgerEntrySerializer
from .shifts import (
    CashMovementCommandSerializer,
    CloseShiftCommandSerializer,
    DaySessionSerializer,
    OpenShiftCommandSerializer,
    PaymentModeTotalSerializer,
    ShiftDetailSerializer,
    ShiftStatusSerializer,
)

__all__ = [
    "CashLedgerEntrySerializer",
    "CashMovementCommandSerializer",
    "CloseShiftCommandSerializer",
    "DaySessionSerializer",
    "OpenShiftCommandSerializer",
    "PaymentModeTotalSerializer",
    "ShiftDetailSerializer",
    "ShiftStatusSerializer",
]
