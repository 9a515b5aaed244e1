# payments/models/__init__.py

"""
PAYMENTS MODELS PACKAGE EXPORTS
"""

from .payment import Payment, SplitPaymentEntry
from .refund import Refund
from .sequence import DailySequence

__all__ = [
    "Payment",
    "SplitPaymentEntry",
    "Refund",
    "DailySequence",
]
