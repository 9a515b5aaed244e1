# payments/services/exceptions.py

"""
PAYMENT + REFUND SERVICE ERRORS

Validation / precondition errors subclass ValueError and are surfaced to the
caller verbatim. SettlementConflictError is a ConcurrencyConflictError and is
retried internally before it ever reaches the caller.
"""

from accounting.services.exceptions import ConcurrencyConflictError


class PaymentError(ValueError):
    """Base exception for payment validation failures."""


class PaymentValidationError(PaymentError):
    pass


class OrderNotFoundError(PaymentError):
    pass


class OrderAlreadySettledError(PaymentError):
    pass


class OutletRequiredError(PaymentError):
    pass


class PaymentNotFoundError(PaymentError):
    pass


class SettlementConflictError(ConcurrencyConflictError):
    """The order changed between the pre-check and the row lock."""


class RefundError(ValueError):
    """Base exception for refund workflow failures."""


class RefundValidationError(RefundError):
    pass


class RefundNotFoundError(RefundError):
    pass
