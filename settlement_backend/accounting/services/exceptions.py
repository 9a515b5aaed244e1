# accounting/services/exceptions.py

"""
ACCOUNTING SERVICE ERRORS

Centralized domain errors for cash ledger + shift services.

Two families:
- *Error(ValueError): validation / precondition failures, surfaced verbatim
- ConcurrencyConflictError: lost races; retried by run_with_conflict_retry
  before being surfaced as a conflict (HTTP 409)
"""


class AccountingServiceError(Exception):
    """Base exception for all accounting service failures."""


class CashLedgerError(AccountingServiceError, ValueError):
    """Raised when a ledger entry is invalid (type, sign, missing transaction)."""


class ConcurrencyConflictError(AccountingServiceError):
    """Raised when a concurrent writer won a race; safe to retry the whole unit."""


class LedgerContentionError(ConcurrencyConflictError):
    """Raised when two appends collided on the same outlet ledger position."""
