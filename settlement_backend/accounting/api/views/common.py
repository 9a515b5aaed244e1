# accounting/api/views/common.py

from rest_framework import status
from rest_framework.response import Response

from accounting.services.exceptions import AccountingServiceError, ConcurrencyConflictError
from accounting.services.shift_manager import (
    NoOpenShiftError,
    OutletNotFoundError,
    ShiftAlreadyOpenError,
    ShiftError,
    ShiftNotFoundError,
)


def error_response(*, code: str, message: str, http_status: int):
    """
    Canonical API error response.
    """
    return Response(
        {"error": {"code": code, "message": message}},
        status=http_status,
    )


def shift_error_response(exc: Exception):
    if isinstance(exc, ConcurrencyConflictError):
        return error_response(code="CASH_CONFLICT", message=str(exc), http_status=status.HTTP_409_CONFLICT)
    if isinstance(exc, ShiftAlreadyOpenError):
        return error_response(code="SHIFT_ALREADY_OPEN", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, NoOpenShiftError):
        return error_response(code="NO_OPEN_SHIFT", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, OutletNotFoundError):
        return error_response(code="OUTLET_NOT_FOUND", message=str(exc), http_status=status.HTTP_404_NOT_FOUND)
    if isinstance(exc, ShiftNotFoundError):
        return error_response(code="SHIFT_NOT_FOUND", message=str(exc), http_status=status.HTTP_404_NOT_FOUND)
    return error_response(code="CASH_INVALID", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)


HANDLED_ERRORS = (ShiftError, AccountingServiceError)
