# payments/api/views.py

import logging

from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.generics import GenericAPIView
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from accounting.services.exceptions import ConcurrencyConflictError
from payments.api.serializers import (
    PaymentCommandSerializer,
    PaymentSerializer,
    RefundCommandSerializer,
    RefundSerializer,
    SettlementResultSerializer,
    SplitPaymentCommandSerializer,
)
from payments.services.exceptions import (
    OrderAlreadySettledError,
    OrderNotFoundError,
    PaymentError,
    RefundError,
    RefundNotFoundError,
)
from payments.services.payment_processor import (
    list_payments_for_order,
    process_single_payment,
    process_split_payment,
)
from payments.services.refund_workflow import approve_refund, initiate_refund
from permissions.roles import (
    CAP_CASH_VIEW,
    CAP_PAYMENTS_COLLECT,
    CAP_PAYMENTS_REFUND_APPROVE,
    CAP_PAYMENTS_REFUND_REQUEST,
    CAP_PAYMENTS_VIEW,
    HasAnyCapability,
    HasCapability,
)

logger = logging.getLogger(__name__)


# ======================================================
# API ERROR NORMALIZATION
# ======================================================

def error_response(*, code: str, message: str, http_status: int):
    """
    Canonical API error response.
    """
    return Response(
        {"error": {"code": code, "message": message}},
        status=http_status,
    )


def _payment_error_response(exc: Exception):
    if isinstance(exc, OrderNotFoundError):
        return error_response(code="ORDER_NOT_FOUND", message=str(exc), http_status=status.HTTP_404_NOT_FOUND)
    if isinstance(exc, OrderAlreadySettledError):
        return error_response(code="ORDER_ALREADY_PAID", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, ConcurrencyConflictError):
        return error_response(code="SETTLEMENT_CONFLICT", message=str(exc), http_status=status.HTTP_409_CONFLICT)
    return error_response(code="PAYMENT_INVALID", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)


def _refund_error_response(exc: Exception):
    if isinstance(exc, RefundNotFoundError):
        return error_response(code="REFUND_NOT_FOUND", message=str(exc), http_status=status.HTTP_404_NOT_FOUND)
    if isinstance(exc, ConcurrencyConflictError):
        return error_response(code="REFUND_CONFLICT", message=str(exc), http_status=status.HTTP_409_CONFLICT)
    return error_response(code="REFUND_INVALID", message=str(exc), http_status=status.HTTP_400_BAD_REQUEST)


# ======================================================
# PAYMENTS
# ======================================================


class PaymentCreateView(GenericAPIView):
    """
    POST /api/payments/
    Settle (part of) an order with a single payment mode.
    """

    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_PAYMENTS_COLLECT
    serializer_class = PaymentCommandSerializer

    @extend_schema(request=PaymentCommandSerializer, responses={201: SettlementResultSerializer})
    def post(self, request):
        cmd = PaymentCommandSerializer(data=request.data)
        cmd.is_valid(raise_exception=True)
        data = cmd.validated_data

        try:
            result = process_single_payment(
                order_id=data["order_id"],
                mode=data["mode"],
                amount=data["amount"],
                tip=data.get("tip"),
                metadata=cmd.metadata(),
                received_by=request.user,
                outlet_id=data.get("outlet_id"),
                invoice_id=data.get("invoice_id"),
            )
        except (PaymentError, ConcurrencyConflictError) as exc:
            return _payment_error_response(exc)

        return Response(SettlementResultSerializer(result).data, status=status.HTTP_201_CREATED)


class SplitPaymentCreateView(GenericAPIView):
    """
    POST /api/payments/split/
    Settle the full due amount across several modes.
    """

    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_PAYMENTS_COLLECT
    serializer_class = SplitPaymentCommandSerializer

    @extend_schema(request=SplitPaymentCommandSerializer, responses={201: SettlementResultSerializer})
    def post(self, request):
        cmd = SplitPaymentCommandSerializer(data=request.data)
        cmd.is_valid(raise_exception=True)
        data = cmd.validated_data

        try:
            result = process_split_payment(
                order_id=data["order_id"],
                splits=[dict(leg) for leg in data["splits"]],
                received_by=request.user,
                outlet_id=data.get("outlet_id"),
                invoice_id=data.get("invoice_id"),
                notes=data.get("notes", ""),
            )
        except (PaymentError, ConcurrencyConflictError) as exc:
            return _payment_error_response(exc)

        return Response(SettlementResultSerializer(result).data, status=status.HTTP_201_CREATED)


class OrderPaymentsView(GenericAPIView):
    """
    GET /api/payments/orders/<order_id>/
    """

    permission_classes = [IsAuthenticated, HasAnyCapability]
    required_any_capabilities = {CAP_PAYMENTS_VIEW, CAP_CASH_VIEW}
    serializer_class = PaymentSerializer

    @extend_schema(responses={200: PaymentSerializer(many=True)})
    def get(self, request, order_id):
        try:
            payments = list_payments_for_order(order_id=order_id)
        except PaymentError as exc:
            return _payment_error_response(exc)

        return Response(PaymentSerializer(payments, many=True).data)


# ======================================================
# REFUNDS
# ======================================================


class RefundCreateView(GenericAPIView):
    """
    POST /api/payments/refunds/
    Request a refund (pending until approved).
    """

    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_PAYMENTS_REFUND_REQUEST
    serializer_class = RefundCommandSerializer

    @extend_schema(request=RefundCommandSerializer, responses={201: RefundSerializer})
    def post(self, request):
        cmd = RefundCommandSerializer(data=request.data)
        cmd.is_valid(raise_exception=True)
        data = cmd.validated_data

        try:
            refund = initiate_refund(
                order_id=data["order_id"],
                payment_id=data["payment_id"],
                amount=data["amount"],
                mode=data["mode"],
                reason=data["reason"],
                requested_by=request.user,
            )
        except (RefundError, ConcurrencyConflictError) as exc:
            return _refund_error_response(exc)

        return Response(RefundSerializer(refund).data, status=status.HTTP_201_CREATED)


class RefundApproveView(GenericAPIView):
    """
    POST /api/payments/refunds/<refund_id>/approve/
    """

    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_PAYMENTS_REFUND_APPROVE
    serializer_class = RefundSerializer

    @extend_schema(request=None, responses={200: RefundSerializer})
    def post(self, request, refund_id):
        try:
            refund = approve_refund(refund_id=refund_id, approved_by=request.user)
        except (RefundError, ConcurrencyConflictError) as exc:
            return _refund_error_response(exc)

        logger.info(
            "Refund approved via API",
            extra={"refund_id": str(refund.pk), "user_id": str(request.user.pk)},
        )
        return Response(RefundSerializer(refund).data, status=status.HTTP_200_OK)
