# PATH: accounting/api/views/shifts.py

"""
SHIFT (DAY SESSION) API

POST /api/accounting/outlets/<outlet_id>/shift/open/       cash.shift_manage
POST /api/accounting/outlets/<outlet_id>/shift/close/      cash.shift_manage
GET  /api/accounting/outlets/<outlet_id>/shift/            cash.view
GET  /api/accounting/outlets/<outlet_id>/shift/history/    cash.view (paginated, filterable)
GET  /api/accounting/outlets/<outlet_id>/shift/<session_id>/ cash.view (entries, per-mode payments)
POST /api/accounting/outlets/<outlet_id>/cash-movements/   cash.shift_manage

?floor_id=<uuid> (GET) or "floor_id" (POST body) selects the floor-level shift.
"""

from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.generics import GenericAPIView, ListAPIView
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from accounting.api.filters import DaySessionFilter
from accounting.api.serializers import (
    CashLedgerEntrySerializer,
    CashMovementCommandSerializer,
    CloseShiftCommandSerializer,
    DaySessionSerializer,
    OpenShiftCommandSerializer,
    ShiftDetailSerializer,
    ShiftStatusSerializer,
)
from accounting.api.views.common import HANDLED_ERRORS, shift_error_response
from accounting.services import shift_manager
from permissions.roles import CAP_CASH_SHIFT_MANAGE, CAP_CASH_VIEW, HasCapability

FLOOR_PARAM = OpenApiParameter("floor_id", str, description="Floor-level shift (omit for outlet-level)")


def _floor_id_from_query(request):
    raw = (request.query_params.get("floor_id") or "").strip()
    if not raw:
        return None
    field = OpenShiftCommandSerializer().fields["floor_id"]
    try:
        return field.to_internal_value(raw)
    except ValidationError as exc:
        raise ValidationError({"floor_id": exc.detail}) from exc


class ShiftOpenView(GenericAPIView):
    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_CASH_SHIFT_MANAGE
    serializer_class = OpenShiftCommandSerializer

    @extend_schema(request=OpenShiftCommandSerializer, responses={201: DaySessionSerializer})
    def post(self, request, outlet_id):
        cmd = OpenShiftCommandSerializer(data=request.data)
        cmd.is_valid(raise_exception=True)
        data = cmd.validated_data

        try:
            session = shift_manager.open_shift(
                outlet_id=outlet_id,
                opening_cash=data["opening_cash"],
                user=request.user,
                floor_id=data.get("floor_id"),
            )
        except HANDLED_ERRORS as exc:
            return shift_error_response(exc)

        return Response(DaySessionSerializer(session).data, status=status.HTTP_201_CREATED)


class ShiftCloseView(GenericAPIView):
    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_CASH_SHIFT_MANAGE
    serializer_class = CloseShiftCommandSerializer

    @extend_schema(request=CloseShiftCommandSerializer, responses={200: DaySessionSerializer})
    def post(self, request, outlet_id):
        cmd = CloseShiftCommandSerializer(data=request.data)
        cmd.is_valid(raise_exception=True)
        data = cmd.validated_data

        try:
            session = shift_manager.close_shift(
                outlet_id=outlet_id,
                actual_cash=data["actual_cash"],
                user=request.user,
                notes=data.get("notes", ""),
                floor_id=data.get("floor_id"),
            )
        except HANDLED_ERRORS as exc:
            return shift_error_response(exc)

        return Response(DaySessionSerializer(session).data, status=status.HTTP_200_OK)


class ShiftStatusView(GenericAPIView):
    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_CASH_VIEW
    serializer_class = ShiftStatusSerializer

    @extend_schema(parameters=[FLOOR_PARAM], responses={200: ShiftStatusSerializer})
    def get(self, request, outlet_id):
        try:
            payload = shift_manager.shift_status(
                outlet_id=outlet_id,
                floor_id=_floor_id_from_query(request),
            )
        except HANDLED_ERRORS as exc:
            return shift_error_response(exc)

        return Response(ShiftStatusSerializer(payload).data)


class ShiftDetailView(GenericAPIView):
    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_CASH_VIEW
    serializer_class = ShiftDetailSerializer

    @extend_schema(responses={200: ShiftDetailSerializer})
    def get(self, request, outlet_id, session_id):
        try:
            payload = shift_manager.shift_detail(outlet_id=outlet_id, session_id=session_id)
        except HANDLED_ERRORS as exc:
            return shift_error_response(exc)

        return Response(ShiftDetailSerializer(payload).data)


class ShiftHistoryView(ListAPIView):
    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_CASH_VIEW
    serializer_class = DaySessionSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_class = DaySessionFilter

    def get_queryset(self):
        return shift_manager.shift_history(outlet_id=self.kwargs["outlet_id"])


class CashMovementCreateView(GenericAPIView):
    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_CASH_SHIFT_MANAGE
    serializer_class = CashMovementCommandSerializer

    @extend_schema(request=CashMovementCommandSerializer, responses={201: CashLedgerEntrySerializer})
    def post(self, request, outlet_id):
        cmd = CashMovementCommandSerializer(data=request.data)
        cmd.is_valid(raise_exception=True)
        data = cmd.validated_data

        try:
            entry = shift_manager.record_cash_movement(
                outlet_id=outlet_id,
                transaction_type=data["transaction_type"],
                amount=data["amount"],
                description=data.get("description", ""),
                user=request.user,
                floor_id=data.get("floor_id"),
            )
        except HANDLED_ERRORS as exc:
            return shift_error_response(exc)

        return Response(CashLedgerEntrySerializer(entry).data, status=status.HTTP_201_CREATED)
