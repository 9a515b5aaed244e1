# accounting/api/serializers/shifts.py

from decimal import Decimal

from rest_framework import serializers

from accounting.api.serializers.ledger_entries import CashLedgerEntrySerializer
from accounting.models import CashLedgerEntry, DaySession


class DaySessionSerializer(serializers.ModelSerializer):
    opened_by_email = serializers.EmailField(source="opened_by.email", read_only=True, default=None)
    closed_by_email = serializers.EmailField(source="closed_by.email", read_only=True, default=None)

    class Meta:
        model = DaySession
        fields = (
            "id",
            "outlet",
            "floor",
            "session_date",
            "status",
            "opening_cash",
            "closing_cash",
            "expected_cash",
            "cash_variance",
            "total_sales",
            "total_orders",
            "opened_by",
            "opened_by_email",
            "opened_at",
            "closed_by",
            "closed_by_email",
            "closed_at",
            "variance_notes",
        )
        read_only_fields = fields


class ShiftStatusSerializer(serializers.Serializer):
    session = DaySessionSerializer(allow_null=True)
    current_balance = serializers.DecimalField(max_digits=14, decimal_places=2)
    recent_entries = CashLedgerEntrySerializer(many=True)


class PaymentModeTotalSerializer(serializers.Serializer):
    mode = serializers.CharField()
    count = serializers.IntegerField()
    total = serializers.DecimalField(max_digits=14, decimal_places=2)


class ShiftDetailSerializer(serializers.Serializer):
    session = DaySessionSerializer()
    entries = CashLedgerEntrySerializer(many=True)
    payment_breakdown = PaymentModeTotalSerializer(many=True)
    total_orders = serializers.IntegerField()
    total_sales = serializers.DecimalField(max_digits=14, decimal_places=2)


# ======================================================
# COMMANDS
# ======================================================


class OpenShiftCommandSerializer(serializers.Serializer):
    opening_cash = serializers.DecimalField(
        max_digits=14,
        decimal_places=2,
        min_value=Decimal("0.00"),
        required=False,
        default=Decimal("0.00"),
    )
    floor_id = serializers.UUIDField(required=False, allow_null=True, default=None)


class CloseShiftCommandSerializer(serializers.Serializer):
    actual_cash = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal("0.00"))
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    floor_id = serializers.UUIDField(required=False, allow_null=True, default=None)


class CashMovementCommandSerializer(serializers.Serializer):
    MOVEMENT_TYPES = (
        CashLedgerEntry.TYPE_CASH_IN,
        CashLedgerEntry.TYPE_CASH_OUT,
        CashLedgerEntry.TYPE_EXPENSE,
    )

    transaction_type = serializers.ChoiceField(choices=MOVEMENT_TYPES)
    amount = serializers.DecimalField(max_digits=14, decimal_places=2, min_value=Decimal("0.01"))
    description = serializers.CharField(required=False, allow_blank=True, max_length=255, default="")
    floor_id = serializers.UUIDField(required=False, allow_null=True, default=None)
