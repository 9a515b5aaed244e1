# payments/api/serializers.py

from decimal import Decimal

from rest_framework import serializers

from payments.models import Payment, Refund, SplitPaymentEntry
from payments.services.payment_processor import SINGLE_PAYMENT_MODES, SPLIT_LEG_MODES


# ======================================================
# READ SERIALIZERS
# ======================================================


class SplitPaymentEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = SplitPaymentEntry
        fields = (
            "id",
            "mode",
            "amount",
            "transaction_id",
            "reference_number",
            "card_last_four",
            "upi_id",
            "notes",
            "created_at",
        )
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    split_entries = SplitPaymentEntrySerializer(many=True, read_only=True)
    received_by_email = serializers.EmailField(source="received_by.email", read_only=True, default=None)

    class Meta:
        model = Payment
        fields = (
            "id",
            "payment_number",
            "outlet",
            "floor",
            "order",
            "invoice",
            "mode",
            "amount",
            "tip_amount",
            "total_amount",
            "status",
            "refund_amount",
            "refunded_at",
            "refund_reason",
            "transaction_id",
            "reference_number",
            "card_last_four",
            "card_type",
            "upi_id",
            "wallet_name",
            "bank_name",
            "notes",
            "received_by",
            "received_by_email",
            "split_entries",
            "created_at",
        )
        read_only_fields = fields


class RefundSerializer(serializers.ModelSerializer):
    effective_mode = serializers.CharField(read_only=True)

    class Meta:
        model = Refund
        fields = (
            "id",
            "refund_number",
            "outlet",
            "order",
            "payment",
            "amount",
            "mode",
            "effective_mode",
            "status",
            "reason",
            "requested_by",
            "approved_by",
            "approved_at",
            "created_at",
        )
        read_only_fields = fields


class SettlementResultSerializer(serializers.Serializer):
    """Shape of a successful payment response."""

    payment = PaymentSerializer()
    order_id = serializers.UUIDField(source="order.id")
    order_status = serializers.CharField(source="order.status")
    payment_status = serializers.CharField(source="order.payment_status")
    paid_amount = serializers.DecimalField(source="order.paid_amount", max_digits=12, decimal_places=2)
    due_amount = serializers.DecimalField(source="order.due_amount", max_digits=12, decimal_places=2)
    fully_settled = serializers.BooleanField()


# ======================================================
# COMMAND SERIALIZERS (input only, no DB writes)
# ======================================================


class PaymentCommandSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    outlet_id = serializers.UUIDField(required=False, allow_null=True)
    invoice_id = serializers.UUIDField(required=False, allow_null=True)

    mode = serializers.ChoiceField(choices=sorted(SINGLE_PAYMENT_MODES))
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"))
    tip = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=Decimal("0.00"),
        required=False,
        default=Decimal("0.00"),
    )

    transaction_id = serializers.CharField(required=False, allow_blank=True, max_length=100)
    reference_number = serializers.CharField(required=False, allow_blank=True, max_length=100)
    card_last_four = serializers.CharField(required=False, allow_blank=True, max_length=4)
    card_type = serializers.CharField(required=False, allow_blank=True, max_length=30)
    upi_id = serializers.CharField(required=False, allow_blank=True, max_length=100)
    wallet_name = serializers.CharField(required=False, allow_blank=True, max_length=50)
    bank_name = serializers.CharField(required=False, allow_blank=True, max_length=100)
    notes = serializers.CharField(required=False, allow_blank=True)

    METADATA_FIELDS = (
        "transaction_id",
        "reference_number",
        "card_last_four",
        "card_type",
        "upi_id",
        "wallet_name",
        "bank_name",
        "notes",
    )

    def metadata(self) -> dict:
        return {k: v for k, v in self.validated_data.items() if k in self.METADATA_FIELDS}


class SplitLegSerializer(serializers.Serializer):
    mode = serializers.ChoiceField(choices=sorted(SPLIT_LEG_MODES))
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"))
    transaction_id = serializers.CharField(required=False, allow_blank=True, max_length=100)
    reference_number = serializers.CharField(required=False, allow_blank=True, max_length=100)
    card_last_four = serializers.CharField(required=False, allow_blank=True, max_length=4)
    upi_id = serializers.CharField(required=False, allow_blank=True, max_length=100)
    notes = serializers.CharField(required=False, allow_blank=True, max_length=255)


class SplitPaymentCommandSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    outlet_id = serializers.UUIDField(required=False, allow_null=True)
    invoice_id = serializers.UUIDField(required=False, allow_null=True)
    splits = SplitLegSerializer(many=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate_splits(self, value):
        if len(value) < 2:
            raise serializers.ValidationError("Split payment needs at least 2 entries.")
        return value


class RefundCommandSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    payment_id = serializers.UUIDField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"))
    mode = serializers.ChoiceField(choices=[c for c, _ in Refund.MODE_CHOICES], default=Refund.MODE_ORIGINAL)
    reason = serializers.CharField(max_length=255)

    def validate_reason(self, value):
        value = (value or "").strip()
        if not value:
            raise serializers.ValidationError("Refund reason is required.")
        return value
