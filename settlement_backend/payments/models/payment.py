# payments/models/payment.py

import uuid
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q

from orders.models import Invoice, Order
from outlets.models import Floor, Outlet

User = settings.AUTH_USER_MODEL


class Payment(models.Model):
    """
    One settlement attempt against an order.

    GUARANTEES:
    - total_amount == amount + tip_amount
    - Immutable once created, EXCEPT the refund fields
      (refund_amount, refunded_at, refund_reason) written by refund approval
    - payment_number is unique per outlet: PAY + YYMMDD + 4-digit daily sequence

    SPLIT PAYMENT:
    - mode == "split"; legs live in SplitPaymentEntry (related_name="split_entries")
    """

    MODE_CASH = "cash"
    MODE_CARD = "card"
    MODE_UPI = "upi"
    MODE_WALLET = "wallet"
    MODE_CREDIT = "credit"
    MODE_COMPLIMENTARY = "complimentary"
    MODE_SPLIT = "split"

    MODE_CHOICES = [
        (MODE_CASH, "Cash"),
        (MODE_CARD, "Card"),
        (MODE_UPI, "UPI"),
        (MODE_WALLET, "Wallet"),
        (MODE_CREDIT, "Credit"),
        (MODE_COMPLIMENTARY, "Complimentary"),
        (MODE_SPLIT, "Split"),
    ]

    STATUS_PENDING = "pending"
    STATUS_COMPLETED = "completed"
    STATUS_FAILED = "failed"
    STATUS_REFUNDED = "refunded"
    STATUS_CANCELLED = "cancelled"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_FAILED, "Failed"),
        (STATUS_REFUNDED, "Refunded"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    REFUND_FIELDS = {"refund_amount", "refunded_at", "refund_reason"}

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    payment_number = models.CharField(max_length=32, db_index=True)

    outlet = models.ForeignKey(Outlet, on_delete=models.PROTECT, related_name="payments")
    floor = models.ForeignKey(
        Floor,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="payments")
    invoice = models.ForeignKey(
        Invoice,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments",
    )

    mode = models.CharField(max_length=20, choices=MODE_CHOICES)

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    tip_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    total_amount = models.DecimalField(max_digits=12, decimal_places=2)

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_COMPLETED,
        db_index=True,
    )

    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    refunded_at = models.DateTimeField(null=True, blank=True)
    refund_reason = models.CharField(max_length=255, blank=True, default="")

    transaction_id = models.CharField(max_length=100, blank=True, default="")
    reference_number = models.CharField(max_length=100, blank=True, default="")
    card_last_four = models.CharField(max_length=4, blank=True, default="")
    card_type = models.CharField(max_length=30, blank=True, default="")
    upi_id = models.CharField(max_length=100, blank=True, default="")
    wallet_name = models.CharField(max_length=50, blank=True, default="")
    bank_name = models.CharField(max_length=100, blank=True, default="")
    notes = models.TextField(blank=True, default="")

    received_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="payments_received",
    )

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["order", "status"], name="idx_payment_order_status"),
            models.Index(fields=["outlet", "created_at"], name="idx_payment_outlet_created"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["outlet", "payment_number"],
                name="uniq_payment_number_per_outlet",
            ),
            models.CheckConstraint(
                condition=Q(refund_amount__gte=0) & Q(refund_amount__lte=models.F("total_amount")),
                name="chk_payment_refund_within_total",
            ),
        ]

    def __str__(self):
        return f"{self.payment_number} {self.mode} {self.total_amount} ({self.status})"

    @property
    def refundable_amount(self) -> Decimal:
        return max(Decimal("0.00"), (self.total_amount or Decimal("0.00")) - (self.refund_amount or Decimal("0.00")))

    def save(self, *args, **kwargs):
        if not self._state.adding:
            update_fields = kwargs.get("update_fields")
            if not update_fields or not set(update_fields).issubset(self.REFUND_FIELDS):
                raise ValidationError("Payments are immutable; only refund fields may change")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Payment records cannot be deleted")


class SplitPaymentEntry(models.Model):
    """One leg of a split payment. Created atomically with its parent."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    payment = models.ForeignKey(
        Payment,
        on_delete=models.PROTECT,
        related_name="split_entries",
    )

    mode = models.CharField(max_length=20, choices=Payment.MODE_CHOICES)
    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )

    transaction_id = models.CharField(max_length=100, blank=True, default="")
    reference_number = models.CharField(max_length=100, blank=True, default="")
    card_last_four = models.CharField(max_length=4, blank=True, default="")
    upi_id = models.CharField(max_length=100, blank=True, default="")
    notes = models.CharField(max_length=255, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]

    def __str__(self):
        return f"{self.payment_id}: {self.mode} {self.amount}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Split payment entries are immutable")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Split payment entries cannot be deleted")
