# payments/models/refund.py

import uuid
from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from orders.models import Order
from outlets.models import Outlet
from payments.models.payment import Payment

User = settings.AUTH_USER_MODEL


class Refund(models.Model):
    """
    Two-phase refund: created PENDING by initiate, moved to APPROVED once.

    Approval is the only step with financial effect (payment.refund_amount,
    and a negative cash ledger entry when the refund is paid in cash).
    Order paid/due amounts are never touched by refunds.
    """

    STATUS_PENDING = "pending"
    STATUS_APPROVED = "approved"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_APPROVED, "Approved"),
    ]

    MODE_CASH = "cash"
    MODE_CARD = "card"
    MODE_UPI = "upi"
    MODE_WALLET = "wallet"
    MODE_ORIGINAL = "original_mode"

    MODE_CHOICES = [
        (MODE_CASH, "Cash"),
        (MODE_CARD, "Card"),
        (MODE_UPI, "UPI"),
        (MODE_WALLET, "Wallet"),
        (MODE_ORIGINAL, "Original payment mode"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    refund_number = models.CharField(max_length=32, db_index=True)

    outlet = models.ForeignKey(Outlet, on_delete=models.PROTECT, related_name="refunds")
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="refunds")
    payment = models.ForeignKey(Payment, on_delete=models.PROTECT, related_name="refunds")

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    mode = models.CharField(max_length=20, choices=MODE_CHOICES, default=MODE_ORIGINAL)

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING,
        db_index=True,
    )

    reason = models.CharField(max_length=255)

    requested_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="refunds_requested",
    )
    approved_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="refunds_approved",
    )
    approved_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["outlet", "refund_number"],
                name="uniq_refund_number_per_outlet",
            ),
        ]

    def __str__(self):
        return f"{self.refund_number} {self.amount} ({self.status})"

    def effective_mode(self) -> str:
        """original_mode resolves to the originating payment's mode."""
        if self.mode == self.MODE_ORIGINAL:
            return self.payment.mode
        return self.mode
