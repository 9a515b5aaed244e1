# orders/models/invoice.py

import uuid
from decimal import Decimal

from django.db import models

from orders.models.order import Order


class Invoice(models.Model):
    """
    Bill issued for an order. Settlement only updates payment_status.
    customer_phone is where the receipt goes once the order is fully paid.
    """

    PAYMENT_PENDING = "pending"
    PAYMENT_PARTIAL = "partial"
    PAYMENT_PAID = "paid"

    PAYMENT_STATUS_CHOICES = [
        (PAYMENT_PENDING, "Pending"),
        (PAYMENT_PARTIAL, "Partial"),
        (PAYMENT_PAID, "Paid"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="invoices")

    invoice_number = models.CharField(max_length=40, unique=True)

    subtotal = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    tax_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    grand_total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    payment_status = models.CharField(
        max_length=20,
        choices=PAYMENT_STATUS_CHOICES,
        default=PAYMENT_PENDING,
    )

    customer_name = models.CharField(max_length=150, blank=True, default="")
    customer_phone = models.CharField(max_length=30, blank=True, default="")

    is_cancelled = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"Invoice {self.invoice_number} ({self.payment_status})"

    def snapshot(self) -> dict:
        return {
            "id": str(self.id),
            "invoice_number": self.invoice_number,
            "order_id": str(self.order_id),
            "subtotal": str(self.subtotal),
            "tax_amount": str(self.tax_amount),
            "grand_total": str(self.grand_total),
            "payment_status": self.payment_status,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
        }
