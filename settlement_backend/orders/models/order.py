# orders/models/order.py

import uuid
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q

from outlets.models import Outlet, Table, TableSession

User = settings.AUTH_USER_MODEL


class Order(models.Model):
    """
    A dine-in / takeaway order as seen by settlement.

    GUARANTEES:
    - total_amount is computed upstream (pricing, tax) and consumed as-is
    - paid_amount / due_amount / payment_status are written ONLY by the
      payment processor inside the settlement transaction
    - due_amount == max(0, total_amount - paid_amount)
    """

    STATUS_PENDING = "pending"
    STATUS_CONFIRMED = "confirmed"
    STATUS_PREPARING = "preparing"
    STATUS_READY = "ready"
    STATUS_SERVED = "served"
    STATUS_BILLED = "billed"
    STATUS_PAID = "paid"
    STATUS_COMPLETED = "completed"
    STATUS_CANCELLED = "cancelled"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_CONFIRMED, "Confirmed"),
        (STATUS_PREPARING, "Preparing"),
        (STATUS_READY, "Ready"),
        (STATUS_SERVED, "Served"),
        (STATUS_BILLED, "Billed"),
        (STATUS_PAID, "Paid"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    SETTLED_STATUSES = {STATUS_PAID, STATUS_COMPLETED}

    PAYMENT_PENDING = "pending"
    PAYMENT_PARTIAL = "partial"
    PAYMENT_COMPLETED = "completed"

    PAYMENT_STATUS_CHOICES = [
        (PAYMENT_PENDING, "Pending"),
        (PAYMENT_PARTIAL, "Partial"),
        (PAYMENT_COMPLETED, "Completed"),
    ]

    TYPE_DINE_IN = "dine_in"
    TYPE_TAKEAWAY = "takeaway"
    TYPE_DELIVERY = "delivery"

    ORDER_TYPE_CHOICES = [
        (TYPE_DINE_IN, "Dine in"),
        (TYPE_TAKEAWAY, "Takeaway"),
        (TYPE_DELIVERY, "Delivery"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    order_number = models.CharField(max_length=40, db_index=True)

    outlet = models.ForeignKey(Outlet, on_delete=models.PROTECT, related_name="orders")

    order_type = models.CharField(
        max_length=20,
        choices=ORDER_TYPE_CHOICES,
        default=TYPE_DINE_IN,
    )

    table = models.ForeignKey(
        Table,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
    )
    table_session = models.ForeignKey(
        TableSession,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
    )

    total_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    paid_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))
    due_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING,
        db_index=True,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PAYMENT_STATUS_CHOICES,
        default=PAYMENT_PENDING,
        db_index=True,
    )

    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders_created",
    )

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["outlet", "created_at"], name="idx_order_outlet_created"),
            models.Index(fields=["outlet", "status"], name="idx_order_outlet_status"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(total_amount__gte=0) & Q(paid_amount__gte=0) & Q(due_amount__gte=0),
                name="chk_order_amounts_non_negative",
            ),
        ]

    def __str__(self):
        return f"Order {self.order_number} ({self.status})"

    @property
    def is_settled(self) -> bool:
        return self.status in self.SETTLED_STATUSES or self.payment_status == self.PAYMENT_COMPLETED

    def save(self, *args, **kwargs):
        # New orders start fully due unless the caller says otherwise.
        if self._state.adding and not self.due_amount and not self.paid_amount:
            self.due_amount = self.total_amount
        super().save(*args, **kwargs)


class OrderItem(models.Model):
    STATUS_PENDING = "pending"
    STATUS_PREPARING = "preparing"
    STATUS_READY = "ready"
    STATUS_SERVED = "served"
    STATUS_CANCELLED = "cancelled"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_PREPARING, "Preparing"),
        (STATUS_READY, "Ready"),
        (STATUS_SERVED, "Served"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    TERMINAL_STATUSES = {STATUS_SERVED, STATUS_CANCELLED}

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    name = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(default=1)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING,
        db_index=True,
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]

    def __str__(self):
        return f"{self.quantity} x {self.name} ({self.status})"
