# orders/models/kitchen.py

import uuid

from django.conf import settings
from django.db import models

from orders.models.order import Order, OrderItem
from outlets.models import Outlet

User = settings.AUTH_USER_MODEL


class KitchenTicket(models.Model):
    """Kitchen order ticket (KOT) sent to a station."""

    STATUS_PENDING = "pending"
    STATUS_ACCEPTED = "accepted"
    STATUS_PREPARING = "preparing"
    STATUS_READY = "ready"
    STATUS_SERVED = "served"
    STATUS_CANCELLED = "cancelled"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_ACCEPTED, "Accepted"),
        (STATUS_PREPARING, "Preparing"),
        (STATUS_READY, "Ready"),
        (STATUS_SERVED, "Served"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    TERMINAL_STATUSES = {STATUS_SERVED, STATUS_CANCELLED}

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    outlet = models.ForeignKey(Outlet, on_delete=models.PROTECT, related_name="kitchen_tickets")
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="kitchen_tickets")

    ticket_number = models.CharField(max_length=40)
    station = models.CharField(max_length=50, default="kitchen")

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING,
        db_index=True,
    )

    served_at = models.DateTimeField(null=True, blank=True)
    served_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="kitchen_tickets_served",
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]

    def __str__(self):
        return f"KOT {self.ticket_number} ({self.status})"

    def snapshot(self) -> dict:
        return {
            "id": str(self.id),
            "ticket_number": self.ticket_number,
            "station": self.station,
            "status": self.status,
            "served_at": self.served_at.isoformat() if self.served_at else None,
        }


class KitchenTicketItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    ticket = models.ForeignKey(KitchenTicket, on_delete=models.CASCADE, related_name="items")
    order_item = models.ForeignKey(
        OrderItem,
        on_delete=models.CASCADE,
        related_name="kitchen_ticket_items",
    )
    quantity = models.PositiveIntegerField(default=1)

    status = models.CharField(
        max_length=20,
        choices=KitchenTicket.STATUS_CHOICES,
        default=KitchenTicket.STATUS_PENDING,
    )

    class Meta:
        ordering = ["ticket", "id"]

    def __str__(self):
        return f"{self.ticket_id}: {self.order_item_id} ({self.status})"
