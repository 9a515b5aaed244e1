# outlets/models/outlet.py

import uuid

from django.db import models
from django.db.models import Q


class Outlet(models.Model):
    """
    Represents a physical restaurant outlet / branch.

    GUARANTEES:
    - Outlets are stable master-data
    - code is optional, but if provided it must be unique
    - The outlet row doubles as the lock target for shift open/close
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    name = models.CharField(max_length=255)

    code = models.CharField(
        max_length=50,
        null=True,
        blank=True,
        help_text="Unique outlet code (optional). If set, must be unique.",
        db_index=True,
    )

    address = models.TextField(blank=True)
    phone = models.CharField(max_length=50, blank=True)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["code"],
                condition=Q(code__isnull=False) & ~Q(code=""),
                name="uniq_outlet_code_when_present",
            ),
        ]

    def __str__(self):
        c = (self.code or "").strip()
        if c:
            return f"{self.name} ({c})"
        return self.name

    def snapshot(self) -> dict:
        return {
            "id": str(self.id),
            "name": self.name,
            "code": self.code or "",
            "address": self.address,
            "phone": self.phone,
        }


class Floor(models.Model):
    """A floor/section inside an outlet. Floors may run their own cash shift."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    outlet = models.ForeignKey(
        Outlet,
        on_delete=models.CASCADE,
        related_name="floors",
    )
    name = models.CharField(max_length=100)
    display_order = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["outlet", "display_order", "name"]
        constraints = [
            models.UniqueConstraint(
                fields=["outlet", "name"],
                name="uniq_floor_name_per_outlet",
            ),
        ]

    def __str__(self):
        return f"{self.name} @ {self.outlet_id}"
