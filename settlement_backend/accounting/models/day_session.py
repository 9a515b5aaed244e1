# accounting/models/day_session.py

"""
======================================================
PATH: accounting/models/day_session.py
======================================================
DAY SESSION (SHIFT) MODEL

A per-outlet (or per-outlet-per-floor) cash period bounded by open and close.

Hard rules:
- At most one OPEN session per outlet (floor = NULL) or per outlet+floor.
- One row per outlet(+floor)+date; closing and reopening reuses the row.
- Closing fields are written only by the shift manager at close time.
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from outlets.models import Floor, Outlet

User = settings.AUTH_USER_MODEL


class DaySession(models.Model):
    STATUS_OPEN = "open"
    STATUS_CLOSED = "closed"

    STATUS_CHOICES = [
        (STATUS_OPEN, "Open"),
        (STATUS_CLOSED, "Closed"),
    ]

    outlet = models.ForeignKey(
        Outlet,
        on_delete=models.PROTECT,
        related_name="day_sessions",
    )
    floor = models.ForeignKey(
        Floor,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="day_sessions",
        help_text="Set for floor-level shifts; NULL means the whole outlet.",
    )

    session_date = models.DateField(default=timezone.localdate)

    status = models.CharField(
        max_length=10,
        choices=STATUS_CHOICES,
        default=STATUS_OPEN,
        db_index=True,
    )

    opening_cash = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    closing_cash = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    expected_cash = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)
    cash_variance = models.DecimalField(max_digits=14, decimal_places=2, null=True, blank=True)

    total_sales = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total_orders = models.PositiveIntegerField(default=0)

    opened_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="day_sessions_opened",
    )
    opened_at = models.DateTimeField(default=timezone.now)

    closed_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="day_sessions_closed",
    )
    closed_at = models.DateTimeField(null=True, blank=True)

    variance_notes = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-session_date", "-opened_at"]
        indexes = [
            models.Index(fields=["outlet", "session_date"], name="idx_day_session_outlet_date"),
            models.Index(fields=["outlet", "status"], name="idx_day_session_outlet_status"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["outlet", "session_date"],
                condition=Q(floor__isnull=True),
                name="uniq_day_session_outlet_date",
            ),
            models.UniqueConstraint(
                fields=["outlet", "floor", "session_date"],
                condition=Q(floor__isnull=False),
                name="uniq_day_session_outlet_floor_date",
            ),
            models.UniqueConstraint(
                fields=["outlet"],
                condition=Q(status="open", floor__isnull=True),
                name="uniq_open_day_session_per_outlet",
            ),
            models.UniqueConstraint(
                fields=["outlet", "floor"],
                condition=Q(status="open", floor__isnull=False),
                name="uniq_open_day_session_per_floor",
            ),
        ]
        verbose_name = "Day Session"
        verbose_name_plural = "Day Sessions"

    def __str__(self):
        scope = f"floor {self.floor_id}" if self.floor_id else "outlet"
        return f"DaySession {self.session_date} ({scope}, {self.status})"

    @property
    def is_open(self) -> bool:
        return self.status == self.STATUS_OPEN
