# outlets/models/table.py

"""
TABLES, TABLE SESSIONS, TABLE MERGES

Only the fields that settlement reads or writes live here.
Table/floor CRUD is handled by the floor-plan service, not this app.
"""

import uuid

from django.conf import settings
from django.db import models
from django.db.models import Q

from outlets.models.outlet import Floor, Outlet

User = settings.AUTH_USER_MODEL


class Table(models.Model):
    STATUS_AVAILABLE = "available"
    STATUS_OCCUPIED = "occupied"
    STATUS_RESERVED = "reserved"
    STATUS_BILLING = "billing"
    STATUS_CLEANING = "cleaning"
    STATUS_BLOCKED = "blocked"
    STATUS_MERGED = "merged"

    STATUS_CHOICES = [
        (STATUS_AVAILABLE, "Available"),
        (STATUS_OCCUPIED, "Occupied"),
        (STATUS_RESERVED, "Reserved"),
        (STATUS_BILLING, "Billing"),
        (STATUS_CLEANING, "Cleaning"),
        (STATUS_BLOCKED, "Blocked"),
        (STATUS_MERGED, "Merged"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    outlet = models.ForeignKey(Outlet, on_delete=models.CASCADE, related_name="tables")
    floor = models.ForeignKey(
        Floor,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="tables",
    )

    number = models.CharField(max_length=20)
    capacity = models.PositiveIntegerField(default=4)
    min_capacity = models.PositiveIntegerField(default=1)

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_AVAILABLE,
        db_index=True,
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["outlet", "number"]
        constraints = [
            models.UniqueConstraint(
                fields=["outlet", "number"],
                name="uniq_table_number_per_outlet",
            ),
            models.CheckConstraint(
                condition=Q(capacity__gte=1),
                name="chk_table_capacity_gte_1",
            ),
        ]

    def __str__(self):
        return f"Table {self.number} ({self.status})"


class TableSession(models.Model):
    STATUS_ACTIVE = "active"
    STATUS_BILLING = "billing"
    STATUS_COMPLETED = "completed"
    STATUS_CANCELLED = "cancelled"

    STATUS_CHOICES = [
        (STATUS_ACTIVE, "Active"),
        (STATUS_BILLING, "Billing"),
        (STATUS_COMPLETED, "Completed"),
        (STATUS_CANCELLED, "Cancelled"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    table = models.ForeignKey(Table, on_delete=models.CASCADE, related_name="sessions")
    guest_count = models.PositiveIntegerField(default=1)

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_ACTIVE,
        db_index=True,
    )

    started_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="started_table_sessions",
    )
    started_at = models.DateTimeField(auto_now_add=True)
    ended_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-started_at"]

    def __str__(self):
        return f"Session {self.id} on {self.table_id} ({self.status})"


class TableMerge(models.Model):
    """
    Records that `merged_table` was joined into `primary_table`.

    An active merge has unmerged_at = NULL. The merged table's capacity at merge
    time is kept so the primary's capacity can be restored on unmerge.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    primary_table = models.ForeignKey(
        Table,
        on_delete=models.CASCADE,
        related_name="merges_as_primary",
    )
    merged_table = models.ForeignKey(
        Table,
        on_delete=models.CASCADE,
        related_name="merges_as_merged",
    )
    table_session = models.ForeignKey(
        TableSession,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="merges",
    )

    merged_capacity = models.PositiveIntegerField(default=0)

    merged_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="table_merges_made",
    )
    merged_at = models.DateTimeField(auto_now_add=True)

    unmerged_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="table_merges_undone",
    )
    unmerged_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-merged_at"]
        indexes = [
            models.Index(fields=["primary_table", "unmerged_at"], name="idx_table_merge_active"),
        ]

    @property
    def is_active(self) -> bool:
        return self.unmerged_at is None

    def __str__(self):
        return f"Merge {self.merged_table_id} -> {self.primary_table_id}"
