"""
======================================================
PATH: accounting/migrations/0001_initial.py
======================================================
MIGRATION: CREATE CashLedgerEntry, CashLedgerTail, DaySession

Purpose:
- Append-only cash ledger with a per-outlet tail row (lock target)
- Day sessions (shifts) with one-open-session partial unique constraints
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        ("outlets", "0001_initial"),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="CashLedgerEntry",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("sequence", models.PositiveBigIntegerField()),
                (
                    "transaction_type",
                    models.CharField(
                        choices=[
                            ("opening", "Opening"),
                            ("sale", "Sale"),
                            ("cash_in", "Cash in"),
                            ("cash_out", "Cash out"),
                            ("refund", "Refund"),
                            ("expense", "Expense"),
                            ("closing", "Closing"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Signed amount: positive adds cash to the drawer, negative removes it",
                        max_digits=14,
                    ),
                ),
                ("balance_before", models.DecimalField(decimal_places=2, max_digits=14)),
                ("balance_after", models.DecimalField(decimal_places=2, max_digits=14)),
                ("reference_type", models.CharField(blank=True, default="", max_length=30)),
                ("reference_id", models.CharField(blank=True, default="", max_length=64)),
                ("description", models.CharField(blank=True, default="", max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "created_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="cash_ledger_entries",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "floor",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="cash_ledger_entries",
                        to="outlets.floor",
                    ),
                ),
                (
                    "outlet",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="cash_ledger_entries",
                        to="outlets.outlet",
                    ),
                ),
            ],
            options={
                "verbose_name": "Cash Ledger Entry",
                "verbose_name_plural": "Cash Ledger Entries",
                "ordering": ["outlet", "sequence"],
                "indexes": [
                    models.Index(fields=["outlet", "created_at"], name="idx_cashledger_outlet_created"),
                    models.Index(fields=["outlet", "transaction_type"], name="idx_cashledger_outlet_type"),
                    models.Index(fields=["reference_type", "reference_id"], name="idx_cashledger_reference"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("outlet", "sequence"), name="uniq_cash_ledger_outlet_sequence"),
                ],
            },
        ),
        migrations.CreateModel(
            name="CashLedgerTail",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("last_sequence", models.PositiveBigIntegerField(default=0)),
                ("balance", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "outlet",
                    models.OneToOneField(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="cash_ledger_tail",
                        to="outlets.outlet",
                    ),
                ),
            ],
            options={
                "verbose_name": "Cash Ledger Tail",
            },
        ),
        migrations.CreateModel(
            name="DaySession",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("session_date", models.DateField(default=django.utils.timezone.localdate)),
                (
                    "status",
                    models.CharField(
                        choices=[("open", "Open"), ("closed", "Closed")],
                        db_index=True,
                        default="open",
                        max_length=10,
                    ),
                ),
                ("opening_cash", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("closing_cash", models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True)),
                ("expected_cash", models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True)),
                ("cash_variance", models.DecimalField(blank=True, decimal_places=2, max_digits=14, null=True)),
                ("total_sales", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=14)),
                ("total_orders", models.PositiveIntegerField(default=0)),
                ("opened_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("closed_at", models.DateTimeField(blank=True, null=True)),
                ("variance_notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "closed_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="day_sessions_closed",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "floor",
                    models.ForeignKey(
                        blank=True,
                        help_text="Set for floor-level shifts; NULL means the whole outlet.",
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="day_sessions",
                        to="outlets.floor",
                    ),
                ),
                (
                    "opened_by",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="day_sessions_opened",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "outlet",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="day_sessions",
                        to="outlets.outlet",
                    ),
                ),
            ],
            options={
                "verbose_name": "Day Session",
                "verbose_name_plural": "Day Sessions",
                "ordering": ["-session_date", "-opened_at"],
                "indexes": [
                    models.Index(fields=["outlet", "session_date"], name="idx_day_session_outlet_date"),
                    models.Index(fields=["outlet", "status"], name="idx_day_session_outlet_status"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("floor__isnull", True)),
                        fields=("outlet", "session_date"),
                        name="uniq_day_session_outlet_date",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("floor__isnull", False)),
                        fields=("outlet", "floor", "session_date"),
                        name="uniq_day_session_outlet_floor_date",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("status", "open"), ("floor__isnull", True)),
                        fields=("outlet",),
                        name="uniq_open_day_session_per_outlet",
                    ),
                    models.UniqueConstraint(
                        condition=models.Q(("status", "open"), ("floor__isnull", False)),
                        fields=("outlet", "floor"),
                        name="uniq_open_day_session_per_floor",
                    ),
                ],
            },
        ),
    ]
