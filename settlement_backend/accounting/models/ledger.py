# accounting/models/ledger.py

"""
======================================================
PATH: accounting/models/ledger.py
======================================================
CASH LEDGER MODELS

CashLedgerEntry
    One balance-affecting cash movement for an outlet.

CashLedgerTail
    One row per outlet holding the running balance and the last sequence
    number. Every append locks this row first, so appends for one outlet
    are serialized and the balance chain can never fork.

Guarantees:
- Entries are immutable once created (no updates, no deletes)
- amount is signed; balance_after == balance_before + amount
- (outlet, sequence) is unique; sequence n chains from sequence n-1
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models

from outlets.models import Floor, Outlet

User = settings.AUTH_USER_MODEL


class CashLedgerEntry(models.Model):
    TYPE_OPENING = "opening"
    TYPE_SALE = "sale"
    TYPE_CASH_IN = "cash_in"
    TYPE_CASH_OUT = "cash_out"
    TYPE_REFUND = "refund"
    TYPE_EXPENSE = "expense"
    TYPE_CLOSING = "closing"

    TRANSACTION_TYPES = [
        (TYPE_OPENING, "Opening"),
        (TYPE_SALE, "Sale"),
        (TYPE_CASH_IN, "Cash in"),
        (TYPE_CASH_OUT, "Cash out"),
        (TYPE_REFUND, "Refund"),
        (TYPE_EXPENSE, "Expense"),
        (TYPE_CLOSING, "Closing"),
    ]

    INFLOW_TYPES = {TYPE_SALE, TYPE_CASH_IN}
    OUTFLOW_TYPES = {TYPE_CASH_OUT, TYPE_REFUND, TYPE_EXPENSE}
    VALID_TYPES = {choice for choice, _ in TRANSACTION_TYPES}

    outlet = models.ForeignKey(
        Outlet,
        on_delete=models.PROTECT,
        related_name="cash_ledger_entries",
    )
    floor = models.ForeignKey(
        Floor,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="cash_ledger_entries",
    )

    sequence = models.PositiveBigIntegerField()

    transaction_type = models.CharField(max_length=20, choices=TRANSACTION_TYPES)

    amount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        help_text="Signed amount: positive adds cash to the drawer, negative removes it",
    )
    balance_before = models.DecimalField(max_digits=14, decimal_places=2)
    balance_after = models.DecimalField(max_digits=14, decimal_places=2)

    reference_type = models.CharField(max_length=30, blank=True, default="")
    reference_id = models.CharField(max_length=64, blank=True, default="")
    description = models.CharField(max_length=255, blank=True, default="")

    created_by = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="cash_ledger_entries",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Cash Ledger Entry"
        verbose_name_plural = "Cash Ledger Entries"
        ordering = ["outlet", "sequence"]
        indexes = [
            models.Index(fields=["outlet", "created_at"], name="idx_cashledger_outlet_created"),
            models.Index(fields=["outlet", "transaction_type"], name="idx_cashledger_outlet_type"),
            models.Index(fields=["reference_type", "reference_id"], name="idx_cashledger_reference"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["outlet", "sequence"],
                name="uniq_cash_ledger_outlet_sequence",
            ),
        ]

    def __str__(self):
        return f"#{self.sequence} {self.transaction_type} {self.amount} -> {self.balance_after}"

    def clean(self):
        if self.amount is None:
            raise ValidationError("Cash ledger amount is required")

        if self.transaction_type in self.INFLOW_TYPES and self.amount <= 0:
            raise ValidationError(f"{self.transaction_type} entries must be positive")

        if self.transaction_type in self.OUTFLOW_TYPES and self.amount >= 0:
            raise ValidationError(f"{self.transaction_type} entries must be negative")

        if self.transaction_type == self.TYPE_OPENING and self.amount < 0:
            raise ValidationError("opening entries cannot be negative")

        if self.balance_after != self.balance_before + self.amount:
            raise ValidationError("balance_after must equal balance_before + amount")

    def save(self, *args, **kwargs):
        if self.pk:
            raise ValidationError("CashLedgerEntry records are immutable and cannot be modified")

        # (outlet, sequence) uniqueness is enforced by the database.
        self.full_clean(validate_constraints=False)
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("CashLedgerEntry records are immutable and cannot be deleted")


class CashLedgerTail(models.Model):
    outlet = models.OneToOneField(
        Outlet,
        on_delete=models.PROTECT,
        related_name="cash_ledger_tail",
    )
    last_sequence = models.PositiveBigIntegerField(default=0)
    balance = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))

    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Cash Ledger Tail"

    def __str__(self):
        return f"{self.outlet_id} @ #{self.last_sequence} = {self.balance}"
