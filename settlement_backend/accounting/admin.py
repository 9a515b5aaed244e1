# accounting/admin.py

from django.contrib import admin

from accounting.models import CashLedgerEntry, CashLedgerTail, DaySession

# ============================================================
# CASH LEDGER (APPEND-ONLY)
# ============================================================


@admin.register(CashLedgerEntry)
class CashLedgerEntryAdmin(admin.ModelAdmin):
    list_display = (
        "outlet",
        "sequence",
        "transaction_type",
        "amount",
        "balance_before",
        "balance_after",
        "reference_type",
        "created_at",
    )
    list_filter = ("outlet", "transaction_type")
    search_fields = ("reference_id", "description")
    ordering = ("outlet", "-sequence")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(CashLedgerTail)
class CashLedgerTailAdmin(admin.ModelAdmin):
    list_display = ("outlet", "last_sequence", "balance", "updated_at")
    readonly_fields = ("outlet", "last_sequence", "balance", "updated_at")


# ============================================================
# DAY SESSIONS
# ============================================================


@admin.register(DaySession)
class DaySessionAdmin(admin.ModelAdmin):
    list_display = (
        "outlet",
        "floor",
        "session_date",
        "status",
        "opening_cash",
        "expected_cash",
        "closing_cash",
        "cash_variance",
    )
    list_filter = ("outlet", "status", "session_date")
    readonly_fields = ("opened_at", "closed_at")
