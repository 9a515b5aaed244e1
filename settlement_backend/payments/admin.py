# payments/admin.py

from django.contrib import admin

from payments.models import DailySequence, Payment, Refund, SplitPaymentEntry


class SplitPaymentEntryInline(admin.TabularInline):
    model = SplitPaymentEntry
    extra = 0
    can_delete = False
    readonly_fields = ("mode", "amount", "transaction_id", "reference_number", "card_last_four", "upi_id", "notes")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("payment_number", "outlet", "order", "mode", "total_amount", "refund_amount", "status", "created_at")
    list_filter = ("outlet", "mode", "status")
    search_fields = ("payment_number", "transaction_id", "reference_number")
    inlines = [SplitPaymentEntryInline]

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    list_display = ("refund_number", "outlet", "payment", "amount", "mode", "status", "approved_at")
    list_filter = ("outlet", "status", "mode")
    search_fields = ("refund_number", "reason")
    readonly_fields = ("approved_by", "approved_at")


@admin.register(DailySequence)
class DailySequenceAdmin(admin.ModelAdmin):
    list_display = ("outlet", "name", "sequence_date", "last_value")
    list_filter = ("name",)
