# orders/admin.py

from django.contrib import admin

from orders.models import Invoice, KitchenTicket, KitchenTicketItem, Order, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "order_number",
        "outlet",
        "status",
        "payment_status",
        "total_amount",
        "paid_amount",
        "due_amount",
        "created_at",
    )
    list_filter = ("outlet", "status", "payment_status")
    search_fields = ("order_number",)
    readonly_fields = ("paid_amount", "due_amount", "payment_status")
    inlines = [OrderItemInline]


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ("invoice_number", "order", "grand_total", "payment_status", "customer_phone")
    search_fields = ("invoice_number", "customer_phone")


class KitchenTicketItemInline(admin.TabularInline):
    model = KitchenTicketItem
    extra = 0


@admin.register(KitchenTicket)
class KitchenTicketAdmin(admin.ModelAdmin):
    list_display = ("ticket_number", "order", "station", "status", "served_at")
    list_filter = ("status", "station")
    inlines = [KitchenTicketItemInline]
