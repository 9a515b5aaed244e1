# notifications/admin.py

from django.contrib import admin

from notifications.models import NotificationOutbox


@admin.register(NotificationOutbox)
class NotificationOutboxAdmin(admin.ModelAdmin):
    list_display = ("id", "kind", "topic", "status", "attempts", "next_attempt_at", "sent_at")
    list_filter = ("kind", "status", "topic")
    readonly_fields = ("payload", "last_error", "created_at", "sent_at")
