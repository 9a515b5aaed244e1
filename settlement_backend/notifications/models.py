# notifications/models.py

"""
NOTIFICATION OUTBOX

Rows are written inside the business transaction that produced them and
delivered only after it commits (on_commit hook + dispatch_notifications).

Lifecycle:
    pending --claimed--> sending (attempts+1, next_attempt_at = lease expiry)
    sending --deliver ok--> sent
    sending --deliver fails--> pending (next_attempt_at pushed back)
    sending --attempts exhausted--> failed
    sending --lease expired--> claimable again (worker died mid-delivery)
"""

from __future__ import annotations

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone


class NotificationOutbox(models.Model):
    KIND_EVENT = "event"
    KIND_RECEIPT = "receipt"

    KIND_CHOICES = [
        (KIND_EVENT, "Event"),
        (KIND_RECEIPT, "Receipt"),
    ]

    STATUS_PENDING = "pending"
    STATUS_SENDING = "sending"
    STATUS_SENT = "sent"
    STATUS_FAILED = "failed"

    STATUS_CHOICES = [
        (STATUS_PENDING, "Pending"),
        (STATUS_SENDING, "Sending"),
        (STATUS_SENT, "Sent"),
        (STATUS_FAILED, "Failed"),
    ]

    kind = models.CharField(max_length=20, choices=KIND_CHOICES)
    topic = models.CharField(max_length=50, blank=True, default="")
    payload = models.JSONField(default=dict, encoder=DjangoJSONEncoder)

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING,
        db_index=True,
    )
    attempts = models.PositiveIntegerField(default=0)
    max_attempts = models.PositiveIntegerField(default=5)
    next_attempt_at = models.DateTimeField(default=timezone.now, db_index=True)
    last_error = models.TextField(blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    sent_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["status", "next_attempt_at"], name="idx_outbox_status_due"),
        ]
        verbose_name = "Notification"
        verbose_name_plural = "Notification outbox"

    def __str__(self):
        label = self.topic or self.kind
        return f"{label} #{self.pk} ({self.status}, attempts={self.attempts})"
