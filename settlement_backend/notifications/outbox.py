# notifications/outbox.py

"""
OUTBOX: ENQUEUE + DISPATCH

enqueue_*()  -> called inside the business transaction; writes a pending row
                and, after commit, hands its id to a background worker.
dispatch_*() -> delivers due rows; never raises delivery errors.

Delivery never runs inside a transaction or on the request thread:
1. claim   one conditional UPDATE moves the row to "sending" and leases it
           until now + NOTIFICATION_CLAIM_SECONDS (attempts+1)
2. deliver publisher / receipt sender, no DB locks held
3. record  a second UPDATE stores sent / retry / failed

A worker that dies between claim and record leaves the row "sending";
once the lease expires it is claimable again.

Retry policy:
- attempts counts deliveries tried
- next_attempt_at = now + NOTIFICATION_RETRY_BASE_SECONDS * 2 ** (attempts - 1)
- at NOTIFICATION_MAX_ATTEMPTS the row is marked failed and left for inspection
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import timedelta

from django.conf import settings
from django.db import connections, transaction
from django.db.models import F
from django.utils import timezone

from notifications.models import NotificationOutbox
from notifications.publisher import TOPICS, get_event_publisher
from notifications.receipts import get_receipt_sender

logger = logging.getLogger("notifications")

DEFAULT_BATCH_SIZE = 100

CLAIMABLE_STATUSES = (NotificationOutbox.STATUS_PENDING, NotificationOutbox.STATUS_SENDING)


def _max_attempts() -> int:
    return max(1, int(getattr(settings, "NOTIFICATION_MAX_ATTEMPTS", 5)))


def _retry_base_seconds() -> float:
    return max(0.0, float(getattr(settings, "NOTIFICATION_RETRY_BASE_SECONDS", 30)))


def _claim_seconds() -> float:
    return max(1.0, float(getattr(settings, "NOTIFICATION_CLAIM_SECONDS", 300)))


def _dispatch_on_commit() -> bool:
    return bool(getattr(settings, "NOTIFICATION_DISPATCH_ON_COMMIT", True))


def retry_delay(attempts: int) -> timedelta:
    return timedelta(seconds=_retry_base_seconds() * (2 ** max(0, attempts - 1)))


# ---------------------------------------------------------------------
# Background worker (per process)
# ---------------------------------------------------------------------

_executor: ThreadPoolExecutor | None = None
_executor_lock = threading.Lock()


def _background_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            workers = max(1, int(getattr(settings, "NOTIFICATION_DISPATCH_WORKERS", 1)))
            _executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="outbox-dispatch")
        return _executor


def _dispatch_in_background(row_ids: list) -> dict[str, int] | None:
    try:
        return dispatch_ids(row_ids)
    except Exception:
        # rows stay pending/leased; dispatch_notifications picks them up
        logger.exception("Background notification dispatch failed", extra={"outbox_ids": row_ids})
        return None
    finally:
        connections.close_all()


def schedule_dispatch(row_ids) -> Future:
    return _background_executor().submit(_dispatch_in_background, list(row_ids))


# ---------------------------------------------------------------------
# Enqueue (inside the caller's transaction)
# ---------------------------------------------------------------------


def _enqueue(*, kind: str, topic: str, payload: dict) -> NotificationOutbox:
    row = NotificationOutbox.objects.create(
        kind=kind,
        topic=topic,
        payload=payload,
        max_attempts=_max_attempts(),
    )
    if _dispatch_on_commit():
        row_id = row.pk
        transaction.on_commit(lambda: schedule_dispatch([row_id]), robust=True)
    return row


def enqueue_event(*, topic: str, payload: dict) -> NotificationOutbox:
    if topic not in TOPICS:
        raise ValueError(f"Unknown event topic: {topic}")
    return _enqueue(kind=NotificationOutbox.KIND_EVENT, topic=topic, payload=payload)


def enqueue_receipt(*, phone_number: str, invoice_snapshot: dict, outlet_snapshot: dict) -> NotificationOutbox:
    return _enqueue(
        kind=NotificationOutbox.KIND_RECEIPT,
        topic="receipt",
        payload={
            "phone_number": phone_number,
            "invoice": invoice_snapshot,
            "outlet": outlet_snapshot,
        },
    )


# ---------------------------------------------------------------------
# Dispatch (background worker / dispatch_notifications)
# ---------------------------------------------------------------------


def _deliver(row: NotificationOutbox) -> None:
    payload = row.payload or {}

    if row.kind == NotificationOutbox.KIND_EVENT:
        get_event_publisher().publish(row.topic, payload)
        return

    if row.kind == NotificationOutbox.KIND_RECEIPT:
        get_receipt_sender().send_receipt(
            payload.get("phone_number") or "",
            payload.get("invoice") or {},
            payload.get("outlet") or {},
        )
        return

    raise ValueError(f"Unknown notification kind: {row.kind}")


def _claim(row_id, *, now) -> NotificationOutbox | None:
    claimed = NotificationOutbox.objects.filter(
        pk=row_id,
        status__in=CLAIMABLE_STATUSES,
        next_attempt_at__lte=now,
        attempts__lt=F("max_attempts"),
    ).update(
        status=NotificationOutbox.STATUS_SENDING,
        attempts=F("attempts") + 1,
        next_attempt_at=now + timedelta(seconds=_claim_seconds()),
    )
    if not claimed:
        return None
    return NotificationOutbox.objects.get(pk=row_id)


def _record(row: NotificationOutbox, **fields) -> None:
    NotificationOutbox.objects.filter(pk=row.pk, status=NotificationOutbox.STATUS_SENDING).update(**fields)


def dispatch_one(row_id) -> str | None:
    """
    Try to deliver one due row. Returns the row's resulting status,
    or None when the row is not due (already sent, failed, or claimed).
    """
    row = _claim(row_id, now=timezone.now())
    if row is None:
        return None

    try:
        _deliver(row)
    except Exception as exc:
        error = f"{type(exc).__name__}: {exc}"[:2000]
        if row.attempts >= row.max_attempts:
            logger.exception(
                "Notification delivery failed permanently",
                extra={"outbox_id": row.pk, "topic": row.topic, "attempts": row.attempts},
            )
            _record(row, status=NotificationOutbox.STATUS_FAILED, last_error=error)
            return NotificationOutbox.STATUS_FAILED

        next_attempt_at = timezone.now() + retry_delay(row.attempts)
        logger.warning(
            "Notification delivery failed, will retry",
            extra={
                "outbox_id": row.pk,
                "topic": row.topic,
                "attempts": row.attempts,
                "next_attempt_at": next_attempt_at.isoformat(),
                "error": error,
            },
        )
        _record(
            row,
            status=NotificationOutbox.STATUS_PENDING,
            next_attempt_at=next_attempt_at,
            last_error=error,
        )
        return NotificationOutbox.STATUS_PENDING

    _record(row, status=NotificationOutbox.STATUS_SENT, sent_at=timezone.now(), last_error="")
    return NotificationOutbox.STATUS_SENT


def dispatch_ids(row_ids) -> dict[str, int]:
    counts = {"sent": 0, "retrying": 0, "failed": 0, "skipped": 0}
    for row_id in row_ids:
        result = dispatch_one(row_id)
        if result == NotificationOutbox.STATUS_SENT:
            counts["sent"] += 1
        elif result == NotificationOutbox.STATUS_PENDING:
            counts["retrying"] += 1
        elif result == NotificationOutbox.STATUS_FAILED:
            counts["failed"] += 1
        else:
            counts["skipped"] += 1
    return counts


def fail_abandoned(*, now=None) -> int:
    """Leased rows whose worker died on the last allowed attempt."""
    now = now or timezone.now()
    failed = NotificationOutbox.objects.filter(
        status=NotificationOutbox.STATUS_SENDING,
        next_attempt_at__lte=now,
        attempts__gte=F("max_attempts"),
    ).update(
        status=NotificationOutbox.STATUS_FAILED,
        last_error="Delivery abandoned after the last attempt",
    )
    if failed:
        logger.error("Abandoned notifications marked failed", extra={"count": failed})
    return failed


def dispatch_due(*, limit: int = DEFAULT_BATCH_SIZE) -> dict[str, int]:
    now = timezone.now()
    fail_abandoned(now=now)

    due_ids = list(
        NotificationOutbox.objects.filter(
            status__in=CLAIMABLE_STATUSES,
            next_attempt_at__lte=now,
        )
        .order_by("next_attempt_at", "id")
        .values_list("id", flat=True)[:limit]
    )
    counts = dispatch_ids(due_ids)
    if due_ids:
        logger.info("Notification batch dispatched", extra={"due": len(due_ids), **counts})
    return counts
