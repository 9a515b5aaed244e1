# notifications/tests/test_outbox.py

"""
Outbox delivery: post-commit hand-off to the background worker, claim leases, retry with backoff, permanent failure,
receipt sender behaviour, and the dispatch_notifications command.

Run with:
    python manage.py test notifications -v 2
"""

import json
import threading
from datetime import timedelta
from io import BytesIO, StringIO
from unittest import mock
from urllib.error import HTTPError

from django.core.management import call_command
from django.core.management.base import CommandError
from django.db import transaction
from django.test import SimpleTestCase, TestCase, TransactionTestCase, override_settings
from django.utils import timezone

from notifications import outbox
from notifications.models import NotificationOutbox
from notifications.publisher import TOPIC_ORDER_UPDATE, EventPublisher
from notifications.receipts import (
    ReceiptDeliveryError,
    WhatsAppReceiptSender,
    normalize_phone,
    render_receipt_text,
)

TEST_PUBLISHER = "notifications.tests.test_outbox.RecordingPublisher"
FAILING_PUBLISHER = "notifications.tests.test_outbox.FailingPublisher"


class RecordingPublisher(EventPublisher):
    published = []

    def publish(self, topic, payload):
        RecordingPublisher.published.append((topic, payload))


class FailingPublisher(EventPublisher):
    def publish(self, topic, payload):
        raise ConnectionError("socket gateway down")


def _make_due(row):
    NotificationOutbox.objects.filter(pk=row.pk).update(next_attempt_at=timezone.now() - timedelta(seconds=1))


@override_settings(
    EVENT_PUBLISHER_BACKEND=TEST_PUBLISHER,
    NOTIFICATION_DISPATCH_ON_COMMIT=False,
    NOTIFICATION_MAX_ATTEMPTS=3,
    NOTIFICATION_RETRY_BASE_SECONDS=10,
)
class OutboxDispatchTests(TestCase):
    def setUp(self):
        RecordingPublisher.published = []

    def test_enqueue_rejects_unknown_topic(self):
        with self.assertRaises(ValueError):
            outbox.enqueue_event(topic="pizza:ready", payload={})

    def test_dispatch_delivers_and_marks_sent(self):
        row = outbox.enqueue_event(topic=TOPIC_ORDER_UPDATE, payload={"order_id": "o-1"})

        self.assertEqual(outbox.dispatch_one(row.pk), NotificationOutbox.STATUS_SENT)

        row.refresh_from_db()
        self.assertEqual(row.status, NotificationOutbox.STATUS_SENT)
        self.assertEqual(row.attempts, 1)
        self.assertIsNotNone(row.sent_at)
        self.assertEqual(RecordingPublisher.published, [(TOPIC_ORDER_UPDATE, {"order_id": "o-1"})])

        # already sent: nothing to do
        self.assertIsNone(outbox.dispatch_one(row.pk))
        self.assertEqual(len(RecordingPublisher.published), 1)

    @override_settings(EVENT_PUBLISHER_BACKEND=FAILING_PUBLISHER)
    def test_failures_back_off_then_fail_permanently(self):
        row = outbox.enqueue_event(topic=TOPIC_ORDER_UPDATE, payload={})
        self.assertEqual(row.max_attempts, 3)

        before = timezone.now()
        self.assertEqual(outbox.dispatch_one(row.pk), NotificationOutbox.STATUS_PENDING)
        row.refresh_from_db()
        self.assertEqual(row.attempts, 1)
        self.assertIn("ConnectionError", row.last_error)
        self.assertGreaterEqual(row.next_attempt_at, before + timedelta(seconds=10))

        # not due yet
        self.assertIsNone(outbox.dispatch_one(row.pk))

        _make_due(row)
        before = timezone.now()
        self.assertEqual(outbox.dispatch_one(row.pk), NotificationOutbox.STATUS_PENDING)
        row.refresh_from_db()
        self.assertEqual(row.attempts, 2)
        self.assertGreaterEqual(row.next_attempt_at, before + timedelta(seconds=20))

        _make_due(row)
        self.assertEqual(outbox.dispatch_one(row.pk), NotificationOutbox.STATUS_FAILED)
        row.refresh_from_db()
        self.assertEqual(row.status, NotificationOutbox.STATUS_FAILED)
        self.assertEqual(row.attempts, 3)

        _make_due(row)
        self.assertIsNone(outbox.dispatch_one(row.pk))

    def test_retry_delay_doubles(self):
        self.assertEqual(outbox.retry_delay(1), timedelta(seconds=10))
        self.assertEqual(outbox.retry_delay(2), timedelta(seconds=20))
        self.assertEqual(outbox.retry_delay(4), timedelta(seconds=80))

    def test_dispatch_due_only_picks_due_rows(self):
        due = outbox.enqueue_event(topic=TOPIC_ORDER_UPDATE, payload={"n": 1})
        later = outbox.enqueue_event(topic=TOPIC_ORDER_UPDATE, payload={"n": 2})
        NotificationOutbox.objects.filter(pk=later.pk).update(next_attempt_at=timezone.now() + timedelta(hours=1))

        counts = outbox.dispatch_due()

        self.assertEqual(counts["sent"], 1)
        due.refresh_from_db()
        later.refresh_from_db()
        self.assertEqual(due.status, NotificationOutbox.STATUS_SENT)
        self.assertEqual(later.status, NotificationOutbox.STATUS_PENDING)

    def test_unconfigured_receipt_is_skipped_not_retried(self):
        row = outbox.enqueue_receipt(
            phone_number="9876543210",
            invoice_snapshot={"id": "inv-1", "invoice_number": "INV1"},
            outlet_snapshot={"name": "Main"},
        )
        with override_settings(WHATSAPP={}):
            self.assertEqual(outbox.dispatch_one(row.pk), NotificationOutbox.STATUS_SENT)

    def test_command_runs_one_batch(self):
        outbox.enqueue_event(topic=TOPIC_ORDER_UPDATE, payload={})
        out = StringIO()

        call_command("dispatch_notifications", "--limit", "10", stdout=out)

        self.assertIn("sent=1", out.getvalue())
        self.assertFalse(NotificationOutbox.objects.filter(status=NotificationOutbox.STATUS_PENDING).exists())

    def test_command_rejects_bad_limit(self):
        with self.assertRaises(CommandError):
            call_command("dispatch_notifications", "--limit", "0", stdout=StringIO())


@override_settings(
    EVENT_PUBLISHER_BACKEND=TEST_PUBLISHER,
    NOTIFICATION_DISPATCH_ON_COMMIT=False,
    NOTIFICATION_MAX_ATTEMPTS=2,
    NOTIFICATION_CLAIM_SECONDS=60,
)
class ClaimLeaseTests(TestCase):
    def setUp(self):
        RecordingPublisher.published = []

    def test_claimed_row_is_not_delivered_twice(self):
        row = outbox.enqueue_event(topic=TOPIC_ORDER_UPDATE, payload={})
        before = timezone.now()

        claimed = outbox._claim(row.pk, now=before)

        self.assertEqual(claimed.status, NotificationOutbox.STATUS_SENDING)
        self.assertEqual(claimed.attempts, 1)
        self.assertGreaterEqual(claimed.next_attempt_at, before + timedelta(seconds=60))

        # another dispatcher sees the lease and backs off
        self.assertIsNone(outbox.dispatch_one(row.pk))
        self.assertEqual(outbox.dispatch_due()["sent"], 0)
        self.assertEqual(RecordingPublisher.published, [])

    def test_expired_lease_is_claimed_again(self):
        row = outbox.enqueue_event(topic=TOPIC_ORDER_UPDATE, payload={"order_id": "o-2"})
        outbox._claim(row.pk, now=timezone.now())
        _make_due(row)

        counts = outbox.dispatch_due()

        self.assertEqual(counts["sent"], 1)
        row.refresh_from_db()
        self.assertEqual(row.status, NotificationOutbox.STATUS_SENT)
        self.assertEqual(row.attempts, 2)
        self.assertEqual(RecordingPublisher.published, [(TOPIC_ORDER_UPDATE, {"order_id": "o-2"})])

    def test_abandoned_last_attempt_is_marked_failed(self):
        row = outbox.enqueue_event(topic=TOPIC_ORDER_UPDATE, payload={})
        NotificationOutbox.objects.filter(pk=row.pk).update(
            status=NotificationOutbox.STATUS_SENDING,
            attempts=2,
            next_attempt_at=timezone.now() - timedelta(seconds=1),
        )

        counts = outbox.dispatch_due()

        self.assertEqual(counts["sent"], 0)
        row.refresh_from_db()
        self.assertEqual(row.status, NotificationOutbox.STATUS_FAILED)
        self.assertIn("abandoned", row.last_error)
        self.assertEqual(RecordingPublisher.published, [])

    def test_late_result_does_not_overwrite_a_newer_outcome(self):
        row = outbox.enqueue_event(topic=TOPIC_ORDER_UPDATE, payload={})
        claimed = outbox._claim(row.pk, now=timezone.now())
        NotificationOutbox.objects.filter(pk=row.pk).update(status=NotificationOutbox.STATUS_SENT)

        outbox._record(claimed, status=NotificationOutbox.STATUS_PENDING, last_error="late")

        row.refresh_from_db()
        self.assertEqual(row.status, NotificationOutbox.STATUS_SENT)
        self.assertEqual(row.last_error, "")

    def test_undialable_receipt_is_not_retried(self):
        row = outbox.enqueue_receipt(
            phone_number="n/a",
            invoice_snapshot={"id": "inv-2", "invoice_number": "INV2"},
            outlet_snapshot={"name": "Main"},
        )
        cfg = {"PHONE_NUMBER_ID": "12345", "ACCESS_TOKEN": "token"}

        with override_settings(WHATSAPP=cfg), mock.patch("notifications.receipts.urlopen") as urlopen:
            self.assertEqual(outbox.dispatch_one(row.pk), NotificationOutbox.STATUS_SENT)

        urlopen.assert_not_called()
        row.refresh_from_db()
        self.assertEqual(row.attempts, 1)


@override_settings(EVENT_PUBLISHER_BACKEND=TEST_PUBLISHER, NOTIFICATION_DISPATCH_ON_COMMIT=True)
class OnCommitDispatchTests(TestCase):
    def setUp(self):
        RecordingPublisher.published = []

    def test_commit_hands_row_to_background_worker(self):
        with mock.patch("notifications.outbox.schedule_dispatch") as schedule:
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                with transaction.atomic():
                    row = outbox.enqueue_event(topic=TOPIC_ORDER_UPDATE, payload={"order_id": "o-9"})
                    schedule.assert_not_called()

        self.assertEqual(len(callbacks), 1)
        schedule.assert_called_once_with([row.pk])
        # nothing delivered on the committing thread
        self.assertEqual(RecordingPublisher.published, [])
        row.refresh_from_db()
        self.assertEqual(row.status, NotificationOutbox.STATUS_PENDING)
        self.assertEqual(row.attempts, 0)

    def test_rolled_back_work_never_publishes(self):
        with mock.patch("notifications.outbox.schedule_dispatch") as schedule:
            with self.captureOnCommitCallbacks(execute=True) as callbacks:
                try:
                    with transaction.atomic():
                        outbox.enqueue_event(topic=TOPIC_ORDER_UPDATE, payload={})
                        raise RuntimeError("settlement failed")
                except RuntimeError:
                    pass

        self.assertEqual(callbacks, [])
        schedule.assert_not_called()
        self.assertFalse(NotificationOutbox.objects.exists())
        self.assertEqual(RecordingPublisher.published, [])


class ThreadRecordingPublisher(EventPublisher):
    threads = []

    def publish(self, topic, payload):
        ThreadRecordingPublisher.threads.append(threading.get_ident())


@override_settings(
    EVENT_PUBLISHER_BACKEND="notifications.tests.test_outbox.ThreadRecordingPublisher",
    NOTIFICATION_DISPATCH_ON_COMMIT=True,
)
class BackgroundDispatchTests(TransactionTestCase):
    def setUp(self):
        ThreadRecordingPublisher.threads = []
        self.futures = []
        real_schedule = outbox.schedule_dispatch

        def schedule(row_ids):
            future = real_schedule(row_ids)
            self.futures.append(future)
            return future

        patcher = mock.patch("notifications.outbox.schedule_dispatch", side_effect=schedule)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_committed_rows_are_delivered_off_the_request_thread(self):
        with transaction.atomic():
            first = outbox.enqueue_event(topic=TOPIC_ORDER_UPDATE, payload={"n": 1})
            second = outbox.enqueue_event(topic=TOPIC_ORDER_UPDATE, payload={"n": 2})

        self.assertEqual(len(self.futures), 2)
        for future in self.futures:
            self.assertEqual(future.result(timeout=10), {"sent": 1, "retrying": 0, "failed": 0, "skipped": 0})

        self.assertEqual(len(ThreadRecordingPublisher.threads), 2)
        self.assertNotIn(threading.get_ident(), ThreadRecordingPublisher.threads)
        for row in (first, second):
            row.refresh_from_db()
            self.assertEqual(row.status, NotificationOutbox.STATUS_SENT)


class WhatsAppReceiptSenderTests(SimpleTestCase):
    CFG = {
        "API_URL": "https://graph.example.test/v21.0",
        "PHONE_NUMBER_ID": "12345",
        "ACCESS_TOKEN": "token",
        "TIMEOUT_SECONDS": 5,
        "DEFAULT_COUNTRY_CODE": "91",
    }

    def test_normalize_phone(self):
        self.assertEqual(normalize_phone("98765 43210", country_code="91"), "919876543210")
        self.assertEqual(normalize_phone("+44 (20) 7946-0958"), "442079460958")
        self.assertEqual(normalize_phone("12"), "")
        self.assertEqual(normalize_phone(None), "")

    def test_render_receipt_text(self):
        text = render_receipt_text(
            {"invoice_number": "INV9", "grand_total": "120.00", "payment_status": "paid", "customer_name": "Asha"},
            {"name": "Main Street"},
        )
        self.assertIn("Main Street", text)
        self.assertIn("Invoice: INV9", text)
        self.assertIn("Customer: Asha", text)
        self.assertIn("Total: 120.00", text)

    def test_unconfigured_sender_skips(self):
        result = WhatsAppReceiptSender(cfg={}).send_receipt("9876543210", {}, {})
        self.assertEqual(result, {"skipped": True, "reason": "not_configured"})

    def test_configured_sender_posts_message(self):
        response = mock.MagicMock()
        response.__enter__.return_value.read.return_value = json.dumps({"messages": [{"id": "wamid.1"}]}).encode()

        with mock.patch("notifications.receipts.urlopen", return_value=response) as urlopen:
            result = WhatsAppReceiptSender(cfg=self.CFG).send_receipt(
                "9876543210",
                {"id": "inv-1", "invoice_number": "INV1"},
                {"name": "Main"},
            )

        self.assertEqual(result, {"skipped": False, "message_id": "wamid.1"})
        request = urlopen.call_args.args[0]
        self.assertEqual(request.full_url, "https://graph.example.test/v21.0/12345/messages")
        self.assertEqual(request.get_header("Authorization"), "Bearer token")
        body = json.loads(request.data.decode())
        self.assertEqual(body["to"], "919876543210")
        self.assertEqual(urlopen.call_args.kwargs["timeout"], 5)

    def test_undialable_phone_is_skipped(self):
        with mock.patch("notifications.receipts.urlopen") as urlopen:
            result = WhatsAppReceiptSender(cfg=self.CFG).send_receipt("abc", {}, {})

        self.assertEqual(result, {"skipped": True, "reason": "invalid_phone"})
        urlopen.assert_not_called()

    def test_fractional_timeout_is_kept(self):
        sender = WhatsAppReceiptSender(cfg={**self.CFG, "TIMEOUT_SECONDS": 0.5})
        self.assertEqual(sender.timeout, 0.5)

    def test_http_error_raises_delivery_error(self):
        error = HTTPError(
            "https://graph.example.test", 401, "Unauthorized", {}, BytesIO(b'{"error": {"message": "bad token"}}')
        )
        with mock.patch("notifications.receipts.urlopen", side_effect=error):
            with self.assertRaisesMessage(ReceiptDeliveryError, "401 bad token"):
                WhatsAppReceiptSender(cfg=self.CFG).send_receipt("9876543210", {}, {})
