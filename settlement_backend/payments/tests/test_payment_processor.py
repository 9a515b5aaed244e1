# payments/tests/test_payment_processor.py

"""
Payment processor tests (single + split settlement).

Run with:
    python manage.py test payments -v 2
"""

from __future__ import annotations

from decimal import Decimal
from unittest import mock

from django.core.exceptions import ValidationError
from django.db.models import Sum
from django.test import TestCase, override_settings

from accounting.models import CashLedgerEntry
from accounting.services import cash_ledger
from notifications.models import NotificationOutbox
from orders.models import Invoice, KitchenTicket, Order, OrderItem
from outlets.models import Table, TableSession
from payments.models import Payment, SplitPaymentEntry
from payments.services import payment_processor
from payments.services.exceptions import (
    OrderAlreadySettledError,
    OrderNotFoundError,
    PaymentValidationError,
    SettlementConflictError,
)
from payments.services.payment_processor import (
    list_payments_for_order,
    process_single_payment,
    process_split_payment,
)
from payments.tests.helpers import (
    make_invoice,
    make_order,
    make_outlet,
    make_session,
    make_table,
    make_ticket,
    make_user,
    merge_tables,
)


def _ledger(outlet):
    return list(CashLedgerEntry.objects.filter(outlet=outlet).order_by("sequence"))


def _completed_total(order):
    return Payment.objects.filter(order=order, status=Payment.STATUS_COMPLETED).aggregate(
        t=Sum("total_amount")
    )["t"] or Decimal("0.00")


@override_settings(SETTLEMENT_RETRY_BACKOFF_SECONDS=0)
class SinglePaymentTests(TestCase):
    def setUp(self):
        self.cashier = make_user(role="cashier")
        self.outlet = make_outlet()
        self.table = make_table(outlet=self.outlet)
        self.session = make_session(table=self.table)
        self.order = make_order(
            outlet=self.outlet,
            total="500.00",
            table=self.table,
            session=self.session,
        )
        self.invoice = make_invoice(order=self.order)

    def test_full_cash_payment_settles_order_and_releases_table(self):
        result = process_single_payment(
            order_id=self.order.pk,
            mode="cash",
            amount="500",
            received_by=self.cashier,
        )

        self.assertTrue(result.fully_settled)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_COMPLETED)
        self.assertEqual(self.order.payment_status, Order.PAYMENT_COMPLETED)
        self.assertEqual(self.order.paid_amount, Decimal("500.00"))
        self.assertEqual(self.order.due_amount, Decimal("0.00"))

        entries = _ledger(self.outlet)
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].transaction_type, CashLedgerEntry.TYPE_SALE)
        self.assertEqual(entries[0].amount, Decimal("500.00"))
        self.assertEqual(entries[0].reference_type, "payment")
        self.assertEqual(entries[0].reference_id, str(result.payment.pk))

        self.table.refresh_from_db()
        self.session.refresh_from_db()
        self.invoice.refresh_from_db()
        self.assertEqual(self.table.status, Table.STATUS_AVAILABLE)
        self.assertEqual(self.session.status, TableSession.STATUS_COMPLETED)
        self.assertIsNotNone(self.session.ended_at)
        self.assertEqual(self.invoice.payment_status, Invoice.PAYMENT_PAID)

        self.assertEqual(result.payment.received_by, self.cashier)
        self.assertEqual(result.payment.invoice, self.invoice)

    def test_payment_number_format_and_daily_increment(self):
        other = make_order(outlet=self.outlet, total="100.00")

        first = process_single_payment(order_id=self.order.pk, mode="card", amount="200").payment
        second = process_single_payment(order_id=other.pk, mode="upi", amount="100").payment

        self.assertRegex(first.payment_number, r"^PAY\d{6}0001$")
        self.assertRegex(second.payment_number, r"^PAY\d{6}0002$")

    def test_partial_payment_leaves_order_partial(self):
        result = process_single_payment(order_id=self.order.pk, mode="card", amount="200")

        self.assertFalse(result.fully_settled)
        self.order.refresh_from_db()
        self.invoice.refresh_from_db()
        self.assertEqual(self.order.payment_status, Order.PAYMENT_PARTIAL)
        self.assertEqual(self.order.status, Order.STATUS_SERVED)
        self.assertEqual(self.order.paid_amount, Decimal("200.00"))
        self.assertEqual(self.order.due_amount, Decimal("300.00"))
        self.assertEqual(self.invoice.payment_status, Invoice.PAYMENT_PARTIAL)

        # card payments never touch the drawer
        self.assertEqual(_ledger(self.outlet), [])

        self.table.refresh_from_db()
        self.assertEqual(self.table.status, Table.STATUS_OCCUPIED)

    def test_paid_amount_always_matches_completed_payments(self):
        process_single_payment(order_id=self.order.pk, mode="cash", amount="120.55")
        process_single_payment(order_id=self.order.pk, mode="card", amount="79.45", tip="10")
        process_single_payment(order_id=self.order.pk, mode="upi", amount="300")

        self.order.refresh_from_db()
        self.assertEqual(self.order.paid_amount, _completed_total(self.order))
        self.assertEqual(self.order.paid_amount, Decimal("510.00"))
        self.assertEqual(self.order.due_amount, Decimal("0.00"))
        self.assertEqual(self.order.status, Order.STATUS_COMPLETED)

    def test_tip_is_part_of_total_and_cash_entry(self):
        result = process_single_payment(order_id=self.order.pk, mode="cash", amount="500", tip="25")

        self.assertEqual(result.payment.total_amount, Decimal("525.00"))
        self.assertEqual(result.payment.tip_amount, Decimal("25.00"))
        self.assertEqual(_ledger(self.outlet)[0].amount, Decimal("525.00"))

    def test_amounts_are_rounded_half_up(self):
        result = process_single_payment(order_id=self.order.pk, mode="card", amount="100.005")
        self.assertEqual(result.payment.amount, Decimal("100.01"))

    def test_settled_order_is_rejected_without_new_rows(self):
        process_single_payment(order_id=self.order.pk, mode="cash", amount="500")

        with self.assertRaisesMessage(OrderAlreadySettledError, "Order already paid"):
            process_single_payment(order_id=self.order.pk, mode="cash", amount="500")

        self.assertEqual(Payment.objects.filter(order=self.order).count(), 1)
        self.assertEqual(len(_ledger(self.outlet)), 1)

    def test_unknown_order(self):
        with self.assertRaisesMessage(OrderNotFoundError, "Order not found"):
            process_single_payment(
                order_id="00000000-0000-0000-0000-000000000000",
                mode="cash",
                amount="10",
            )

    def test_validation_errors(self):
        cases = [
            {"mode": "cash", "amount": "0"},
            {"mode": "cash", "amount": "-5"},
            {"mode": "cash", "amount": "10", "tip": "-1"},
            {"mode": "split", "amount": "10"},
            {"mode": "barter", "amount": "10"},
            {"mode": "card", "amount": "10", "metadata": {"card_last_four": "12a4"}},
        ]
        for kwargs in cases:
            with self.subTest(kwargs=kwargs):
                with self.assertRaises(PaymentValidationError):
                    process_single_payment(order_id=self.order.pk, **kwargs)

        self.assertFalse(Payment.objects.exists())

    def test_cancelled_order_cannot_be_paid(self):
        self.order.status = Order.STATUS_CANCELLED
        self.order.save(update_fields=["status"])

        with self.assertRaises(PaymentValidationError):
            process_single_payment(order_id=self.order.pk, mode="cash", amount="500")

    def test_outlet_mismatch_is_rejected(self):
        other_outlet = make_outlet()

        with self.assertRaises(PaymentValidationError):
            process_single_payment(
                order_id=self.order.pk,
                mode="cash",
                amount="500",
                outlet_id=other_outlet.pk,
            )

    def test_metadata_is_stored(self):
        result = process_single_payment(
            order_id=self.order.pk,
            mode="card",
            amount="100",
            metadata={"card_last_four": "4242", "card_type": "visa", "transaction_id": "txn-1", "ignored": "x"},
        )
        self.assertEqual(result.payment.card_last_four, "4242")
        self.assertEqual(result.payment.card_type, "visa")
        self.assertEqual(result.payment.transaction_id, "txn-1")

    def test_payments_are_immutable(self):
        payment = process_single_payment(order_id=self.order.pk, mode="card", amount="100").payment

        payment.amount = Decimal("1.00")
        with self.assertRaises(ValidationError):
            payment.save()
        with self.assertRaises(ValidationError):
            payment.delete()


@override_settings(SETTLEMENT_RETRY_BACKOFF_SECONDS=0)
class ReleaseOnSettlementTests(TestCase):
    def setUp(self):
        self.outlet = make_outlet()
        self.table_a = make_table(outlet=self.outlet, number="A", capacity=4)
        self.table_b = make_table(outlet=self.outlet, number="B", capacity=2)
        self.session = make_session(table=self.table_a)
        merge_tables(primary=self.table_a, merged=self.table_b, session=self.session)
        self.order = make_order(
            outlet=self.outlet,
            total="500.00",
            table=self.table_a,
            session=self.session,
        )

    def test_merged_table_released_and_capacity_restored(self):
        process_single_payment(order_id=self.order.pk, mode="card", amount="500")

        self.table_a.refresh_from_db()
        self.table_b.refresh_from_db()
        self.session.refresh_from_db()

        self.assertEqual(self.table_b.status, Table.STATUS_AVAILABLE)
        self.assertEqual(self.table_a.status, Table.STATUS_AVAILABLE)
        self.assertEqual(self.table_a.capacity, 4)
        self.assertEqual(self.session.status, TableSession.STATUS_COMPLETED)
        self.assertTrue(self.table_a.merges_as_primary.filter(unmerged_at__isnull=False).exists())

    def test_kitchen_work_marked_served(self):
        ready = make_ticket(order=self.order, status=KitchenTicket.STATUS_READY, items=2)
        cancelled = make_ticket(order=self.order, status=KitchenTicket.STATUS_CANCELLED)

        result = process_single_payment(order_id=self.order.pk, mode="upi", amount="500")

        ready.refresh_from_db()
        cancelled.refresh_from_db()
        self.assertEqual(ready.status, KitchenTicket.STATUS_SERVED)
        self.assertIsNotNone(ready.served_at)
        self.assertEqual(cancelled.status, KitchenTicket.STATUS_CANCELLED)
        self.assertEqual([t.pk for t in result.release.served_tickets], [ready.pk])
        self.assertFalse(
            OrderItem.objects.filter(order=self.order, kitchen_ticket_items__ticket=ready)
            .exclude(status=OrderItem.STATUS_SERVED)
            .exists()
        )

    def test_partial_payment_does_not_release(self):
        ticket = make_ticket(order=self.order)

        result = process_single_payment(order_id=self.order.pk, mode="cash", amount="100")

        self.assertIsNone(result.release)
        self.table_b.refresh_from_db()
        ticket.refresh_from_db()
        self.assertEqual(self.table_b.status, Table.STATUS_MERGED)
        self.assertEqual(ticket.status, KitchenTicket.STATUS_READY)


@override_settings(SETTLEMENT_RETRY_BACKOFF_SECONDS=0)
class SplitPaymentTests(TestCase):
    def setUp(self):
        self.outlet = make_outlet()
        self.table = make_table(outlet=self.outlet)
        self.order = make_order(outlet=self.outlet, total="500.00", table=self.table)

    def test_cash_and_card_split_settles_order(self):
        result = process_split_payment(
            order_id=self.order.pk,
            splits=[
                {"mode": "cash", "amount": "300"},
                {"mode": "card", "amount": "200", "card_last_four": "1111"},
            ],
        )

        payment = result.payment
        self.assertEqual(payment.mode, Payment.MODE_SPLIT)
        self.assertEqual(payment.total_amount, Decimal("500.00"))
        self.assertEqual(SplitPaymentEntry.objects.filter(payment=payment).count(), 2)

        entries = _ledger(self.outlet)
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].amount, Decimal("300.00"))
        self.assertEqual(entries[0].reference_type, "split_payment")

        cash_leg = payment.split_entries.get(mode="cash")
        self.assertEqual(entries[0].reference_id, str(cash_leg.pk))

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_COMPLETED)
        self.assertEqual(self.order.due_amount, Decimal("0.00"))
        self.table.refresh_from_db()
        self.assertEqual(self.table.status, Table.STATUS_AVAILABLE)

    def test_two_cash_legs_append_two_entries(self):
        process_split_payment(
            order_id=self.order.pk,
            splits=[{"mode": "cash", "amount": "250"}, {"mode": "cash", "amount": "250"}],
        )
        entries = _ledger(self.outlet)
        self.assertEqual([e.amount for e in entries], [Decimal("250.00"), Decimal("250.00")])
        self.assertEqual(entries[1].balance_after, Decimal("500.00"))

    def test_split_must_match_due_exactly(self):
        with self.assertRaisesMessage(PaymentValidationError, "Split payment mismatch"):
            process_split_payment(
                order_id=self.order.pk,
                splits=[{"mode": "cash", "amount": "300"}, {"mode": "card", "amount": "199.99"}],
            )
        self.assertFalse(Payment.objects.exists())

    def test_split_checks_due_against_current_total(self):
        # upstream adds an item after the order was created; stored due is stale
        self.order.total_amount = Decimal("600.00")
        self.order.save(update_fields=["total_amount"])

        with self.assertRaisesMessage(PaymentValidationError, "amount due is 600.00"):
            process_split_payment(
                order_id=self.order.pk,
                splits=[{"mode": "cash", "amount": "300"}, {"mode": "card", "amount": "200"}],
            )
        self.assertFalse(Payment.objects.exists())

        result = process_split_payment(
            order_id=self.order.pk,
            splits=[{"mode": "cash", "amount": "300"}, {"mode": "card", "amount": "300"}],
        )
        self.assertTrue(result.fully_settled)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.STATUS_COMPLETED)
        self.assertEqual(self.order.due_amount, Decimal("0.00"))

    def test_split_settles_remaining_due_after_partial(self):
        process_single_payment(order_id=self.order.pk, mode="card", amount="100")

        result = process_split_payment(
            order_id=self.order.pk,
            splits=[{"mode": "upi", "amount": "150"}, {"mode": "wallet", "amount": "250"}],
        )
        self.assertTrue(result.fully_settled)
        self.order.refresh_from_db()
        self.assertEqual(self.order.paid_amount, Decimal("500.00"))

    def test_split_validation(self):
        cases = [
            [{"mode": "cash", "amount": "500"}],
            [{"mode": "credit", "amount": "250"}, {"mode": "cash", "amount": "250"}],
            [{"mode": "cash", "amount": "0"}, {"mode": "card", "amount": "500"}],
            "cash",
        ]
        for splits in cases:
            with self.subTest(splits=splits):
                with self.assertRaises(PaymentValidationError):
                    process_split_payment(order_id=self.order.pk, splits=splits)

    def test_list_payments_for_order(self):
        process_single_payment(order_id=self.order.pk, mode="card", amount="100")
        process_split_payment(
            order_id=self.order.pk,
            splits=[{"mode": "cash", "amount": "200"}, {"mode": "card", "amount": "200"}],
        )

        payments = list(list_payments_for_order(order_id=self.order.pk))
        self.assertEqual(len(payments), 2)
        self.assertEqual(payments[0].mode, Payment.MODE_SPLIT)
        self.assertEqual(len(payments[0].split_entries.all()), 2)

        with self.assertRaises(OrderNotFoundError):
            list_payments_for_order(order_id="00000000-0000-0000-0000-000000000000")


@override_settings(SETTLEMENT_RETRY_BACKOFF_SECONDS=0, SETTLEMENT_RETRY_ATTEMPTS=3)
class SettlementConcurrencyTests(TestCase):
    def setUp(self):
        self.outlet = make_outlet()
        self.order = make_order(outlet=self.outlet, total="500.00")

    def test_lost_race_is_retried_and_reported_as_already_paid(self):
        real_precheck = payment_processor._precheck_order
        calls = {"n": 0}

        def precheck_then_competitor_settles(**kwargs):
            snapshot = real_precheck(**kwargs)
            calls["n"] += 1
            if calls["n"] == 1:
                # another terminal settles the order between pre-check and lock
                Order.objects.filter(pk=self.order.pk).update(
                    status=Order.STATUS_COMPLETED,
                    payment_status=Order.PAYMENT_COMPLETED,
                    paid_amount=Decimal("500.00"),
                    due_amount=Decimal("0.00"),
                )
            return snapshot

        with mock.patch.object(payment_processor, "_precheck_order", side_effect=precheck_then_competitor_settles):
            with self.assertRaisesMessage(OrderAlreadySettledError, "Order already paid"):
                process_single_payment(order_id=self.order.pk, mode="cash", amount="500")

        self.assertEqual(calls["n"], 1)
        self.assertFalse(Payment.objects.exists())
        self.assertFalse(CashLedgerEntry.objects.exists())

    def test_transient_conflict_succeeds_on_retry(self):
        real_lock = payment_processor._lock_order
        calls = {"n": 0}

        def flaky_lock(snapshot):
            calls["n"] += 1
            if calls["n"] == 1:
                raise SettlementConflictError("simulated")
            return real_lock(snapshot)

        with mock.patch.object(payment_processor, "_lock_order", side_effect=flaky_lock):
            result = process_single_payment(order_id=self.order.pk, mode="cash", amount="500")

        self.assertEqual(calls["n"], 2)
        self.assertTrue(result.fully_settled)
        self.assertEqual(Payment.objects.count(), 1)
        self.assertEqual(CashLedgerEntry.objects.count(), 1)

    def test_persistent_conflict_surfaces_after_configured_attempts(self):
        with mock.patch.object(
            payment_processor,
            "_lock_order",
            side_effect=SettlementConflictError("always"),
        ) as lock:
            with self.assertRaises(SettlementConflictError):
                process_single_payment(order_id=self.order.pk, mode="cash", amount="500")

        self.assertEqual(lock.call_count, 3)
        self.assertFalse(Payment.objects.exists())

    def test_failure_after_ledger_append_rolls_back_everything(self):
        with mock.patch.object(
            payment_processor,
            "release_on_full_settlement",
            side_effect=RuntimeError("boom"),
        ):
            with self.assertRaises(RuntimeError):
                process_single_payment(order_id=self.order.pk, mode="cash", amount="500")

        self.order.refresh_from_db()
        self.assertEqual(self.order.paid_amount, Decimal("0.00"))
        self.assertEqual(self.order.status, Order.STATUS_SERVED)
        self.assertFalse(Payment.objects.exists())
        self.assertFalse(CashLedgerEntry.objects.exists())
        self.assertFalse(NotificationOutbox.objects.exists())
        self.assertIsNone(cash_ledger.verify_chain(outlet_id=self.outlet.pk))
        self.assertEqual(cash_ledger.current_balance(outlet_id=self.outlet.pk), Decimal("0.00"))


@override_settings(SETTLEMENT_RETRY_BACKOFF_SECONDS=0, NOTIFICATION_DISPATCH_ON_COMMIT=False)
class SettlementNotificationTests(TestCase):
    def setUp(self):
        self.outlet = make_outlet()
        self.table = make_table(outlet=self.outlet)
        self.order = make_order(outlet=self.outlet, total="300.00", table=self.table)

    def _topics(self):
        return list(
            NotificationOutbox.objects.filter(kind=NotificationOutbox.KIND_EVENT)
            .order_by("created_at", "id")
            .values_list("topic", flat=True)
        )

    def test_full_settlement_queues_events_and_receipt(self):
        make_invoice(order=self.order, phone="9876543210")
        make_ticket(order=self.order)
        make_ticket(order=self.order)

        process_single_payment(order_id=self.order.pk, mode="cash", amount="300")

        topics = self._topics()
        self.assertEqual(topics.count("order:update"), 1)
        self.assertEqual(topics.count("bill:status"), 1)
        self.assertEqual(topics.count("table:update"), 1)
        self.assertEqual(topics.count("kot:update"), 2)

        receipt = NotificationOutbox.objects.get(kind=NotificationOutbox.KIND_RECEIPT)
        self.assertEqual(receipt.payload["phone_number"], "9876543210")
        self.assertEqual(receipt.payload["outlet"]["name"], self.outlet.name)
        self.assertEqual(receipt.status, NotificationOutbox.STATUS_PENDING)

        bill = NotificationOutbox.objects.get(topic="bill:status")
        self.assertEqual(bill.payload["bill_status"], "paid")
        self.assertEqual(bill.payload["amount_paid"], "300.00")

    def test_partial_payment_queues_partial_bill_status_only(self):
        make_invoice(order=self.order, phone="9876543210")

        process_single_payment(order_id=self.order.pk, mode="card", amount="100")

        self.assertEqual(sorted(self._topics()), ["bill:status", "order:update"])
        self.assertFalse(NotificationOutbox.objects.filter(kind=NotificationOutbox.KIND_RECEIPT).exists())
        bill = NotificationOutbox.objects.get(topic="bill:status")
        self.assertEqual(bill.payload["bill_status"], "partial")

    def test_no_receipt_without_customer_phone(self):
        make_invoice(order=self.order, phone="")

        process_single_payment(order_id=self.order.pk, mode="cash", amount="300")

        self.assertFalse(NotificationOutbox.objects.filter(kind=NotificationOutbox.KIND_RECEIPT).exists())
