# payments/services/payment_processor.py

"""
PAYMENT PROCESSOR (APPLICATION SERVICE)

Purpose:
- Settle single and split payments against an order (atomic, auditable).
- Keep order.paid_amount / due_amount derived from completed payments.
- Append cash legs to the outlet cash ledger.
- Release table / session / kitchen work once the order is fully paid.
- Queue events + receipt for delivery after commit.

Hard rules:
- Money is computed server-side at 2dp (ROUND_HALF_UP).
- paid_amount == sum(total_amount of completed payments); due = max(0, total - paid).
- A settled order (status paid/completed) never takes another payment.

Concurrency:
- The order is read BEFORE the transaction (cheap validation, no lock held).
- The first statement inside the transaction re-reads it with SELECT ... FOR UPDATE.
  If it changed since the pre-check, the attempt raises SettlementConflictError and
  run_with_conflict_retry re-runs pre-check + transaction. A lost race against a
  full settlement therefore ends as "Order already paid" on the next attempt.

SPLIT PAYMENT:
- at least 2 legs, modes cash/card/upi/wallet, each amount > 0
- sum(legs) must equal the order's due amount (2dp exact)
- parent Payment mode="split"; one SplitPaymentEntry per leg; one ledger entry per cash leg
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.db import transaction
from django.db.models import Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from accounting.models import CashLedgerEntry
from accounting.services import cash_ledger
from accounting.services.concurrency import run_with_conflict_retry
from notifications import outbox
from notifications.publisher import (
    TOPIC_BILL_STATUS,
    TOPIC_KOT_UPDATE,
    TOPIC_ORDER_UPDATE,
    TOPIC_TABLE_UPDATE,
)
from orders.models import Invoice, Order
from payments.models import Payment, SplitPaymentEntry
from payments.services.exceptions import (
    OrderAlreadySettledError,
    OrderNotFoundError,
    OutletRequiredError,
    PaymentValidationError,
    SettlementConflictError,
)
from payments.services.numbering import next_payment_number
from payments.services.release_coordinator import ReleaseResult, release_on_full_settlement

logger = logging.getLogger("payments")

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")

SINGLE_PAYMENT_MODES = {
    Payment.MODE_CASH,
    Payment.MODE_CARD,
    Payment.MODE_UPI,
    Payment.MODE_WALLET,
    Payment.MODE_CREDIT,
    Payment.MODE_COMPLIMENTARY,
}

SPLIT_LEG_MODES = {
    Payment.MODE_CASH,
    Payment.MODE_CARD,
    Payment.MODE_UPI,
    Payment.MODE_WALLET,
}

MIN_SPLIT_LEGS = 2

PAYMENT_METADATA_FIELDS = (
    "transaction_id",
    "reference_number",
    "card_last_four",
    "card_type",
    "upi_id",
    "wallet_name",
    "bank_name",
    "notes",
)

SPLIT_METADATA_FIELDS = (
    "transaction_id",
    "reference_number",
    "card_last_four",
    "upi_id",
    "notes",
)


def _money(v) -> Decimal:
    if v is None or v == "":
        return ZERO
    try:
        return Decimal(str(v)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise PaymentValidationError(f"Invalid amount: {v!r}") from exc


def _normalize_mode(mode) -> str:
    return str(mode or "").strip().lower()


def _clean_metadata(metadata, fields) -> dict:
    metadata = metadata or {}
    cleaned = {}
    for name in fields:
        value = metadata.get(name)
        if value is None:
            continue
        cleaned[name] = str(value).strip()

    last_four = cleaned.get("card_last_four")
    if last_four and (len(last_four) != 4 or not last_four.isdigit()):
        raise PaymentValidationError("card_last_four must be exactly 4 digits")
    return cleaned


@dataclass(frozen=True)
class _OrderSnapshot:
    order_id: object
    outlet_id: object
    status: str
    total_amount: Decimal
    paid_amount: Decimal
    due_amount: Decimal


@dataclass
class SettlementResult:
    payment: Payment
    order: Order
    fully_settled: bool
    release: ReleaseResult | None = None


# ---------------------------------------------------------------------
# Pre-check (outside the transaction) + locked re-validation (inside)
# ---------------------------------------------------------------------


def _precheck_order(*, order_id, outlet_id=None) -> _OrderSnapshot:
    if not order_id:
        raise OrderNotFoundError("Order not found")

    order = Order.objects.filter(pk=order_id).first()
    if order is None:
        raise OrderNotFoundError("Order not found")

    if order.is_settled:
        raise OrderAlreadySettledError("Order already paid")

    if order.status == Order.STATUS_CANCELLED:
        raise PaymentValidationError("Cannot take payment for a cancelled order")

    resolved_outlet_id = outlet_id or order.outlet_id
    if not resolved_outlet_id:
        raise OutletRequiredError("Outlet id required")
    if str(resolved_outlet_id) != str(order.outlet_id):
        raise PaymentValidationError("Order does not belong to this outlet")

    # stored due_amount can lag behind upstream total edits
    total_amount = _money(order.total_amount)
    paid_amount = _money(order.paid_amount)
    return _OrderSnapshot(
        order_id=order.pk,
        outlet_id=order.outlet_id,
        status=order.status,
        total_amount=total_amount,
        paid_amount=paid_amount,
        due_amount=max(ZERO, _money(total_amount - paid_amount)),
    )


def _lock_order(snapshot: _OrderSnapshot) -> Order:
    try:
        order = Order.objects.select_for_update().get(pk=snapshot.order_id)
    except Order.DoesNotExist as exc:
        raise OrderNotFoundError("Order not found") from exc

    if (
        order.is_settled
        or order.status != snapshot.status
        or _money(order.total_amount) != snapshot.total_amount
        or _money(order.paid_amount) != snapshot.paid_amount
    ):
        raise SettlementConflictError(
            f"Order {order.pk} changed while the payment was being prepared"
        )
    return order


def _resolve_invoice(*, order: Order, invoice_id=None) -> Invoice | None:
    qs = Invoice.objects.select_for_update().filter(order_id=order.pk, is_cancelled=False)
    if invoice_id:
        invoice = qs.filter(pk=invoice_id).first()
        if invoice is None:
            raise PaymentValidationError("Invoice not found for this order")
        return invoice
    return qs.order_by("-created_at").first()


def _order_floor_id(order: Order):
    if not order.table_id:
        return None
    return order.table.floor_id


# ---------------------------------------------------------------------
# Shared settlement steps
# ---------------------------------------------------------------------


def recompute_order_totals(*, order: Order, invoice: Invoice | None = None) -> bool:
    """
    Re-derive paid/due/payment_status from completed payments.
    Returns True when the order is now fully settled.
    """
    paid = Payment.objects.filter(order_id=order.pk, status=Payment.STATUS_COMPLETED).aggregate(
        total=Coalesce(Sum("total_amount"), ZERO)
    )["total"]
    paid = _money(paid)
    due = max(ZERO, _money(_money(order.total_amount) - paid))

    order.paid_amount = paid
    order.due_amount = due

    fully_settled = due <= ZERO
    if fully_settled:
        order.payment_status = Order.PAYMENT_COMPLETED
        order.status = Order.STATUS_COMPLETED
    elif paid > ZERO:
        order.payment_status = Order.PAYMENT_PARTIAL
    else:
        order.payment_status = Order.PAYMENT_PENDING

    order.save(update_fields=["paid_amount", "due_amount", "payment_status", "status", "updated_at"])

    if invoice is not None:
        if fully_settled:
            invoice.payment_status = Invoice.PAYMENT_PAID
        elif paid > ZERO:
            invoice.payment_status = Invoice.PAYMENT_PARTIAL
        else:
            invoice.payment_status = Invoice.PAYMENT_PENDING
        invoice.save(update_fields=["payment_status", "updated_at"])

    return fully_settled


def _payment_snapshot(payment: Payment) -> dict:
    return {
        "id": str(payment.pk),
        "payment_number": payment.payment_number,
        "mode": payment.mode,
        "amount": str(payment.amount),
        "tip_amount": str(payment.tip_amount),
        "total_amount": str(payment.total_amount),
        "status": payment.status,
    }


def _queue_settlement_notifications(
    *,
    order: Order,
    payment: Payment,
    invoice: Invoice | None,
    fully_settled: bool,
    release: ReleaseResult | None,
) -> None:
    """
    Written inside the transaction; delivered only after it commits.
    """
    base = {
        "outlet_id": str(order.outlet_id),
        "order_id": str(order.pk),
        "table_id": str(order.table_id) if order.table_id else None,
        "timestamp": timezone.now().isoformat(),
    }

    outbox.enqueue_event(
        topic=TOPIC_ORDER_UPDATE,
        payload={
            **base,
            "type": "order:payment_received",
            "payment": _payment_snapshot(payment),
            "order_status": order.status,
            "payment_status": order.payment_status,
            "paid_amount": str(order.paid_amount),
            "due_amount": str(order.due_amount),
        },
    )

    outbox.enqueue_event(
        topic=TOPIC_BILL_STATUS,
        payload={
            **base,
            "invoice_id": str(invoice.pk) if invoice else None,
            "bill_status": "paid" if fully_settled else "partial",
            "amount_paid": str(order.paid_amount),
        },
    )

    if release is None:
        return

    if release.table_released:
        outbox.enqueue_event(
            topic=TOPIC_TABLE_UPDATE,
            payload={
                **base,
                "floor_id": str(release.table.floor_id) if release.table.floor_id else None,
                "table_number": release.table.number,
                "status": release.table.status,
                "event": "session_ended",
                "unmerged_table_ids": [str(t.pk) for t in release.unmerged_tables],
            },
        )

    for ticket in release.served_tickets:
        outbox.enqueue_event(
            topic=TOPIC_KOT_UPDATE,
            payload={
                **base,
                "type": "kot:served",
                "station": ticket.station,
                "ticket": ticket.snapshot(),
            },
        )

    if invoice is not None and (invoice.customer_phone or "").strip():
        outbox.enqueue_receipt(
            phone_number=invoice.customer_phone.strip(),
            invoice_snapshot=invoice.snapshot(),
            outlet_snapshot=order.outlet.snapshot(),
        )
    else:
        logger.info(
            "Receipt not queued, no customer phone on invoice",
            extra={"order_id": str(order.pk)},
        )


def _finish_settlement(*, order: Order, payment: Payment, invoice: Invoice | None, received_by) -> SettlementResult:
    fully_settled = recompute_order_totals(order=order, invoice=invoice)

    release = None
    if fully_settled:
        release = release_on_full_settlement(order=order, actor=received_by)

    _queue_settlement_notifications(
        order=order,
        payment=payment,
        invoice=invoice,
        fully_settled=fully_settled,
        release=release,
    )

    logger.info(
        "Payment recorded",
        extra={
            "payment_id": str(payment.pk),
            "payment_number": payment.payment_number,
            "order_id": str(order.pk),
            "outlet_id": str(order.outlet_id),
            "mode": payment.mode,
            "total_amount": str(payment.total_amount),
            "paid_amount": str(order.paid_amount),
            "due_amount": str(order.due_amount),
            "fully_settled": fully_settled,
        },
    )
    return SettlementResult(payment=payment, order=order, fully_settled=fully_settled, release=release)


# ---------------------------------------------------------------------
# Single payment
# ---------------------------------------------------------------------


@transaction.atomic
def _settle_single(
    *,
    snapshot: _OrderSnapshot,
    mode: str,
    amount: Decimal,
    tip: Decimal,
    metadata: dict,
    received_by,
    invoice_id,
) -> SettlementResult:
    order = _lock_order(snapshot)
    invoice = _resolve_invoice(order=order, invoice_id=invoice_id)
    floor_id = _order_floor_id(order)

    total = _money(amount + tip)

    payment = Payment.objects.create(
        payment_number=next_payment_number(outlet_id=order.outlet_id),
        outlet_id=order.outlet_id,
        floor_id=floor_id,
        order=order,
        invoice=invoice,
        mode=mode,
        amount=amount,
        tip_amount=tip,
        total_amount=total,
        status=Payment.STATUS_COMPLETED,
        received_by=received_by,
        **metadata,
    )

    if mode == Payment.MODE_CASH:
        cash_ledger.append(
            outlet_id=order.outlet_id,
            floor_id=floor_id,
            transaction_type=CashLedgerEntry.TYPE_SALE,
            amount=total,
            reference_type="payment",
            reference_id=payment.pk,
            description=f"Payment {payment.payment_number} for order {order.order_number}",
            created_by=received_by,
        )

    return _finish_settlement(order=order, payment=payment, invoice=invoice, received_by=received_by)


def process_single_payment(
    *,
    order_id,
    mode: str,
    amount,
    tip=None,
    metadata: dict | None = None,
    received_by=None,
    outlet_id=None,
    invoice_id=None,
) -> SettlementResult:
    mode = _normalize_mode(mode)
    if mode == Payment.MODE_SPLIT:
        raise PaymentValidationError("Use the split payment operation for split payments")
    if mode not in SINGLE_PAYMENT_MODES:
        raise PaymentValidationError(f"Invalid payment mode: {mode or '(empty)'}")

    amount = _money(amount)
    tip = _money(tip)
    if amount <= ZERO:
        raise PaymentValidationError("amount must be > 0")
    if tip < ZERO:
        raise PaymentValidationError("tip cannot be negative")

    cleaned = _clean_metadata(metadata, PAYMENT_METADATA_FIELDS)

    def _attempt() -> SettlementResult:
        snapshot = _precheck_order(order_id=order_id, outlet_id=outlet_id)
        return _settle_single(
            snapshot=snapshot,
            mode=mode,
            amount=amount,
            tip=tip,
            metadata=cleaned,
            received_by=received_by,
            invoice_id=invoice_id,
        )

    return run_with_conflict_retry(_attempt, label="process_single_payment")


# ---------------------------------------------------------------------
# Split payment
# ---------------------------------------------------------------------


def _validate_and_normalize_splits(splits) -> list[dict]:
    if not isinstance(splits, (list, tuple)):
        raise PaymentValidationError("splits must be a list")
    if len(splits) < MIN_SPLIT_LEGS:
        raise PaymentValidationError(f"Split payment needs at least {MIN_SPLIT_LEGS} entries")

    legs = []
    for idx, raw in enumerate(splits):
        if not isinstance(raw, dict):
            raise PaymentValidationError(f"splits[{idx}] must be an object")

        mode = _normalize_mode(raw.get("mode"))
        if mode not in SPLIT_LEG_MODES:
            raise PaymentValidationError(
                f"splits[{idx}].mode must be one of: {', '.join(sorted(SPLIT_LEG_MODES))}"
            )

        amount = _money(raw.get("amount"))
        if amount <= ZERO:
            raise PaymentValidationError(f"splits[{idx}].amount must be > 0")

        legs.append(
            {
                "mode": mode,
                "amount": amount,
                **_clean_metadata(raw, SPLIT_METADATA_FIELDS),
            }
        )
    return legs


@transaction.atomic
def _settle_split(
    *,
    snapshot: _OrderSnapshot,
    legs: list[dict],
    total: Decimal,
    notes: str,
    received_by,
    invoice_id,
) -> SettlementResult:
    order = _lock_order(snapshot)
    invoice = _resolve_invoice(order=order, invoice_id=invoice_id)
    floor_id = _order_floor_id(order)

    payment = Payment.objects.create(
        payment_number=next_payment_number(outlet_id=order.outlet_id),
        outlet_id=order.outlet_id,
        floor_id=floor_id,
        order=order,
        invoice=invoice,
        mode=Payment.MODE_SPLIT,
        amount=total,
        tip_amount=ZERO,
        total_amount=total,
        status=Payment.STATUS_COMPLETED,
        received_by=received_by,
        notes=notes,
    )

    for leg in legs:
        entry = SplitPaymentEntry.objects.create(payment=payment, **leg)
        if entry.mode == Payment.MODE_CASH:
            cash_ledger.append(
                outlet_id=order.outlet_id,
                floor_id=floor_id,
                transaction_type=CashLedgerEntry.TYPE_SALE,
                amount=entry.amount,
                reference_type="split_payment",
                reference_id=entry.pk,
                description=f"Split payment {payment.payment_number} (cash) for order {order.order_number}",
                created_by=received_by,
            )

    return _finish_settlement(order=order, payment=payment, invoice=invoice, received_by=received_by)


def process_split_payment(
    *,
    order_id,
    splits,
    received_by=None,
    outlet_id=None,
    invoice_id=None,
    notes: str = "",
) -> SettlementResult:
    legs = _validate_and_normalize_splits(splits)
    total = _money(sum((leg["amount"] for leg in legs), ZERO))

    def _attempt() -> SettlementResult:
        snapshot = _precheck_order(order_id=order_id, outlet_id=outlet_id)
        if total != snapshot.due_amount:
            raise PaymentValidationError(
                f"Split payment mismatch: splits total {total} but amount due is {snapshot.due_amount}"
            )
        return _settle_split(
            snapshot=snapshot,
            legs=legs,
            total=total,
            notes=(notes or "").strip(),
            received_by=received_by,
            invoice_id=invoice_id,
        )

    return run_with_conflict_retry(_attempt, label="process_split_payment")


# ---------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------


def list_payments_for_order(*, order_id):
    if not Order.objects.filter(pk=order_id).exists():
        raise OrderNotFoundError("Order not found")

    return (
        Payment.objects.filter(order_id=order_id)
        .select_related("received_by", "invoice")
        .prefetch_related("split_entries")
        .order_by("-created_at")
    )
