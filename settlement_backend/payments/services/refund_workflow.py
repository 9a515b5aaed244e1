"""
======================================================
PATH: payments/services/refund_workflow.py
======================================================
REFUND WORKFLOW (TWO-PHASE)

1) initiate_refund()
   - Validates order / payment / amount / mode / reason
   - Creates Refund(status=pending) with a REF daily number
   - NO ledger write, NO payment or order mutation

2) approve_refund()
   - Locks the refund, then the originating payment
   - pending -> approved (one-shot)
   - payment.refund_amount += amount (ceiling re-checked under lock)
   - cash refunds append a NEGATIVE cash ledger entry (type=refund)

Order paid/due amounts and status are left as they are after approval.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from django.db import transaction
from django.utils import timezone

from accounting.models import CashLedgerEntry
from accounting.services import cash_ledger
from accounting.services.concurrency import run_with_conflict_retry
from orders.models import Order
from payments.models import Payment, Refund
from payments.services.exceptions import RefundNotFoundError, RefundValidationError
from payments.services.numbering import next_refund_number

logger = logging.getLogger("payments")

TWOPLACES = Decimal("0.01")
ZERO = Decimal("0.00")

REFUND_MODES = {choice for choice, _ in Refund.MODE_CHOICES}
REASON_MAX_LENGTH = 255


def _money(v) -> Decimal:
    try:
        return Decimal(str(v if v not in (None, "") else "0")).quantize(TWOPLACES, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError) as exc:
        raise RefundValidationError(f"Invalid amount: {v!r}") from exc


def _validate_reason(reason) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise RefundValidationError("Refund reason is required")
    if len(reason) > REASON_MAX_LENGTH:
        raise RefundValidationError(f"Refund reason must be at most {REASON_MAX_LENGTH} characters")
    return reason


# ---------------------------------------------------------------------
# Initiate
# ---------------------------------------------------------------------


@transaction.atomic
def _initiate_once(*, order_id, payment_id, amount: Decimal, mode: str, reason: str, requested_by) -> Refund:
    order = Order.objects.filter(pk=order_id).first()
    if order is None:
        raise RefundValidationError("Order not found")

    payment = Payment.objects.filter(pk=payment_id).first()
    if payment is None:
        raise RefundValidationError("Payment not found")
    if payment.order_id != order.pk:
        raise RefundValidationError("Payment does not belong to this order")
    if payment.status != Payment.STATUS_COMPLETED:
        raise RefundValidationError("Only completed payments can be refunded")

    refundable = payment.refundable_amount
    if amount > refundable:
        raise RefundValidationError(
            f"Refund amount {amount} exceeds refundable balance {refundable}"
        )

    refund = Refund.objects.create(
        refund_number=next_refund_number(outlet_id=order.outlet_id),
        outlet_id=order.outlet_id,
        order=order,
        payment=payment,
        amount=amount,
        mode=mode,
        status=Refund.STATUS_PENDING,
        reason=reason,
        requested_by=requested_by,
    )

    logger.info(
        "Refund initiated",
        extra={
            "refund_id": str(refund.pk),
            "refund_number": refund.refund_number,
            "order_id": str(order.pk),
            "payment_id": str(payment.pk),
            "amount": str(amount),
            "mode": mode,
        },
    )
    return refund


def initiate_refund(*, order_id, payment_id, amount, mode=Refund.MODE_ORIGINAL, reason="", requested_by=None) -> Refund:
    amount = _money(amount)
    if amount <= ZERO:
        raise RefundValidationError("Refund amount must be > 0")

    mode = str(mode or Refund.MODE_ORIGINAL).strip().lower()
    if mode not in REFUND_MODES:
        raise RefundValidationError(f"Invalid refund mode: {mode}")

    reason = _validate_reason(reason)

    return run_with_conflict_retry(
        lambda: _initiate_once(
            order_id=order_id,
            payment_id=payment_id,
            amount=amount,
            mode=mode,
            reason=reason,
            requested_by=requested_by,
        ),
        label="initiate_refund",
    )


# ---------------------------------------------------------------------
# Approve
# ---------------------------------------------------------------------


@transaction.atomic
def _approve_once(*, refund_id, approved_by) -> Refund:
    refund = Refund.objects.select_for_update().filter(pk=refund_id).first()
    if refund is None:
        raise RefundNotFoundError("Refund not found")

    if refund.status != Refund.STATUS_PENDING:
        raise RefundValidationError(f"Refund is already {refund.status}")

    payment = Payment.objects.select_for_update().get(pk=refund.payment_id)

    amount = _money(refund.amount)
    refundable = payment.refundable_amount
    if amount > refundable:
        raise RefundValidationError(
            f"Refund amount {amount} exceeds refundable balance {refundable}"
        )

    now = timezone.now()

    refund.status = Refund.STATUS_APPROVED
    refund.approved_by = approved_by
    refund.approved_at = now
    refund.save(update_fields=["status", "approved_by", "approved_at", "updated_at"])

    payment.refund_amount = _money(payment.refund_amount + amount)
    payment.refunded_at = now
    payment.refund_reason = refund.reason
    payment.save(update_fields=["refund_amount", "refunded_at", "refund_reason"])

    # A split payment refunded "original_mode" resolves to "split": no drawer movement.
    refund.payment = payment
    if refund.effective_mode() == Payment.MODE_CASH:
        cash_ledger.append(
            outlet_id=refund.outlet_id,
            floor_id=payment.floor_id,
            transaction_type=CashLedgerEntry.TYPE_REFUND,
            amount=-amount,
            reference_type="refund",
            reference_id=refund.pk,
            description=f"Refund {refund.refund_number} for payment {payment.payment_number}",
            created_by=approved_by,
        )

    logger.info(
        "Refund approved",
        extra={
            "refund_id": str(refund.pk),
            "refund_number": refund.refund_number,
            "payment_id": str(payment.pk),
            "amount": str(amount),
            "effective_mode": refund.effective_mode(),
            "payment_refund_total": str(payment.refund_amount),
        },
    )
    return refund


def approve_refund(*, refund_id, approved_by=None) -> Refund:
    if not refund_id:
        raise RefundNotFoundError("Refund not found")

    return run_with_conflict_retry(
        lambda: _approve_once(refund_id=refund_id, approved_by=approved_by),
        label="approve_refund",
    )
