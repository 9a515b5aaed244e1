# PATH: accounting/services/shift_manager.py

"""
SHIFT (DAY SESSION) MANAGER

State machine:
    closed -> open    open_shift()   (insert new session, or reopen today's closed one)
    open   -> closed  close_shift()  (expected cash, variance, day totals, closing entry)

Guarantees:
- Atomic: session row + ledger entry succeed or roll back together
- Serialized per outlet: the Outlet row is locked first, and the
  one-open-session constraints back it up
- Floor-isolated variant: pass floor_id to run a shift per outlet+floor;
  floor_id=None is the outlet-level shift

Expected cash:
    opening_cash + (sale + cash_in) - (|cash_out| + |refund| + |expense|)
over ledger entries of the session's outlet (and floor) on the session date.

Closing entry:
- outlet-level: clears the outlet drawer (amount = -running balance)
- floor-level: removes the floor's expected cash
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal

from django.db import IntegrityError, transaction
from django.db.models import Count, Q, Sum
from django.db.models.functions import Coalesce
from django.utils import timezone

from accounting.models import CashLedgerEntry, DaySession
from accounting.services import cash_ledger
from accounting.services.concurrency import run_with_conflict_retry
from orders.models import Order
from outlets.models import Floor, Outlet
from payments.models import Payment

logger = logging.getLogger("shifts")

TWOPLACES = Decimal("0.01")

CASH_MOVEMENT_TYPES = {
    CashLedgerEntry.TYPE_CASH_IN,
    CashLedgerEntry.TYPE_CASH_OUT,
    CashLedgerEntry.TYPE_EXPENSE,
}


class ShiftError(ValueError):
    pass


class ShiftAlreadyOpenError(ShiftError):
    pass


class NoOpenShiftError(ShiftError):
    pass


class CashMovementError(ShiftError):
    pass


class OutletNotFoundError(ShiftError):
    pass


class ShiftNotFoundError(ShiftError):
    pass


def _money(v) -> Decimal:
    return Decimal(str(v or "0.00")).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def _lock_outlet(outlet_id) -> Outlet:
    if not outlet_id:
        raise ShiftError("Outlet id required")
    try:
        return Outlet.objects.select_for_update().get(pk=outlet_id)
    except Outlet.DoesNotExist as exc:
        raise OutletNotFoundError("Outlet not found") from exc


def _resolve_floor(*, outlet: Outlet, floor_id) -> Floor | None:
    if floor_id is None:
        return None
    floor = Floor.objects.filter(pk=floor_id, outlet_id=outlet.pk).first()
    if floor is None:
        raise ShiftError("Floor not found for this outlet")
    return floor


def _open_sessions(*, outlet_id, floor_id):
    return DaySession.objects.filter(
        outlet_id=outlet_id,
        floor_id=floor_id,
        status=DaySession.STATUS_OPEN,
    )


def get_open_session(*, outlet_id, floor_id=None) -> DaySession | None:
    return _open_sessions(outlet_id=outlet_id, floor_id=floor_id).first()


def _day_order_totals(*, outlet_id, on_date, floor_id=None) -> dict:
    qs = Order.objects.filter(outlet_id=outlet_id, created_at__date=on_date).exclude(
        status=Order.STATUS_CANCELLED
    )
    if floor_id is not None:
        qs = qs.filter(table__floor_id=floor_id)

    agg = qs.aggregate(
        total_orders=Count("id"),
        total_sales=Coalesce(Sum("total_amount"), Decimal("0.00")),
    )
    return {
        "total_orders": int(agg["total_orders"] or 0),
        "total_sales": _money(agg["total_sales"]),
    }


# ---------------------------------------------------------------------
# Open
# ---------------------------------------------------------------------


@transaction.atomic
def _open_shift_once(*, outlet_id, opening_cash, user, floor_id) -> DaySession:
    outlet = _lock_outlet(outlet_id)
    floor = _resolve_floor(outlet=outlet, floor_id=floor_id)

    opening_cash = _money(opening_cash)
    if opening_cash < 0:
        raise ShiftError("opening_cash cannot be negative")

    if _open_sessions(outlet_id=outlet.pk, floor_id=floor_id).exists():
        raise ShiftAlreadyOpenError("Day session already open")

    today = timezone.localdate()
    now = timezone.now()

    session = (
        DaySession.objects.select_for_update()
        .filter(outlet_id=outlet.pk, floor_id=floor_id, session_date=today)
        .first()
    )

    if session is None:
        try:
            with transaction.atomic():
                session = DaySession.objects.create(
                    outlet=outlet,
                    floor=floor,
                    session_date=today,
                    status=DaySession.STATUS_OPEN,
                    opening_cash=opening_cash,
                    opened_by=user,
                    opened_at=now,
                )
        except IntegrityError as exc:
            raise ShiftAlreadyOpenError("Day session already open") from exc
        reopened = False
    else:
        session.status = DaySession.STATUS_OPEN
        session.opening_cash = opening_cash
        session.opened_by = user
        session.opened_at = now
        session.closing_cash = None
        session.expected_cash = None
        session.cash_variance = None
        session.total_sales = Decimal("0.00")
        session.total_orders = 0
        session.closed_by = None
        session.closed_at = None
        session.variance_notes = ""
        session.save()
        reopened = True

    if opening_cash > 0:
        cash_ledger.append(
            outlet_id=outlet.pk,
            floor_id=floor_id,
            transaction_type=CashLedgerEntry.TYPE_OPENING,
            amount=opening_cash,
            reference_type="day_session",
            reference_id=session.pk,
            description="Opening cash",
            created_by=user,
        )

    logger.info(
        "Day session opened",
        extra={
            "outlet_id": str(outlet.pk),
            "floor_id": str(floor_id) if floor_id else None,
            "session_id": session.pk,
            "session_date": str(today),
            "opening_cash": str(opening_cash),
            "reopened": reopened,
        },
    )
    return session


def open_shift(*, outlet_id, opening_cash, user=None, floor_id=None) -> DaySession:
    return run_with_conflict_retry(
        lambda: _open_shift_once(
            outlet_id=outlet_id,
            opening_cash=opening_cash,
            user=user,
            floor_id=floor_id,
        ),
        label="open_shift",
    )


# ---------------------------------------------------------------------
# Close
# ---------------------------------------------------------------------


@transaction.atomic
def _close_shift_once(*, outlet_id, actual_cash, user, notes, floor_id) -> DaySession:
    outlet = _lock_outlet(outlet_id)

    session = _open_sessions(outlet_id=outlet.pk, floor_id=floor_id).select_for_update().first()
    if session is None:
        raise NoOpenShiftError("No open session found")

    actual_cash = _money(actual_cash)
    if actual_cash < 0:
        raise ShiftError("actual_cash cannot be negative")

    totals = cash_ledger.cash_totals_for_day(
        outlet_id=outlet.pk,
        on_date=session.session_date,
        floor_id=floor_id,
    )
    expected = cash_ledger.expected_cash(opening_cash=session.opening_cash, totals=totals)
    variance = _money(actual_cash - expected)

    day = _day_order_totals(outlet_id=outlet.pk, on_date=session.session_date, floor_id=floor_id)

    session.status = DaySession.STATUS_CLOSED
    session.closing_cash = actual_cash
    session.expected_cash = expected
    session.cash_variance = variance
    session.total_sales = day["total_sales"]
    session.total_orders = day["total_orders"]
    session.closed_by = user
    session.closed_at = timezone.now()
    session.variance_notes = (notes or "").strip()
    session.save()

    cash_ledger.append_closing(
        outlet_id=outlet.pk,
        floor_id=floor_id,
        amount=-expected if floor_id is not None else None,
        reference_type="day_session",
        reference_id=session.pk,
        description="Closing cash",
        created_by=user,
    )

    logger.info(
        "Day session closed",
        extra={
            "outlet_id": str(outlet.pk),
            "floor_id": str(floor_id) if floor_id else None,
            "session_id": session.pk,
            "expected_cash": str(expected),
            "closing_cash": str(actual_cash),
            "cash_variance": str(variance),
            "total_orders": day["total_orders"],
        },
    )
    if variance != 0:
        logger.warning(
            "Cash variance at shift close",
            extra={"session_id": session.pk, "cash_variance": str(variance)},
        )
    return session


def close_shift(*, outlet_id, actual_cash, user=None, notes: str = "", floor_id=None) -> DaySession:
    return run_with_conflict_retry(
        lambda: _close_shift_once(
            outlet_id=outlet_id,
            actual_cash=actual_cash,
            user=user,
            notes=notes,
            floor_id=floor_id,
        ),
        label="close_shift",
    )


# ---------------------------------------------------------------------
# Cash movements (cash in / cash out / expense) during an open shift
# ---------------------------------------------------------------------


@transaction.atomic
def _record_cash_movement_once(*, outlet_id, transaction_type, amount, description, user, floor_id):
    if transaction_type not in CASH_MOVEMENT_TYPES:
        raise CashMovementError("transaction_type must be one of: cash_in, cash_out, expense")

    amount = _money(amount)
    if amount <= 0:
        raise CashMovementError("amount must be > 0")

    outlet = _lock_outlet(outlet_id)
    session = _open_sessions(outlet_id=outlet.pk, floor_id=floor_id).first()
    if session is None:
        raise NoOpenShiftError("No open session found")

    signed = amount if transaction_type == CashLedgerEntry.TYPE_CASH_IN else -amount

    entry = cash_ledger.append(
        outlet_id=outlet.pk,
        floor_id=floor_id,
        transaction_type=transaction_type,
        amount=signed,
        reference_type="day_session",
        reference_id=session.pk,
        description=description,
        created_by=user,
    )
    logger.info(
        "Cash movement recorded",
        extra={
            "outlet_id": str(outlet.pk),
            "session_id": session.pk,
            "transaction_type": transaction_type,
            "amount": str(signed),
        },
    )
    return entry


def record_cash_movement(
    *,
    outlet_id,
    transaction_type: str,
    amount,
    description: str = "",
    user=None,
    floor_id=None,
) -> CashLedgerEntry:
    return run_with_conflict_retry(
        lambda: _record_cash_movement_once(
            outlet_id=outlet_id,
            transaction_type=(transaction_type or "").strip().lower(),
            amount=amount,
            description=description,
            user=user,
            floor_id=floor_id,
        ),
        label="record_cash_movement",
    )


# ---------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------


def shift_status(*, outlet_id, floor_id=None) -> dict:
    if not Outlet.objects.filter(pk=outlet_id).exists():
        raise OutletNotFoundError("Outlet not found")

    return {
        "session": get_open_session(outlet_id=outlet_id, floor_id=floor_id),
        "current_balance": cash_ledger.current_balance(outlet_id=outlet_id),
        "recent_entries": cash_ledger.recent_entries(
            outlet_id=outlet_id,
            on_date=timezone.localdate(),
            floor_id=floor_id,
        ),
    }


def shift_history(*, outlet_id, user_id=None, date_from=None, date_to=None, status=None, floor_id=None):
    qs = DaySession.objects.filter(outlet_id=outlet_id).select_related(
        "opened_by", "closed_by", "floor"
    )
    if floor_id is not None:
        qs = qs.filter(floor_id=floor_id)
    if user_id:
        qs = qs.filter(Q(opened_by_id=user_id) | Q(closed_by_id=user_id))
    if date_from:
        qs = qs.filter(session_date__gte=date_from)
    if date_to:
        qs = qs.filter(session_date__lte=date_to)
    if status:
        qs = qs.filter(status=status)
    return qs.order_by("-session_date", "-opened_at")


def _payment_breakdown(*, outlet_id, on_date, floor_id=None) -> list[dict]:
    qs = Payment.objects.filter(
        outlet_id=outlet_id,
        created_at__date=on_date,
        status=Payment.STATUS_COMPLETED,
    )
    if floor_id is not None:
        qs = qs.filter(floor_id=floor_id)

    rows = (
        qs.values("mode")
        .annotate(count=Count("id"), total=Coalesce(Sum("total_amount"), Decimal("0.00")))
        .order_by("mode")
    )
    return [{"mode": r["mode"], "count": int(r["count"]), "total": _money(r["total"])} for r in rows]


def shift_detail(*, outlet_id, session_id) -> dict:
    """
    One session with what happened on its day: ledger entries in sequence
    order, completed payments per mode, and live order totals.
    A floor-level session only sees its own floor.
    """
    if not Outlet.objects.filter(pk=outlet_id).exists():
        raise OutletNotFoundError("Outlet not found")

    session = (
        DaySession.objects.select_related("opened_by", "closed_by", "floor")
        .filter(pk=session_id, outlet_id=outlet_id)
        .first()
    )
    if session is None:
        raise ShiftNotFoundError("Shift not found")

    scope = {"outlet_id": outlet_id, "on_date": session.session_date, "floor_id": session.floor_id}
    entries = (
        cash_ledger.entries_for_day(**scope)
        .select_related("created_by")
        .order_by("sequence")
    )
    return {
        "session": session,
        "entries": list(entries),
        "payment_breakdown": _payment_breakdown(**scope),
        **_day_order_totals(**scope),
    }
