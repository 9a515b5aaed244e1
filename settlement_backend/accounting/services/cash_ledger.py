# PATH: accounting/services/cash_ledger.py

"""
CASH LEDGER SERVICE

Append-only chain of cash movements per outlet.

Concurrency strategy (row lock on the ledger tail):
- Every append first locks the outlet's CashLedgerTail row (SELECT ... FOR UPDATE).
- balance_before is read from the locked tail, never from "latest entry" reads.
- The (outlet, sequence) unique constraint is the backstop: a collision is
  raised as LedgerContentionError and the caller's unit of work is retried.

Hard rules:
- append() must run inside the caller's transaction.
- Signs: sale/cash_in > 0, cash_out/refund/expense < 0, opening >= 0, closing any.
- Entries are never updated or deleted.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Case, F, Sum, When
from django.db.models.functions import Coalesce

from accounting.models import CashLedgerEntry, CashLedgerTail
from accounting.services.exceptions import CashLedgerError, LedgerContentionError

logger = logging.getLogger("cash_ledger")

TWOPLACES = Decimal("0.01")
RECENT_ENTRIES_LIMIT = 20


def _money(v) -> Decimal:
    return Decimal(str(v or "0.00")).quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def _validate_sign(transaction_type: str, amount: Decimal) -> None:
    if transaction_type not in CashLedgerEntry.VALID_TYPES:
        raise CashLedgerError(f"Unknown cash ledger transaction type: {transaction_type}")

    if transaction_type in CashLedgerEntry.INFLOW_TYPES and amount <= 0:
        raise CashLedgerError(f"{transaction_type} amount must be positive")

    if transaction_type in CashLedgerEntry.OUTFLOW_TYPES and amount >= 0:
        raise CashLedgerError(f"{transaction_type} amount must be negative")

    if transaction_type == CashLedgerEntry.TYPE_OPENING and amount < 0:
        raise CashLedgerError("opening amount cannot be negative")


def _lock_tail(*, outlet_id) -> CashLedgerTail:
    tail = CashLedgerTail.objects.select_for_update().filter(outlet_id=outlet_id).first()
    if tail is not None:
        return tail

    # First append for this outlet: seed the tail from any existing entries.
    last = (
        CashLedgerEntry.objects.filter(outlet_id=outlet_id)
        .order_by("-sequence")
        .values("sequence", "balance_after")
        .first()
    )
    try:
        with transaction.atomic():
            return CashLedgerTail.objects.create(
                outlet_id=outlet_id,
                last_sequence=last["sequence"] if last else 0,
                balance=_money(last["balance_after"]) if last else Decimal("0.00"),
            )
    except IntegrityError as exc:
        raise LedgerContentionError(
            f"Cash ledger tail for outlet {outlet_id} was created concurrently"
        ) from exc


def append(
    *,
    outlet_id,
    transaction_type: str,
    amount,
    reference_type: str = "",
    reference_id="",
    description: str = "",
    floor_id=None,
    created_by=None,
) -> CashLedgerEntry:
    """
    Append one signed entry to the outlet's cash ledger.

    Must be called inside an open transaction; the tail lock is held until
    the caller commits or rolls back.
    """
    if not transaction.get_connection().in_atomic_block:
        raise CashLedgerError("Cash ledger appends must run inside a transaction")

    if not outlet_id:
        raise CashLedgerError("outlet_id is required for cash ledger entries")

    amount = _money(amount)
    _validate_sign(transaction_type, amount)

    tail = _lock_tail(outlet_id=outlet_id)

    balance_before = _money(tail.balance)
    balance_after = _money(balance_before + amount)
    sequence = tail.last_sequence + 1

    try:
        with transaction.atomic():
            entry = CashLedgerEntry.objects.create(
                outlet_id=outlet_id,
                floor_id=floor_id,
                sequence=sequence,
                transaction_type=transaction_type,
                amount=amount,
                balance_before=balance_before,
                balance_after=balance_after,
                reference_type=reference_type or "",
                reference_id=str(reference_id or ""),
                description=(description or "")[:255],
                created_by=created_by,
            )
    except IntegrityError as exc:
        raise LedgerContentionError(
            f"Cash ledger position {sequence} for outlet {outlet_id} is already taken"
        ) from exc
    except ValidationError as exc:
        raise CashLedgerError(f"Invalid cash ledger entry: {exc}") from exc

    tail.last_sequence = sequence
    tail.balance = balance_after
    tail.save(update_fields=["last_sequence", "balance", "updated_at"])

    logger.info(
        "Cash ledger entry appended",
        extra={
            "outlet_id": str(outlet_id),
            "sequence": sequence,
            "transaction_type": transaction_type,
            "amount": str(amount),
            "balance_after": str(balance_after),
            "reference_type": reference_type,
            "reference_id": str(reference_id or ""),
        },
    )
    return entry


def append_closing(
    *,
    outlet_id,
    amount=None,
    reference_type: str = "",
    reference_id="",
    description: str = "",
    floor_id=None,
    created_by=None,
) -> CashLedgerEntry:
    """
    Append a closing entry.

    amount=None clears the drawer: the entry is -(running balance) read under
    the tail lock, so balance_after lands on exactly 0.00.
    """
    if amount is None:
        if not transaction.get_connection().in_atomic_block:
            raise CashLedgerError("Cash ledger appends must run inside a transaction")
        tail = _lock_tail(outlet_id=outlet_id)
        amount = -_money(tail.balance)

    return append(
        outlet_id=outlet_id,
        transaction_type=CashLedgerEntry.TYPE_CLOSING,
        amount=amount,
        reference_type=reference_type,
        reference_id=reference_id,
        description=description,
        floor_id=floor_id,
        created_by=created_by,
    )


# ---------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------


def current_balance(*, outlet_id) -> Decimal:
    tail = CashLedgerTail.objects.filter(outlet_id=outlet_id).values_list("balance", flat=True).first()
    if tail is not None:
        return _money(tail)

    last = (
        CashLedgerEntry.objects.filter(outlet_id=outlet_id)
        .order_by("-sequence")
        .values_list("balance_after", flat=True)
        .first()
    )
    return _money(last)


def entries_for_day(*, outlet_id, on_date, floor_id=None):
    qs = CashLedgerEntry.objects.filter(outlet_id=outlet_id, created_at__date=on_date)
    if floor_id is not None:
        qs = qs.filter(floor_id=floor_id)
    return qs


def recent_entries(*, outlet_id, on_date, floor_id=None, limit: int = RECENT_ENTRIES_LIMIT):
    return list(
        entries_for_day(outlet_id=outlet_id, on_date=on_date, floor_id=floor_id)
        .select_related("created_by")
        .order_by("-sequence")[:limit]
    )


def cash_totals_for_day(*, outlet_id, on_date, floor_id=None) -> dict[str, Decimal]:
    """
    Per-type totals for one outlet/day. Outflows are returned as absolute values.
    """
    qs = entries_for_day(outlet_id=outlet_id, on_date=on_date, floor_id=floor_id)

    def _sum_of(tx_type):
        return Coalesce(
            Sum(Case(When(transaction_type=tx_type, then=F("amount")))),
            Decimal("0.00"),
        )

    agg = qs.aggregate(
        sales=_sum_of(CashLedgerEntry.TYPE_SALE),
        cash_in=_sum_of(CashLedgerEntry.TYPE_CASH_IN),
        cash_out=_sum_of(CashLedgerEntry.TYPE_CASH_OUT),
        refunds=_sum_of(CashLedgerEntry.TYPE_REFUND),
        expenses=_sum_of(CashLedgerEntry.TYPE_EXPENSE),
    )

    return {
        "sales": _money(agg["sales"]),
        "cash_in": _money(agg["cash_in"]),
        "cash_out": abs(_money(agg["cash_out"])),
        "refunds": abs(_money(agg["refunds"])),
        "expenses": abs(_money(agg["expenses"])),
    }


def expected_cash(*, opening_cash, totals: dict[str, Decimal]) -> Decimal:
    """openingCash + (sales + cash_in) - (|cash_out| + |refunds| + |expenses|)"""
    inflow = totals["sales"] + totals["cash_in"]
    outflow = totals["cash_out"] + totals["refunds"] + totals["expenses"]
    return _money(_money(opening_cash) + inflow - outflow)


def verify_chain(*, outlet_id):
    """
    Walk the outlet's ledger in sequence order.

    Returns the first entry that breaks the chain, or None when intact.
    """
    previous = None
    for entry in CashLedgerEntry.objects.filter(outlet_id=outlet_id).order_by("sequence").iterator():
        if entry.balance_after != entry.balance_before + entry.amount:
            return entry
        if previous is not None:
            if entry.sequence != previous.sequence + 1:
                return entry
            if entry.balance_before != previous.balance_after:
                return entry
        elif entry.balance_before != Decimal("0.00"):
            return entry
        previous = entry
    return None
