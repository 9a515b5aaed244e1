# payments/services/numbering.py

"""
DAILY DOCUMENT NUMBERS

    PAY + YYMMDD + 4-digit sequence   (payments, per outlet per day)
    REF + YYMMDD + 4-digit sequence   (refunds,  per outlet per day)

The counter row is locked for the rest of the caller's transaction, so a
rolled-back settlement gives its number back.
"""

from __future__ import annotations

from django.db import IntegrityError, transaction
from django.utils import timezone

from payments.models import DailySequence

PAYMENT_PREFIX = "PAY"
REFUND_PREFIX = "REF"


def format_number(prefix: str, on_date, value: int) -> str:
    return f"{prefix}{on_date:%y%m%d}{value:04d}"


def next_number(*, outlet_id, prefix: str, on_date=None) -> str:
    if not transaction.get_connection().in_atomic_block:
        raise RuntimeError("next_number() must be called inside a transaction")

    on_date = on_date or timezone.localdate()
    lookup = {"outlet_id": outlet_id, "name": prefix, "sequence_date": on_date}

    counter = DailySequence.objects.select_for_update().filter(**lookup).first()
    if counter is None:
        try:
            with transaction.atomic():
                counter = DailySequence.objects.create(last_value=0, **lookup)
        except IntegrityError:
            # Another writer created today's row first; wait on its lock.
            counter = DailySequence.objects.select_for_update().get(**lookup)

    counter.last_value += 1
    counter.save(update_fields=["last_value"])
    return format_number(prefix, on_date, counter.last_value)


def next_payment_number(*, outlet_id, on_date=None) -> str:
    return next_number(outlet_id=outlet_id, prefix=PAYMENT_PREFIX, on_date=on_date)


def next_refund_number(*, outlet_id, on_date=None) -> str:
    return next_number(outlet_id=outlet_id, prefix=REFUND_PREFIX, on_date=on_date)
