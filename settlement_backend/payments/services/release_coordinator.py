# payments/services/release_coordinator.py

"""
TABLE / SESSION RELEASE ON FULL SETTLEMENT

Runs inside the settlement transaction once an order's due amount hits zero.
Each step is a named function so it can be tested on its own:

    1. unmerge_tables            active merges where this table is primary
    2. release_table             table -> available
    3. complete_table_session    session -> completed (+ ended_at)
    4. mark_kitchen_work_served  open KOTs, KOT items, order items -> served

Steps 1-2 only apply to table-bound orders, step 3 to orders with a session.
Step 4 always applies: full payment means the kitchen workflow is done, whatever state it last recorded.

A failure in any step propagates and rolls back the whole payment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from django.db import transaction
from django.utils import timezone

from orders.models import KitchenTicket, KitchenTicketItem, Order, OrderItem
from outlets.models import Table, TableMerge, TableSession

logger = logging.getLogger("payments")

MIN_TABLE_CAPACITY = 1


@dataclass
class ReleaseResult:
    table: Table | None = None
    unmerged_tables: list[Table] = field(default_factory=list)
    session_id: object = None
    served_tickets: list[KitchenTicket] = field(default_factory=list)

    @property
    def table_released(self) -> bool:
        return self.table is not None


def unmerge_tables(*, table: Table, actor=None, now=None) -> list[Table]:
    now = now or timezone.now()

    merges = list(
        TableMerge.objects.select_for_update()
        .filter(primary_table_id=table.pk, unmerged_at__isnull=True)
        .order_by("merged_at")
    )
    if not merges:
        return []

    released = []
    for merge in merges:
        merged = Table.objects.select_for_update().get(pk=merge.merged_table_id)

        merge.unmerged_at = now
        merge.unmerged_by = actor
        merge.save(update_fields=["unmerged_at", "unmerged_by"])

        merged.status = Table.STATUS_AVAILABLE
        merged.save(update_fields=["status", "updated_at"])

        # merges recorded before capacity tracking fall back to the live value
        restored = merge.merged_capacity or merged.capacity
        table.capacity = max(MIN_TABLE_CAPACITY, table.capacity - restored)
        released.append(merged)

    table.save(update_fields=["capacity", "updated_at"])
    return released


def release_table(*, table: Table) -> Table:
    table.status = Table.STATUS_AVAILABLE
    table.save(update_fields=["status", "updated_at"])
    return table


def complete_table_session(*, session_id, now=None) -> bool:
    if not session_id:
        return False
    updated = (
        TableSession.objects.filter(pk=session_id)
        .exclude(status=TableSession.STATUS_COMPLETED)
        .update(status=TableSession.STATUS_COMPLETED, ended_at=now or timezone.now())
    )
    return bool(updated)


def mark_kitchen_work_served(*, order: Order, actor=None, now=None) -> list[KitchenTicket]:
    now = now or timezone.now()

    ticket_ids = list(
        KitchenTicket.objects.filter(order_id=order.pk)
        .exclude(status__in=KitchenTicket.TERMINAL_STATUSES)
        .values_list("id", flat=True)
    )

    if ticket_ids:
        KitchenTicket.objects.filter(pk__in=ticket_ids).update(
            status=KitchenTicket.STATUS_SERVED,
            served_at=now,
            served_by=actor,
        )
        KitchenTicketItem.objects.filter(ticket_id__in=ticket_ids).exclude(
            status=KitchenTicket.STATUS_CANCELLED
        ).update(status=KitchenTicket.STATUS_SERVED)

    OrderItem.objects.filter(order_id=order.pk).exclude(
        status__in=OrderItem.TERMINAL_STATUSES
    ).update(status=OrderItem.STATUS_SERVED)

    return list(KitchenTicket.objects.filter(pk__in=ticket_ids).order_by("created_at"))


def release_on_full_settlement(*, order: Order, actor=None) -> ReleaseResult:
    if not transaction.get_connection().in_atomic_block:
        raise RuntimeError("release_on_full_settlement() must run inside the settlement transaction")

    now = timezone.now()
    result = ReleaseResult()

    if order.table_id:
        table = Table.objects.select_for_update().get(pk=order.table_id)
        result.unmerged_tables = unmerge_tables(table=table, actor=actor, now=now)
        result.table = release_table(table=table)

    if complete_table_session(session_id=order.table_session_id, now=now):
        result.session_id = order.table_session_id

    result.served_tickets = mark_kitchen_work_served(order=order, actor=actor, now=now)

    logger.info(
        "Order released after full settlement",
        extra={
            "order_id": str(order.pk),
            "table_id": str(order.table_id) if order.table_id else None,
            "unmerged_tables": [str(t.pk) for t in result.unmerged_tables],
            "session_completed": result.session_id is not None,
            "tickets_served": len(result.served_tickets),
        },
    )
    return result
