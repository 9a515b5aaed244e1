# payments/tests/helpers.py

"""
ORM builders shared by the settlement test suites.

Everything is created directly through the models: no services, no API.
"""

from __future__ import annotations

import itertools
from decimal import Decimal

from django.contrib.auth import get_user_model

from orders.models import Invoice, KitchenTicket, KitchenTicketItem, Order, OrderItem
from outlets.models import Floor, Outlet, Table, TableMerge, TableSession

User = get_user_model()

_seq = itertools.count(1)


def _n() -> int:
    return next(_seq)


def make_user(*, role="cashier", username=None):
    username = username or f"{role}{_n()}"
    return User.objects.create_user(username=username, password="pass1234", role=role)


def make_outlet(*, name=None, **extra):
    n = _n()
    return Outlet.objects.create(
        name=name or f"Outlet {n}",
        code=extra.pop("code", f"OUT{n}"),
        phone=extra.pop("phone", "+91 80 4000 0000"),
        **extra,
    )


def make_floor(*, outlet, name="Ground"):
    return Floor.objects.create(outlet=outlet, name=name)


def make_table(*, outlet, floor=None, number=None, capacity=4, status=Table.STATUS_OCCUPIED):
    return Table.objects.create(
        outlet=outlet,
        floor=floor,
        number=number or f"T{_n()}",
        capacity=capacity,
        status=status,
    )


def make_session(*, table, status=TableSession.STATUS_ACTIVE):
    return TableSession.objects.create(table=table, status=status)


def merge_tables(*, primary, merged, session=None):
    primary.capacity += merged.capacity
    primary.save(update_fields=["capacity"])
    merged.status = Table.STATUS_MERGED
    merged.save(update_fields=["status"])
    return TableMerge.objects.create(
        primary_table=primary,
        merged_table=merged,
        table_session=session,
        merged_capacity=merged.capacity,
    )


def make_order(*, outlet, total, table=None, session=None, status=Order.STATUS_SERVED, user=None):
    return Order.objects.create(
        order_number=f"ORD{_n():05d}",
        outlet=outlet,
        table=table,
        table_session=session,
        total_amount=Decimal(str(total)),
        status=status,
        created_by=user,
    )


def make_invoice(*, order, phone="", grand_total=None):
    total = order.total_amount if grand_total is None else Decimal(str(grand_total))
    return Invoice.objects.create(
        order=order,
        invoice_number=f"INV{_n():05d}",
        subtotal=total,
        grand_total=total,
        customer_name="Walk-in",
        customer_phone=phone,
    )


def make_ticket(*, order, status=KitchenTicket.STATUS_READY, station="kitchen", items=1):
    ticket = KitchenTicket.objects.create(
        outlet=order.outlet,
        order=order,
        ticket_number=f"KOT{_n():05d}",
        station=station,
        status=status,
    )
    for i in range(items):
        item = OrderItem.objects.create(
            order=order,
            name=f"Dish {i + 1}",
            quantity=1,
            unit_price=Decimal("100.00"),
            status=OrderItem.STATUS_READY,
        )
        KitchenTicketItem.objects.create(ticket=ticket, order_item=item, quantity=1, status=status)
    return ticket
