# orders/models/__init__.py

"""
ORDERS MODELS PACKAGE EXPORTS

Orders, invoices and kitchen tickets are owned by upstream services.
Settlement reads them and performs the few writes listed on each model.
"""

from .invoice import Invoice
from .kitchen import KitchenTicket, KitchenTicketItem
from .order import Order, OrderItem

__all__ = [
    "Order",
    "OrderItem",
    "Invoice",
    "KitchenTicket",
    "KitchenTicketItem",
]
