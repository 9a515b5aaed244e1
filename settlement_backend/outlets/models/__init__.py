# outlets/models/__init__.py

from .outlet import Floor, Outlet
from .table import Table, TableMerge, TableSession

__all__ = [
    "Outlet",
    "Floor",
    "Table",
    "TableSession",
    "TableMerge",
]
