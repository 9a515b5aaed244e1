# accounting/api/urls.py

from django.urls import path

from accounting.api.views import (
    CashLedgerListView,
    CashMovementCreateView,
    ShiftCloseView,
    ShiftDetailView,
    ShiftHistoryView,
    ShiftOpenView,
    ShiftStatusView,
)

urlpatterns = [
    path("outlets/<uuid:outlet_id>/shift/", ShiftStatusView.as_view(), name="shift-status"),
    path("outlets/<uuid:outlet_id>/shift/open/", ShiftOpenView.as_view(), name="shift-open"),
    path("outlets/<uuid:outlet_id>/shift/close/", ShiftCloseView.as_view(), name="shift-close"),
    path("outlets/<uuid:outlet_id>/shift/history/", ShiftHistoryView.as_view(), name="shift-history"),
    path("outlets/<uuid:outlet_id>/shift/<uuid:session_id>/", ShiftDetailView.as_view(), name="shift-detail"),
    path("outlets/<uuid:outlet_id>/cash-movements/", CashMovementCreateView.as_view(), name="cash-movements"),
    path("outlets/<uuid:outlet_id>/ledger/", CashLedgerListView.as_view(), name="cash-ledger"),
]
