# accounting/api/views/ledger.py

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework.generics import ListAPIView
from rest_framework.permissions import IsAuthenticated

from accounting.api.filters import CashLedgerEntryFilter
from accounting.api.serializers import CashLedgerEntrySerializer
from accounting.models import CashLedgerEntry
from permissions.roles import CAP_CASH_VIEW, HasCapability


class CashLedgerListView(ListAPIView):
    """
    GET /api/accounting/outlets/<outlet_id>/ledger/
    Newest first; ?date=YYYY-MM-DD&transaction_type=sale&floor=<uuid>
    """

    permission_classes = [IsAuthenticated, HasCapability]
    required_capability = CAP_CASH_VIEW
    serializer_class = CashLedgerEntrySerializer
    filter_backends = [DjangoFilterBackend]
    filterset_class = CashLedgerEntryFilter

    def get_queryset(self):
        return (
            CashLedgerEntry.objects.filter(outlet_id=self.kwargs["outlet_id"])
            .select_related("created_by")
            .order_by("-sequence")
        )
