# accounting/api/filters.py

import django_filters
from django.db.models import Q

from accounting.models import CashLedgerEntry, DaySession


class DaySessionFilter(django_filters.FilterSet):
    """
    Shift history filters:
        ?date_from=YYYY-MM-DD&date_to=YYYY-MM-DD&status=closed&user=<uuid>&floor=<uuid>
    """

    date_from = django_filters.DateFilter(field_name="session_date", lookup_expr="gte")
    date_to = django_filters.DateFilter(field_name="session_date", lookup_expr="lte")
    status = django_filters.ChoiceFilter(choices=DaySession.STATUS_CHOICES)
    user = django_filters.UUIDFilter(method="filter_user")
    floor = django_filters.UUIDFilter(field_name="floor_id")

    class Meta:
        model = DaySession
        fields = ["status", "floor"]

    def filter_user(self, queryset, name, value):
        return queryset.filter(Q(opened_by_id=value) | Q(closed_by_id=value))


class CashLedgerEntryFilter(django_filters.FilterSet):
    date = django_filters.DateFilter(field_name="created_at", lookup_expr="date")
    transaction_type = django_filters.ChoiceFilter(choices=CashLedgerEntry.TRANSACTION_TYPES)
    floor = django_filters.UUIDFilter(field_name="floor_id")

    class Meta:
        model = CashLedgerEntry
        fields = ["transaction_type", "floor"]
