# accounting/api/serializers/ledger_entries.py

from rest_framework import serializers

from accounting.models import CashLedgerEntry


class CashLedgerEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = CashLedgerEntry
        fields = (
            "id",
            "outlet",
            "floor",
            "sequence",
            "transaction_type",
            "amount",
            "balance_before",
            "balance_after",
            "reference_type",
            "reference_id",
            "description",
            "created_by",
            "created_at",
        )
        read_only_fields = fields
