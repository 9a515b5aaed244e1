# payments/models/sequence.py

from django.db import models
from django.utils import timezone

from outlets.models import Outlet


class DailySequence(models.Model):
    """
    Locked counter row behind daily document numbers (PAY..., REF...).

    One row per (outlet, name, date). Callers lock it with select_for_update
    and increment last_value; MAX()+1 / COUNT()+1 lookups are not used.
    """

    outlet = models.ForeignKey(Outlet, on_delete=models.CASCADE, related_name="daily_sequences")
    name = models.CharField(max_length=10)
    sequence_date = models.DateField(default=timezone.localdate)
    last_value = models.PositiveIntegerField(default=0)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["outlet", "name", "sequence_date"],
                name="uniq_daily_sequence_per_outlet",
            ),
        ]

    def __str__(self):
        return f"{self.name} {self.sequence_date} @ {self.outlet_id} = {self.last_value}"
