# notifications/management/commands/dispatch_notifications.py

from __future__ import annotations

import time

from django.core.management.base import BaseCommand, CommandError

from notifications.outbox import DEFAULT_BATCH_SIZE, dispatch_due


class Command(BaseCommand):
    help = "Deliver pending outbox notifications (events + receipts) that are due."

    def add_arguments(self, parser):
        parser.add_argument(
            "--limit",
            type=int,
            default=DEFAULT_BATCH_SIZE,
            help="Maximum rows to deliver per batch.",
        )
        parser.add_argument(
            "--loop",
            action="store_true",
            help="Keep polling instead of exiting after one batch.",
        )
        parser.add_argument(
            "--interval",
            type=float,
            default=5.0,
            help="Seconds to sleep between batches when --loop is set.",
        )

    def handle(self, *args, **opts):
        limit = opts["limit"]
        if limit <= 0:
            raise CommandError("--limit must be > 0")

        while True:
            counts = dispatch_due(limit=limit)
            self.stdout.write(
                f"sent={counts['sent']} retrying={counts['retrying']} "
                f"failed={counts['failed']} skipped={counts['skipped']}"
            )
            if not opts["loop"]:
                break
            time.sleep(opts["interval"])
