# products/management/commands/mark_expired_batches.py

from __future__ import annotations

from datetime import datetime

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from products.services.batches import get_expired_batches, mark_expired_batches


def _parse_date(s: str | None):
    """
    Parse YYYY-MM-DD into a date, or None.
    """
    if not s:
        return None
    try:
        return datetime.strptime(s, "%Y-%m-%d").date()
    except ValueError:
        return None


class Command(BaseCommand):
    help = "Flip active batches past their expiry date to EXPIRED (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--date",
            dest="as_of",
            help="Treat this day (YYYY-MM-DD) as today. Defaults to the local date.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List the batches that would expire without changing them.",
        )

    def handle(self, *args, **options):
        as_of = _parse_date(options.get("as_of"))
        if options.get("as_of") and not as_of:
            raise CommandError("Invalid --date. Use YYYY-MM-DD")

        as_of = as_of or timezone.localdate()

        if options.get("dry_run"):
            batches = get_expired_batches(today=as_of)
            for batch in batches:
                self.stdout.write(
                    f"{batch.batch_number}  {batch.product.name}  "
                    f"{batch.warehouse.name}  expired {batch.expiry_date.isoformat()}"
                )
            self.stdout.write(
                self.style.WARNING(f"[DRY RUN] {len(batches)} batch(es) would expire as of {as_of}")
            )
            return

        count = mark_expired_batches(today=as_of)
        self.stdout.write(self.style.SUCCESS(f"[OK] {count} batch(es) marked expired as of {as_of}"))
