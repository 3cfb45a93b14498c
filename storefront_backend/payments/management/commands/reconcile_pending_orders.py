# payments/management/commands/reconcile_pending_orders.py

from __future__ import annotations

from datetime import timedelta

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from orders.services import order_store
from orders.services.exceptions import PersistenceError
from payments.services.exceptions import PaymentProviderError, StatusQueryError
from payments.services.reconciliation import map_processor_status, reconcile_order_status
from payments.services.session import get_session


class Command(BaseCommand):
    help = (
        "Re-query Pesapal for local orders still pending payment that carry a tracking id, "
        "and apply the authoritative status (missed / delayed IPNs)."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--min-age-minutes",
            dest="min_age_minutes",
            type=int,
            default=10,
            help="Only orders created at least this many minutes ago (default 10)",
        )
        parser.add_argument("--limit", dest="limit", type=int, default=200, help="Max orders per run")
        parser.add_argument("--dry-run", action="store_true", help="Query Pesapal but do not write")

    def handle(self, *args, **options):
        min_age = int(options.get("min_age_minutes") or 0)
        limit = int(options.get("limit") or 0)
        dry_run = bool(options.get("dry_run"))

        if min_age < 0:
            raise CommandError("--min-age-minutes cannot be negative")
        if limit <= 0:
            raise CommandError("--limit must be positive")

        try:
            session = get_session()
        except PaymentProviderError as exc:
            raise CommandError(f"Pesapal session unavailable: {exc}") from exc

        cutoff = timezone.now() - timedelta(minutes=min_age)
        orders = list(order_store.list_pending_with_tracking(created_before=cutoff)[:limit])

        checked = updated = failed = 0

        for order in orders:
            checked += 1
            try:
                processor_status = session.get_status(order.tracking_id)
            except StatusQueryError as exc:
                failed += 1
                self.stderr.write(self.style.WARNING(f"{order.order_number}: status query failed: {exc}"))
                continue

            mapped = map_processor_status(processor_status.payment_status_description)
            description = processor_status.payment_status_description or "(none)"

            if dry_run:
                self.stdout.write(f"[dry-run] {order.order_number}: {description} -> {mapped}")
                continue

            try:
                update = reconcile_order_status(order=order, processor_status=processor_status)
            except PersistenceError as exc:
                failed += 1
                self.stderr.write(self.style.WARNING(f"{order.order_number}: could not save status: {exc}"))
                continue

            if update.changed:
                updated += 1
                self.stdout.write(
                    f"{order.order_number}: {update.previous_payment_status} -> {update.payment_status}"
                )

        summary = f"Checked {checked} pending order(s): {updated} updated, {failed} failure(s)"
        if dry_run:
            summary += " (dry run, nothing written)"
        self.stdout.write(self.style.SUCCESS(summary))
