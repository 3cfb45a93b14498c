# payments/management/commands/register_ipn.py

from __future__ import annotations

from django.core.management.base import BaseCommand, CommandError

from payments.services.exceptions import PaymentProviderError
from payments.services.session import get_session


class Command(BaseCommand):
    help = "Register the IPN URL with Pesapal and print the notification id. Running servers keep their own cached id."

    def add_arguments(self, parser):
        parser.add_argument("--url", dest="url", help="IPN URL (defaults to PESAPAL_IPN_URL)")
        parser.add_argument(
            "--type",
            dest="notification_type",
            default="POST",
            choices=["GET", "POST"],
            help="How Pesapal should call the IPN URL",
        )

    def handle(self, *args, **options):
        try:
            session = get_session()
            ipn_id = session.ensure_registered(options.get("url"), options.get("notification_type") or "POST")
        except PaymentProviderError as exc:
            raise CommandError(f"IPN registration failed: {exc}") from exc

        self.stdout.write(self.style.SUCCESS(f"IPN registered ({session.environment}): {ipn_id}"))
