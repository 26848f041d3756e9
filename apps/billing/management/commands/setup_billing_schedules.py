"""
Django management command to register the billing lifecycle schedules
with Django-Q: reminder and expiry sweeps, promo and subscription reconciliation.
"""

from typing import Any

from django.core.management.base import BaseCommand, CommandParser

from apps.billing.tasks import BILLING_SCHEDULES, register_billing_schedules


class Command(BaseCommand):
    """📅 Register billing lifecycle schedules for Kairos Platform"""

    help = "Register grace period sweeps and reconciliation jobs with Django-Q"

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List the schedules without writing them",
        )

    def handle(self, *args: Any, **options: Any) -> None:
        if options.get("dry_run"):
            self.stdout.write(self.style.WARNING("🔍 Dry run, nothing will be registered"))
            for config in BILLING_SCHEDULES:
                self.stdout.write(f"  • {config['name']} → {config['func']} ({config['schedule_type'].lower()})")
            return

        self.stdout.write(self.style.SUCCESS("🚀 Registering billing schedules..."))
        registered = register_billing_schedules()
        for name in registered:
            self.stdout.write(f"  ✅ {name}")
        self.stdout.write(self.style.SUCCESS(f"✨ {len(registered)} schedules registered"))
