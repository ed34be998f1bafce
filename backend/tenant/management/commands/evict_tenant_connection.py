"""
Drop cached school connections in this process.

Usage:
    python manage.py evict_tenant_connection NPS
    python manage.py evict_tenant_connection --all

Long-running workers keep their own cache; this only affects the
process running the command (e.g. a shell or a worker hook).
"""
from django.core.management.base import BaseCommand, CommandError

from tenant.connections import get_connection_manager


class Command(BaseCommand):
    help = "Evict cached school connection handles"

    def add_arguments(self, parser):
        parser.add_argument("codes", nargs="*", help="School codes to evict")
        parser.add_argument(
            "--all",
            action="store_true",
            help="Evict every cached handle",
        )

    def handle(self, *args, **options):
        manager = get_connection_manager()

        if options["all"]:
            codes = manager.cached_codes()
            manager.close_all()
            self.stdout.write(self.style.SUCCESS(f"Evicted {len(codes)} cached connection(s)"))
            return

        if not options["codes"]:
            raise CommandError("Give at least one school code, or --all")

        for code in options["codes"]:
            if manager.invalidate(code):
                self.stdout.write(self.style.SUCCESS(f"  EVICTED: {code.upper()}"))
            else:
                self.stdout.write(f"  SKIP: {code.upper()} - not cached")
