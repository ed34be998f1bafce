"""
Register a school in the registry.

Usage:
    python manage.py register_school NPS "National Public School"
    python manage.py register_school KVS "Kendriya Vidyalaya" --dedicated
    python manage.py register_school NPS "National Public School" --dry-run

Dedicated schools read their database from DATABASE_URL_TENANT_{CODE}.
Run `migrate --database tenant_{code}` once that database exists.
"""
import json

from django.core.management.base import BaseCommand, CommandError
from django.db import IntegrityError

from tenant.connections import dedicated_database_url
from tenant.models import School
from tenant.registry import TenantRegistry, looks_like_code


class Command(BaseCommand):
    help = "Register a school (tenant) in the registry"

    def add_arguments(self, parser):
        parser.add_argument("code", help="School code, e.g. NPS")
        parser.add_argument("name", help="Display name")
        parser.add_argument(
            "--dedicated",
            action="store_true",
            help="Keep this school's records in its own database",
        )
        parser.add_argument(
            "--fallback-permissions",
            default=None,
            help="Registry-level permission matrix as JSON (role -> {permission: bool})",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be done without making changes",
        )

    def handle(self, *args, **options):
        code = options["code"].strip().upper()
        name = options["name"].strip()
        dedicated = options["dedicated"]

        if not looks_like_code(code):
            raise CommandError(f"Invalid school code: {code!r}")

        fallback = None
        if options["fallback_permissions"]:
            try:
                fallback = json.loads(options["fallback_permissions"])
            except json.JSONDecodeError as e:
                raise CommandError(f"--fallback-permissions is not valid JSON: {e}")
            if not isinstance(fallback, dict):
                raise CommandError("--fallback-permissions must be a JSON object")

        if School.objects.using("default").filter(code=code).exists():
            raise CommandError(f"School {code} is already registered")

        alias = School.dedicated_alias_for(code) if dedicated else "default"
        mode = "DEDICATED_DB" if dedicated else "SHARED"

        if options["dry_run"]:
            self.stdout.write(self.style.WARNING("DRY RUN - no changes will be made\n"))
            self.stdout.write(f"  WOULD CREATE: {code} ({name}) -> {mode}/{alias}")
            return

        try:
            TenantRegistry().register(code, name, dedicated=dedicated, fallback_permissions=fallback)
        except (ValueError, IntegrityError) as e:
            raise CommandError(str(e))

        self.stdout.write(self.style.SUCCESS(f"  CREATED: {code} ({name}) -> {mode}/{alias}"))
        if dedicated and not dedicated_database_url(code):
            self.stdout.write(
                self.style.WARNING(
                    f"  DATABASE_URL_TENANT_{code} is not set; "
                    "the school is unreachable until it is."
                )
            )
