"""
Initial migration for tenant app.

Creates:
- tenant_school: The registry of schools and where their records live
"""
import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="School",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                (
                    "public_id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Public identifier for API exposure.",
                        unique=True,
                    ),
                ),
                (
                    "code",
                    models.CharField(
                        help_text="Canonical uppercase school code, e.g. NPS.",
                        max_length=20,
                        unique=True,
                    ),
                ),
                (
                    "name",
                    models.CharField(
                        help_text="Display name. Also accepted as an identifier (case-insensitive).",
                        max_length=255,
                    ),
                ),
                (
                    "fallback_permissions",
                    models.JSONField(
                        blank=True,
                        help_text="Registry-level permission matrix: role -> {permission: bool}.",
                        null=True,
                    ),
                ),
                (
                    "mode",
                    models.CharField(
                        choices=[
                            ("SHARED", "Shared Database"),
                            ("DEDICATED_DB", "Dedicated Database"),
                        ],
                        default="SHARED",
                        help_text="SHARED keeps records in the default database, DEDICATED_DB uses its own.",
                        max_length=20,
                    ),
                ),
                (
                    "db_alias",
                    models.CharField(
                        default="default",
                        help_text="Database alias. Maps to DATABASE_URL_TENANT_{CODE} env var for dedicated DBs.",
                        max_length=100,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("ACTIVE", "Active"),
                            ("READ_ONLY", "Read Only"),
                            ("SUSPENDED", "Suspended"),
                        ],
                        default="ACTIVE",
                        max_length=20,
                    ),
                ),
                (
                    "is_active",
                    models.BooleanField(
                        default=True,
                        help_text="Soft-deactivation flag. Inactive schools no longer resolve.",
                    ),
                ),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "notes",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Operator notes about this school.",
                    ),
                ),
            ],
            options={
                "verbose_name": "School",
                "verbose_name_plural": "Schools",
                "db_table": "tenant_school",
                "ordering": ["code"],
                "indexes": [
                    models.Index(fields=["db_alias"], name="tenant_school_db_alias_idx"),
                    models.Index(fields=["status"], name="tenant_school_status_idx"),
                ],
            },
        ),
    ]
