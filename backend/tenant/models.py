"""
School registry - the catalog of tenants.

This table lives in the SYSTEM database ("default") and is the only
place that knows which schools exist and where their records live.

Design Principles:
- No secrets stored in database (only db_alias references)
- Codes are canonical: uppercase, unique, immutable once issued
- Soft deactivation only; a school referenced by live data is never deleted
"""
import uuid

from django.db import models


class School(models.Model):
    """
    A registered school (tenant).

    db_alias maps to environment variables:
    - "default" -> shared database, records scoped by school_code
    - "tenant_nps" -> DATABASE_URL_TENANT_NPS env var

    fallback_permissions is the registry-level permission matrix
    (role -> {permission_key: bool}) consulted when the school's own
    store has no override for a role/permission.
    """

    class IsolationMode(models.TextChoices):
        SHARED = "SHARED", "Shared Database"
        DEDICATED_DB = "DEDICATED_DB", "Dedicated Database"

    class Status(models.TextChoices):
        ACTIVE = "ACTIVE", "Active"
        READ_ONLY = "READ_ONLY", "Read Only"
        SUSPENDED = "SUSPENDED", "Suspended"

    id = models.BigAutoField(primary_key=True)

    public_id = models.UUIDField(
        default=uuid.uuid4,
        editable=False,
        unique=True,
        help_text="Public identifier for API exposure.",
    )

    code = models.CharField(
        max_length=20,
        unique=True,
        help_text="Canonical uppercase school code, e.g. NPS.",
    )

    name = models.CharField(
        max_length=255,
        help_text="Display name. Also accepted as an identifier (case-insensitive).",
    )

    fallback_permissions = models.JSONField(
        null=True,
        blank=True,
        help_text="Registry-level permission matrix: role -> {permission: bool}.",
    )

    mode = models.CharField(
        max_length=20,
        choices=IsolationMode.choices,
        default=IsolationMode.SHARED,
        help_text="SHARED keeps records in the default database, DEDICATED_DB uses its own.",
    )

    db_alias = models.CharField(
        max_length=100,
        default="default",
        help_text="Database alias. Maps to DATABASE_URL_TENANT_{CODE} env var for dedicated DBs.",
    )

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ACTIVE,
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Soft-deactivation flag. Inactive schools no longer resolve.",
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    notes = models.TextField(
        blank=True,
        default="",
        help_text="Operator notes about this school.",
    )

    class Meta:
        db_table = "tenant_school"
        verbose_name = "School"
        verbose_name_plural = "Schools"
        ordering = ["code"]
        indexes = [
            models.Index(fields=["db_alias"], name="tenant_school_db_alias_idx"),
            models.Index(fields=["status"], name="tenant_school_status_idx"),
        ]

    def __str__(self):
        return f"{self.code} ({self.name}) -> {self.db_alias}"

    def save(self, *args, **kwargs):
        self.code = (self.code or "").strip().upper()
        super().save(*args, **kwargs)

    @property
    def is_shared(self) -> bool:
        return self.mode == self.IsolationMode.SHARED

    @property
    def is_dedicated(self) -> bool:
        return self.mode == self.IsolationMode.DEDICATED_DB

    @property
    def is_writable(self) -> bool:
        """Check if school allows writes (not read-only or suspended)."""
        return self.is_active and self.status == self.Status.ACTIVE

    @staticmethod
    def dedicated_alias_for(code: str) -> str:
        """Database alias used for a dedicated school database."""
        return f"tenant_{code.lower()}"
