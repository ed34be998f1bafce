"""
Per-school records.

These models live in each school's store: the shared "default" database
for SHARED schools, or the school's own database for DEDICATED_DB ones.
Every row carries school_code so shared-mode schools never see each
other's data, and every query goes through tenant.collections, which
pins both the database alias and the school_code filter.
"""
from django.db import models


class Role(models.TextChoices):
    ADMIN = "admin", "Admin"
    TEACHER = "teacher", "Teacher"
    STUDENT = "student", "Student"
    PARENT = "parent", "Parent"


class TenantModel(models.Model):
    school_code = models.CharField(max_length=20, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class SchoolUser(TenantModel):
    """
    A provisioned user of one school.

    user_id is unique per (school_code, role) and never reused: rows
    are deactivated, not deleted, and the sequence counter only moves
    forward.
    """

    user_id = models.CharField(max_length=32)
    role = models.CharField(max_length=16, choices=Role.choices)
    name = models.CharField(max_length=255, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    date_of_birth = models.DateField(null=True, blank=True)

    password = models.CharField(max_length=128)
    # Plaintext echo shown once to an administrator; overwritten on reset.
    temporary_password = models.CharField(max_length=64, null=True, blank=True)
    password_change_required = models.BooleanField(default=True)

    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "records_school_user"
        constraints = [
            models.UniqueConstraint(
                fields=["school_code", "role", "user_id"],
                name="uniq_school_role_user_id",
            ),
        ]
        indexes = [
            models.Index(fields=["school_code", "role"], name="school_user_role_idx"),
        ]

    def __str__(self):
        return f"{self.school_code}:{self.user_id}"


class Message(TenantModel):
    sender_id = models.CharField(max_length=32)
    recipient_id = models.CharField(max_length=32, blank=True, default="")
    subject = models.CharField(max_length=255, blank=True, default="")
    body = models.TextField(blank=True, default="")

    class Meta:
        db_table = "records_message"


class Result(TenantModel):
    student_id = models.CharField(max_length=32)
    subject = models.CharField(max_length=100)
    term = models.CharField(max_length=50, blank=True, default="")
    marks = models.DecimalField(max_digits=6, decimal_places=2, null=True, blank=True)
    is_frozen = models.BooleanField(default=False)

    class Meta:
        db_table = "records_result"


class Timetable(TenantModel):
    class_name = models.CharField(max_length=50)
    section = models.CharField(max_length=10, blank=True, default="")
    entries = models.JSONField(default=list, blank=True)

    class Meta:
        db_table = "records_timetable"


class PermissionOverride(TenantModel):
    """
    The school's own permission matrix: role -> {permission_key: bool}.

    At most one row per school; no row is the normal state for a school
    that never customised permissions.
    """

    matrix = models.JSONField(default=dict, blank=True)
    updated_by = models.CharField(max_length=32, blank=True, default="")

    class Meta:
        db_table = "records_permission_override"
        constraints = [
            models.UniqueConstraint(
                fields=["school_code"],
                name="uniq_permission_override_school",
            ),
        ]


class TenantInfo(TenantModel):
    display_name = models.CharField(max_length=255, blank=True, default="")
    contact_email = models.EmailField(blank=True, default="")
    contact_phone = models.CharField(max_length=32, blank=True, default="")

    class Meta:
        db_table = "records_tenant_info"
        constraints = [
            models.UniqueConstraint(
                fields=["school_code"],
                name="uniq_tenant_info_school",
            ),
        ]


class IdentifierSequence(TenantModel):
    """
    Per-school counters for sequential user identifiers.

    name is the counter namespace (the role). last_value is the highest
    sequence number ever handed out, so a fresh counter starts at 0.
    """

    name = models.CharField(max_length=50)
    last_value = models.BigIntegerField(default=0)

    class Meta:
        db_table = "records_identifier_sequence"
        constraints = [
            models.UniqueConstraint(
                fields=["school_code", "name"],
                name="uniq_school_sequence_name",
            ),
        ]

    def __str__(self):
        return f"{self.school_code}:{self.name}={self.last_value}"
