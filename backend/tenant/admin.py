"""
Django Admin registration for the school registry.
"""
from django.contrib import admin

from tenant.models import School


@admin.register(School)
class SchoolAdmin(admin.ModelAdmin):
    list_display = [
        "code",
        "name",
        "mode",
        "db_alias",
        "status",
        "is_active",
        "updated_at",
    ]
    list_filter = ["mode", "status", "is_active"]
    search_fields = ["code", "name", "db_alias"]
    readonly_fields = ["public_id", "created_at", "updated_at"]

    fieldsets = (
        (None, {
            "fields": ("code", "name", "public_id"),
        }),
        ("Database Configuration", {
            "fields": ("mode", "db_alias", "status", "is_active"),
        }),
        ("Permissions", {
            "fields": ("fallback_permissions",),
            "classes": ("collapse",),
        }),
        ("Notes", {
            "fields": ("notes",),
            "classes": ("collapse",),
        }),
        ("Timestamps", {
            "fields": ("created_at", "updated_at"),
            "classes": ("collapse",),
        }),
    )

    def has_delete_permission(self, request, obj=None):
        """Schools are deactivated, not deleted, unless already suspended."""
        if obj and obj.status != School.Status.SUSPENDED:
            return False
        return super().has_delete_permission(request, obj)
