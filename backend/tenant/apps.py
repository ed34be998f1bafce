import logging
import os
import sys

from django.apps import AppConfig


logger = logging.getLogger(__name__)


class TenantConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "tenant"
    verbose_name = "School Registry"

    def ready(self):
        """
        Run startup health checks for the school registry.

        Behavior controlled by TENANT_HEALTH_CHECK env var:
        - "error" (default): Raises RuntimeError on inconsistency
        - "warn": Logs warning but allows startup
        - "skip": Skips check entirely
        """
        from django.conf import settings

        if "migrate" in sys.argv or "makemigrations" in sys.argv:
            return
        if getattr(settings, "TESTING", False):
            return

        health_check_mode = os.environ.get("TENANT_HEALTH_CHECK", "error")
        if health_check_mode == "skip":
            logger.debug("Tenant health check skipped (TENANT_HEALTH_CHECK=skip)")
            return

        from django.db import connection
        from django.db.utils import OperationalError, ProgrammingError

        try:
            if "tenant_school" not in connection.introspection.table_names():
                logger.debug("Tenant health check skipped (tables not yet created)")
                return
        except (OperationalError, ProgrammingError):
            logger.debug("Tenant health check skipped (database not ready)")
            return

        self._check_school_aliases(health_check_mode)

    def _check_school_aliases(self, mode: str):
        """
        Verify every active school points at a store we can build:
        1. SHARED mode -> db_alias == "default"
        2. DEDICATED_DB mode -> alias configured or its env var present
        """
        from tenant.connections import misconfigured_schools

        errors = misconfigured_schools()
        if not errors:
            logger.info("Tenant health check passed")
            return

        message = (
            f"TENANT HEALTH CHECK FAILED ({len(errors)} issues):\n"
            + "\n".join(f"  - {e}" for e in errors)
        )
        if mode == "error":
            raise RuntimeError(message)
        logger.warning(message)
