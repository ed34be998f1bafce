"""
Django Database Router for per-school isolation.

Routes database operations based on model classification:
- SYSTEM_APPS -> always to "default" database
- TENANT_APPS -> to the current school's database alias from context

Usage:
    # In settings.py
    DATABASE_ROUTERS = ['tenant.router.TenantDatabaseRouter']

tenant.collections always passes an explicit alias with .using(), so the
router mostly matters for admin, shell and migrations.
"""
import logging
from typing import Optional, Type

from django.conf import settings
from django.db.models import Model

from tenant.context import get_current_db_alias, is_shared_school

logger = logging.getLogger(__name__)


# System apps that ALWAYS live in the default database
SYSTEM_APPS = frozenset({
    "auth",
    "contenttypes",
    "sessions",
    "admin",
    "tenant",  # School registry lives in system DB
})

# All models in these apps are per-school records
TENANT_APPS = frozenset({
    "records",
})


class TenantDatabaseRouter:
    """
    Routes database operations based on school context.

    Thread-safe via contextvars (see tenant.context module).
    """

    def _get_model_label(self, model: Type[Model]) -> str:
        return f"{model._meta.app_label}.{model._meta.object_name}"

    def _is_system_model(self, model: Type[Model]) -> bool:
        # Admin can hand us lazy objects without _meta
        if not hasattr(model, "_meta"):
            return True
        return model._meta.app_label in SYSTEM_APPS

    def _is_tenant_model(self, model: Type[Model]) -> bool:
        if not hasattr(model, "_meta"):
            return False
        return model._meta.app_label in TENANT_APPS

    def db_for_read(self, model: Type[Model], **hints) -> Optional[str]:
        if self._is_system_model(model):
            return "default"
        if self._is_tenant_model(model):
            return get_current_db_alias()
        return "default"

    def db_for_write(self, model: Type[Model], **hints) -> Optional[str]:
        if self._is_system_model(model):
            return "default"

        if self._is_tenant_model(model):
            db_alias = get_current_db_alias()
            if db_alias == "default" and not is_shared_school():
                logger.warning(
                    "Writing tenant model %s to default for a dedicated school. "
                    "This may indicate missing school context.",
                    self._get_model_label(model),
                )
            return db_alias

        return "default"

    def allow_relation(self, obj1: Model, obj2: Model, **hints) -> Optional[bool]:
        # Records carry school_code strings, not FKs into the registry
        return self._is_system_model(type(obj1)) == self._is_system_model(type(obj2))

    def allow_migrate(
        self,
        db: str,
        app_label: str,
        model_name: Optional[str] = None,
        **hints,
    ) -> Optional[bool]:
        """
        - System apps only migrate on 'default'
        - Tenant apps migrate on ALL databases (default + school DBs)
        """
        if app_label in TENANT_APPS:
            return True
        return db == "default"


def get_tenant_databases() -> list[str]:
    """
    Configured dedicated school database aliases.

        for db in get_tenant_databases():
            call_command('migrate', database=db)
    """
    return [
        alias
        for alias in settings.DATABASES.keys()
        if alias.startswith("tenant_")
    ]
