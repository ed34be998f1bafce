"""
Health check endpoints for operations monitoring.

Endpoints:
- /_health/live    - liveness probe, never touches a database
- /_health/ready   - readiness probe, the system database must answer
- /_health/full    - every database, the school registry and the cached
                     school connections of this process

Status values per check: healthy, degraded, unhealthy, error.
"""
import logging
import time
from typing import Any, Dict

from django.conf import settings
from django.db import DatabaseError, connections
from django.http import JsonResponse
from django.views import View

logger = logging.getLogger(__name__)


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 2)


class HealthCheck:
    """Individual checks, each returning a JSON-serializable dict."""

    @staticmethod
    def check_database(alias: str = "default") -> Dict[str, Any]:
        """Run SELECT 1 on one database alias."""
        start = time.monotonic()
        result = {"alias": alias}
        try:
            with connections[alias].cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
        except DatabaseError as e:
            logger.warning("Database health check failed: %s", e, extra={"db_alias": alias})
            result.update(status="unhealthy", error=str(e))
        else:
            result["status"] = "healthy"
        result["duration_ms"] = _elapsed_ms(start)
        return result

    @staticmethod
    def check_all_databases() -> Dict[str, Any]:
        """
        The system database plus every dedicated school database.

        A dedicated database being down degrades the service; only the
        system database makes it unhealthy.
        """
        results = {alias: HealthCheck.check_database(alias) for alias in settings.DATABASES}
        failed = [alias for alias, r in results.items() if r["status"] != "healthy"]

        if "default" in failed:
            status = "unhealthy"
        elif failed:
            status = "degraded"
        else:
            status = "healthy"
        return {"status": status, "databases": results}

    @staticmethod
    def check_school_registry() -> Dict[str, Any]:
        """Every active school must point at a store that can be built."""
        from tenant.connections import misconfigured_schools
        from tenant.models import School

        try:
            active = School.objects.using("default").filter(is_active=True)
            problems = misconfigured_schools()
            result = {
                "status": "unhealthy" if problems else "healthy",
                "schools": active.count(),
                "dedicated": active.filter(mode=School.IsolationMode.DEDICATED_DB).count(),
            }
        except DatabaseError as e:
            return {"status": "error", "error": str(e)}

        if problems:
            result["problems"] = problems[:10]
        return result

    @staticmethod
    def check_tenant_connections() -> Dict[str, Any]:
        """Probe every school handle cached in this process."""
        from tenant.connections import get_connection_manager
        from tenant.exceptions import TenantUnreachable

        manager = get_connection_manager()
        codes = manager.cached_codes()
        unreachable = []
        for code in codes:
            try:
                manager.get_handle(code)
            except TenantUnreachable as e:
                unreachable.append({"school_code": code, "error": e.reason or str(e)})

        return {
            "status": "degraded" if unreachable else "healthy",
            "cached": len(codes),
            "unreachable": unreachable[:10],
        }

    @staticmethod
    def get_full_health() -> Dict[str, Any]:
        checks = {
            "databases": HealthCheck.check_all_databases(),
            "school_registry": HealthCheck.check_school_registry(),
            "tenant_connections": HealthCheck.check_tenant_connections(),
        }

        statuses = {c["status"] for c in checks.values()}
        if statuses == {"healthy"}:
            overall = "healthy"
        elif statuses & {"unhealthy", "error"}:
            overall = "unhealthy"
        else:
            overall = "degraded"

        return {
            "status": overall,
            "checks": checks,
            "version": getattr(settings, "VERSION", "unknown"),
            "environment": "development" if settings.DEBUG else "production",
        }


class LivenessView(View):
    """The process is up. No external calls."""

    def get(self, request):
        return JsonResponse({"status": "alive"})


class ReadinessView(View):
    """Ready when the system database (school registry) answers."""

    def get(self, request):
        db_check = HealthCheck.check_database("default")
        ready = db_check["status"] == "healthy"
        return JsonResponse(
            {"status": "ready" if ready else "not_ready", "database": db_check},
            status=200 if ready else 503,
        )


class FullHealthView(View):
    """
    Full report for dashboards. Internal network only in production.
    """

    def get(self, request):
        health = HealthCheck.get_full_health()
        return JsonResponse(health, status=200 if health["status"] == "healthy" else 503)
