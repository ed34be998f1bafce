"""
School context middleware.

Resolves the school a request is for, selects its store, and sets the
school context used for database routing.

The school identifier is taken from, in order:
1. the X-School-Code header
2. the school_code query parameter
3. the authenticated principal's own school (request.user.school_code)

Responses:
- unknown identifier -> 404 {"detail": "unknown_school"}
- store unreachable  -> 503 {"detail": "tenant_unreachable"}
- read-only school   -> 503 {"detail": "school_read_only"} for writes
- no identifier      -> request proceeds without a school; views that
  need one fail in resolve_actor()
"""
import logging

from django.http import JsonResponse

from tenant.connections import get_connection_manager
from tenant.context import clear_school_context, set_school_context
from tenant.exceptions import TenantUnreachable
from tenant.registry import TenantRegistry

logger = logging.getLogger(__name__)

SAFE_METHODS = ("GET", "HEAD", "OPTIONS")


class SchoolContextMiddleware:
    """
    Set school context for every non-public request.

    Flow:
    1. Skip public paths
    2. Read the identifier and canonicalize it with the registry
    3. Borrow the school's connection handle
    4. Set school context and request.school_code
    5. Process request
    6. Clear context in finally block
    """

    PUBLIC_PATHS = (
        "/admin/",  # Django admin (has its own auth)
        "/static/",
        "/_health/",  # Health checks (Kubernetes probes)
        "/_metrics/",  # Prometheus metrics
    )

    HEADER = "HTTP_X_SCHOOL_CODE"
    QUERY_PARAM = "school_code"

    def __init__(self, get_response, registry=None, connections=None):
        self.get_response = get_response
        self.registry = registry or TenantRegistry()
        self._connections = connections

    @property
    def connections(self):
        return self._connections or get_connection_manager()

    def __call__(self, request):
        request.school_code = None

        if self._is_public_path(request.path):
            return self.get_response(request)

        identifier = self._identifier(request)
        if not identifier:
            return self.get_response(request)

        school_code = self.registry.resolve(identifier)
        if school_code is None:
            return JsonResponse(
                {"detail": "unknown_school", "message": "No school matches that code or name."},
                status=404,
            )

        school = self.registry.get(school_code)
        if school is not None and not school.is_writable and request.method not in SAFE_METHODS:
            return JsonResponse(
                {"detail": "school_read_only", "message": "This school is currently read-only."},
                status=503,
            )

        try:
            handle = self.connections.get_handle(school_code)
        except TenantUnreachable as e:
            logger.error(
                "School store unreachable: %s", e.reason,
                extra={"school_code": school_code},
            )
            return JsonResponse(
                {"detail": "tenant_unreachable", "message": "The school's data store is unavailable. Please retry."},
                status=503,
            )

        set_school_context(school_code, db_alias=handle.db_alias, is_shared=handle.is_shared)
        request.school_code = school_code
        try:
            return self.get_response(request)
        finally:
            clear_school_context()

    def _identifier(self, request):
        value = request.META.get(self.HEADER) or request.GET.get(self.QUERY_PARAM)
        if not value:
            user = getattr(request, "user", None)
            if user is not None and getattr(user, "is_authenticated", False):
                value = getattr(user, "school_code", None)
        return (value or "").strip() or None

    def _is_public_path(self, path: str) -> bool:
        return any(path.startswith(p) for p in self.PUBLIC_PATHS)
