"""
Prometheus metrics endpoint.

Exposes application metrics in Prometheus format for scraping.

Metrics exposed:
- campus_tenant_connections_opened_total: School connection handles built
- campus_tenant_handles_cached: School connection handles currently cached
- campus_tenant_unreachable_total: Failed attempts to reach a school store
- campus_permission_decisions_total: Permission decisions by source and outcome
- campus_identity_collisions_total: Identifier collisions during issuance
- campus_identities_issued_total: Identifiers issued by role
- campus_request_duration_seconds: HTTP request duration histogram
- campus_school_mode: School isolation mode (shared/dedicated)
"""
import logging
import re
import time

from django.http import HttpResponse
from django.views import View
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)


tenant_connections_opened = Counter(
    "campus_tenant_connections_opened_total",
    "School connection handles built",
    ["mode"],
)

tenant_handles_cached = Gauge(
    "campus_tenant_handles_cached",
    "School connection handles currently cached",
)

tenant_unreachable = Counter(
    "campus_tenant_unreachable_total",
    "Failed attempts to reach a school store",
    ["reason"],
)

permission_decisions = Counter(
    "campus_permission_decisions_total",
    "Permission decisions by source and outcome",
    ["source", "allowed"],
)

identity_collisions = Counter(
    "campus_identity_collisions_total",
    "Identifier collisions during issuance",
    ["role"],
)

identities_issued = Counter(
    "campus_identities_issued_total",
    "Identifiers issued",
    ["role"],
)

request_duration = Histogram(
    "campus_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

active_requests = Gauge(
    "campus_active_requests",
    "Number of requests currently being processed",
)

school_mode = Gauge(
    "campus_school_mode",
    "School isolation mode (0=shared, 1=dedicated)",
    ["school_code", "db_alias"],
)


def collect_metrics():
    """Refresh gauges that are read from the registry at scrape time."""
    from tenant.models import School

    for school in School.objects.using("default").filter(is_active=True):
        school_mode.labels(
            school_code=school.code,
            db_alias=school.db_alias,
        ).set(1 if school.is_dedicated else 0)


def get_prometheus_response():
    """Generate Prometheus metrics response."""
    try:
        collect_metrics()
    except Exception as e:
        # Registry gauges are best effort; counters are still served.
        logger.error("Error collecting metrics: %s", e)

    return HttpResponse(generate_latest(), content_type=CONTENT_TYPE_LATEST)


class MetricsView(View):
    """
    Prometheus metrics endpoint.

    Exposes metrics in Prometheus format at /_metrics.
    Should be protected in production (internal network only).
    """

    def get(self, request):
        return get_prometheus_response()


def track_request_metrics(get_response):
    """
    Middleware to track request duration metrics.

    Add to MIDDLEWARE after SecurityMiddleware:
        "ops.metrics.track_request_metrics",
    """

    def middleware(request):
        start = time.time()
        active_requests.inc()
        status = 500

        try:
            response = get_response(request)
            status = response.status_code
            return response
        finally:
            active_requests.dec()

            # Normalize endpoint for cardinality control
            endpoint = re.sub(r"/\d+/", "/{id}/", request.path)
            endpoint = re.sub(r"/[0-9a-f-]{36}/", "/{uuid}/", endpoint)

            request_duration.labels(
                method=request.method,
                endpoint=endpoint[:50],
                status=f"{status // 100}xx",
            ).observe(time.time() - start)

    return middleware
