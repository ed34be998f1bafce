"""
Operations endpoints, mounted outside /api/.

SchoolContextMiddleware skips both prefixes, so probes and scrapes never
need a school. Restrict them to the internal network in production.
"""
from django.urls import path

from ops.health import FullHealthView, LivenessView, ReadinessView
from ops.metrics import MetricsView

# /_health/...
urlpatterns = [
    path("live", LivenessView.as_view(), name="health-live"),
    path("ready", ReadinessView.as_view(), name="health-ready"),
    path("full", FullHealthView.as_view(), name="health-full"),
]

# /_metrics/
metrics_patterns = [
    path("", MetricsView.as_view(), name="metrics"),
]
