"""
Observability utilities for tenantguard.

Tracing and standard attribute definitions used by the propagator and the
request middleware.

Note:
    OpenTelemetry is an optional dependency. Everything here works without
    it; tracers then fall back to NullTracer.
"""

from tenantguard.observability.attributes import (
    ATTR_HTTP_HOST,
    ATTR_RESOLVER_NAME,
    ATTR_TASK_NAME,
    ATTR_TENANT_ID,
    ATTR_TENANT_RESOLVED,
    ATTR_TENANT_TYPE,
    ATTR_TENANT_UNSCOPED,
    ATTR_URL_PATH,
)
from tenantguard.observability.tracer import (
    OTEL_AVAILABLE,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)

__all__ = [
    # Availability flag
    "OTEL_AVAILABLE",
    # Tracer
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "SpanKindEnum",
    "create_tracer",
    # Attributes
    "ATTR_TENANT_ID",
    "ATTR_TENANT_TYPE",
    "ATTR_TENANT_RESOLVED",
    "ATTR_TENANT_UNSCOPED",
    "ATTR_TASK_NAME",
    "ATTR_RESOLVER_NAME",
    "ATTR_HTTP_HOST",
    "ATTR_URL_PATH",
]
