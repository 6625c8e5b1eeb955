"""
Standard span attributes for tenantguard.

Attribute names follow OpenTelemetry semantic conventions where one exists.
"""

# =============================================================================
# Tenant Attributes
# =============================================================================

ATTR_TENANT_ID = "tenantguard.tenant.id"
"""Primary key of the current tenant (string)."""

ATTR_TENANT_TYPE = "tenantguard.tenant.type"
"""Entity type name of the current tenant (e.g., 'Account')."""

ATTR_TENANT_RESOLVED = "tenantguard.tenant.resolved"
"""Whether a propagated tenant identity resolved to an entity (boolean)."""

ATTR_TENANT_UNSCOPED = "tenantguard.tenant.unscoped"
"""Whether the unit of work runs with tenant scoping disabled (boolean)."""

# =============================================================================
# Component-Specific Attributes
# =============================================================================

ATTR_TASK_NAME = "tenantguard.task.name"
"""Qualified name of the deferred function being run (string)."""

ATTR_RESOLVER_NAME = "tenantguard.resolver.name"
"""Class name of the request tenant resolver (string)."""

# =============================================================================
# HTTP Attributes (OTEL semantic)
# =============================================================================

ATTR_HTTP_HOST = "server.address"
"""Host the request was addressed to (string)."""

ATTR_URL_PATH = "url.path"
"""Path of the request URL (string)."""


__all__ = [
    "ATTR_TENANT_ID",
    "ATTR_TENANT_TYPE",
    "ATTR_TENANT_RESOLVED",
    "ATTR_TENANT_UNSCOPED",
    "ATTR_TASK_NAME",
    "ATTR_RESOLVER_NAME",
    "ATTR_HTTP_HOST",
    "ATTR_URL_PATH",
]
