"""
tenantguard - Row-level multi-tenant isolation for SQLAlchemy.

This library provides:
- Ambient current-tenant context, isolated per thread and asyncio task
- Tenant ownership declarations for mapped classes
- Automatic tenant scoping of ORM SELECT, UPDATE and DELETE statements
- Immutability of a persisted record's tenant
- Tenant-aware association and uniqueness validation
- Tenant context propagation for deferred units of work
- ASGI middleware resolving the tenant per request
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("tenantguard")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from tenantguard.config import (
    TenantConfig,
    UnresolvedTenantPolicy,
    configure,
    get_config,
    reset_config,
)
from tenantguard.context import (
    TenantContext,
    TenantReference,
    clear_current_tenant,
    current_context,
    get_current_tenant,
    get_required_tenant,
    is_tenant_mutable,
    is_unscoped,
    mutable_tenant,
    mutable_tenant_sync,
    requires_tenant,
    reset_tenant_context,
    set_current_tenant,
    set_unscoped,
    tenant_context,
    tenant_scope,
    tenant_scope_sync,
    without_tenant,
    without_tenant_sync,
)
from tenantguard.exceptions import (
    ModelNotScopedByTenantError,
    NoTenantSetError,
    RecordInvalidError,
    TenantGuardError,
    TenantIsImmutableError,
    TenantNotFoundError,
)
from tenantguard.ownership import tenant_owned
from tenantguard.propagation import (
    CURRENT_TENANT_KEY,
    TENANT_UNSCOPED_KEY,
    AsyncSessionIdentityResolver,
    IdentityResolver,
    PropagationEnvelope,
    SessionIdentityResolver,
    TenantContextPropagator,
)
from tenantguard.registry import (
    TenantOwnership,
    get_ownership,
    is_scoped_by_tenant,
    models_with_global_records,
    registered_ownerships,
)
from tenantguard.scoping import (
    SKIP_TENANT_SCOPE,
    apply_tenant_scope,
    build_filter,
    filter_for,
)
from tenantguard.session import install, scoped_get, scoped_get_async, uninstall
from tenantguard.validation import (
    ASSOCIATION_INVALID,
    MUST_EXIST,
    TAKEN,
    Errors,
    errors_for,
    save,
    save_async,
    tenant_consistent,
    unique_to_tenant,
    validate,
)

__all__ = [
    "__version__",
    # Configuration
    "TenantConfig",
    "UnresolvedTenantPolicy",
    "configure",
    "get_config",
    "reset_config",
    # Context
    "TenantContext",
    "TenantReference",
    "tenant_context",
    "current_context",
    "get_current_tenant",
    "get_required_tenant",
    "set_current_tenant",
    "clear_current_tenant",
    "set_unscoped",
    "is_unscoped",
    "is_tenant_mutable",
    "requires_tenant",
    "reset_tenant_context",
    "tenant_scope",
    "tenant_scope_sync",
    "without_tenant",
    "without_tenant_sync",
    "mutable_tenant",
    "mutable_tenant_sync",
    # Exceptions
    "TenantGuardError",
    "NoTenantSetError",
    "TenantIsImmutableError",
    "ModelNotScopedByTenantError",
    "TenantNotFoundError",
    "RecordInvalidError",
    # Ownership
    "tenant_owned",
    "TenantOwnership",
    "get_ownership",
    "is_scoped_by_tenant",
    "models_with_global_records",
    "registered_ownerships",
    # Scoping
    "SKIP_TENANT_SCOPE",
    "apply_tenant_scope",
    "build_filter",
    "filter_for",
    "install",
    "scoped_get",
    "scoped_get_async",
    "uninstall",
    # Validation
    "ASSOCIATION_INVALID",
    "MUST_EXIST",
    "TAKEN",
    "Errors",
    "errors_for",
    "save",
    "save_async",
    "tenant_consistent",
    "unique_to_tenant",
    "validate",
    # Propagation
    "CURRENT_TENANT_KEY",
    "TENANT_UNSCOPED_KEY",
    "PropagationEnvelope",
    "IdentityResolver",
    "SessionIdentityResolver",
    "AsyncSessionIdentityResolver",
    "TenantContextPropagator",
]
