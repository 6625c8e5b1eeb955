"""
Validation of tenant-owned records.

Tenant rules that depend on data (the record has a tenant, its associations
are visible to the tenant, its values are unique within the tenant) are
collected as field errors rather than raised.
"""

from tenantguard.validation.associations import (
    ASSOCIATION_INVALID,
    AssociationValidator,
    TenantConsistencyValidator,
    association_validators,
    tenant_consistent,
)
from tenantguard.validation.core import (
    MUST_EXIST,
    TenantPresenceValidator,
    assign_current_tenant,
    save,
    save_async,
    validate,
    validate_before_flush,
)
from tenantguard.validation.errors import Errors, errors_for
from tenantguard.validation.uniqueness import (
    TAKEN,
    UniquenessCheck,
    unique_to_tenant,
)

__all__ = [
    "ASSOCIATION_INVALID",
    "MUST_EXIST",
    "TAKEN",
    "AssociationValidator",
    "Errors",
    "TenantConsistencyValidator",
    "TenantPresenceValidator",
    "UniquenessCheck",
    "assign_current_tenant",
    "association_validators",
    "errors_for",
    "save",
    "save_async",
    "tenant_consistent",
    "unique_to_tenant",
    "validate",
    "validate_before_flush",
]
