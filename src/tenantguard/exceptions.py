"""Library exceptions for the tenantguard package.

Structural misuse of tenant isolation (missing tenant, tenant reassignment,
undeclared ownership) is always raised to the caller. Data-level constraint
failures are collected as field errors (see ``tenantguard.validation``) and
only surface as ``RecordInvalidError`` when a flush is attempted directly.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from tenantguard.context import TenantReference
    from tenantguard.validation.errors import Errors


class TenantGuardError(Exception):
    """Base exception for tenantguard library."""

    pass


class NoTenantSetError(TenantGuardError):
    """
    Raised when a tenant-scoped access happens without a current tenant.

    Only raised when ``require_tenant`` is enabled for the model and the
    execution unit is not running unscoped. The error is raised while the
    statement is being prepared, before any SQL reaches the database.

    Attributes:
        model: The tenant-owned model that was accessed, if known

    Example:
        >>> from tenantguard import configure, NoTenantSetError
        >>> configure(require_tenant=True)
        >>> try:
        ...     session.scalars(select(Task)).all()
        ... except NoTenantSetError:
        ...     print("No tenant set")
        No tenant set
    """

    def __init__(self, model: type | None = None) -> None:
        self.model = model
        target = f" for {model.__name__}" if model is not None else ""
        super().__init__(
            f"No current tenant set{target}. Use set_current_tenant() or tenant_scope() "
            "before accessing tenant-owned records, or without_tenant() for "
            "administrative access."
        )


class TenantIsImmutableError(TenantGuardError):
    """
    Raised when a persisted record's tenant would be reassigned.

    The assignment is rejected before it is applied, so the record keeps its
    previous tenant key. Use ``mutable_tenant()`` or configure
    ``mutable_tenant=True`` to allow reassignment.

    Attributes:
        model: Class of the record being modified
        attribute: The tenant-linking attribute that was assigned
        persisted: The tenant key currently stored for the record
        attempted: The tenant key that was assigned
    """

    def __init__(self, model: type, attribute: str, persisted: Any, attempted: Any) -> None:
        self.model = model
        self.attribute = attribute
        self.persisted = persisted
        self.attempted = attempted
        super().__init__(
            f"Cannot change {model.__name__}.{attribute} from {persisted!r} to {attempted!r}: "
            "the tenant of a persisted record is immutable"
        )


class ModelNotScopedByTenantError(TenantGuardError):
    """
    Raised when a tenant-aware rule is declared on a model without tenant ownership.

    Declare ``@tenant_owned(...)`` on the model before (below) any
    ``@unique_to_tenant(...)`` or ``@tenant_consistent(...)`` decorator.
    """

    def __init__(self, model: type, reason: str | None = None) -> None:
        self.model = model
        detail = reason or "declare @tenant_owned(...) first"
        super().__init__(f"{model.__name__} is not scoped by tenant: {detail}")


class TenantNotFoundError(TenantGuardError):
    """
    Raised when a propagated tenant identity no longer resolves.

    Only raised when the ``unresolved_tenant_policy`` is ``"raise"``. With the
    default ``"ignore"`` policy the deferred unit runs with no current tenant.

    Attributes:
        reference: The tenant reference carried in the envelope
    """

    def __init__(self, reference: TenantReference) -> None:
        self.reference = reference
        super().__init__(f"Tenant {reference.to_identity()} could not be resolved")


class RecordInvalidError(TenantGuardError):
    """
    Raised when a flush reaches a tenant-owned record that fails validation.

    ``save()`` reports the same failures through its return value and the
    record's errors; this exception is the outcome when the session is
    flushed or committed directly.

    Attributes:
        record: The invalid record
        errors: Field errors collected for the record
    """

    def __init__(self, record: Any, errors: Errors) -> None:
        self.record = record
        self.errors = errors
        messages = "; ".join(errors.full_messages())
        super().__init__(f"Validation failed for {type(record).__name__}: {messages}")


__all__ = [
    "TenantGuardError",
    "NoTenantSetError",
    "TenantIsImmutableError",
    "ModelNotScopedByTenantError",
    "TenantNotFoundError",
    "RecordInvalidError",
]
