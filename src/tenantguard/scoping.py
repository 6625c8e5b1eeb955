"""
Tenant scope injection for ORM statements.

build_filter() turns a tenant context into the predicate restricting a
tenant-owned model to the current tenant. apply_tenant_scope() is the
``do_orm_execute`` listener that attaches those predicates to every ORM
SELECT, UPDATE and DELETE as ``with_loader_criteria`` options, so joined,
aliased and lazily loaded occurrences of a tenant-owned model are filtered
too.

Example:
    >>> from sqlalchemy import select
    >>> from tenantguard import tenant_scope_sync
    >>>
    >>> with tenant_scope_sync(acme):
    ...     tasks = session.scalars(select(Task)).all()  # acme's tasks only
    >>>
    >>> # Core statements can apply the predicate explicitly
    >>> with tenant_scope_sync(acme):
    ...     stmt = select(Task.__table__).where(filter_for(Task))
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, false, or_, true
from sqlalchemy.orm import with_loader_criteria

from tenantguard.config import TenantConfig, get_config
from tenantguard.context import TenantContext, current_context
from tenantguard.exceptions import ModelNotScopedByTenantError, NoTenantSetError
from tenantguard.guard import assigned_values, check_bulk_update
from tenantguard.registry import TenantOwnership, get_ownership, registered_ownerships

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement
    from sqlalchemy.orm import ORMExecuteState

logger = logging.getLogger(__name__)

# Execution option that disables tenant scope injection for one statement
SKIP_TENANT_SCOPE = "skip_tenant_scope"


def key_holder(ownership: TenantOwnership) -> type:
    """Return the mapped class whose column holds the tenant key."""
    if ownership.is_direct:
        return ownership.model
    relationship = getattr(ownership.model, ownership.through)  # type: ignore[arg-type]
    return relationship.property.mapper.class_  # type: ignore[no-any-return]


def tenant_criteria(
    ownership: TenantOwnership,
    context: TenantContext,
    config: TenantConfig,
) -> ColumnElement[bool] | None:
    """
    Build the tenant predicate, or None when the model is unconstrained.

    Raises:
        NoTenantSetError: If no tenant is set, the context is scoped and the
            model requires a tenant
    """
    tenant = context.tenant
    if tenant is None:
        if not context.unscoped and config.requires_tenant(ownership.model):
            raise NoTenantSetError(ownership.model)
        return None

    holder = key_holder(ownership)
    column = getattr(holder, ownership.foreign_key)
    key = getattr(tenant, ownership.primary_key)

    # An unsaved tenant owns no rows
    criteria: ColumnElement[bool] = column == key if key is not None else false()
    if ownership.has_global_records:
        criteria = or_(criteria, column.is_(None))
    if ownership.polymorphic:
        type_column = getattr(holder, ownership.polymorphic_type)  # type: ignore[arg-type]
        criteria = and_(criteria, type_column == type(tenant).__name__)

    if not ownership.is_direct:
        relationship = getattr(ownership.model, ownership.through)  # type: ignore[arg-type]
        if relationship.property.uselist:
            criteria = relationship.any(criteria)
        else:
            criteria = relationship.has(criteria)
    return criteria


def build_filter(
    ownership: TenantOwnership,
    context: TenantContext | None = None,
    config: TenantConfig | None = None,
) -> ColumnElement[bool]:
    """
    Build the predicate restricting ``ownership.model`` to the current tenant.

    The context is taken as an argument (defaulting to the current execution
    unit's context), so the result depends only on what is passed in.

    Args:
        ownership: The model's tenant ownership
        context: Tenant context to scope by (default: current context)
        config: Configuration (default: active configuration)

    Returns:
        The tenant predicate, or ``true()`` when unconstrained

    Raises:
        NoTenantSetError: If a tenant is required but none is set
    """
    criteria = tenant_criteria(
        ownership,
        context if context is not None else current_context(),
        config if config is not None else get_config(),
    )
    return criteria if criteria is not None else true()


def filter_for(model: type, context: TenantContext | None = None) -> ColumnElement[bool]:
    """
    Build the tenant predicate for a model, for use in Core statements.

    Raises:
        ModelNotScopedByTenantError: If the model is not tenant-owned
        NoTenantSetError: If a tenant is required but none is set
    """
    ownership = get_ownership(model)
    if ownership is None:
        raise ModelNotScopedByTenantError(model)
    return build_filter(ownership, context)


def _involves(ownership: TenantOwnership, classes: set[type]) -> bool:
    return any(issubclass(cls, ownership.model) for cls in classes)


def apply_tenant_scope(execute_state: ORMExecuteState) -> None:
    """
    ``do_orm_execute`` listener injecting tenant criteria.

    Column loads (refreshing attributes of an already identified row) are not
    scoped. A statement can opt out with
    ``.execution_options(skip_tenant_scope=True)``; UPDATE statements writing
    a tenant-linking column are rejected even then, unless the tenant is
    mutable.

    When a tenant is required but missing, statements on tenant-owned models
    raise NoTenantSetError. Tenant-owned models reached only through eager
    loads of another model match no rows.
    """
    if execute_state.is_column_load:
        return
    if not (execute_state.is_select or execute_state.is_update or execute_state.is_delete):
        return

    ownerships = registered_ownerships()
    if not ownerships:
        return

    context = current_context()
    involved = {mapper.class_ for mapper in execute_state.all_mappers}

    if execute_state.is_update:
        values = list(assigned_values(execute_state.statement, execute_state.parameters))
        if values:
            for ownership in ownerships:
                if _involves(ownership, involved):
                    check_bulk_update(ownership, values, context)

    if execute_state.execution_options.get(SKIP_TENANT_SCOPE, False):
        return

    config = get_config()
    options: list[Any] = []
    for ownership in ownerships:
        try:
            criteria = tenant_criteria(ownership, context, config)
        except NoTenantSetError:
            if _involves(ownership, involved):
                logger.warning(
                    "Blocked query on %s: no current tenant set",
                    ownership.model.__name__,
                )
                raise
            criteria = false()
        if criteria is not None:
            options.append(
                with_loader_criteria(ownership.model, criteria, include_aliases=True)
            )

    if options:
        execute_state.statement = execute_state.statement.options(*options)


__all__ = [
    "SKIP_TENANT_SCOPE",
    "apply_tenant_scope",
    "build_filter",
    "filter_for",
    "key_holder",
    "tenant_criteria",
]
