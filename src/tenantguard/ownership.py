"""
Declaring tenant ownership on models.

``@tenant_owned`` marks a mapped class as belonging to a tenant. It registers
the ownership, guards the tenant key against reassignment and installs the
session listeners that scope queries and validate flushes.

Example:
    >>> @tenant_owned("account")
    ... class Project(Base):
    ...     __tablename__ = "projects"
    ...     id: Mapped[int] = mapped_column(primary_key=True)
    ...     account_id: Mapped[int | None] = mapped_column(ForeignKey("accounts.id"))
    ...     account: Mapped[Account | None] = relationship()
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from typing import TypeVar

from tenantguard.config import get_config
from tenantguard.guard import install_guards
from tenantguard.registry import AssociationScope, TenantOwnership, register
from tenantguard.session import install
from tenantguard.validation.core import TenantPresenceValidator

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=type)


def tenant_owned(
    tenant: str | None = None,
    *,
    foreign_key: str | None = None,
    primary_key: str | None = None,
    polymorphic: bool = False,
    polymorphic_type: str | None = None,
    through: str | None = None,
    has_global_records: bool = False,
    association_scopes: Mapping[str, AssociationScope] | None = None,
) -> Callable[[T], T]:
    """
    Class decorator declaring that a model's rows belong to a tenant.

    Apply to the mapped class, below ``@unique_to_tenant`` and
    ``@tenant_consistent``.

    Args:
        tenant: Name of the tenant association (default: configured
            ``tenant_name``)
        foreign_key: Tenant key attribute (default: ``"<tenant>_id"``)
        primary_key: Tenant entity attribute the key refers to (default:
            configured ``primary_key``)
        polymorphic: The tenant may be of several entity types; a type name
            column is matched too
        polymorphic_type: Type name attribute (default: ``"<tenant>_type"``)
        through: Relationship leading to the model that holds the tenant key
            (e.g. a membership table)
        has_global_records: Rows with a null tenant key are visible to every
            tenant
        association_scopes: Extra query refinements per relationship name,
            applied when validating associated rows

    Returns:
        The decorator
    """

    def decorator(cls: T) -> T:
        config = get_config()
        name = tenant or config.tenant_name
        ownership = TenantOwnership(
            model=cls,
            tenant=name,
            foreign_key=foreign_key or config.default_foreign_key(name),
            primary_key=primary_key or config.primary_key,
            polymorphic=polymorphic,
            polymorphic_type=(
                (polymorphic_type or config.default_polymorphic_type(name))
                if polymorphic
                else None
            ),
            through=through,
            has_global_records=has_global_records,
            association_scopes=dict(association_scopes or {}),
        )
        if ownership.is_direct and not has_global_records:
            ownership.validators.append(
                TenantPresenceValidator(ownership.tenant, ownership.foreign_key)
            )

        register(ownership)
        install_guards(ownership)
        install()
        logger.debug(
            "Registered %s as owned by %s (key %s%s)",
            cls.__name__,
            name,
            f"{through}." if through else "",
            ownership.foreign_key,
        )
        return cls

    return decorator


__all__ = ["tenant_owned"]
