"""
Cross-tenant association validation.

AssociationValidator checks that a foreign key assigned on a tenant-owned
record refers to a row the current tenant can see. The lookup goes through
the session, so the target model's own tenant scope applies. A foreign key
pointing into another tenant's data becomes an "association is invalid"
field error instead of a silent cross-tenant link.

TenantConsistencyValidator (declared with ``@tenant_consistent``) compares
tenant keys of a record and its associated record directly.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import inspect, select
from sqlalchemy.orm import MANYTOONE

from tenantguard.exceptions import ModelNotScopedByTenantError
from tenantguard.registry import AssociationScope, TenantOwnership, Validator, get_ownership

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

    from tenantguard.validation.errors import Errors

logger = logging.getLogger(__name__)

ASSOCIATION_INVALID = "association is invalid"

T = TypeVar("T", bound=type)


@dataclass(frozen=True)
class AssociationValidator:
    """
    Validates that one many-to-one foreign key resolves within tenant scope.

    Attributes:
        relationship: Name of the relationship on the validated model
        attribute: Local foreign key attribute
        target: Related mapped class
        remote_attribute: Attribute of ``target`` the foreign key refers to
        scope: Optional refinement of the lookup query
    """

    relationship: str
    attribute: str
    target: type
    remote_attribute: str
    scope: AssociationScope | None = None

    def validate(self, session: Session, record: Any, errors: Errors) -> None:
        value = self._assigned_value(record)
        if value is None:
            return

        remote = getattr(self.target, self.remote_attribute)
        stmt = select(remote).where(remote == value)
        if self.scope is not None:
            stmt = self.scope(stmt)
        if session.execute(stmt.limit(1)).first() is None:
            logger.debug(
                "%s.%s=%r does not resolve within tenant scope",
                type(record).__name__,
                self.attribute,
                value,
            )
            errors.add(self.attribute, ASSOCIATION_INVALID)

    def _assigned_value(self, record: Any) -> Any:
        """Return the key about to be saved, or None when unchanged."""
        state = inspect(record)
        column_history = state.attrs[self.attribute].history
        if column_history.added:
            return column_history.added[0]

        # Assigned through the relationship: the column is only synced on flush
        related_history = state.attrs[self.relationship].history
        if related_history.added:
            related = related_history.added[0]
            if related is not None and inspect(related).has_identity:
                return getattr(related, self.remote_attribute)
        return None


def association_validators(ownership: TenantOwnership) -> list[Validator]:
    """
    Return the association validators of a tenant-owned model.

    Resolved on first use, once relationships can be configured, and cached
    on the ownership. The tenant relationship itself and relationships whose
    foreign key is the tenant key or polymorphic type column are skipped.
    """
    if ownership.association_validators is not None:
        return ownership.association_validators

    mapper = inspect(ownership.model)
    governed = {
        column
        for name in ownership.tenant_attributes
        for column in mapper.get_property(name).columns
    }

    validators: list[Validator] = []
    for relationship in mapper.relationships:
        if relationship.direction is not MANYTOONE or relationship.viewonly:
            continue
        if relationship.key == ownership.tenant:
            continue
        if governed.intersection(relationship.local_columns):
            continue
        for local, remote in relationship.local_remote_pairs:
            validators.append(
                AssociationValidator(
                    relationship=relationship.key,
                    attribute=mapper.get_property_by_column(local).key,
                    target=relationship.mapper.class_,
                    remote_attribute=relationship.mapper.get_property_by_column(remote).key,
                    scope=ownership.association_scopes.get(relationship.key),
                )
            )

    ownership.association_validators = validators
    return validators


@dataclass(frozen=True)
class TenantConsistencyValidator:
    """
    Validates that a record and its associated record share a tenant.

    Attributes:
        relationship: Name of the many-to-one relationship
        foreign_key: Tenant key attribute of the validated model
    """

    relationship: str
    foreign_key: str

    def validate(self, session: Session, record: Any, errors: Errors) -> None:
        associated = getattr(record, self.relationship)
        if associated is None:
            return
        if self._tenant_key_of(associated) != getattr(record, self.foreign_key):
            errors.add(
                self.foreign_key,
                f"must match the {self.relationship} model's {self.foreign_key}",
            )

    def inherit_tenant(self, record: Any) -> None:
        """Copy the associated record's tenant key when the record has none."""
        if getattr(record, self.foreign_key) is not None:
            return
        associated = getattr(record, self.relationship)
        if associated is not None:
            setattr(record, self.foreign_key, self._tenant_key_of(associated))

    def _tenant_key_of(self, associated: Any) -> Any:
        ownership = get_ownership(type(associated))
        name = ownership.foreign_key if ownership is not None else self.foreign_key
        return getattr(associated, name)


def tenant_consistent(
    relationship: str,
    *,
    assign_tenant_from_associated: bool = False,
) -> Callable[[T], T]:
    """
    Class decorator requiring an associated record to share the tenant.

    Apply above ``@tenant_owned``. The relationship itself is declared in the
    class body as usual.

    Args:
        relationship: Name of the many-to-one relationship to check
        assign_tenant_from_associated: Copy the associated record's tenant key
            before validation when the record has none

    Raises:
        ModelNotScopedByTenantError: If the model has no direct tenant key

    Example:
        >>> @tenant_consistent("project", assign_tenant_from_associated=True)
        ... @tenant_owned("account")
        ... class Task(Base):
        ...     ...
        ...     project: Mapped[Project | None] = relationship()
    """

    def decorator(cls: T) -> T:
        ownership = get_ownership(cls)
        if ownership is None:
            raise ModelNotScopedByTenantError(cls)
        if not ownership.is_direct:
            raise ModelNotScopedByTenantError(cls, "tenant key is not a column of the model")

        validator = TenantConsistencyValidator(relationship, ownership.foreign_key)
        ownership.validators.append(validator)
        if assign_tenant_from_associated:
            ownership.before_validation.append(validator.inherit_tenant)
        return cls

    return decorator


__all__ = [
    "ASSOCIATION_INVALID",
    "AssociationValidator",
    "TenantConsistencyValidator",
    "association_validators",
    "tenant_consistent",
]
