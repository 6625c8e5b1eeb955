"""
Registry of tenant-owned models.

Each model declared with ``@tenant_owned(...)`` gets one TenantOwnership
record holding its resolved tenant configuration (key names, polymorphic and
through options, global-record opt-in) and its validators. The registry is
populated during model registration and treated as read-only afterwards.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from sqlalchemy import Select
    from sqlalchemy.orm import Session

    from tenantguard.validation.errors import Errors


class Validator(Protocol):
    """A record-level validation rule that adds field errors."""

    def validate(self, session: Session, record: Any, errors: Errors) -> None: ...


AssociationScope = Callable[["Select[Any]"], "Select[Any]"]


@dataclass(eq=False)
class TenantOwnership:
    """
    Resolved tenant ownership of one model.

    Attributes:
        model: The tenant-owned mapped class
        tenant: Name of the tenant association (e.g. ``"account"``)
        foreign_key: Attribute holding the tenant key. For ``through``
            ownership this attribute lives on the intermediate model.
        primary_key: Tenant entity attribute the foreign key refers to
        polymorphic: Whether the tenant association is polymorphic
        polymorphic_type: Attribute holding the tenant type name
        through: Relationship on ``model`` leading to the model that holds
            the tenant key
        has_global_records: Whether rows with a null tenant key are allowed
            and visible to every tenant
        association_scopes: Extra query refinements per relationship name,
            applied when validating that an associated row is visible
        validators: Validation rules run on save
        before_validation: Hooks run on the record before validation
    """

    model: type
    tenant: str
    foreign_key: str
    primary_key: str
    polymorphic: bool = False
    polymorphic_type: str | None = None
    through: str | None = None
    has_global_records: bool = False
    association_scopes: Mapping[str, AssociationScope] = field(default_factory=dict)
    validators: list[Validator] = field(default_factory=list)
    before_validation: list[Callable[[Any], None]] = field(default_factory=list)
    association_validators: list[Validator] | None = field(default=None, repr=False)

    @property
    def is_direct(self) -> bool:
        """True when the tenant key is a column of the model itself."""
        return self.through is None

    @property
    def tenant_attributes(self) -> frozenset[str]:
        """Attributes of the model governed by the tenant scope."""
        if not self.is_direct:
            return frozenset()
        names = {self.foreign_key}
        if self.polymorphic and self.polymorphic_type:
            names.add(self.polymorphic_type)
        return frozenset(names)


_registry: dict[type, TenantOwnership] = {}


def register(ownership: TenantOwnership) -> None:
    _registry[ownership.model] = ownership


def get_ownership(model: type) -> TenantOwnership | None:
    """Return the ownership declared on ``model`` or its nearest mapped base."""
    for klass in model.__mro__:
        ownership = _registry.get(klass)
        if ownership is not None:
            return ownership
    return None


def is_scoped_by_tenant(model: type) -> bool:
    return get_ownership(model) is not None


def registered_ownerships() -> list[TenantOwnership]:
    return list(_registry.values())


def models_with_global_records() -> frozenset[type]:
    return frozenset(o.model for o in _registry.values() if o.has_global_records)


__all__ = [
    "AssociationScope",
    "TenantOwnership",
    "Validator",
    "get_ownership",
    "is_scoped_by_tenant",
    "models_with_global_records",
    "register",
    "registered_ownerships",
]
