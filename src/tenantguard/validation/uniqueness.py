"""
Tenant-aware uniqueness validation.

``@unique_to_tenant("name")`` makes ``name`` unique per tenant: the tenant
key is always added to the uniqueness scope. For models that allow global
(tenant-less) records, two more checks keep global defaults and tenant
overrides apart:

1. tenant-scoped check, for records with a tenant key
2. global check among rows with a null tenant key, for records without one
3. cross-check among rows with a null tenant key, for records with one

Uniqueness queries compute their own scope and bypass tenant scope
injection, so they see rows of every tenant.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar, Union

from sqlalchemy import and_, inspect, not_, select
from sqlalchemy.sql.expression import ClauseElement

from tenantguard.exceptions import ModelNotScopedByTenantError
from tenantguard.registry import get_ownership
from tenantguard.scoping import SKIP_TENANT_SCOPE

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement, Select
    from sqlalchemy.orm import Session

    from tenantguard.validation.errors import Errors

logger = logging.getLogger(__name__)

TAKEN = "has already been taken"

T = TypeVar("T", bound=type)

Condition = Union["ColumnElement[bool]", Callable[["Select[Any]"], "Select[Any]"]]


@dataclass(frozen=True)
class UniquenessCheck:
    """
    One uniqueness rule for one field.

    Attributes:
        model: Model whose rows are compared
        field: Attribute that must be unique
        scope: Attributes whose values must match for rows to collide
        conditions: Extra restriction of the compared rows, either a column
            expression or a callable refining the query
        when: Record predicate deciding whether the check runs
        tenant_key: Tenant key attribute, for checks partitioned by tenant key
        tenant_key_present: Run only when the record's tenant key is set
            (True) or unset (False); None runs regardless
        null_tenant_rows: Compare only with rows whose tenant key is null
    """

    model: type
    field: str
    scope: tuple[str, ...] = ()
    conditions: Condition | None = None
    when: Callable[[Any], bool] | None = None
    tenant_key: str | None = None
    tenant_key_present: bool | None = None
    null_tenant_rows: bool = False

    def applies(self, record: Any) -> bool:
        if self.tenant_key_present is not None and self.tenant_key is not None:
            present = getattr(record, self.tenant_key) is not None
            if present != self.tenant_key_present:
                return False
        return self.when is None or bool(self.when(record))

    def validate(self, session: Session, record: Any, errors: Errors) -> None:
        if not self.applies(record):
            return
        if session.execute(self.build_query(record)).first() is not None:
            logger.debug(
                "%s.%s=%r is not unique",
                type(record).__name__,
                self.field,
                getattr(record, self.field),
            )
            errors.add(self.field, TAKEN)

    def build_query(self, record: Any) -> Select[Any]:
        mapper = inspect(self.model)
        pk_attributes = [
            mapper.get_property_by_column(column).class_attribute
            for column in mapper.primary_key
        ]

        stmt = select(*pk_attributes)
        for name in (self.field, *self.scope):
            stmt = stmt.where(_matches(getattr(self.model, name), getattr(record, name)))
        if self.null_tenant_rows and self.tenant_key is not None:
            stmt = stmt.where(getattr(self.model, self.tenant_key).is_(None))

        state = inspect(record)
        if state.has_identity:
            stmt = stmt.where(
                not_(and_(*(attr == value for attr, value in zip(pk_attributes, state.identity))))
            )

        if isinstance(self.conditions, ClauseElement):
            stmt = stmt.where(self.conditions)
        elif self.conditions is not None:
            stmt = self.conditions(stmt)

        return stmt.limit(1).execution_options(**{SKIP_TENANT_SCOPE: True})


def _matches(attribute: Any, value: Any) -> ColumnElement[bool]:
    if value is None:
        return attribute.is_(None)  # type: ignore[no-any-return]
    return attribute == value  # type: ignore[no-any-return]


def unique_to_tenant(
    *fields: str,
    scope: Iterable[str] = (),
    conditions: Condition | None = None,
    when: Callable[[Any], bool] | None = None,
) -> Callable[[T], T]:
    """
    Class decorator validating field uniqueness within the tenant.

    Apply above ``@tenant_owned``. Each field is checked independently.

    Args:
        *fields: Attributes that must be unique per tenant
        scope: Additional attributes narrowing the uniqueness scope
        conditions: Extra restriction on the compared rows
        when: Predicate on the record; the checks run only when it is true

    Raises:
        ModelNotScopedByTenantError: If the model is not tenant-owned or its
            tenant key is not a column of the model
        ValueError: If no field is given

    Example:
        >>> @unique_to_tenant("name", scope=["project_id"])
        ... @tenant_owned("account")
        ... class Task(Base):
        ...     ...
    """
    if not fields:
        raise ValueError("unique_to_tenant() requires at least one field")
    extra_scope = tuple(scope)

    def decorator(cls: T) -> T:
        ownership = get_ownership(cls)
        if ownership is None:
            raise ModelNotScopedByTenantError(cls)
        if not ownership.is_direct:
            raise ModelNotScopedByTenantError(cls, "tenant key is not a column of the model")

        fk = ownership.foreign_key
        for field in fields:
            if not ownership.has_global_records:
                ownership.validators.append(
                    UniquenessCheck(cls, field, (*extra_scope, fk), conditions, when)
                )
                continue
            common = {"conditions": conditions, "when": when, "tenant_key": fk}
            ownership.validators.extend(
                [
                    # within the tenant
                    UniquenessCheck(
                        cls, field, (*extra_scope, fk), tenant_key_present=True, **common
                    ),
                    # among global rows, for a global record
                    UniquenessCheck(
                        cls,
                        field,
                        extra_scope,
                        tenant_key_present=False,
                        null_tenant_rows=True,
                        **common,
                    ),
                    # against global rows, for a tenant record
                    UniquenessCheck(
                        cls,
                        field,
                        extra_scope,
                        tenant_key_present=True,
                        null_tenant_rows=True,
                        **common,
                    ),
                ]
            )
        return cls

    return decorator


__all__ = ["TAKEN", "Condition", "UniquenessCheck", "unique_to_tenant"]
