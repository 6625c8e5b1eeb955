"""
Immutability guard for the tenant-linking attributes.

Attribute ``set`` listeners on the tenant foreign key, the polymorphic type
column and the tenant relationship reject reassigning the tenant of a
persisted record. The listeners run before the new value is stored, so a
rejected assignment leaves the record untouched.

ORM bulk UPDATE statements bypass attribute events; check_bulk_update()
inspects their SET values instead.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING, Any

from sqlalchemy import event, inspect
from sqlalchemy.orm import InstrumentedAttribute

from tenantguard.context import TenantContext, is_tenant_mutable
from tenantguard.exceptions import TenantIsImmutableError

if TYPE_CHECKING:
    from tenantguard.registry import TenantOwnership

logger = logging.getLogger(__name__)


def persisted_tenant_key(
    record: Any, ownership: TenantOwnership, attribute: str | None = None
) -> Any:
    """
    Return the tenant key stored in the database for ``record``.

    ``attribute`` selects another tenant-linking column (the polymorphic
    type); it defaults to the foreign key. Returns None for records that
    were never flushed.
    """
    state = inspect(record)
    if not state.has_identity:
        return None
    history = state.attrs[attribute or ownership.foreign_key].load_history()
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    # Never loaded, or stored as NULL
    return None


def tenant_modified(
    record: Any, ownership: TenantOwnership, new_key: Any, attribute: str | None = None
) -> bool:
    """
    Return whether assigning ``new_key`` changes a persisted tenant key.

    Unflushed records and records persisted without a tenant key can be
    assigned freely; reassigning the same key is not a change.
    """
    persisted = persisted_tenant_key(record, ownership, attribute)
    return persisted is not None and new_key != persisted


def _check(
    record: Any,
    ownership: TenantOwnership,
    attribute: str,
    new_key: Any,
    column: str | None = None,
) -> None:
    if is_tenant_mutable() or not tenant_modified(record, ownership, new_key, column):
        return
    persisted = persisted_tenant_key(record, ownership, column)
    logger.warning(
        "Rejected tenant change on %s.%s: %r -> %r",
        type(record).__name__,
        attribute,
        persisted,
        new_key,
    )
    raise TenantIsImmutableError(type(record), attribute, persisted, new_key)


def install_guards(ownership: TenantOwnership) -> None:
    """
    Attach the immutability listeners for a direct tenant ownership.

    The relationship listener is attached only when the model maps a
    relationship under the tenant name (polymorphic ownership usually does
    not).
    """
    if not ownership.is_direct:
        return
    model = ownership.model

    for column in (ownership.foreign_key, ownership.polymorphic_type):
        if column is not None:
            _guard_column(ownership, column)

    if not _maps_relationship(model, ownership.tenant):
        return

    def guard_relationship(target: Any, value: Any, oldvalue: Any, initiator: Any) -> Any:
        new_key = getattr(value, ownership.primary_key) if value is not None else None
        _check(target, ownership, ownership.tenant, new_key)
        return value

    event.listen(
        getattr(model, ownership.tenant),
        "set",
        guard_relationship,
        retval=True,
        propagate=True,
    )


def _guard_column(ownership: TenantOwnership, column: str) -> None:
    def guard_column(target: Any, value: Any, oldvalue: Any, initiator: Any) -> Any:
        _check(target, ownership, column, value, column)
        return value

    event.listen(
        getattr(ownership.model, column),
        "set",
        guard_column,
        retval=True,
        active_history=True,
        propagate=True,
    )


def _maps_relationship(model: type, name: str) -> bool:
    # Checked without configuring mappers: related classes may not exist yet
    attribute = getattr(model, name, None)
    if not isinstance(attribute, InstrumentedAttribute):
        return False
    return name not in inspect(model).columns


def assigned_values(statement: Any, parameters: Any) -> Iterator[tuple[Any, Any]]:
    """
    Yield the ``(key, value)`` pairs an UPDATE would write.

    Covers ``.values()`` / ``.ordered_values()`` on the statement and the
    parameter dictionaries of an ORM bulk UPDATE by primary key. Bound
    parameters are unwrapped to their values.
    """
    pairs: list[tuple[Any, Any]] = list((getattr(statement, "_values", None) or {}).items())
    pairs.extend(getattr(statement, "_ordered_values", None) or ())
    if isinstance(parameters, dict):
        pairs.extend(parameters.items())
    elif isinstance(parameters, Iterable):
        for row in parameters:
            pairs.extend(row.items())
    for key, value in pairs:
        yield getattr(key, "key", key), getattr(value, "value", value)


def _current_value(ownership: TenantOwnership, attribute: str, context: TenantContext) -> Any:
    tenant = context.tenant
    if tenant is None or context.unscoped:
        return None
    if attribute == ownership.polymorphic_type:
        return type(tenant).__name__
    return getattr(tenant, ownership.primary_key)


def check_bulk_update(
    ownership: TenantOwnership,
    values: Iterable[tuple[Any, Any]],
    context: TenantContext,
) -> None:
    """
    Reject an UPDATE statement that writes a tenant-linking column.

    Writing the current tenant's own key is allowed, since scoped rows
    already hold it. Anything else requires a mutable tenant.

    Raises:
        TenantIsImmutableError: If the statement would reassign the tenant
    """
    if not ownership.is_direct or is_tenant_mutable():
        return
    mapper = inspect(ownership.model)
    names = {
        name: {name, mapper.columns[name].key}
        for name in ownership.tenant_attributes
        if name in mapper.columns
    }
    for key, value in values:
        for attribute, keys in names.items():
            if key not in keys:
                continue
            current = _current_value(ownership, attribute, context)
            if current is not None and value == current:
                continue
            logger.warning(
                "Rejected bulk tenant change on %s.%s: %r -> %r",
                ownership.model.__name__,
                attribute,
                current,
                value,
            )
            raise TenantIsImmutableError(ownership.model, attribute, current, value)


__all__ = [
    "assigned_values",
    "check_bulk_update",
    "install_guards",
    "persisted_tenant_key",
    "tenant_modified",
]
