"""
Validation runner for tenant-owned records.

validate() assigns the current tenant to new records, runs before-validation
hooks and then every validator of the record's ownership. save() validates
and flushes only valid records, reporting failures through its return value
and the record's errors. Records flushed without save() are validated by the
``before_flush`` listener, which raises RecordInvalidError instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import inspect
from sqlalchemy.orm.attributes import set_committed_value

from tenantguard.context import get_current_tenant
from tenantguard.exceptions import RecordInvalidError
from tenantguard.registry import TenantOwnership, get_ownership
from tenantguard.validation.associations import association_validators
from tenantguard.validation.errors import Errors, errors_for

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm import Session, UOWTransaction

logger = logging.getLogger(__name__)

MUST_EXIST = "must exist"

# Set by save() so the flush listener does not validate the record twice
_VALIDATED_KEY = "tenantguard.validated"


@dataclass(frozen=True)
class TenantPresenceValidator:
    """
    Validates that a record belongs to a tenant.

    Attributes:
        tenant: Name of the tenant association, used as the error key
        foreign_key: Tenant key attribute
    """

    tenant: str
    foreign_key: str

    def validate(self, session: Session, record: Any, errors: Errors) -> None:
        if getattr(record, self.foreign_key) is not None:
            return
        # A pending tenant assigned through the relationship has no key yet
        if record.__dict__.get(self.tenant) is not None:
            return
        errors.add(self.tenant, MUST_EXIST)


def assign_current_tenant(record: Any, ownership: TenantOwnership) -> None:
    """
    Link a new record to the current tenant.

    The tenant key of a non-polymorphic record is always overwritten with the
    current tenant's key. Polymorphic records only get the key and type name
    filled in when they are empty.
    """
    tenant = get_current_tenant()
    if tenant is None or not ownership.is_direct:
        return
    key = getattr(tenant, ownership.primary_key)

    if ownership.polymorphic:
        if getattr(record, ownership.foreign_key) is None:
            setattr(record, ownership.foreign_key, key)
        type_attribute = ownership.polymorphic_type
        if type_attribute and getattr(record, type_attribute) is None:
            setattr(record, type_attribute, type(tenant).__name__)
        return

    setattr(record, ownership.foreign_key, key)
    related = record.__dict__.get(ownership.tenant)
    if related is not None and getattr(related, ownership.primary_key) != key:
        # Otherwise the flush would sync the related tenant's key back
        set_committed_value(record, ownership.tenant, None)


def validate(session: Session, record: Any) -> Errors:
    """
    Validate a tenant-owned record.

    Previous errors of the record are cleared first. Records of models that
    are not tenant-owned have no tenant rules and always come back valid.

    Args:
        session: Session used for the lookup queries
        record: The record to validate

    Returns:
        The record's errors (empty when valid)

    Raises:
        NoTenantSetError: If a lookup needs a tenant and none is set
    """
    errors = errors_for(record)
    errors.clear()
    ownership = get_ownership(type(record))
    if ownership is None:
        return errors

    with session.no_autoflush:
        if not inspect(record).has_identity:
            assign_current_tenant(record, ownership)
        for hook in ownership.before_validation:
            hook(record)
        for validator in (*ownership.validators, *association_validators(ownership)):
            validator.validate(session, record, errors)

    if errors:
        logger.debug("%s is invalid: %s", type(record).__name__, errors.as_dict())
    return errors


def save(session: Session, record: Any) -> bool:
    """
    Validate a record and flush it when valid.

    Data-level failures (missing tenant, invalid association, taken value)
    are reported through the return value and ``errors_for(record)``; they
    never raise. Structural isolation violations still raise.

    Returns:
        True if the record was flushed, False if it is invalid
    """
    if validate(session, record):
        return False

    session.add(record)
    info = inspect(record).info
    info[_VALIDATED_KEY] = True
    try:
        session.flush()
    finally:
        info.pop(_VALIDATED_KEY, None)
    return True


async def save_async(session: AsyncSession, record: Any) -> bool:
    """Async variant of save() for an ``AsyncSession``."""
    return await session.run_sync(save, record)


def validate_before_flush(
    session: Session,
    flush_context: UOWTransaction,
    instances: Any,
) -> None:
    """
    ``before_flush`` listener validating tenant-owned records.

    New and modified records that were not validated by save() are validated
    here.

    Raises:
        RecordInvalidError: If a record fails validation
    """
    for record in [*session.new, *session.dirty]:
        if get_ownership(type(record)) is None:
            continue
        state = inspect(record)
        if state.info.pop(_VALIDATED_KEY, False):
            continue
        if state.has_identity and not session.is_modified(record):
            continue

        errors = validate(session, record)
        if errors:
            logger.warning(
                "Flush rejected invalid %s: %s",
                type(record).__name__,
                "; ".join(errors.full_messages()),
            )
            raise RecordInvalidError(record, errors)


__all__ = [
    "MUST_EXIST",
    "TenantPresenceValidator",
    "assign_current_tenant",
    "save",
    "save_async",
    "validate",
    "validate_before_flush",
]
