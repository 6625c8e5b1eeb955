"""
Session integration.

install() registers the tenant scope listener (``do_orm_execute``) and the
validation listener (``before_flush``) on a session class or sessionmaker.
Listeners on ``sqlalchemy.orm.Session`` cover every session, including the
sync session behind an ``AsyncSession``.

``Session.get()`` returns objects already in the identity map without
emitting SQL, so the scope listener never sees those lookups. Use
scoped_get() / scoped_get_async() for primary key lookups of tenant-owned
models in sessions shared across tenants.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import event
from sqlalchemy.orm import Session

from tenantguard.registry import get_ownership
from tenantguard.scoping import apply_tenant_scope
from tenantguard.validation.core import validate_before_flush

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

T = TypeVar("T")


def install(target: Any = Session) -> None:
    """
    Register the tenant listeners on ``target``. Safe to call repeatedly.

    Args:
        target: Session class, sessionmaker or session (default: every Session)
    """
    installed = False
    if not event.contains(target, "do_orm_execute", apply_tenant_scope):
        event.listen(target, "do_orm_execute", apply_tenant_scope)
        installed = True
    if not event.contains(target, "before_flush", validate_before_flush):
        event.listen(target, "before_flush", validate_before_flush)
        installed = True
    if installed:
        logger.debug("Tenant listeners installed on %r", target)


def uninstall(target: Any = Session) -> None:
    """Remove the tenant listeners from ``target``."""
    if event.contains(target, "do_orm_execute", apply_tenant_scope):
        event.remove(target, "do_orm_execute", apply_tenant_scope)
    if event.contains(target, "before_flush", validate_before_flush):
        event.remove(target, "before_flush", validate_before_flush)


def _get_options(model: type, options: dict[str, Any]) -> dict[str, Any]:
    # Tenant-owned lookups always reload, so the row passes the tenant scope
    if get_ownership(model) is not None:
        options["populate_existing"] = True
    return options


def scoped_get(session: Session, model: type[T], ident: Any, **kwargs: Any) -> T | None:
    """
    ``Session.get()`` that honors the current tenant scope.

    Lookups of tenant-owned models bypass the identity map and reload the
    row through the scoped SELECT. With autoflush disabled, unflushed changes
    to that object are overwritten by the reload. Other models behave exactly as
    ``Session.get()``.

    Returns:
        The record, or None when it does not exist or belongs to another tenant

    Raises:
        NoTenantSetError: If a tenant is required but none is set
    """
    return session.get(model, ident, **_get_options(model, kwargs))


async def scoped_get_async(
    session: AsyncSession, model: type[T], ident: Any, **kwargs: Any
) -> T | None:
    """Async variant of scoped_get."""
    return await session.get(model, ident, **_get_options(model, kwargs))


__all__ = ["install", "scoped_get", "scoped_get_async", "uninstall"]
