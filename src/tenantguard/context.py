"""
Tenant context management for tenant-scoped persistence.

This module holds the ambient "current tenant" for an execution unit:
- TenantReference: type + key identity of a tenant entity
- TenantContext: immutable snapshot of the ambient state
- get_current_tenant() / set_current_tenant() / clear_current_tenant()
- set_unscoped() / is_unscoped(): administrative override
- tenant_scope() / tenant_scope_sync(): scoped tenant with automatic release
- without_tenant() / without_tenant_sync(): scoped unscoped mode
- mutable_tenant() / mutable_tenant_sync(): scoped tenant reassignment

All state lives in one ContextVar, so each thread and each asyncio task
observes only its own tenant. Concurrent requests for different tenants
never see each other's context.

Example:
    >>> from tenantguard import tenant_scope_sync, get_current_tenant
    >>>
    >>> with tenant_scope_sync(acme):
    ...     assert get_current_tenant() is acme
    >>> assert get_current_tenant() is None
"""

from __future__ import annotations

import dataclasses
import logging
from contextlib import asynccontextmanager, contextmanager
from contextvars import ContextVar, Token
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from tenantguard.config import get_config
from tenantguard.exceptions import NoTenantSetError

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Generator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantReference:
    """
    Identity of a tenant entity: its type name plus its primary key.

    Two references are equal when both type and key are equal. The key is
    kept as given; references parsed from an identity string carry the key
    as a string until an identity resolver coerces it.

    Example:
        >>> ref = TenantReference("Account", 1)
        >>> ref.to_identity()
        'Account:1'
        >>> TenantReference.parse("Account:1")
        TenantReference(entity_type='Account', key='1')
    """

    entity_type: str
    key: Any

    @classmethod
    def from_entity(cls, entity: Any, primary_key: str | None = None) -> TenantReference:
        pk = primary_key or get_config().primary_key
        return cls(type(entity).__name__, getattr(entity, pk))

    @classmethod
    def parse(cls, identity: str) -> TenantReference:
        """
        Parse an ``"<entity-type>:<primary-key>"`` identity string.

        Raises:
            ValueError: If the string is not a valid identity
        """
        entity_type, sep, key = identity.partition(":")
        if not sep or not entity_type or not key:
            raise ValueError(f"Invalid tenant identity: {identity!r}")
        return cls(entity_type, key)

    def to_identity(self) -> str:
        return f"{self.entity_type}:{self.key}"

    def __str__(self) -> str:
        return self.to_identity()


@dataclass(frozen=True)
class TenantContext:
    """
    Snapshot of the tenant state of one execution unit.

    Attributes:
        tenant: The current tenant entity, or None
        unscoped: Whether tenant scoping is explicitly disabled
        mutable: Per-unit override of the ``mutable_tenant`` setting
            (None means use the configured value)
    """

    tenant: Any | None = None
    unscoped: bool = False
    mutable: bool | None = None

    @property
    def reference(self) -> TenantReference | None:
        if self.tenant is None:
            return None
        return TenantReference.from_entity(self.tenant)


_EMPTY = TenantContext()

# Default is an empty context: no tenant, scoped, configured mutability
tenant_context: ContextVar[TenantContext] = ContextVar("tenant_context", default=_EMPTY)


def current_context() -> TenantContext:
    """Return the tenant context of the current execution unit."""
    return tenant_context.get()


def get_current_tenant() -> Any | None:
    """
    Get the current tenant entity.

    Safe to call at any time; returns None when no tenant is set.
    """
    return tenant_context.get().tenant


def get_required_tenant() -> Any:
    """
    Get the current tenant, raising if none is set.

    Raises:
        NoTenantSetError: If no tenant context is set
    """
    tenant = tenant_context.get().tenant
    if tenant is None:
        raise NoTenantSetError()
    return tenant


def set_current_tenant(tenant: Any | None) -> Token[TenantContext]:
    """
    Set the current tenant for this execution unit.

    This is the entry point for request-level tenant resolvers. The returned
    token restores the previous context via ``reset_tenant_context(token)``.
    Prefer ``tenant_scope()`` / ``tenant_scope_sync()``, which release the
    context on every exit path.

    Args:
        tenant: The tenant entity (None clears the tenant)

    Returns:
        Token that can be used to restore the previous context
    """
    logger.debug("Tenant context set: %s", tenant)
    return tenant_context.set(dataclasses.replace(tenant_context.get(), tenant=tenant))


def clear_current_tenant() -> None:
    """Clear the current tenant, keeping the unscoped flag."""
    logger.debug("Tenant context cleared")
    tenant_context.set(dataclasses.replace(tenant_context.get(), tenant=None))


def set_unscoped(unscoped: bool = True) -> Token[TenantContext]:
    """
    Enable or disable unscoped mode for this execution unit.

    Unscoped mode disables the required-tenant check; when no tenant is set
    every tenant-owned query matches all rows. Intended for administrative
    operations only.
    """
    logger.debug("Tenant unscoped mode: %s", unscoped)
    return tenant_context.set(dataclasses.replace(tenant_context.get(), unscoped=unscoped))


def is_unscoped() -> bool:
    return tenant_context.get().unscoped


def is_tenant_mutable() -> bool:
    """Return whether persisted records may change tenant right now."""
    override = tenant_context.get().mutable
    if override is not None:
        return override
    return get_config().mutable_tenant


def requires_tenant(model: type | None = None) -> bool:
    return get_config().requires_tenant(model)


def reset_tenant_context(token: Token[TenantContext] | None = None) -> None:
    """
    Release the tenant context.

    With a token, restores the context that was active when the token was
    issued. Without one, resets to the empty context. Call at the end of
    every request or task when not using the scope helpers.
    """
    if token is not None:
        tenant_context.reset(token)
    else:
        tenant_context.set(_EMPTY)
    logger.debug("Tenant context reset")


@contextmanager
def _scoped(context: TenantContext, label: str) -> Generator[TenantContext, None, None]:
    token = tenant_context.set(context)
    logger.debug("%s entered: %s", label, context)
    try:
        yield context
    finally:
        tenant_context.reset(token)
        logger.debug("%s exited: %s", label, context)


@asynccontextmanager
async def tenant_scope(tenant: Any | None) -> AsyncGenerator[Any | None, None]:
    """
    Async context manager for a scoped current tenant.

    Sets the tenant on entry and restores the previous context on exit,
    including when the body raises or is cancelled.

    Example with nesting:
        >>> async def nested_example():
        ...     async with tenant_scope(acme):
        ...         assert get_current_tenant() is acme
        ...         async with tenant_scope(globex):
        ...             assert get_current_tenant() is globex
        ...         # acme is restored
        ...         assert get_current_tenant() is acme
    """
    with _scoped(dataclasses.replace(tenant_context.get(), tenant=tenant), "Tenant scope"):
        yield tenant


@contextmanager
def tenant_scope_sync(tenant: Any | None) -> Generator[Any | None, None, None]:
    """
    Sync context manager for a scoped current tenant.

    Same as tenant_scope but for synchronous code.
    """
    with _scoped(dataclasses.replace(tenant_context.get(), tenant=tenant), "Tenant scope (sync)"):
        yield tenant


@asynccontextmanager
async def without_tenant() -> AsyncGenerator[None, None]:
    """Run the block with no current tenant and tenant scoping disabled."""
    with _scoped(dataclasses.replace(tenant_context.get(), tenant=None, unscoped=True), "Unscoped"):
        yield


@contextmanager
def without_tenant_sync() -> Generator[None, None, None]:
    """Sync variant of without_tenant."""
    with _scoped(
        dataclasses.replace(tenant_context.get(), tenant=None, unscoped=True), "Unscoped (sync)"
    ):
        yield


@asynccontextmanager
async def mutable_tenant() -> AsyncGenerator[None, None]:
    """Allow persisted records to change tenant inside the block."""
    with _scoped(dataclasses.replace(tenant_context.get(), mutable=True), "Mutable tenant"):
        yield


@contextmanager
def mutable_tenant_sync() -> Generator[None, None, None]:
    """Sync variant of mutable_tenant."""
    with _scoped(dataclasses.replace(tenant_context.get(), mutable=True), "Mutable tenant (sync)"):
        yield


__all__ = [
    "TenantReference",
    "TenantContext",
    "tenant_context",
    "current_context",
    "get_current_tenant",
    "get_required_tenant",
    "set_current_tenant",
    "clear_current_tenant",
    "set_unscoped",
    "is_unscoped",
    "is_tenant_mutable",
    "requires_tenant",
    "reset_tenant_context",
    "tenant_scope",
    "tenant_scope_sync",
    "without_tenant",
    "without_tenant_sync",
    "mutable_tenant",
    "mutable_tenant_sync",
]
