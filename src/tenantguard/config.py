"""
Process-wide tenantguard configuration.

Configuration is resolved once during application startup, before any
request or task is processed, and is read-only afterwards. Per-execution
state (the current tenant, unscoped mode) lives in ``tenantguard.context``.

Example:
    >>> from tenantguard import configure
    >>>
    >>> configure(
    ...     tenant_name="account",
    ...     require_tenant=True,
    ...     unresolved_tenant_policy="raise",
    ... )
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

logger = logging.getLogger(__name__)

UnresolvedTenantPolicy = Literal["ignore", "raise"]


@dataclass(frozen=True)
class TenantConfig:
    """
    Static configuration for tenant isolation.

    Attributes:
        tenant_name: Default tenant association name used by
            ``@tenant_owned()`` when none is given. Foreign key and polymorphic
            type column names derive from it (``account_id``, ``account_type``).
        primary_key: Name of the tenant entity's primary key attribute.
        require_tenant: Whether tenant-scoped access without a current tenant
            fails with ``NoTenantSetError``. Either a bool or a callable taking
            the model class and returning a bool.
        mutable_tenant: Whether persisted records may change tenant.
        unresolved_tenant_policy: What a deferred unit of work does when its
            propagated tenant no longer exists: ``"ignore"`` runs it with no
            current tenant (``require_tenant`` then decides), ``"raise"`` fails
            it with ``TenantNotFoundError`` before the body runs.

    Example:
        >>> config = TenantConfig(
        ...     require_tenant=lambda model: model.__name__ != "AuditLog",
        ... )
        >>> config.requires_tenant(AuditLog)
        False
    """

    tenant_name: str = "account"
    primary_key: str = "id"
    require_tenant: bool | Callable[[type], bool] = False
    mutable_tenant: bool = False
    unresolved_tenant_policy: UnresolvedTenantPolicy = "ignore"

    def __post_init__(self) -> None:
        if not self.tenant_name:
            raise ValueError("tenant_name must be a non-empty string")
        if not self.primary_key:
            raise ValueError("primary_key must be a non-empty string")
        if self.unresolved_tenant_policy not in ("ignore", "raise"):
            raise ValueError(
                "unresolved_tenant_policy must be 'ignore' or 'raise', "
                f"got {self.unresolved_tenant_policy!r}"
            )

    def requires_tenant(self, model: type | None = None) -> bool:
        """Return whether tenant context is mandatory for ``model``."""
        if callable(self.require_tenant):
            return bool(self.require_tenant(model))
        return self.require_tenant

    def default_foreign_key(self, tenant: str) -> str:
        return f"{tenant}_id"

    def default_polymorphic_type(self, tenant: str) -> str:
        return f"{tenant}_type"


_config = TenantConfig()


def get_config() -> TenantConfig:
    """Return the active configuration."""
    return _config


def configure(**changes: Any) -> TenantConfig:
    """
    Update the process-wide configuration.

    Call during startup only; concurrent reconfiguration while requests or
    tasks are running is not supported.

    Args:
        **changes: Fields of ``TenantConfig`` to replace

    Returns:
        The new active configuration

    Raises:
        TypeError: If an unknown field is given
        ValueError: If a value is invalid
    """
    global _config
    _config = dataclasses.replace(_config, **changes)
    logger.debug("Tenant configuration updated: %s", _config)
    return _config


def reset_config() -> TenantConfig:
    """Restore the default configuration (mainly for tests)."""
    global _config
    _config = TenantConfig()
    return _config


__all__ = [
    "TenantConfig",
    "UnresolvedTenantPolicy",
    "configure",
    "get_config",
    "reset_config",
]
