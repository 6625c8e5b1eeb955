"""
ASGI middleware resolving the current tenant per request.

TenantMiddleware asks a resolver for the tenant of each HTTP or WebSocket
connection and runs the rest of the application inside ``tenant_scope()``,
so the tenant is released when the response is done, even on errors.

Resolvers are plain callables taking a Starlette ``HTTPConnection`` and
returning the tenant entity (or None); they may be coroutine functions.

Example:
    >>> from starlette.applications import Starlette
    >>> from starlette.middleware import Middleware
    >>>
    >>> resolver = SubdomainOrDomainResolver(
    ...     find_by_domain=lambda domain: accounts.get_by_domain(domain),
    ...     find_by_subdomain=lambda sub: accounts.get_by_subdomain(sub),
    ... )
    >>> app = Starlette(
    ...     routes=routes,
    ...     middleware=[Middleware(TenantMiddleware, resolver=resolver)],
    ... )
"""

from __future__ import annotations

import inspect
import ipaddress
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Literal

from starlette.requests import HTTPConnection

from tenantguard.context import tenant_scope
from tenantguard.observability import (
    ATTR_HTTP_HOST,
    ATTR_RESOLVER_NAME,
    ATTR_URL_PATH,
    SpanKindEnum,
    Tracer,
    create_tracer,
)

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger(__name__)

TenantResolver = Callable[[HTTPConnection], Any]
"""Returns the tenant for a connection, or an awaitable of it."""

Finder = Callable[[str], Any]
"""Looks up a tenant by one string value; may be a coroutine function."""


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class TenantMiddleware:
    """
    Pure ASGI middleware setting the current tenant for each connection.

    Lifespan and other non-connection scopes pass through untouched.

    Args:
        app: The wrapped ASGI application
        resolver: Callable returning the tenant for a connection
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to create OpenTelemetry spans (default True)
    """

    def __init__(
        self,
        app: ASGIApp,
        resolver: TenantResolver,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self.app = app
        self.resolver = resolver
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        connection = HTTPConnection(scope)
        with self._tracer.span(
            "tenantguard.middleware.resolve",
            {
                ATTR_HTTP_HOST: connection.url.hostname or "",
                ATTR_URL_PATH: connection.url.path,
                ATTR_RESOLVER_NAME: type(self.resolver).__name__,
            },
            kind=SpanKindEnum.SERVER,
        ):
            tenant = await _maybe_await(self.resolver(connection))

        if tenant is None:
            logger.debug("No tenant resolved for %s", connection.url.hostname)
        async with tenant_scope(tenant):
            await self.app(scope, receive, send)


class SubdomainOrDomainResolver:
    """
    Resolves the tenant from the request host.

    The full host is looked up as a custom domain first. Otherwise the
    subdomain part of the host is looked up: with ``subdomain_lookup="last"``
    ``www.acme.example.com`` resolves ``acme``, with ``"first"`` it resolves
    ``www``. Hosts are compared lowercase, and IP addresses resolve no tenant.

    Args:
        find_by_domain: Looks up a tenant by custom domain
        find_by_subdomain: Looks up a tenant by subdomain
        subdomain_lookup: Which subdomain label to use, ``"first"`` or ``"last"``
        tld_length: Number of labels in the top-level domain
            (2 for ``example.co.uk``)
    """

    def __init__(
        self,
        find_by_domain: Finder,
        find_by_subdomain: Finder,
        subdomain_lookup: Literal["first", "last"] = "last",
        tld_length: int = 1,
    ) -> None:
        if subdomain_lookup not in ("first", "last"):
            raise ValueError(
                f"subdomain_lookup must be 'first' or 'last', got {subdomain_lookup!r}"
            )
        if tld_length < 1:
            raise ValueError("tld_length must be at least 1")
        self.find_by_domain = find_by_domain
        self.find_by_subdomain = find_by_subdomain
        self.subdomain_lookup = subdomain_lookup
        self.tld_length = tld_length

    def subdomain(self, host: str) -> str | None:
        labels = host.split(".")[: -(self.tld_length + 1)]
        if not labels:
            return None
        return labels[0] if self.subdomain_lookup == "first" else labels[-1]

    async def __call__(self, connection: HTTPConnection) -> Any | None:
        host = (connection.url.hostname or "").lower()
        if not host or _is_ip_address(host):
            return None

        tenant = await _maybe_await(self.find_by_domain(host))
        if tenant is not None:
            return tenant

        subdomain = self.subdomain(host)
        if subdomain is None:
            return None
        return await _maybe_await(self.find_by_subdomain(subdomain))


class HeaderResolver:
    """
    Resolves the tenant from a request header.

    Args:
        find: Looks up a tenant by the header value
        header: Header name (default ``X-Tenant-ID``)
    """

    def __init__(self, find: Finder, header: str = "X-Tenant-ID") -> None:
        self.find = find
        self.header = header

    async def __call__(self, connection: HTTPConnection) -> Any | None:
        value = connection.headers.get(self.header, "").strip()
        if not value:
            return None
        return await _maybe_await(self.find(value))


def _is_ip_address(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


__all__ = [
    "Finder",
    "HeaderResolver",
    "SubdomainOrDomainResolver",
    "TenantMiddleware",
    "TenantResolver",
]
