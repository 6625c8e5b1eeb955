"""
Tenant context propagation for deferred units of work.

A job queued while a tenant is active must run under that tenant, even when
it runs later, on another worker, or in another process. At enqueue time the
current context is captured into two payload keys:

    current_tenant: "<entity-type>:<primary-key>" (absent without a tenant)
    tenant_unscoped: bool

At execution time the keys are removed from the payload, the tenant identity
is resolved back to an entity, and the job body runs inside a fresh tenant
context that is released when the body finishes or fails.

Example:
    >>> propagator = TenantContextPropagator(
    ...     SessionIdentityResolver(SessionLocal, [Account]),
    ... )
    >>>
    >>> # Producer side, inside a request for acme
    >>> message = propagator.serialize({"report_id": 7})
    >>> queue.put(message)
    >>>
    >>> # Worker side
    >>> @propagator.wrap
    ... def build_report(payload):
    ...     assert get_current_tenant().name == "Acme"
    >>> build_report(queue.get())
"""

from __future__ import annotations

import functools
import inspect as pyinspect
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator, Iterable, Mapping
from contextlib import asynccontextmanager, contextmanager
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import inspect

from tenantguard.config import get_config
from tenantguard.context import (
    TenantContext,
    TenantReference,
    current_context,
    reset_tenant_context,
    tenant_context,
)
from tenantguard.exceptions import TenantNotFoundError
from tenantguard.observability import (
    ATTR_TASK_NAME,
    ATTR_TENANT_ID,
    ATTR_TENANT_RESOLVED,
    ATTR_TENANT_TYPE,
    ATTR_TENANT_UNSCOPED,
    SpanKindEnum,
    Tracer,
    create_tracer,
)

if TYPE_CHECKING:
    from collections.abc import MutableMapping

    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

CURRENT_TENANT_KEY = "current_tenant"
TENANT_UNSCOPED_KEY = "tenant_unscoped"

R = TypeVar("R")


class PropagationEnvelope(BaseModel):
    """
    Serialized tenant context carried alongside a deferred unit of work.

    Example:
        >>> with tenant_scope_sync(acme):
        ...     envelope = PropagationEnvelope.capture()
        >>> envelope.to_payload()
        {'current_tenant': 'Account:1', 'tenant_unscoped': False}
    """

    model_config = ConfigDict(frozen=True)

    current_tenant: str | None = Field(
        default=None,
        description="Tenant identity as '<entity-type>:<primary-key>'",
    )
    tenant_unscoped: bool = Field(
        default=False,
        description="Whether the unit of work runs with tenant scoping disabled",
    )

    @field_validator("current_tenant")
    @classmethod
    def _check_identity(cls, value: str | None) -> str | None:
        if value is not None:
            TenantReference.parse(value)
        return value

    @classmethod
    def capture(cls, context: TenantContext | None = None) -> PropagationEnvelope:
        """Capture the given context (default: the current one)."""
        context = context if context is not None else current_context()
        reference = context.reference
        return cls(
            current_tenant=reference.to_identity() if reference is not None else None,
            tenant_unscoped=context.unscoped,
        )

    @classmethod
    def extract(cls, payload: MutableMapping[str, Any]) -> PropagationEnvelope:
        """
        Remove the envelope keys from ``payload`` and return the envelope.

        Values are validated like constructor arguments, so string flags
        such as ``"false"`` parse to booleans and anything unparseable raises
        ``pydantic.ValidationError``.
        """
        fields = {
            "current_tenant": payload.pop(CURRENT_TENANT_KEY, None),
            "tenant_unscoped": payload.pop(TENANT_UNSCOPED_KEY, None),
        }
        return cls.model_validate({k: v for k, v in fields.items() if v is not None})

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    @property
    def reference(self) -> TenantReference | None:
        if self.current_tenant is None:
            return None
        return TenantReference.parse(self.current_tenant)


class IdentityResolver(Protocol):
    """
    Resolves a tenant reference back to the tenant entity.

    ``resolve`` returns the entity, or None when it no longer exists. It may
    be a coroutine function; only ``restore()`` and ``run_async()`` accept
    such resolvers.
    """

    def resolve(self, reference: TenantReference) -> Any: ...


def coerce_key(model: type, key: Any) -> Any:
    """
    Convert a key parsed from an identity string to the primary key's type.

    Raises:
        ValueError: If the key cannot be converted
    """
    if not isinstance(key, str):
        return key
    column = inspect(model).primary_key[0]
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return key
    if python_type is str:
        return key
    try:
        return python_type(key)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid {model.__name__} key: {key!r}") from e


class _EntityIndex:
    def __init__(self, models: Iterable[type]) -> None:
        self._models = {model.__name__: model for model in models}

    def _locate(self, reference: TenantReference) -> tuple[type, Any] | None:
        model = self._models.get(reference.entity_type)
        if model is None:
            logger.warning("Unknown tenant entity type %r", reference.entity_type)
            return None
        try:
            return model, coerce_key(model, reference.key)
        except ValueError:
            logger.warning("Tenant identity %s has an invalid key", reference)
            return None


class SessionIdentityResolver(_EntityIndex):
    """
    Resolves tenant references with a short-lived sync session.

    The returned entity is detached; its loaded attributes stay readable.

    Args:
        session_factory: Callable returning a new Session (e.g. a sessionmaker)
        models: Tenant entity classes, matched by class name
    """

    def __init__(self, session_factory: Callable[[], Session], models: Iterable[type]) -> None:
        super().__init__(models)
        self._session_factory = session_factory

    def resolve(self, reference: TenantReference) -> Any | None:
        located = self._locate(reference)
        if located is None:
            return None
        model, key = located
        with self._session_factory() as session:
            return session.get(model, key)


class AsyncSessionIdentityResolver(_EntityIndex):
    """
    Resolves tenant references with a short-lived AsyncSession.

    Args:
        session_factory: Callable returning a new AsyncSession
            (e.g. an async_sessionmaker)
        models: Tenant entity classes, matched by class name
    """

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        models: Iterable[type],
    ) -> None:
        super().__init__(models)
        self._session_factory = session_factory

    async def resolve(self, reference: TenantReference) -> Any | None:
        located = self._locate(reference)
        if located is None:
            return None
        model, key = located
        async with self._session_factory() as session:
            return await session.get(model, key)


class TenantContextPropagator:
    """
    Captures the tenant context at enqueue time and restores it at run time.

    Args:
        resolver: Resolves tenant references back to entities
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to create OpenTelemetry spans (default True)
    """

    def __init__(
        self,
        resolver: IdentityResolver,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._resolver = resolver
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    def serialize(
        self,
        payload: Mapping[str, Any] | None = None,
        context: TenantContext | None = None,
    ) -> dict[str, Any]:
        """
        Return a copy of ``payload`` with the envelope keys added.

        Raises:
            ValueError: If the payload already uses an envelope key
        """
        data = dict(payload or {})
        collisions = sorted(data.keys() & {CURRENT_TENANT_KEY, TENANT_UNSCOPED_KEY})
        if collisions:
            raise ValueError(f"Payload keys collide with the tenant envelope: {collisions}")
        data.update(PropagationEnvelope.capture(context).to_payload())
        return data

    def deserialize(self, payload: MutableMapping[str, Any]) -> PropagationEnvelope:
        """Remove the envelope keys from ``payload`` and return the envelope."""
        return PropagationEnvelope.extract(payload)

    @asynccontextmanager
    async def restore(
        self,
        envelope: PropagationEnvelope,
        task_name: str | None = None,
    ) -> AsyncGenerator[TenantContext, None]:
        """
        Run the block inside the tenant context carried by ``envelope``.

        The block always starts from a fresh context, and the previous context
        is restored on exit. An unscoped envelope that also carries a tenant
        still resolves that tenant and sets it as current, so records created
        in the block are assigned to it.

        Raises:
            TenantNotFoundError: If the tenant no longer exists and the
                ``unresolved_tenant_policy`` is ``"raise"``
        """
        with self._tracer.span(
            "tenantguard.propagation.restore",
            self._span_attributes(envelope, task_name),
            kind=SpanKindEnum.CONSUMER,
        ) as span:
            tenant = None
            reference = envelope.reference
            if reference is not None:
                tenant = self._resolver.resolve(reference)
                if pyinspect.isawaitable(tenant):
                    tenant = await tenant
            context = self._context_for(envelope, reference, tenant, span)
            token = tenant_context.set(context)
            try:
                yield context
            finally:
                reset_tenant_context(token)

    @contextmanager
    def restore_sync(
        self,
        envelope: PropagationEnvelope,
        task_name: str | None = None,
    ) -> Generator[TenantContext, None, None]:
        """
        Sync variant of restore(). Requires a sync resolver. Like restore(),
        an unscoped envelope still resolves and sets its tenant.

        Raises:
            TenantNotFoundError: If the tenant no longer exists and the
                ``unresolved_tenant_policy`` is ``"raise"``
            TypeError: If the resolver is asynchronous
        """
        with self._tracer.span(
            "tenantguard.propagation.restore",
            self._span_attributes(envelope, task_name),
            kind=SpanKindEnum.CONSUMER,
        ) as span:
            tenant = None
            reference = envelope.reference
            if reference is not None:
                tenant = self._resolver.resolve(reference)
                if pyinspect.isawaitable(tenant):
                    if pyinspect.iscoroutine(tenant):
                        tenant.close()
                    raise TypeError("restore_sync() needs a sync resolver; use restore()")
            context = self._context_for(envelope, reference, tenant, span)
            token = tenant_context.set(context)
            try:
                yield context
            finally:
                reset_tenant_context(token)

    def run(self, payload: Mapping[str, Any], body: Callable[[dict[str, Any]], R]) -> R:
        """
        Run ``body`` with the payload's own fields under its tenant context.

        The envelope keys are removed before ``body`` sees the payload.
        """
        data = dict(payload)
        envelope = self.deserialize(data)
        with self.restore_sync(envelope, _task_name(body)):
            return body(data)

    async def run_async(
        self,
        payload: Mapping[str, Any],
        body: Callable[[dict[str, Any]], Awaitable[R]],
    ) -> R:
        """Async variant of run() for coroutine functions."""
        data = dict(payload)
        envelope = self.deserialize(data)
        async with self.restore(envelope, _task_name(body)):
            return await body(data)

    def wrap(self, fn: Callable[[dict[str, Any]], Any]) -> Callable[[Mapping[str, Any]], Any]:
        """
        Decorate a task function taking a payload dict.

        Works for both plain and coroutine functions.
        """
        if pyinspect.iscoroutinefunction(fn):

            @functools.wraps(fn)
            async def async_wrapper(payload: Mapping[str, Any]) -> Any:
                return await self.run_async(payload, fn)

            return async_wrapper

        @functools.wraps(fn)
        def wrapper(payload: Mapping[str, Any]) -> Any:
            return self.run(payload, fn)

        return wrapper

    def _context_for(
        self,
        envelope: PropagationEnvelope,
        reference: TenantReference | None,
        tenant: Any,
        span: Any,
    ) -> TenantContext:
        if span is not None and reference is not None:
            span.set_attribute(ATTR_TENANT_RESOLVED, tenant is not None)

        if envelope.tenant_unscoped:
            # Administrative job: tenant isolation is disabled
            logger.warning(
                "Running deferred unit unscoped; tenant isolation disabled (tenant %s)",
                reference,
            )
        if reference is not None:
            if tenant is None:
                logger.warning("Propagated tenant %s could not be resolved", reference)
                if get_config().unresolved_tenant_policy == "raise":
                    raise TenantNotFoundError(reference)
            else:
                logger.info("Restored tenant %s for deferred unit", reference)

        return TenantContext(tenant=tenant, unscoped=envelope.tenant_unscoped)

    def _span_attributes(
        self,
        envelope: PropagationEnvelope,
        task_name: str | None,
    ) -> dict[str, Any]:
        attributes: dict[str, Any] = {ATTR_TENANT_UNSCOPED: envelope.tenant_unscoped}
        reference = envelope.reference
        if reference is not None:
            attributes[ATTR_TENANT_TYPE] = reference.entity_type
            attributes[ATTR_TENANT_ID] = str(reference.key)
        if task_name:
            attributes[ATTR_TASK_NAME] = task_name
        return attributes


def _task_name(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__qualname__", None) or repr(fn)


__all__ = [
    "CURRENT_TENANT_KEY",
    "TENANT_UNSCOPED_KEY",
    "PropagationEnvelope",
    "IdentityResolver",
    "SessionIdentityResolver",
    "AsyncSessionIdentityResolver",
    "TenantContextPropagator",
    "coerce_key",
]
