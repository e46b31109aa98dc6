"""Per-request context (tenant, authority, request id) for isolation and logging."""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

tenant_id_var: ContextVar[Optional[int]] = ContextVar("tenant_id", default=None)
authority_address_var: ContextVar[Optional[str]] = ContextVar("authority_address", default=None)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def set_tenant_context(tenant_id: int | None) -> None:
    """Set the current tenant context.

    Args:
        tenant_id: Tenant (school) ID to set in context
    """
    tenant_id_var.set(tenant_id)


def get_tenant_context() -> int | None:
    """Get the current tenant context."""
    return tenant_id_var.get()


def clear_tenant_context() -> None:
    """Clear the current tenant context."""
    tenant_id_var.set(None)


def set_authority_context(address: str | None) -> None:
    """Set the contact address of the authority handling this unit of work."""
    authority_address_var.set(address)


def get_authority_context() -> str | None:
    return authority_address_var.get()


def set_request_context(request_id: str | None) -> None:
    request_id_var.set(request_id)


def get_request_context() -> str | None:
    return request_id_var.get()


@contextmanager
def tenant_scope(tenant_id: int | None, authority_address: str | None = None) -> Iterator[None]:
    """Bind tenant/authority context for the duration of a block.

    Used by workers that process several tenants in one invocation.
    """
    tenant_token = tenant_id_var.set(tenant_id)
    authority_token = authority_address_var.set(authority_address)
    try:
        yield
    finally:
        authority_address_var.reset(authority_token)
        tenant_id_var.reset(tenant_token)
