"""Propagate tenant identity through the call stack using contextvars."""

from contextvars import ContextVar
from uuid import UUID
from contextlib import contextmanager

_current_tenant_id: ContextVar[UUID | None] = ContextVar("current_tenant_id", default=None)


def get_current_tenant_id() -> UUID:
    """
    Get current tenant ID from context.

    Raises RuntimeError if no tenant context is set. Code that can run
    without a tenant (e.g. default fee quotes) should use
    get_current_tenant_id_or_none() instead.
    """
    tenant_id = _current_tenant_id.get()
    if tenant_id is None:
        raise RuntimeError(
            "No tenant context set. This usually means you're calling "
            "tenant-scoped code outside of a tenant request or job."
        )
    return tenant_id


def get_current_tenant_id_or_none() -> UUID | None:
    return _current_tenant_id.get()


def set_current_tenant_id(tenant_id: UUID) -> None:
    _current_tenant_id.set(tenant_id)


def clear_current_tenant_id() -> None:
    """
    Clear tenant context.

    Must be called in a finally block to prevent context leakage.
    """
    _current_tenant_id.set(None)


@contextmanager
def tenant_context(tenant_id: UUID):
    """
    Context manager for temporarily setting tenant context.

    Example:
        with tenant_context(authority_id):
            # Rate lookups and RLS use authority_id
            quote = billing.quote(request)
    """
    previous = _current_tenant_id.get()
    set_current_tenant_id(tenant_id)
    try:
        yield
    finally:
        if previous is None:
            clear_current_tenant_id()
        else:
            set_current_tenant_id(previous)
