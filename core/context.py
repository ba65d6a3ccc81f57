"""
Context management utilities for tenant isolation handling.

The active organization decides which loyalty program the tenant-aware
managers read from. No active organization means unfiltered access
(platform key, Celery tasks, management commands).
"""

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Optional
from uuid import UUID

# Using contextvars keeps the value isolated per thread and per asyncio task
_current_organization_id: ContextVar[Optional[UUID]] = ContextVar("current_organization_id", default=None)


def set_current_organization_id(organization_id: Optional[UUID]):
    return _current_organization_id.set(organization_id)


def get_current_organization_id() -> Optional[UUID]:
    """
    Retrieves the organization UUID from the current execution context.
    Returns None if no context is active.
    """
    return _current_organization_id.get()


def reset_current_organization_id():
    _current_organization_id.set(None)


@contextmanager
def organization_context(organization_id: Optional[UUID]):
    """
    Activates an organization for the duration of the block and restores
    the previous value afterwards, even if the block raises.
    """
    token = _current_organization_id.set(organization_id)
    try:
        yield
    finally:
        _current_organization_id.reset(token)
