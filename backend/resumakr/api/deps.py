"""Shared API dependencies: single import point for all routers.

Re-exports database session, authentication and entitlement dependencies so
that router modules can import everything they need from one place::

    from resumakr.api.deps import get_db, get_authenticated_context
"""

from resumakr.auth.dependencies import get_current_active_user, get_current_user
from resumakr.billing.dependencies import (
    get_authenticated_context,
    raise_if_denied,
    require_admin,
    require_feature,
)
from resumakr.database import get_db, get_session_factory

__all__ = [
    "get_db",
    "get_session_factory",
    "get_current_user",
    "get_current_active_user",
    "get_authenticated_context",
    "raise_if_denied",
    "require_admin",
    "require_feature",
]
