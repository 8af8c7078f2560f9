"""API middleware modules."""

from .roles import (
    RoleResolutionMiddleware,
    RequestContext,
    get_current_user,
    get_user_roles,
)

__all__ = [
    "RoleResolutionMiddleware",
    "RequestContext",
    "get_current_user",
    "get_user_roles",
]
