"""
FastAPI middleware for role resolution and request context population.

Extracts user identity, roles and group membership from JWT tokens or API
keys, and attaches them to the request state for use in route handlers.
"""

import logging
from typing import Callable, List, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from core.rbac.policy import OwnerContext
from core.rbac.resolve import get_resolver, ResolvedUser

logger = logging.getLogger(__name__)


# ============================================================================
# Request State Extensions
# ============================================================================

class RequestContext:
    """
    Request context for user identity and roles.

    Attached to request.state by the RoleResolutionMiddleware.
    """

    def __init__(self, user: ResolvedUser):
        self.user_id: Optional[str] = user.user_id
        self.email: Optional[str] = user.email
        self.roles: List[str] = list(user.roles)
        self.group_ids: List[str] = list(user.group_ids)
        self.auth_method: str = user.auth_method
        self.is_authenticated: bool = user.is_authenticated
        self.metadata: dict = user.metadata

    def owner_context(self) -> OwnerContext:
        return OwnerContext(user_id=self.user_id, group_ids=tuple(self.group_ids))

    def __repr__(self) -> str:
        return (
            f"RequestContext(user_id={self.user_id}, "
            f"roles={self.roles}, auth_method={self.auth_method})"
        )


# ============================================================================
# Middleware
# ============================================================================

class RoleResolutionMiddleware(BaseHTTPMiddleware):
    """
    Middleware to resolve user identity and roles from request headers.

    Extracts authentication from:
    1. Authorization header (JWT token)
    2. X-API-KEY header (API key)
    3. Falls back to an anonymous user with no roles

    Attaches a RequestContext to request.state.ctx.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        authorization = request.headers.get("Authorization")
        api_key = request.headers.get("X-API-KEY") or request.headers.get("X-Api-Key")

        resolver = get_resolver()
        try:
            user = resolver.resolve_from_request(
                authorization_header=authorization,
                api_key_header=api_key,
            )
        finally:
            # Resolution is cached for the lifetime of one request only
            resolver.clear_cache()

        request.state.ctx = RequestContext(user)

        logger.debug(
            f"Resolved user for {request.method} {request.url.path}: "
            f"user_id={user.user_id}, roles={user.roles}, method={user.auth_method}"
        )

        response = await call_next(request)
        return response


# ============================================================================
# Helper Functions
# ============================================================================

def get_current_user(request: Request) -> RequestContext:
    """
    Get current user context from request.

    Raises:
        AttributeError: If middleware has not been applied
    """
    if not hasattr(request.state, "ctx"):
        raise AttributeError(
            "Request state does not have 'ctx' attribute. "
            "Ensure RoleResolutionMiddleware is configured."
        )

    return request.state.ctx


def get_user_roles(request: Request) -> List[str]:
    return get_current_user(request).roles
