"""
API endpoint guards for capability-based authorization.

Provides decorators to protect FastAPI routes based on the capability grant
table. Field visibility and scoping are handled by the scoped query
interceptor; guards only answer "may this caller perform this action at all".
"""

import inspect
import logging
from functools import wraps
from typing import Any, Callable, Optional, Sequence

from fastapi import HTTPException, Request, status

from api.middleware.roles import RequestContext, get_current_user
from core.metrics import audit_rbac_denial, record_rbac_check
from core.rbac import has_capability

logger = logging.getLogger(__name__)


def _extract_request_from_args(args, kwargs) -> Optional[Request]:
    """Find the Request among a route handler's arguments."""
    request = kwargs.get("request")
    if isinstance(request, Request):
        return request
    for arg in args:
        if isinstance(arg, Request):
            return arg
    return None


def _context_for(request: Optional[Request], label: str) -> RequestContext:
    if request is None:
        logger.error(f"{label} decorator requires Request parameter")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error: Request not found",
        )
    try:
        return get_current_user(request)
    except AttributeError:
        logger.error("Request context not available. Is RoleResolutionMiddleware configured?")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error: User context not available",
        )


def _check(request: Optional[Request], actions: Sequence[str], label: str) -> None:
    ctx = _context_for(request, label)
    grants = getattr(request.app.state, "grants", None)

    allowed = any(
        has_capability(role, action, grants)
        for role in ctx.roles
        for action in actions
    )
    for action in actions:
        record_rbac_check(allowed=allowed, action=action, roles=ctx.roles)

    if not allowed:
        audit_rbac_denial(
            action=",".join(actions),
            user_id=ctx.user_id,
            roles=ctx.roles,
            resource_type="route",
            reason="action_not_granted",
            metadata={
                "route": str(request.url.path),
                "method": request.method,
                "is_authenticated": ctx.is_authenticated,
            },
        )
        logger.warning(
            f"Access denied: user_id={ctx.user_id}, "
            f"roles={ctx.roles}, required_any_of={list(actions)}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "error": "forbidden",
                "actions": list(actions),
                "message": f"One of {list(actions)} required",
            },
        )

    logger.debug(
        f"Access granted: user_id={ctx.user_id}, "
        f"roles={ctx.roles}, actions={list(actions)}"
    )


def _guard(actions: Sequence[str], label: str) -> Callable:
    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):
            @wraps(func)
            async def async_wrapper(*args, **kwargs) -> Any:
                _check(_extract_request_from_args(args, kwargs), actions, label)
                return await func(*args, **kwargs)
            return async_wrapper

        @wraps(func)
        def sync_wrapper(*args, **kwargs) -> Any:
            _check(_extract_request_from_args(args, kwargs), actions, label)
            return func(*args, **kwargs)
        return sync_wrapper

    return decorator


# ============================================================================
# Guard Decorators
# ============================================================================

def require(action: str) -> Callable:
    """
    Decorator to require a specific action for a FastAPI route.

    Checks if any of the user's roles (from request.state.ctx) hold the
    action. If not, raises HTTPException with 403 status.

    Examples:
        >>> @router.post("/events/{event_id}/activate")
        >>> @require(ACTION_MANAGE_EVENTS)
        >>> def activate(request: Request, event_id: int):
        >>>     ...
    """
    return _guard((action,), f"@require({action})")


def require_any(*actions: str) -> Callable:
    """
    Decorator to require ANY of the specified actions.

    Examples:
        >>> @router.get("/media/{media_id}/playback-source")
        >>> @require_any(ACTION_PLAYBACK_ALL, ACTION_PLAYBACK_ISSUES_ONLY)
        >>> def playback(request: Request, media_id: str):
        >>>     ...
    """
    return _guard(tuple(actions), f"@require_any{actions}")
