# main.py — app factory: routers, error mapping and health

import logging
import sys
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.middleware.roles import RoleResolutionMiddleware
from app.settings import Settings, get_settings
from config import REQUIRED
from core.access import AccessCore, build_core_from_config
from core.errors import (
    AccessCoreError,
    ActiveEventExists,
    AuditWriteError,
    Forbidden,
    InvalidEventData,
    InvalidFilterValue,
    InvalidPolicyError,
    InvalidStateTransition,
    NoActiveEvent,
    RecordNotFound,
    EventNotFound,
    SourceOffline,
    StaleEventError,
)
from core.rbac.resolve import configure_resolver

logger = logging.getLogger(__name__)

# First match wins; subclasses before their bases.
ERROR_STATUS = [
    (ActiveEventExists, 409),
    (StaleEventError, 409),
    (NoActiveEvent, 409),
    (InvalidStateTransition, 422),
    (InvalidEventData, 422),
    (InvalidFilterValue, 422),
    (Forbidden, 403),
    (SourceOffline, 404),
    (EventNotFound, 404),
    (RecordNotFound, 404),
    (AuditWriteError, 503),
    (InvalidPolicyError, 500),
]


def status_for(error: AccessCoreError) -> int:
    for cls, code in ERROR_STATUS:
        if isinstance(error, cls):
            return code
    return 500


async def access_core_error_handler(request: Request, exc: AccessCoreError):
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.code}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app(core: Optional[AccessCore] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the FastAPI application.

    If no core is passed, one is built from the environment. A broken
    environment does not stop the app from starting; /healthz reports it
    and the resource routers are left unmounted.
    """
    settings = settings or get_settings()
    configure_resolver(
        jwt_secret=settings.JWT_SECRET,
        jwt_algorithm=settings.JWT_ALGO,
        api_key_to_user_map=settings.api_key_map(),
        default_anonymous_roles=settings.ANONYMOUS_ROLES,
    )

    config_error = None
    if core is None:
        try:
            core = build_core_from_config()
        except Exception as e:
            config_error = str(e)
            print("=" * 80, file=sys.stderr)
            print("FATAL: Failed to build access core", file=sys.stderr)
            print(f"Error: {e}", file=sys.stderr)
            print(f"Required variables: {', '.join(REQUIRED)}", file=sys.stderr)
            print("=" * 80, file=sys.stderr)

    app = FastAPI(
        title="Access & Scoping Core",
        version="0.1.0",
        description="Event lifecycle, role capabilities, scoped queries and audited playback.",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RoleResolutionMiddleware)
    app.add_exception_handler(AccessCoreError, access_core_error_handler)

    app.state.core = core
    app.state.grants = core.interceptor.grants if core else None
    app.state.config_error = config_error

    mounted = []
    failures = []

    def _mount(router_module_name: str):
        try:
            mod = __import__(f"router.{router_module_name}", fromlist=["router"])
            app.include_router(mod.router)
            mounted.append(router_module_name)
            logger.info(f"[routers] mounted /{router_module_name}")
        except Exception as e:
            failures.append({"router": router_module_name, "error": repr(e)})
            logger.warning(f"[routers] failed to mount '{router_module_name}': {e!r}")

    if core is not None:
        _mount("events")
        _mount("media")
    _mount("debug")

    @app.get("/debug/routers")
    def debug_routers():
        return {"mounted": mounted, "failures": failures}

    @app.get("/healthz")
    async def healthz():
        """Minimal liveness probe."""
        if config_error:
            return {
                "status": "degraded",
                "error": "configuration_failed",
                "message": config_error,
            }
        active = core.current_active_event()
        return {"status": "ok", "active_event_id": active.id if active else None}

    return app


app = create_app()
