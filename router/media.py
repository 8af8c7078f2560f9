# router/media.py
import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException, Query, Request

from api.middleware.roles import get_current_user
from core.rbac.capabilities import (
    ACTION_LIST,
    ACTION_SEARCH,
    ACTION_UPDATE,
    RESOURCE_MEDIA,
)
from core.scoping import coerce_filters
from core.types import INTENT_DOWNLOAD, INTENT_PLAYBACK

logger = logging.getLogger(__name__)

router = APIRouter(tags=["media"])

# Query parameters that shape the response rather than filter rows
RESERVED_PARAMS = frozenset({"limit", "offset"})


# ---------- Helpers ----------
def _core(request: Request):
    return request.app.state.core


def _run_read(request: Request, action: str, raw_filters: Dict[str, Any], limit: int, offset: int):
    ctx = get_current_user(request)
    core = _core(request)
    scoped = core.authorize_and_scope(
        ctx.roles,
        RESOURCE_MEDIA,
        action,
        coerce_filters(raw_filters),
        owner_context=ctx.owner_context(),
    )
    rows = core.interceptor.fetch(scoped, core.media)
    return {
        "items": rows[offset:offset + limit],
        "total": len(rows),
        "event_id": scoped.event_id,
    }


# ---------- Routes ----------
@router.get("/media/search")
def search_media(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Filtered search; every query parameter other than limit/offset is a filter."""
    raw = {k: v for k, v in request.query_params.items() if k not in RESERVED_PARAMS}
    return _run_read(request, ACTION_SEARCH, raw, limit, offset)


@router.get("/media")
def list_media(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return _run_read(request, ACTION_LIST, {}, limit, offset)


@router.patch("/media/{media_id}")
def update_media(request: Request, media_id: str, changes: Dict[str, Any] = Body(...)):
    if not changes:
        raise HTTPException(status_code=422, detail="No fields to update")

    ctx = get_current_user(request)
    core = _core(request)
    scoped = core.authorize_and_scope(
        ctx.roles, RESOURCE_MEDIA, ACTION_UPDATE, owner_context=ctx.owner_context()
    )
    updated = core.interceptor.apply_write(scoped, core.media, media_id, changes)
    return {"item": updated}


@router.get("/media/{media_id}/playback-source")
def playback_source(request: Request, media_id: str):
    ctx = get_current_user(request)
    grant = _core(request).resolve_playback(media_id, ctx, INTENT_PLAYBACK)
    return grant.to_dict()


@router.get("/media/{media_id}/download-url")
def download_url(request: Request, media_id: str):
    ctx = get_current_user(request)
    grant = _core(request).resolve_playback(media_id, ctx, INTENT_DOWNLOAD)
    return grant.to_dict()
