# router/events.py
import logging
from datetime import date, datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, ConfigDict, Field, model_validator

from api.guards import require
from api.middleware.roles import get_current_user
from core.events import AutoDeletePolicy
from core.presenters import present_event, redact_record
from core.rbac.capabilities import ACTION_LIST, ACTION_MANAGE_EVENTS, RESOURCE_EVENT

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


# ---------- Models ----------
class CreateEventReq(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    description: Optional[str] = None
    location: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class AutoDeleteReq(BaseModel):
    enabled: bool = False
    delete_on: Optional[date] = None
    days_after_end: Optional[int] = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def one_schedule(self):
        if self.delete_on is not None and self.days_after_end is not None:
            raise ValueError("set either delete_on or days_after_end, not both")
        return self


# ---------- Helpers ----------
def _core(request: Request):
    return request.app.state.core


def _present(event, visible_fields) -> Dict[str, Any]:
    data = redact_record(present_event(event), visible_fields)
    data["is_active"] = event.is_active
    return data


def _visible_event_fields(request: Request):
    ctx = get_current_user(request)
    scoped = _core(request).authorize_and_scope(
        ctx.roles, RESOURCE_EVENT, ACTION_LIST, owner_context=ctx.owner_context()
    )
    return scoped.visible_fields


# ---------- Routes ----------
@router.get("/events")
def list_events(request: Request, state: Optional[str] = Query(None)):
    visible = _visible_event_fields(request)
    events = _core(request).coordinator.list_events(state=state)
    return {"items": [_present(e, visible) for e in events]}


@router.get("/events/active")
def active_event(request: Request):
    visible = _visible_event_fields(request)
    event = _core(request).current_active_event()
    return {"event": _present(event, visible) if event else None}


@router.post("/events", status_code=201)
@require(ACTION_MANAGE_EVENTS)
def create_event(request: Request, body: CreateEventReq):
    ctx = get_current_user(request)
    event = _core(request).coordinator.create_event(
        name=body.name,
        start_at=body.start_at,
        end_at=body.end_at,
        description=body.description,
        location=body.location,
        created_by=ctx.user_id,
    )
    return {"event": present_event(event)}


@router.post("/events/{event_id}/activate")
@require(ACTION_MANAGE_EVENTS)
def activate_event(request: Request, event_id: int, force: bool = Query(False)):
    ctx = get_current_user(request)
    event = _core(request).activate_event(event_id, force=force, actor=ctx.user_id)
    return {"event": present_event(event)}


@router.post("/events/{event_id}/complete")
@require(ACTION_MANAGE_EVENTS)
def complete_event(request: Request, event_id: int):
    ctx = get_current_user(request)
    event = _core(request).complete_event(event_id, actor=ctx.user_id)
    return {"event": present_event(event)}


@router.post("/events/{event_id}/archive")
@require(ACTION_MANAGE_EVENTS)
def archive_event(request: Request, event_id: int):
    ctx = get_current_user(request)
    event = _core(request).coordinator.archive(event_id, actor=ctx.user_id)
    return {"event": present_event(event)}


@router.put("/events/{event_id}/auto-delete")
@require(ACTION_MANAGE_EVENTS)
def update_auto_delete(request: Request, event_id: int, body: AutoDeleteReq):
    policy = AutoDeletePolicy(
        enabled=body.enabled,
        delete_on=body.delete_on,
        days_after_end=body.days_after_end,
    )
    event = _core(request).coordinator.update_auto_delete(event_id, policy)
    return {"event": present_event(event)}
