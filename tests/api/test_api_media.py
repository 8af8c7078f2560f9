"""
HTTP tests for scoped media reads, writes and playback.
"""

import json
from urllib.parse import urlparse

import pytest
from fastapi.testclient import TestClient

from adapters.availability import StaticAvailabilityProvider
from adapters.media_store import InMemoryRecordRepository
from app.settings import Settings
from core.access import build_core
from core.audit import AuditSink, InMemoryAuditSink
from core.events import InMemoryEventRegistry
from core.metrics import reset_metrics
from core.rbac import reset_resolver
from core.types import MediaAvailability
from main import create_app

API_KEYS = {
    "admin-key": {"user_id": "admin-1", "roles": ["Admin"]},
    "lead-key": {"user_id": "lead-1", "roles": ["TeamLead"]},
    "qa-key": {"user_id": "qa-1", "roles": ["QA"]},
    "editor-key": {"user_id": "ed-1", "roles": ["Editor"]},
    "leader-key": {"user_id": "gl-1", "roles": ["GroupLeader"], "group_ids": ["g1"]},
}

ADMIN = {"X-API-KEY": "admin-key"}
LEAD = {"X-API-KEY": "lead-key"}
QA = {"X-API-KEY": "qa-key"}
EDITOR = {"X-API-KEY": "editor-key"}
LEADER = {"X-API-KEY": "leader-key"}

MEDIA = [
    {
        "media_id": "m1", "event_id": 1, "group_id": "g1", "editor_id": "ed-1",
        "full_name": "Ann Lee", "region": "North", "condition": "asthma",
        "file_name": "A001.mp4", "camera_number": "C1", "sd_label": "SD-01",
        "has_issues": True, "issue_type": "audio", "issue_status": "open",
        "status": "copied", "backup_verified": False, "backup_pending": True,
    },
    {
        "media_id": "m2", "event_id": 1, "group_id": "g2", "editor_id": "ed-2",
        "full_name": "Bo Chen", "region": "South", "condition": None,
        "file_name": "B001.mp4", "camera_number": "C2", "sd_label": "SD-02",
        "has_issues": False, "issue_type": None, "issue_status": None,
        "status": "copied", "backup_verified": True, "backup_pending": False,
    },
    {
        "media_id": "m3", "event_id": 1, "group_id": "g1", "editor_id": "ed-2",
        "full_name": "Cy Diaz", "region": "North", "condition": None,
        "file_name": "C001.mp4", "camera_number": "C3", "sd_label": "SD-03",
        "has_issues": False, "issue_type": None, "issue_status": None,
        "status": "renamed", "backup_verified": True, "backup_pending": False,
    },
]


class BrokenSink(AuditSink):
    def append(self, record):
        raise OSError("disk full")


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def reset_globals():
    reset_resolver()
    reset_metrics()
    yield
    reset_resolver()
    reset_metrics()


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def availability():
    provider = StaticAvailabilityProvider()
    provider.set(MediaAvailability("m1", qa_cache_available=True))
    provider.set(MediaAvailability("m2", backup_verified=True, backup_available=True))
    provider.set(MediaAvailability("m3", editor_online=True, local_available=True))
    return provider


def _make_client(availability, audit_sink):
    core = build_core(
        {"STREAM_SIGNING_SECRET": "test-secret"},
        registry=InMemoryEventRegistry(),
        media=InMemoryRecordRepository(id_field="media_id", records=MEDIA),
        availability=availability,
        audit_sink=audit_sink,
    )
    settings = Settings(_env_file=None, API_KEYS_JSON=json.dumps(API_KEYS))
    return TestClient(create_app(core=core, settings=settings))


@pytest.fixture
def idle_client(availability, audit_sink):
    """No event has been activated."""
    return _make_client(availability, audit_sink)


@pytest.fixture
def client(idle_client):
    event = idle_client.post("/events", json={"name": "Camp"}, headers=LEAD).json()["event"]
    assert event["id"] == 1
    assert idle_client.post("/events/1/activate", headers=LEAD).status_code == 200
    return idle_client


def _ids(response):
    return sorted(item["media_id"] for item in response.json()["items"])


# ============================================================================
# Reads
# ============================================================================

class TestSearch:

    def test_no_active_event_is_empty(self, idle_client):
        response = idle_client.get("/media/search", headers=ADMIN)

        assert response.status_code == 200
        assert response.json() == {"items": [], "total": 0, "event_id": None}

    def test_admin_sees_active_event(self, client):
        response = client.get("/media/search", params={"event_id": 2}, headers=ADMIN)

        assert response.json()["event_id"] == 1
        assert _ids(response) == ["m1", "m2", "m3"]

    def test_qa_issue_filter_cannot_be_lifted(self, client):
        response = client.get("/media/search", params={"has_issues": "false"}, headers=QA)

        assert response.status_code == 200
        (item,) = response.json()["items"]
        assert item["media_id"] == "m1"
        assert "full_name" not in item
        assert "group_id" not in item

    def test_qa_name_filter_forbidden(self, client):
        response = client.get("/media/search", params={"full_name": "Ann"}, headers=QA)

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_unparseable_filter(self, client):
        response = client.get("/media/search", params={"event_id": "abc"}, headers=ADMIN)

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_filter"
        assert response.json()["field"] == "event_id"

    def test_leader_confined_to_own_groups(self, client):
        assert _ids(client.get("/media/search", headers=LEADER)) == ["m1", "m3"]

        response = client.get("/media/search", params={"group_id": "g2"}, headers=LEADER)

        assert response.status_code == 200
        assert _ids(response) == []

    def test_editor_filter_on_other_editor_matches_nothing(self, client):
        response = client.get("/media/search", params={"editor_id": "ed-2"}, headers=EDITOR)
        assert _ids(response) == []

    def test_editor_list_own_items(self, client):
        assert _ids(client.get("/media", headers=EDITOR)) == ["m1"]

    def test_pagination(self, client):
        body = client.get("/media", params={"limit": 2, "offset": 2}, headers=ADMIN).json()

        assert body["total"] == 3
        assert len(body["items"]) == 1

    def test_anonymous_forbidden(self, client):
        assert client.get("/media/search").status_code == 403


# ============================================================================
# Writes
# ============================================================================

class TestUpdate:

    def test_no_active_event_is_409(self, idle_client):
        response = idle_client.patch("/media/m1", json={"file_name": "x.mp4"}, headers=EDITOR)

        assert response.status_code == 409
        assert response.json()["error"] == "no_active_event"

    def test_editor_updates_own_item(self, client):
        response = client.patch("/media/m1", json={"file_name": "A001-final.mp4"}, headers=EDITOR)

        assert response.status_code == 200
        assert response.json()["item"]["file_name"] == "A001-final.mp4"
        assert "condition" not in response.json()["item"]

    def test_other_editors_item_is_404(self, client):
        response = client.patch("/media/m2", json={"file_name": "x.mp4"}, headers=EDITOR)
        assert response.status_code == 404

    def test_reassigning_owner_forbidden(self, client):
        response = client.patch("/media/m1", json={"editor_id": "ed-2"}, headers=EDITOR)
        assert response.status_code == 403

    def test_empty_body_rejected(self, client):
        assert client.patch("/media/m1", json={}, headers=ADMIN).status_code == 422


# ============================================================================
# Playback
# ============================================================================

class TestPlayback:

    def test_qa_plays_issue_item(self, client, audit_sink):
        response = client.get("/media/m1/playback-source", headers=QA)

        assert response.status_code == 200
        body = response.json()
        assert body["source"] == "qa_cache"
        assert urlparse(body["url"]).query
        (record,) = audit_sink.records
        assert record.audit_id == body["audit_id"]
        assert record.actor_id == "qa-1"

    def test_qa_cannot_play_clean_item(self, client, audit_sink):
        response = client.get("/media/m2/playback-source", headers=QA)

        assert response.status_code == 403
        assert audit_sink.records == []

    def test_leader_limited_to_own_groups(self, client):
        assert client.get("/media/m3/playback-source", headers=LEADER).status_code == 200
        assert client.get("/media/m2/playback-source", headers=LEADER).status_code == 403

    def test_offline_is_404(self, client, availability):
        availability.set(MediaAvailability("m1"))

        response = client.get("/media/m1/playback-source", headers=ADMIN)

        assert response.status_code == 404
        assert response.json()["error"] == "source_offline"

    def test_unknown_media_is_404(self, client):
        response = client.get("/media/m99/playback-source", headers=ADMIN)

        assert response.status_code == 404
        assert response.json()["error"] == "media_not_found"

    def test_download_requires_download_capability(self, client):
        assert client.get("/media/m1/download-url", headers=QA).status_code == 403

        response = client.get("/media/m2/download-url", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["intent"] == "download"
        assert response.json()["source"] == "verified_backup"


def test_audit_failure_withholds_url(availability):
    client = _make_client(availability, BrokenSink())
    client.post("/events", json={"name": "Camp"}, headers=LEAD)
    client.post("/events/1/activate", headers=LEAD)

    response = client.get("/media/m1/playback-source", headers=ADMIN)

    assert response.status_code == 503
    assert response.json()["error"] == "audit_write_failed"
    assert "url" not in response.json()
