"""
Tests for playback source resolution.

Covers source precedence, role gating, fail-closed auditing and the signed
stream token.
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from adapters.availability import StaticAvailabilityProvider
from adapters.media_store import InMemoryRecordRepository
from core.audit import AuditSink, InMemoryAuditSink
from core.errors import AuditWriteError, Forbidden, MediaNotFound, SourceOffline
from core.metrics import get_counter, reset_metrics
from core.playback import PlaybackSourceResolver, resolve_source, verify_stream_token
from core.rbac import ResolvedUser
from core.types import (
    SOURCE_EDITOR_STREAM,
    SOURCE_OFFLINE,
    SOURCE_QA_CACHE,
    SOURCE_VERIFIED_BACKUP,
    MediaAvailability,
)

SECRET = "stream-secret"


# ============================================================================
# Precedence
# ============================================================================

# (backup_verified, backup_available, editor_online, local_available, qa_cache, expected)
PRECEDENCE_CASES = [
    (True, True, True, True, True, SOURCE_VERIFIED_BACKUP),
    (True, True, False, False, False, SOURCE_VERIFIED_BACKUP),
    (True, False, True, True, True, SOURCE_EDITOR_STREAM),
    (False, True, True, True, False, SOURCE_EDITOR_STREAM),
    (False, False, True, False, True, SOURCE_QA_CACHE),
    (False, False, False, True, True, SOURCE_QA_CACHE),
    (False, False, True, False, False, SOURCE_OFFLINE),
    (False, False, False, False, False, SOURCE_OFFLINE),
]


@pytest.mark.parametrize(
    "verified,available,online,local,cached,expected", PRECEDENCE_CASES
)
def test_source_precedence(verified, available, online, local, cached, expected):
    descriptor = MediaAvailability(
        media_id="m1",
        backup_verified=verified,
        backup_available=available,
        editor_online=online,
        local_available=local,
        qa_cache_available=cached,
    )
    assert resolve_source(descriptor) == expected


# ============================================================================
# Fixtures
# ============================================================================

class FailingSink(AuditSink):
    def __init__(self, error):
        self.error = error

    def append(self, record):
        raise self.error


@pytest.fixture(autouse=True)
def clean_metrics():
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def media():
    return InMemoryRecordRepository(records=[
        {"media_id": "m1", "event_id": 1, "group_id": "g1", "editor_id": "ed-1", "has_issues": True},
        {"media_id": "m2", "event_id": 1, "group_id": "g2", "editor_id": "ed-2", "has_issues": False},
        {"media_id": "m3", "event_id": 1, "group_id": "g1", "editor_id": "ed-1", "has_issues": False},
    ])


@pytest.fixture
def availability():
    return StaticAvailabilityProvider({
        "m1": MediaAvailability("m1", backup_verified=True, backup_available=True),
        "m2": MediaAvailability("m2", editor_online=True, local_available=True),
        "m3": MediaAvailability("m3"),
    })


@pytest.fixture
def sink():
    return InMemoryAuditSink()


@pytest.fixture
def resolver(media, availability, sink):
    return PlaybackSourceResolver(media, availability, sink, signing_secret=SECRET, base_url="/stream/")


def _user(roles, user_id="u-1", group_ids=()):
    return ResolvedUser(
        user_id=user_id, email=None, roles=list(roles), auth_method="api_key", group_ids=list(group_ids)
    )


ADMIN = _user(["admin"], "admin-1")
QA = _user(["qa"], "qa-1")
BACKUP = _user(["backup"], "bk-1")
EDITOR_1 = _user(["editor"], "ed-1")
LEADER_G1 = _user(["group-leader"], "gl-1", ["g1"])


# ============================================================================
# Resolution
# ============================================================================

class TestResolvePlayback:

    def test_admin_gets_backup_url_and_audit(self, resolver, sink):
        grant = resolver.resolve_playback("m1", ADMIN, "playback")

        assert grant.source == SOURCE_VERIFIED_BACKUP
        assert grant.label == "Verified Backup"
        assert grant.url.startswith("/stream/backup/m1?token=")
        (record,) = sink.records
        assert record.audit_id == grant.audit_id
        assert record.actor_id == "admin-1"
        assert record.reason == "issue_review"
        assert get_counter("playback.resolutions", {"source": SOURCE_VERIFIED_BACKUP, "intent": "playback"}) == 1

    def test_editor_stream_path(self, resolver):
        grant = resolver.resolve_playback("m2", ADMIN, "playback")
        assert grant.source == SOURCE_EDITOR_STREAM
        assert "/stream/editor/m2?token=" in grant.url

    def test_clean_item_reason(self, resolver, sink):
        resolver.resolve_playback("m2", ADMIN, "playback")
        assert sink.records[0].reason == "admin_oversight"

    def test_download_reason(self, resolver, sink):
        grant = resolver.resolve_playback("m1", ADMIN, "download")
        assert grant.intent == "download"
        assert sink.records[0].reason == "download"

    def test_offline_has_no_url_for_anyone(self, resolver, sink):
        with pytest.raises(SourceOffline):
            resolver.resolve_playback("m3", ADMIN, "playback")
        assert sink.records == []

    def test_unknown_media(self, resolver):
        with pytest.raises(MediaNotFound):
            resolver.resolve_playback("nope", ADMIN, "playback")

    def test_unknown_intent(self, resolver, sink):
        with pytest.raises(Forbidden):
            resolver.resolve_playback("m1", ADMIN, "burn")
        assert sink.records == []

    def test_empty_secret_rejected(self, media, availability, sink):
        with pytest.raises(ValueError):
            PlaybackSourceResolver(media, availability, sink, signing_secret="")


# ============================================================================
# Role gating
# ============================================================================

@pytest.mark.parametrize("actor,media_id,intent,allowed", [
    (QA, "m1", "playback", True),        # issue item
    (QA, "m2", "playback", False),       # clean item
    (QA, "m1", "download", False),
    (BACKUP, "m1", "playback", False),
    (EDITOR_1, "m1", "playback", True),  # own item
    (EDITOR_1, "m2", "playback", False), # someone else's
    (LEADER_G1, "m1", "playback", True),
    (LEADER_G1, "m2", "playback", False),
    (LEADER_G1, "m1", "download", False),
    (ADMIN, "m2", "download", True),
])
def test_role_gating(resolver, sink, actor, media_id, intent, allowed):
    if allowed:
        resolver.resolve_playback(media_id, actor, intent)
        assert len(sink.records) == 1
    else:
        with pytest.raises(Forbidden):
            resolver.resolve_playback(media_id, actor, intent)
        assert sink.records == []


def test_anonymous_denied(resolver):
    anonymous = ResolvedUser(user_id=None, email=None, roles=[], auth_method="anonymous")
    with pytest.raises(Forbidden):
        resolver.resolve_playback("m1", anonymous, "playback")


# ============================================================================
# Fail-closed audit
# ============================================================================

@pytest.mark.parametrize("error", [
    AuditWriteError("disk full"),
    OSError("read-only filesystem"),
    RuntimeError("sink exploded"),
])
def test_audit_failure_aborts_without_url(media, availability, error):
    resolver = PlaybackSourceResolver(media, availability, FailingSink(error), signing_secret=SECRET)

    with pytest.raises(AuditWriteError):
        resolver.resolve_playback("m1", ADMIN, "playback")

    assert get_counter("playback.audit_failures", {"error_type": type(error).__name__}) == 1


# ============================================================================
# Stream tokens
# ============================================================================

def _token(url):
    return parse_qs(urlparse(url).query)["token"][0]


def test_token_claims(resolver):
    grant = resolver.resolve_playback("m1", QA, "playback")

    claims = verify_stream_token(_token(grant.url), SECRET)

    assert claims["sub"] == "qa-1"
    assert claims["media"] == "m1"
    assert claims["source"] == SOURCE_VERIFIED_BACKUP
    assert claims["audit_id"] == grant.audit_id
    assert claims["exp"] - claims["iat"] == 300


def test_token_wrong_secret(resolver):
    grant = resolver.resolve_playback("m1", ADMIN, "playback")
    with pytest.raises(Forbidden):
        verify_stream_token(_token(grant.url), "other-secret")


def test_token_expired(media, availability, sink):
    past = lambda: datetime.now(timezone.utc) - timedelta(hours=1)
    resolver = PlaybackSourceResolver(
        media, availability, sink, signing_secret=SECRET, ttl_seconds=60, clock=past
    )
    grant = resolver.resolve_playback("m1", ADMIN, "playback")

    with pytest.raises(Forbidden):
        verify_stream_token(_token(grant.url), SECRET)
