"""
Core type definitions for media availability and playback.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import uuid


# ============================================================================
# Playback Sources
# ============================================================================

SOURCE_VERIFIED_BACKUP = "verified_backup"
SOURCE_EDITOR_STREAM = "editor_stream"
SOURCE_QA_CACHE = "qa_cache"
SOURCE_OFFLINE = "offline"

SOURCE_LABELS: Dict[str, str] = {
    SOURCE_VERIFIED_BACKUP: "Verified Backup",
    SOURCE_EDITOR_STREAM: "Editor Live Stream",
    SOURCE_QA_CACHE: "QA Review Cache",
    SOURCE_OFFLINE: "Offline",
}

# URL path segment per streamable source
SOURCE_PATHS: Dict[str, str] = {
    SOURCE_VERIFIED_BACKUP: "backup",
    SOURCE_EDITOR_STREAM: "editor",
    SOURCE_QA_CACHE: "qa-cache",
}

INTENT_PLAYBACK = "playback"
INTENT_DOWNLOAD = "download"
ALL_INTENTS = frozenset({INTENT_PLAYBACK, INTENT_DOWNLOAD})

REASON_ISSUE_REVIEW = "issue_review"
REASON_ADMIN_OVERSIGHT = "admin_oversight"
REASON_DOWNLOAD = "download"


@dataclass(frozen=True)
class MediaAvailability:
    """Live availability flags for one media item. Never persisted."""
    media_id: str
    backup_verified: bool = False
    backup_available: bool = False
    editor_online: bool = False
    local_available: bool = False
    qa_cache_available: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "media_id": self.media_id,
            "backup_verified": self.backup_verified,
            "backup_available": self.backup_available,
            "editor_online": self.editor_online,
            "local_available": self.local_available,
            "qa_cache_available": self.qa_cache_available,
        }


@dataclass(frozen=True)
class PlaybackAuditRecord:
    """Append-only record of one playback or download intent."""
    actor_id: Optional[str]
    roles: List[str]
    media_id: str
    source: str
    intent: str
    reason: str
    audit_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "audit_id": self.audit_id,
            "actor_id": self.actor_id,
            "roles": list(self.roles),
            "media_id": self.media_id,
            "source": self.source,
            "intent": self.intent,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class PlaybackGrant:
    """A resolved source plus the signed URL the caller may use."""
    media_id: str
    source: str
    intent: str
    url: str
    expires_at: datetime
    audit_id: str

    @property
    def label(self) -> str:
        return SOURCE_LABELS[self.source]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "media_id": self.media_id,
            "source": self.source,
            "source_label": self.label,
            "intent": self.intent,
            "url": self.url,
            "expires_at": self.expires_at.isoformat(),
            "audit_id": self.audit_id,
        }
