"""
Playback source resolution.

Picks the physical source a media file may be streamed or downloaded from,
gates the request on the caller's capabilities, writes a playback audit
record and only then issues a short-lived signed URL.

Source priority (strict):
1. verified backup on an available disk
2. the editor's local copy while the editor is online
3. the QA review cache
4. offline: no URL for anyone
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote

import jwt

from core.errors import (
    AuditWriteError,
    Forbidden,
    MediaNotFound,
    SourceOffline,
)
from core.metrics import (
    PlaybackMetrics,
    audit_rbac_denial,
    record_rbac_check,
    time_operation,
)
from core.rbac.capabilities import (
    ACTION_DOWNLOAD,
    ACTION_PLAYBACK_ALL,
    ACTION_PLAYBACK_ISSUES_ONLY,
    RESOURCE_MEDIA,
)
from core.rbac.policy import OwnerContext, PolicyDecision, evaluate
from core.types import (
    ALL_INTENTS,
    INTENT_DOWNLOAD,
    REASON_ADMIN_OVERSIGHT,
    REASON_DOWNLOAD,
    REASON_ISSUE_REVIEW,
    SOURCE_EDITOR_STREAM,
    SOURCE_OFFLINE,
    SOURCE_PATHS,
    SOURCE_QA_CACHE,
    SOURCE_VERIFIED_BACKUP,
    MediaAvailability,
    PlaybackAuditRecord,
    PlaybackGrant,
)

logger = logging.getLogger(__name__)

STREAM_TOKEN_ALGORITHM = "HS256"
DEFAULT_URL_TTL_SECONDS = 300


def resolve_source(descriptor: MediaAvailability) -> str:
    """
    Pure priority function over an availability descriptor.

    Examples:
        >>> resolve_source(MediaAvailability("m1", backup_verified=True, backup_available=True, editor_online=True))
        'verified_backup'
        >>> resolve_source(MediaAvailability("m1", editor_online=True, local_available=True))
        'editor_stream'
        >>> resolve_source(MediaAvailability("m1"))
        'offline'
    """
    if descriptor.backup_verified and descriptor.backup_available:
        return SOURCE_VERIFIED_BACKUP
    if descriptor.editor_online and descriptor.local_available:
        return SOURCE_EDITOR_STREAM
    if descriptor.qa_cache_available:
        return SOURCE_QA_CACHE
    return SOURCE_OFFLINE


def audit_reason(intent: str, has_issues: bool) -> str:
    if intent == INTENT_DOWNLOAD:
        return REASON_DOWNLOAD
    return REASON_ISSUE_REVIEW if has_issues else REASON_ADMIN_OVERSIGHT


def verify_stream_token(token: str, secret: str) -> Dict[str, Any]:
    """
    Validate a stream token issued by PlaybackSourceResolver.

    Returns:
        Decoded claims (sub, media, source, intent, audit_id, exp)

    Raises:
        Forbidden: token is expired, tampered with or malformed
    """
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=[STREAM_TOKEN_ALGORITHM],
            options={"require": ["exp", "media", "source", "audit_id"]},
        )
    except jwt.ExpiredSignatureError:
        raise Forbidden("Stream token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected stream token: {e}")
        raise Forbidden("Invalid stream token")


class PlaybackSourceResolver:
    """
    Resolves and authorises playback and download requests.

    Usage:
        >>> resolver = PlaybackSourceResolver(media_repo, availability, sink, signing_secret="s")
        >>> grant = resolver.resolve_playback("m1", actor, "playback")
        >>> grant.source
        'verified_backup'
    """

    def __init__(
        self,
        media_repository,
        availability_provider,
        audit_sink,
        signing_secret: str,
        base_url: str = "/stream",
        ttl_seconds: int = DEFAULT_URL_TTL_SECONDS,
        grants=None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if not signing_secret:
            raise ValueError("signing_secret is required to issue stream URLs")
        self.media_repository = media_repository
        self.availability_provider = availability_provider
        self.audit_sink = audit_sink
        self.signing_secret = signing_secret
        self.base_url = base_url.rstrip("/")
        self.ttl = timedelta(seconds=ttl_seconds)
        self.grants = grants
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _authorize(self, actor, intent: str, owner: OwnerContext) -> PolicyDecision:
        roles = list(actor.roles)
        if intent == INTENT_DOWNLOAD:
            decision = evaluate(roles, RESOURCE_MEDIA, ACTION_DOWNLOAD, owner, grants=self.grants)
            action = ACTION_DOWNLOAD
        else:
            decision = evaluate(roles, RESOURCE_MEDIA, ACTION_PLAYBACK_ALL, owner, grants=self.grants)
            action = ACTION_PLAYBACK_ALL
            if not decision.allowed and owner.target_has_issues:
                decision = evaluate(
                    roles, RESOURCE_MEDIA, ACTION_PLAYBACK_ISSUES_ONLY, owner, grants=self.grants
                )
                action = ACTION_PLAYBACK_ISSUES_ONLY

        record_rbac_check(decision.allowed, action, roles, RESOURCE_MEDIA)
        if not decision.allowed:
            audit_rbac_denial(
                action=action,
                user_id=actor.user_id,
                roles=roles,
                resource_type=RESOURCE_MEDIA,
                reason=decision.reason,
                metadata={"intent": intent},
            )
            raise Forbidden(f"Role does not permit {intent} of this media item", action=action)
        return decision

    def resolve_playback(self, media_id: str, actor, intent: str) -> PlaybackGrant:
        """
        Resolve the source for `media_id` and issue a signed URL.

        Args:
            media_id: Media item to stream or download
            actor: Caller with user_id, roles and owner_context()
            intent: "playback" or "download"

        Returns:
            PlaybackGrant with source, URL and audit id

        Raises:
            MediaNotFound: unknown media id
            SourceOffline: no viable source
            Forbidden: the caller's roles do not permit the intent
            AuditWriteError: the audit record could not be written; no URL issued
        """
        if intent not in ALL_INTENTS:
            raise Forbidden(f"Unknown playback intent '{intent}'", action=intent)

        with time_operation("playback.resolve", {"intent": intent}):
            media = self.media_repository.get(media_id)
            if media is None:
                raise MediaNotFound(media_id)

            descriptor = self.availability_provider.availability(
                media_id, editor_id=media.get("editor_id")
            )
            source = resolve_source(descriptor)
            PlaybackMetrics.record_resolution(source, intent)
            if source == SOURCE_OFFLINE:
                logger.info(f"No playback source for media {media_id}")
                raise SourceOffline(media_id)

            owner = actor.owner_context().for_target(media)
            self._authorize(actor, intent, owner)

            record = PlaybackAuditRecord(
                actor_id=actor.user_id,
                roles=list(actor.roles),
                media_id=media_id,
                source=source,
                intent=intent,
                reason=audit_reason(intent, bool(media.get("has_issues"))),
                timestamp=self._clock(),
            )
            self._write_audit(record)

            return self._issue_grant(record)

    def _write_audit(self, record: PlaybackAuditRecord):
        try:
            self.audit_sink.append(record)
        except AuditWriteError as e:
            PlaybackMetrics.record_audit_failure(type(e).__name__)
            raise
        except Exception as e:
            # Any sink failure aborts the request; the URL is never issued.
            PlaybackMetrics.record_audit_failure(type(e).__name__)
            logger.error(f"Audit sink raised {type(e).__name__}: {e}", exc_info=True)
            raise AuditWriteError(
                f"Playback audit write failed: {e}",
                {"audit_id": record.audit_id},
            ) from e

    def _issue_grant(self, record: PlaybackAuditRecord) -> PlaybackGrant:
        issued_at = self._clock()
        expires_at = issued_at + self.ttl
        claims = {
            "media": record.media_id,
            "source": record.source,
            "intent": record.intent,
            "audit_id": record.audit_id,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        if record.actor_id is not None:
            claims["sub"] = str(record.actor_id)
        token = jwt.encode(claims, self.signing_secret, algorithm=STREAM_TOKEN_ALGORITHM)
        url = (
            f"{self.base_url}/{SOURCE_PATHS[record.source]}/"
            f"{quote(str(record.media_id), safe='')}?token={token}"
        )
        logger.info(
            f"Issued {record.intent} URL for media {record.media_id} "
            f"from {record.source} (audit {record.audit_id})"
        )
        return PlaybackGrant(
            media_id=record.media_id,
            source=record.source,
            intent=record.intent,
            url=url,
            expires_at=expires_at,
            audit_id=record.audit_id,
        )
