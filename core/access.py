"""
Access & scoping core facade.

Wires the event registry, lifecycle coordinator, scoped query interceptor
and playback resolver together and exposes the operations the rest of the
application calls.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional

from adapters.availability import AvailabilityProvider, RegistryAvailabilityProvider
from adapters.media_store import InMemoryRecordRepository, RecordRepository
from core.audit import AuditSink, JsonlAuditSink
from core.events import (
    Event,
    EventLifecycleCoordinator,
    EventRegistry,
    InMemoryEventRegistry,
    SqliteEventRegistry,
)
from core.playback import PlaybackSourceResolver
from core.rbac.grants import CAPABILITY_GRANTS, load_grants_from_yaml
from core.rbac.policy import OwnerContext
from core.scoping import ScopedQueryInterceptor, ScopedRequest
from core.types import PlaybackGrant

logger = logging.getLogger(__name__)


@dataclass
class AccessCore:
    """The operations exposed to the surrounding application."""
    registry: EventRegistry
    coordinator: EventLifecycleCoordinator
    interceptor: ScopedQueryInterceptor
    resolver: PlaybackSourceResolver
    media: RecordRepository
    availability: AvailabilityProvider

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def activate_event(self, event_id: int, force: bool = False, actor: Optional[str] = None) -> Event:
        return self.coordinator.activate(event_id, force=force, actor=actor)

    def complete_event(self, event_id: int, actor: Optional[str] = None) -> Event:
        return self.coordinator.complete(event_id, actor=actor)

    def current_active_event(self) -> Optional[Event]:
        return self.coordinator.current_active()

    # ------------------------------------------------------------------
    # Scoping
    # ------------------------------------------------------------------

    def authorize_and_scope(
        self,
        roles: Iterable[str],
        resource_type: str,
        action: str,
        filters: Optional[Mapping[str, Any]] = None,
        owner_context: Optional[OwnerContext] = None,
    ) -> ScopedRequest:
        return self.interceptor.authorize_and_scope(roles, resource_type, action, filters, owner_context)

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def resolve_playback(self, media_id: str, actor, intent: str) -> PlaybackGrant:
        return self.resolver.resolve_playback(media_id, actor, intent)


def build_registry(cfg: Dict[str, Any]) -> EventRegistry:
    if cfg.get("EVENT_STORE") == "sqlite":
        logger.info(f"Using SQLite event registry at {cfg['EVENT_DB_PATH']}")
        return SqliteEventRegistry(cfg["EVENT_DB_PATH"])
    logger.info("Using in-memory event registry")
    return InMemoryEventRegistry()


def build_core(
    cfg: Dict[str, Any],
    registry: Optional[EventRegistry] = None,
    media: Optional[RecordRepository] = None,
    availability: Optional[AvailabilityProvider] = None,
    audit_sink: Optional[AuditSink] = None,
) -> AccessCore:
    """
    Assemble an AccessCore from a config dict (see config.load_config).

    Collaborators may be passed in; otherwise the reference adapters are used.
    """
    grants = CAPABILITY_GRANTS
    if cfg.get("CAPABILITY_GRANTS_PATH"):
        grants = load_grants_from_yaml(cfg["CAPABILITY_GRANTS_PATH"])

    registry = registry or build_registry(cfg)
    media = media or InMemoryRecordRepository(id_field="media_id")
    availability = availability or RegistryAvailabilityProvider(
        presence_window_minutes=cfg.get("EDITOR_PRESENCE_WINDOW_MINUTES", 5)
    )
    audit_sink = audit_sink or JsonlAuditSink(cfg["AUDIT_LOG_PATH"])

    coordinator = EventLifecycleCoordinator(
        registry, max_retries=cfg.get("ACTIVATION_MAX_RETRIES", 3)
    )
    interceptor = ScopedQueryInterceptor(coordinator, grants=grants)
    resolver = PlaybackSourceResolver(
        media,
        availability,
        audit_sink,
        signing_secret=cfg["STREAM_SIGNING_SECRET"],
        base_url=cfg.get("STREAM_BASE_URL", "/stream"),
        ttl_seconds=cfg.get("STREAM_URL_TTL_SECONDS", 300),
        grants=grants,
    )

    return AccessCore(
        registry=registry,
        coordinator=coordinator,
        interceptor=interceptor,
        resolver=resolver,
        media=media,
        availability=availability,
    )


def build_core_from_config() -> AccessCore:
    """Build the core from environment configuration."""
    from config import load_config

    return build_core(load_config())
