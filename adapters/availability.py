# adapters/availability.py — live media availability from backup copies and editor presence

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Set, Tuple

from core.types import MediaAvailability

logger = logging.getLogger(__name__)

DEFAULT_PRESENCE_WINDOW_MINUTES = 5


class AvailabilityProvider(ABC):
    """Supplies the live availability flags for a media item."""

    @abstractmethod
    def availability(self, media_id: str, editor_id: Optional[str] = None) -> MediaAvailability:
        """Descriptor for `media_id`, recomputed on every call."""


class StaticAvailabilityProvider(AvailabilityProvider):
    """Fixed descriptors, keyed by media id. Unknown media is fully offline."""

    def __init__(self, descriptors: Optional[Dict[str, MediaAvailability]] = None):
        self._descriptors = dict(descriptors or {})

    def set(self, descriptor: MediaAvailability):
        self._descriptors[descriptor.media_id] = descriptor

    def availability(self, media_id: str, editor_id: Optional[str] = None) -> MediaAvailability:
        return self._descriptors.get(media_id, MediaAvailability(media_id=media_id))


class RegistryAvailabilityProvider(AvailabilityProvider):
    """
    Availability derived from three registries fed by the rest of the system:

    - backup copies per media item, each verified or not, on a mounted disk or not
    - editor presence heartbeats, plus which media each editor still holds locally
    - the QA review cache contents

    An editor counts as online while their last heartbeat is within the
    presence window.
    """

    def __init__(
        self,
        presence_window_minutes: int = DEFAULT_PRESENCE_WINDOW_MINUTES,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.presence_window = timedelta(minutes=presence_window_minutes)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        # media_id -> {disk_label: (verified, mounted)}
        self._backups: Dict[str, Dict[str, Tuple[bool, bool]]] = {}
        self._heartbeats: Dict[str, datetime] = {}
        self._local_media: Dict[str, Set[str]] = {}
        self._qa_cache: Set[str] = set()

    # ------------------------------------------------------------------
    # Feeds
    # ------------------------------------------------------------------

    def record_backup(self, media_id: str, disk_label: str, verified: bool, mounted: bool = True):
        with self._lock:
            self._backups.setdefault(media_id, {})[disk_label] = (verified, mounted)

    def record_heartbeat(self, editor_id: str, at: Optional[datetime] = None):
        with self._lock:
            self._heartbeats[editor_id] = at or self._clock()

    def record_local_copy(self, editor_id: str, media_id: str, present: bool = True):
        with self._lock:
            held = self._local_media.setdefault(editor_id, set())
            if present:
                held.add(media_id)
            else:
                held.discard(media_id)

    def record_qa_cache(self, media_id: str, cached: bool = True):
        with self._lock:
            if cached:
                self._qa_cache.add(media_id)
            else:
                self._qa_cache.discard(media_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_editor_online(self, editor_id: Optional[str]) -> bool:
        if not editor_id:
            return False
        with self._lock:
            last_seen = self._heartbeats.get(editor_id)
        return last_seen is not None and self._clock() - last_seen <= self.presence_window

    def availability(self, media_id: str, editor_id: Optional[str] = None) -> MediaAvailability:
        with self._lock:
            copies = list(self._backups.get(media_id, {}).values())
            local = bool(editor_id) and media_id in self._local_media.get(editor_id, set())
            cached = media_id in self._qa_cache

        # A verified copy must also be on a mounted disk to be streamable
        backup_verified = any(verified for verified, _ in copies)
        backup_available = any(verified and mounted for verified, mounted in copies)

        return MediaAvailability(
            media_id=media_id,
            backup_verified=backup_verified,
            backup_available=backup_available,
            editor_online=self.is_editor_online(editor_id),
            local_available=local,
            qa_cache_available=cached,
        )
