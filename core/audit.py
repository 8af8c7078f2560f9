"""
Playback audit sinks.

Every playback or download intent is appended to a sink before a URL is
released. append() either returns after the record is durable or raises
AuditWriteError; there is no buffered or retry-later mode.
"""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Union

from core.errors import AuditWriteError
from core.types import PlaybackAuditRecord

logger = logging.getLogger(__name__)
playback_audit_logger = logging.getLogger("playback.audit")


class AuditSink(ABC):
    """Append-only store for playback audit records."""

    @abstractmethod
    def append(self, record: PlaybackAuditRecord) -> None:
        """
        Durably record `record`.

        Raises:
            AuditWriteError: the record could not be written
        """


class InMemoryAuditSink(AuditSink):
    """Keeps records in a list. Used by tests and single-process demos."""

    def __init__(self):
        self._lock = threading.Lock()
        self._records: List[PlaybackAuditRecord] = []

    def append(self, record: PlaybackAuditRecord) -> None:
        with self._lock:
            self._records.append(record)
        playback_audit_logger.info(
            f"PLAYBACK_AUDIT media={record.media_id} source={record.source} "
            f"intent={record.intent} actor={record.actor_id or 'anonymous'}",
            extra={"audit": record.to_dict()},
        )

    @property
    def records(self) -> List[PlaybackAuditRecord]:
        with self._lock:
            return list(self._records)


class JsonlAuditSink(AuditSink):
    """
    One JSON object per line, flushed and fsynced before append() returns.

    Usage:
        >>> sink = JsonlAuditSink("var/playback_audit.jsonl")
        >>> sink.append(record)
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, record: PlaybackAuditRecord) -> None:
        line = json.dumps(record.to_dict(), sort_keys=True)
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
                    f.flush()
                    os.fsync(f.fileno())
        except OSError as e:
            logger.error(f"Failed to write playback audit record to {self.path}: {e}")
            raise AuditWriteError(
                f"Playback audit write failed: {e}",
                {"audit_id": record.audit_id},
            ) from e

        playback_audit_logger.info(
            f"PLAYBACK_AUDIT media={record.media_id} source={record.source} "
            f"intent={record.intent} actor={record.actor_id or 'anonymous'}",
            extra={"audit": record.to_dict()},
        )

    def read_all(self) -> List[dict]:
        """Every record written so far, oldest first."""
        if not self.path.exists():
            return []
        with open(self.path, "r", encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
