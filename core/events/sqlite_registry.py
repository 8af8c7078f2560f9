"""
SQLite-backed event registry.

Several processes can share one database file. Each batch of transitions runs
inside BEGIN IMMEDIATE, which takes the write lock up front, and a partial
unique index on state='active' makes a second active row impossible even if a
writer skips the checks below.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, List, Optional, Sequence

from core.errors import ActiveEventExists, EventNotFound
from core.events.models import STATE_ACTIVE, Event, Transition
from core.events.registry import EventRegistry, check_transition
from core.events.retention import AutoDeletePolicy

logger = logging.getLogger(__name__)

_SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        code TEXT NOT NULL UNIQUE,
        name TEXT NOT NULL,
        state TEXT NOT NULL DEFAULT 'draft',
        start_at TEXT,
        end_at TEXT,
        description TEXT,
        location TEXT,
        created_by TEXT,
        version INTEGER NOT NULL DEFAULT 1,
        auto_delete TEXT,
        media_deleted_at TEXT,
        updated_at TEXT
    )
    ''',
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_events_single_active ON events(state) WHERE state = 'active'",
    "CREATE INDEX IF NOT EXISTS idx_events_start ON events(start_at DESC)",
]

_COLUMNS = (
    "id, code, name, state, start_at, end_at, description, location, "
    "created_by, version, auto_delete, media_deleted_at, updated_at"
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_event(row: sqlite3.Row) -> Event:
    return Event(
        id=row["id"],
        code=row["code"],
        name=row["name"],
        state=row["state"],
        start_at=_parse_ts(row["start_at"]),
        end_at=_parse_ts(row["end_at"]),
        description=row["description"],
        location=row["location"],
        created_by=row["created_by"],
        version=row["version"],
        auto_delete=AutoDeletePolicy.from_dict(
            json.loads(row["auto_delete"]) if row["auto_delete"] else None
        ),
        media_deleted_at=_parse_ts(row["media_deleted_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


class SqliteEventRegistry(EventRegistry):
    """Event registry stored in a single SQLite file."""

    def __init__(self, db_path: str, timeout: float = 10.0):
        self.db_path = db_path
        self.timeout = timeout
        directory = os.path.dirname(db_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        self.init_db()

    @contextmanager
    def _connect(self) -> Generator[sqlite3.Connection, None, None]:
        # Autocommit mode; transactions are opened explicitly.
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _write_transaction(self) -> Generator[sqlite3.Connection, None, None]:
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            else:
                conn.execute("COMMIT")

    def init_db(self):
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    def create(
        self,
        *,
        name: str,
        code: str,
        start_at: Optional[datetime] = None,
        end_at: Optional[datetime] = None,
        description: Optional[str] = None,
        location: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Event:
        now = datetime.now(timezone.utc)
        with self._write_transaction() as conn:
            cursor = conn.execute(
                '''
                INSERT INTO events (code, name, start_at, end_at, description, location,
                                    created_by, auto_delete, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ''',
                (
                    code, name, _ts(start_at), _ts(end_at), description, location,
                    created_by, json.dumps(AutoDeletePolicy().to_dict()), _ts(now),
                ),
            )
            event_id = cursor.lastrowid
            row = conn.execute(f"SELECT {_COLUMNS} FROM events WHERE id = ?", (event_id,)).fetchone()
        return _row_to_event(row)

    def get(self, event_id: int) -> Optional[Event]:
        with self._connect() as conn:
            row = conn.execute(f"SELECT {_COLUMNS} FROM events WHERE id = ?", (event_id,)).fetchone()
        return _row_to_event(row) if row else None

    def list(self, state: Optional[str] = None) -> List[Event]:
        query = f"SELECT {_COLUMNS} FROM events"
        params: tuple = ()
        if state is not None:
            query += " WHERE state = ?"
            params = (state,)
        query += " ORDER BY start_at IS NULL, start_at DESC, id DESC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_event(row) for row in rows]

    def find_active(self) -> List[Event]:
        return self.list(state=STATE_ACTIVE)

    def apply_transitions(self, transitions: Sequence[Transition]) -> List[Event]:
        now = datetime.now(timezone.utc)
        applied: List[Event] = []
        with self._write_transaction() as conn:
            staged = {}
            for transition in transitions:
                current = staged.get(transition.event_id)
                if current is None:
                    row = conn.execute(
                        f"SELECT {_COLUMNS} FROM events WHERE id = ?", (transition.event_id,)
                    ).fetchone()
                    if row is None:
                        raise EventNotFound(transition.event_id)
                    current = _row_to_event(row)
                check_transition(current, transition)
                staged[current.id] = current.with_state(transition.to_state, now)

            try:
                for event in staged.values():
                    conn.execute(
                        "UPDATE events SET state = ?, version = ?, updated_at = ? WHERE id = ? AND version = ?",
                        (event.state, event.version, _ts(now), event.id, event.version - 1),
                    )
            except sqlite3.IntegrityError:
                # The single-active index refused the write.
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM events WHERE state = ? LIMIT 1", (STATE_ACTIVE,)
                ).fetchone()
                logger.warning("Rejected transition batch that would leave two active events")
                raise ActiveEventExists(_row_to_event(row).snapshot())

            applied = [staged[t.event_id] for t in transitions]
        return applied

    def update_auto_delete(self, event_id: int, policy: AutoDeletePolicy) -> Event:
        now = datetime.now(timezone.utc)
        with self._write_transaction() as conn:
            cursor = conn.execute(
                "UPDATE events SET auto_delete = ?, updated_at = ? WHERE id = ?",
                (json.dumps(policy.to_dict()), _ts(now), event_id),
            )
            if cursor.rowcount == 0:
                raise EventNotFound(event_id)
            row = conn.execute(f"SELECT {_COLUMNS} FROM events WHERE id = ?", (event_id,)).fetchone()
        return _row_to_event(row)
