"""
Auto-delete retention policy for event media.

An event may schedule deletion of its captured media either on an absolute
date or a number of days after the event ends. The two forms are mutually
exclusive.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional

from core.errors import InvalidEventData

MIN_DAYS_AFTER_END = 1
MAX_DAYS_AFTER_END = 365


@dataclass(frozen=True)
class AutoDeletePolicy:
    """Retention settings for one event."""
    enabled: bool = False
    delete_on: Optional[date] = None
    days_after_end: Optional[int] = None

    def __post_init__(self):
        if self.delete_on is not None and self.days_after_end is not None:
            raise InvalidEventData(
                "auto-delete accepts either a date or days after end, not both",
                {"field": "auto_delete"},
            )
        if self.days_after_end is not None:
            if not isinstance(self.days_after_end, int) or not (
                MIN_DAYS_AFTER_END <= self.days_after_end <= MAX_DAYS_AFTER_END
            ):
                raise InvalidEventData(
                    f"days_after_end must be between {MIN_DAYS_AFTER_END} and "
                    f"{MAX_DAYS_AFTER_END}, got {self.days_after_end}",
                    {"field": "days_after_end"},
                )

    def validate_new(self, today: Optional[date] = None) -> None:
        """Checks that only apply when an operator sets the policy."""
        today = today or datetime.now(timezone.utc).date()
        if self.delete_on is not None and self.delete_on <= today:
            raise InvalidEventData(
                "auto-delete date must be in the future",
                {"field": "delete_on"},
            )

    def effective_delete_date(self, end_at: Optional[datetime]) -> Optional[date]:
        if self.delete_on is not None:
            return self.delete_on
        if self.days_after_end is not None and end_at is not None:
            return end_at.date() + timedelta(days=self.days_after_end)
        return None

    def is_due(self, end_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
        if not self.enabled:
            return False
        target = self.effective_delete_date(end_at)
        if target is None:
            return False
        now = now or datetime.now(timezone.utc)
        return target <= now.date()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "delete_on": self.delete_on.isoformat() if self.delete_on else None,
            "days_after_end": self.days_after_end,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AutoDeletePolicy":
        if not data:
            return cls()
        delete_on = data.get("delete_on")
        if isinstance(delete_on, str):
            delete_on = date.fromisoformat(delete_on)
        return cls(
            enabled=bool(data.get("enabled", False)),
            delete_on=delete_on,
            days_after_end=data.get("days_after_end"),
        )
