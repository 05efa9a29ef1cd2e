"""Schedule repository - persistence and next-run computation.

Manifesto:
    Schedule persistence and next-run computation are pure data operations
    that belong in a repository, not in the service layer. The service only
    decides *when* to fire; this module decides what is stored.

All schedules live in one versioned document under a single key::

    {"version": "1.0.0", "last_updated": "<iso>", "schedules": [ ... ]}

Every mutation is a read-modify-write of that document under a record lock
followed by one atomic write. An unreadable document is treated as empty
(and logged); a failed write raises StorageError.

Tags:
    blockflow, scheduling, repository, CRUD, cron

Doc-Types:
    api-reference


┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULE REPOSITORY                                                          │
│                                                                               │
│   CRUD Operations:                                                            │
│   ├── add(schedule)                                                           │
│   ├── get(id) → Schedule | None                                               │
│   ├── mutate(id, fn) → Schedule                                               │
│   ├── delete(id) → bool                                                       │
│   └── list_all() → list[Schedule]   (newest first)                            │
│                                                                               │
│   Scheduling Operations:                                                      │
│   ├── get_due_schedules(now) → list[Schedule]                                 │
│   └── compute_next_run(schedule, after) → datetime | None                     │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from blockflow.core.errors import CronValidationError, ScheduleNotFoundError
from blockflow.core.storage import KeyValueStore, record_lock

from . import cron
from .models import STORAGE_VERSION, Schedule

logger = logging.getLogger(__name__)

STORAGE_KEY = "schedules"


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=UTC)


class ScheduleRepository:
    """Schedule CRUD over a KeyValueStore.

    Example:
        >>> repo = ScheduleRepository(MemoryKeyValueStore())
        >>> repo.add(schedule)
        >>> repo.get(schedule.id).cron_expression
        '0 9 * * *'
    """

    def __init__(
        self,
        kv: KeyValueStore,
        key: str = STORAGE_KEY,
        horizon_days: int = cron.DEFAULT_HORIZON_DAYS,
    ) -> None:
        self._kv = kv
        self._key = key
        self.horizon_days = horizon_days

    # === Document I/O ===

    def _read(self) -> list[Schedule]:
        raw = self._kv.get(self._key)
        if raw is None:
            return []
        try:
            document = json.loads(raw)
            return [Schedule.from_dict(s) for s in document["schedules"]]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Schedule storage unreadable, treating as empty: {e}")
            return []

    def _write(self, schedules: list[Schedule]) -> None:
        document = {
            "version": STORAGE_VERSION,
            "last_updated": datetime.now(UTC).isoformat(),
            "schedules": [s.to_dict() for s in schedules],
        }
        self._kv.set(self._key, json.dumps(document, default=str).encode("utf-8"))

    # === CRUD ===

    def list_all(self) -> list[Schedule]:
        """All schedules, newest first."""
        return sorted(self._read(), key=lambda s: _aware(s.created_at), reverse=True)

    def get(self, schedule_id: str) -> Schedule | None:
        for schedule in self._read():
            if schedule.id == schedule_id:
                return schedule
        return None

    def add(self, schedule: Schedule) -> Schedule:
        with record_lock(self._key):
            schedules = [s for s in self._read() if s.id != schedule.id]
            schedules.append(schedule)
            self._write(schedules)
        return schedule

    def mutate(self, schedule_id: str, fn: Callable[[Schedule], None]) -> Schedule:
        """Apply ``fn`` to one schedule and persist the document.

        Raises:
            ScheduleNotFoundError: unknown id
            StorageError: the write failed
        """
        with record_lock(self._key):
            schedules = self._read()
            for schedule in schedules:
                if schedule.id == schedule_id:
                    fn(schedule)
                    self._write(schedules)
                    return schedule
        raise ScheduleNotFoundError(schedule_id)

    def delete(self, schedule_id: str) -> bool:
        with record_lock(self._key):
            schedules = self._read()
            remaining = [s for s in schedules if s.id != schedule_id]
            if len(remaining) == len(schedules):
                return False
            self._write(remaining)
        return True

    def count_enabled(self) -> int:
        return sum(1 for s in self._read() if s.is_armed)

    # === Scheduling ===

    def get_due_schedules(self, now: datetime) -> list[Schedule]:
        """Armed schedules whose ``next_run`` is at or before ``now``, oldest first."""
        now = _aware(now)
        due = [
            s for s in self._read()
            if s.is_armed and s.next_run is not None and _aware(s.next_run) <= now
        ]
        return sorted(due, key=lambda s: _aware(s.next_run))

    def compute_next_run(self, schedule: Schedule, after: datetime) -> datetime | None:
        """Next firing strictly after ``after``; None if past ``end_date`` or unmatched."""
        try:
            upcoming = cron.next_run(schedule.cron_expression, after, self.horizon_days)
        except CronValidationError as e:
            logger.error(f"Failed to compute next run for {schedule.id}: {e}")
            return None

        if upcoming is None:
            return None
        if schedule.end_date is not None and _aware(upcoming) > _aware(schedule.end_date):
            return None
        return upcoming


__all__ = ["ScheduleRepository", "STORAGE_KEY"]
