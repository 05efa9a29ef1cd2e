"""Schedule models.

Manifesto:
    A schedule is a recurring execution intent. It is persisted as one
    entry of a single versioned document, so its dataclass form needs a
    loss-free round trip through JSON with ISO timestamps.

Tags:
    blockflow, models, scheduling, dataclasses, cron

Doc-Types:
    api-reference, data-model
"""

from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

STORAGE_VERSION = "1.0.0"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def new_schedule_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"schedule_{int(time.time() * 1000)}_{suffix}"


class ScheduleStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ScheduleConfig:
    """Input to ``SchedulerService.schedule_execution``."""

    workflow_id: str
    cron_expression: str
    execution_options: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    description: str = ""
    max_runs: int | None = None
    end_date: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduleConfig:
        return cls(
            workflow_id=data["workflow_id"],
            cron_expression=data["cron_expression"],
            execution_options=dict(data.get("execution_options") or {}),
            enabled=data.get("enabled", True),
            description=data.get("description", ""),
            max_runs=data.get("max_runs"),
            end_date=_parse_dt(data.get("end_date")),
        )


@dataclass
class Schedule:
    """Persisted schedule record.

    Invariant: ``next_run`` is None whenever ``enabled`` is False or
    ``status`` is not ``active``.
    """

    id: str
    workflow_id: str
    cron_expression: str
    workflow_name: str | None = None
    execution_options: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    status: ScheduleStatus = ScheduleStatus.ACTIVE
    description: str = ""
    max_runs: int | None = None
    end_date: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_run: datetime | None = None
    next_run: datetime | None = None
    run_count: int = 0
    last_result: dict[str, Any] | None = None

    @property
    def is_armed(self) -> bool:
        """True when the schedule can fire from the timer."""
        return self.enabled and self.status == ScheduleStatus.ACTIVE

    @property
    def is_finished(self) -> bool:
        return self.status == ScheduleStatus.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "workflow_name": self.workflow_name,
            "cron_expression": self.cron_expression,
            "execution_options": self.execution_options,
            "enabled": self.enabled,
            "status": self.status.value,
            "description": self.description,
            "max_runs": self.max_runs,
            "end_date": _iso(self.end_date),
            "created_at": _iso(self.created_at),
            "last_run": _iso(self.last_run),
            "next_run": _iso(self.next_run),
            "run_count": self.run_count,
            "last_result": self.last_result,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Schedule:
        return cls(
            id=data["id"],
            workflow_id=data["workflow_id"],
            workflow_name=data.get("workflow_name"),
            cron_expression=data["cron_expression"],
            execution_options=dict(data.get("execution_options") or {}),
            enabled=bool(data.get("enabled", True)),
            status=ScheduleStatus(data.get("status", ScheduleStatus.ACTIVE.value)),
            description=data.get("description", ""),
            max_runs=data.get("max_runs"),
            end_date=_parse_dt(data.get("end_date")),
            created_at=_parse_dt(data.get("created_at")) or datetime.now(UTC),
            last_run=_parse_dt(data.get("last_run")),
            next_run=_parse_dt(data.get("next_run")),
            run_count=int(data.get("run_count", 0)),
            last_result=data.get("last_result"),
        )


__all__ = [
    "STORAGE_VERSION",
    "Schedule",
    "ScheduleConfig",
    "ScheduleStatus",
    "new_schedule_id",
]
