"""
Five-field cron evaluator.

Pure functions, no state: parse and validate an expression, test a
datetime against it, find the next matching minute and describe it in
words.

Format::

    ┌──────── minute        0-59
    │ ┌────── hour          0-23
    │ │ ┌──── day of month  1-31
    │ │ │ ┌── month         1-12
    │ │ │ │ ┌ day of week   0-6 (0 = Sunday)
    * * * * *

Each field is ``*``, a literal, an ``a-b`` range (``a <= b``), a ``*/n``
step (values where ``value % n == 0``) or a comma list of those. Day of
month and day of week must BOTH match. Fields are matched against the
wall-clock fields of the datetime given, whatever its tzinfo.

Expressions that can never fire within the search horizon (``0 0 31 2 *``)
are reported as invalid.

This module owns the grammar. Searching and matching are delegated to
croniter: each compiled field is rendered back as ``*`` or an explicit value
list, and croniter runs with ``day_or=False`` so day of month and day of
week are ANDed.

Examples:
    >>> from datetime import datetime
    >>> result = parse("0 9 * * *", now=datetime(2024, 1, 1, 8, 0))
    >>> result.next_run
    datetime.datetime(2024, 1, 1, 9, 0)
    >>> result.description
    'At 9:00'

Tags:
    cron, scheduling, parser, blockflow

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from croniter import CroniterError, croniter

from blockflow.core.errors import CronValidationError

DEFAULT_HORIZON_DAYS = 366

FIELD_COUNT_ERROR = "Cron expression must have 5 parts: minute hour day month dayOfWeek"

# (name, min, max)
_FIELDS: tuple[tuple[str, int, int], ...] = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day", 1, 31),
    ("month", 1, 12),
    ("weekday", 0, 6),
)

_WELL_KNOWN: dict[str, str] = {
    "0 0 * * *": "Daily at midnight",
    "0 12 * * *": "Daily at noon",
    "0 0 * * 0": "Weekly on Sunday at midnight",
    "0 0 1 * *": "Monthly on the 1st at midnight",
}


@dataclass(frozen=True)
class CronExpression:
    """A validated cron expression compiled to sets of allowed values."""

    expression: str
    fields: tuple[str, ...]
    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]

    @property
    def normalized(self) -> str:
        """The expression with every field expanded to ``*`` or a value list."""
        sets = (self.minutes, self.hours, self.days, self.months, self.weekdays)
        return " ".join(_render(values, lo, hi) for values, (_, lo, hi) in zip(sets, _FIELDS, strict=True))

    def matches(self, dt: datetime) -> bool:
        return bool(croniter.match(self.normalized, dt, day_or=False))


@dataclass
class CronParseResult:
    """Outcome of :func:`parse`. Exactly one of ``next_run``/``error`` is set."""

    is_valid: bool
    next_run: datetime | None = None
    description: str | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "next_run": self.next_run.isoformat() if self.next_run else None,
            "description": self.description,
            "error": self.error,
        }


def _render(values: frozenset[int], lo: int, hi: int) -> str:
    if len(values) == hi - lo + 1:
        return "*"
    return ",".join(str(v) for v in sorted(values))


def _parse_int(token: str, name: str, lo: int, hi: int) -> int:
    if not token.isdigit():
        raise ValueError(f"{name}: {token!r} is not a number")
    value = int(token)
    if value < lo or value > hi:
        raise ValueError(f"{name}: {value} is out of range {lo}-{hi}")
    return value


def _parse_item(item: str, name: str, lo: int, hi: int) -> set[int]:
    if item == "*":
        return set(range(lo, hi + 1))

    if item.startswith("*/"):
        step_token = item[2:]
        if not step_token.isdigit() or not (1 <= int(step_token) <= hi):
            raise ValueError(f"{name}: invalid step {item!r}")
        step = int(step_token)
        return {v for v in range(lo, hi + 1) if v % step == 0}

    if "-" in item:
        start_token, _, end_token = item.partition("-")
        start = _parse_int(start_token, name, lo, hi)
        end = _parse_int(end_token, name, lo, hi)
        if start > end:
            raise ValueError(f"{name}: range {item!r} has start greater than end")
        return set(range(start, end + 1))

    return {_parse_int(item, name, lo, hi)}


def _parse_field(token: str, name: str, lo: int, hi: int) -> frozenset[int]:
    if token == "*":
        return frozenset(range(lo, hi + 1))
    values: set[int] = set()
    for item in token.split(","):
        if not item:
            raise ValueError(f"{name}: empty list item in {token!r}")
        if item == "*":
            raise ValueError(f"{name}: '*' cannot appear in a list")
        values |= _parse_item(item, name, lo, hi)
    return frozenset(values)


def compile_expression(expression: str) -> CronExpression:
    """Validate ``expression`` and compile it.

    Raises:
        CronValidationError: wrong field count, bad syntax or out-of-range value.
    """
    parts = expression.strip().split() if expression else []
    if len(parts) != 5:
        raise CronValidationError(expression, FIELD_COUNT_ERROR)

    compiled = []
    for token, (name, lo, hi) in zip(parts, _FIELDS, strict=True):
        try:
            compiled.append(_parse_field(token, name, lo, hi))
        except ValueError as e:
            raise CronValidationError(expression, str(e)) from e

    return CronExpression(" ".join(parts), tuple(parts), *compiled)


def matches(dt: datetime, expression: str | CronExpression) -> bool:
    """Return True when every field of ``expression`` matches ``dt``.

    Invalid expressions never match.
    """
    if isinstance(expression, str):
        try:
            expression = compile_expression(expression)
        except CronValidationError:
            return False
    return expression.matches(dt)


def next_run(
    expression: str | CronExpression,
    after: datetime | None = None,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> datetime | None:
    """Find the first matching minute strictly after ``after``.

    The search starts at ``after`` rounded up to the next minute boundary
    and gives up after ``horizon_days``.

    Returns:
        The next firing time (same tzinfo as ``after``) or None.
    """
    cron = compile_expression(expression) if isinstance(expression, str) else expression
    after = after if after is not None else datetime.now(UTC)

    limit = after.replace(second=0, microsecond=0) + timedelta(minutes=1, days=horizon_days)
    try:
        upcoming = croniter(
            cron.normalized,
            after,
            day_or=False,
            max_years_between_matches=max(1, math.ceil(horizon_days / 365)),
        ).get_next(datetime)
    except CroniterError:
        return None

    return upcoming if upcoming < limit else None


def describe(expression: str) -> str:
    """Render an expression as a short human phrase.

    Example:
        >>> describe("30 14 * * 1")
        'At 14:30 on weekday 1'
    """
    parts = expression.strip().split()
    if len(parts) != 5:
        return expression

    normalized = " ".join(parts)
    if normalized in _WELL_KNOWN:
        return _WELL_KNOWN[normalized]

    minute, hour, day, month, weekday = parts

    if minute.startswith("*/") and hour == day == month == weekday == "*":
        return f"Every {minute[2:]} minutes"
    if minute == "0" and hour.startswith("*/") and day == month == weekday == "*":
        return f"Every {hour[2:]} hours"

    if minute == "0" and hour != "*":
        text = f"At {hour}:00"
    elif minute != "*" and hour != "*":
        text = f"At {hour}:{minute.zfill(2)}"
    else:
        text = f"At minute {minute} of hour {hour}"

    if day != "*":
        text += f" on day {day}"
    if month != "*":
        text += f" of month {month}"
    if weekday != "*":
        text += f" on weekday {weekday}"
    return text


def parse(
    expression: str,
    now: datetime | None = None,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> CronParseResult:
    """Validate an expression and compute its next run after ``now``.

    Never raises; problems are reported through ``error``.
    """
    try:
        cron = compile_expression(expression)
    except CronValidationError as e:
        return CronParseResult(is_valid=False, error=e.reason)

    upcoming = next_run(cron, now, horizon_days)
    if upcoming is None:
        return CronParseResult(
            is_valid=False,
            error=f"expression never matches within {horizon_days} days",
        )

    return CronParseResult(
        is_valid=True,
        next_run=upcoming,
        description=describe(cron.expression),
    )


def validate(
    expression: str,
    now: datetime | None = None,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> CronExpression:
    """Compile and check that the expression fires within ``horizon_days``.

    Raises:
        CronValidationError: on any problem reported by :func:`parse`.
    """
    result = parse(expression, now, horizon_days)
    if not result.is_valid:
        raise CronValidationError(expression, result.error or "invalid")
    return compile_expression(expression)


__all__ = [
    "CronExpression",
    "CronParseResult",
    "compile_expression",
    "describe",
    "matches",
    "next_run",
    "parse",
    "validate",
]
