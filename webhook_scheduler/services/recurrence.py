"""
Recurrence calculator.

Maps (pattern, config, from_instant) to the next fire instant or a terminal
marker. Only two patterns reach the dispatcher: 'once' and 'cron'. The named
editor patterns (daily, weekly, monthly, custom) are collapsed into a cron
expression by normalize_recurrence() before a schedule is stored.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter, CroniterBadCronError, CroniterBadDateError

from webhook_scheduler.constants.execution_outcomes import TerminationReason

log = logging.getLogger(__name__)

# Upper bound on how far ahead a cron expression may next match.
MAX_LOOKAHEAD_YEARS = 4

CRON_FIELDS: Tuple[Tuple[str, int, int], ...] = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day-of-month", 1, 31),
    ("month", 1, 12),
    ("day-of-week", 0, 6),
)

_LIST_RE = re.compile(r"^\d+(,\d+)*$")
_RANGE_RE = re.compile(r"^(\d+)-(\d+)(/(\d+))?$")
_STAR_STEP_RE = re.compile(r"^\*/(\d+)$")
_TIME_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class RecurrencePattern(str, Enum):
    ONCE = "once"
    CRON = "cron"


# Editor sugar accepted by normalize_recurrence()
EDITOR_PATTERNS = ("daily", "weekly", "monthly", "custom")


class CronValidationError(ValueError):
    """Cron expression, timezone or recurrence config is malformed."""


@dataclass(frozen=True)
class NextFireResult:
    """Either a future instant (UTC) or a terminal marker with a reason."""
    next_at: Optional[datetime] = None
    reason: Optional[TerminationReason] = None

    @property
    def is_terminal(self) -> bool:
        return self.next_at is None

    @classmethod
    def at(cls, instant: datetime) -> "NextFireResult":
        return cls(next_at=instant)

    @classmethod
    def terminal(cls, reason: TerminationReason) -> "NextFireResult":
        return cls(reason=reason)


def _validate_field(part: str, name: str, low: int, high: int) -> None:
    def check(value: str) -> int:
        number = int(value)
        if number < low or number > high:
            raise CronValidationError(f"{name} value {number} out of range {low}-{high}")
        return number

    if part == "*":
        return

    star_step = _STAR_STEP_RE.match(part)
    if star_step:
        if int(star_step.group(1)) < 1:
            raise CronValidationError(f"{name} step must be at least 1")
        return

    if _LIST_RE.match(part):
        for value in part.split(","):
            check(value)
        return

    range_match = _RANGE_RE.match(part)
    if range_match:
        start, end = check(range_match.group(1)), check(range_match.group(2))
        if start > end:
            raise CronValidationError(f"{name} range {start}-{end} is descending")
        if range_match.group(4) is not None and int(range_match.group(4)) < 1:
            raise CronValidationError(f"{name} step must be at least 1")
        return

    raise CronValidationError(f"Invalid {name} field '{part}'")


def validate_cron_expression(expression: Any) -> str:
    """
    Validate a 5-field cron expression and return it whitespace-normalized.

    Each field is '*', a value, a comma list, a range with optional '/step',
    or '*/step'. Values outside the field's range are rejected.
    """
    if not isinstance(expression, str):
        raise CronValidationError("Cron expression must be a string")
    parts = expression.split()
    if len(parts) != len(CRON_FIELDS):
        raise CronValidationError(
            "Cron expression must have 5 fields: minute hour day-of-month month day-of-week"
        )
    for part, (name, low, high) in zip(parts, CRON_FIELDS):
        _validate_field(part, name, low, high)
    return " ".join(parts)


def validate_timezone(name: Optional[str]) -> str:
    """Return a valid IANA zone name, defaulting to UTC."""
    if not name:
        return "UTC"
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise CronValidationError(f"Invalid timezone: {name}")
    return name


def _parse_time(value: Any) -> Tuple[int, int]:
    match = _TIME_RE.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise CronValidationError("Time must use HH:mm (24-hour) format")
    return int(match.group(1)), int(match.group(2))


def normalize_recurrence(pattern: Any, config: Optional[Dict[str, Any]]) -> Tuple[str, Dict[str, Any]]:
    """
    Collapse an editor pattern into ('once', {}) or ('cron', {cronExpression, timezone}).

    daily   {time}          -> 'M H * * *'
    weekly  {days, time}    -> 'M H * * d1,d2'
    monthly {day, time}     -> 'M H D * *'
    custom / cron {cronExpression}
    """
    config = config or {}
    pattern = (pattern or RecurrencePattern.ONCE.value)
    if isinstance(pattern, RecurrencePattern):
        pattern = pattern.value

    if pattern == RecurrencePattern.ONCE.value:
        return RecurrencePattern.ONCE.value, {}

    timezone_name = validate_timezone(config.get("timezone"))

    if pattern in (RecurrencePattern.CRON.value, "custom"):
        expression = config.get("cronExpression") or config.get("cron_expression")
        if not expression:
            raise CronValidationError("Cron schedules require a cronExpression")
        expression = validate_cron_expression(expression)
    elif pattern == "daily":
        hour, minute = _parse_time(config.get("time"))
        expression = f"{minute} {hour} * * *"
    elif pattern == "weekly":
        days = config.get("days")
        if not isinstance(days, list) or not days:
            raise CronValidationError("Weekly schedules require at least one day (0-6)")
        if any(not isinstance(day, int) or isinstance(day, bool) or not 0 <= day <= 6 for day in days):
            raise CronValidationError("Weekly days must be integers 0-6 (0 = Sunday)")
        hour, minute = _parse_time(config.get("time"))
        expression = f"{minute} {hour} * * {','.join(str(day) for day in sorted(set(days)))}"
    elif pattern == "monthly":
        day = config.get("day")
        if not isinstance(day, int) or isinstance(day, bool) or not 1 <= day <= 31:
            raise CronValidationError("Monthly schedules require a day of month 1-31")
        hour, minute = _parse_time(config.get("time"))
        expression = f"{minute} {hour} {day} * *"
    else:
        raise CronValidationError(f"Unsupported recurrence pattern: {pattern}")

    return RecurrencePattern.CRON.value, {"cronExpression": expression, "timezone": timezone_name}


def _next_cron_fire(expression: str, timezone_name: str, from_instant: datetime) -> NextFireResult:
    tz = ZoneInfo(timezone_name)
    start = from_instant.astimezone(tz)
    horizon = from_instant + timedelta(days=366 * MAX_LOOKAHEAD_YEARS)
    try:
        # day-of-month and day-of-week must both match
        iterator = croniter(expression, start, day_or=False, max_years_between_matches=MAX_LOOKAHEAD_YEARS)
        candidate = iterator.get_next(datetime)
        # croniter works at minute resolution; skip anything not strictly later.
        while candidate.astimezone(timezone.utc) <= from_instant:
            candidate = iterator.get_next(datetime)
    except (CroniterBadDateError, CroniterBadCronError) as e:
        log.info(f"Cron '{expression}' has no occurrence within {MAX_LOOKAHEAD_YEARS} years: {e}")
        return NextFireResult.terminal(TerminationReason.NO_NEXT_OCCURRENCE)

    next_at = candidate.astimezone(timezone.utc)
    if next_at > horizon:
        return NextFireResult.terminal(TerminationReason.NO_NEXT_OCCURRENCE)
    return NextFireResult.at(next_at)


def compute_next(pattern: Any, config: Optional[Dict[str, Any]], from_instant: datetime) -> NextFireResult:
    """
    Next fire strictly after from_instant, or terminal.

    'once' is always terminal. 'cron' is evaluated in config['timezone']
    (UTC when unset) and returned as a UTC instant. Raises CronValidationError
    if the stored config cannot be evaluated at all.
    """
    if from_instant.tzinfo is None:
        from_instant = from_instant.replace(tzinfo=timezone.utc)

    pattern, config = normalize_recurrence(pattern, config)
    if pattern == RecurrencePattern.ONCE.value:
        return NextFireResult.terminal(TerminationReason.ONE_TIME)

    return _next_cron_fire(config["cronExpression"], config["timezone"], from_instant)


def first_fire_at_or_after(pattern: Any, config: Optional[Dict[str, Any]], start: datetime) -> NextFireResult:
    """First occurrence at or after start (used when a cron schedule is created)."""
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    return compute_next(pattern, config, start - timedelta(microseconds=1))


def upcoming_fire_times(
    pattern: Any,
    config: Optional[Dict[str, Any]],
    from_instant: datetime,
    count: int = 3,
) -> List[datetime]:
    """Preview up to `count` upcoming fires; empty for one-time or invalid schedules."""
    fires: List[datetime] = []
    cursor = from_instant
    try:
        for _ in range(count):
            result = compute_next(pattern, config, cursor)
            if result.is_terminal:
                break
            fires.append(result.next_at)
            cursor = result.next_at
    except CronValidationError as e:
        log.warning(f"Failed to compute upcoming fire times: {e}")
    return fires
