"""Schedule computation for scheduled jobs.

This module works out, for a cron expression, which nominal run (if any)
was missed and when the next one is due. It is pure: the current time is
always passed in.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from croniter import croniter

from cronkeeper.errors import ScheduleParseError, TooManyMissedRunsError

logger = logging.getLogger(__name__)

# Text format of the scheduled-time annotation (RFC 3339, UTC, seconds)
SCHEDULED_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

DEFAULT_MAX_MISSED_STARTS = 100


@dataclass(frozen=True)
class ScheduleResult:
    """Outcome of a schedule computation.

    Attributes:
        missed_run: Most recent nominal time in the window that has passed,
            or None when nothing is due.
        next_run: First nominal time strictly after now.
    """

    missed_run: datetime | None
    next_run: datetime

    def time_until_next_run(self, now: datetime) -> timedelta:
        """Get the time remaining until next_run."""
        return self.next_run - _as_utc(now)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse(schedule: str, start: datetime) -> croniter:
    """Build a croniter positioned at start.

    Only standard five-field expressions and '@' descriptors are
    accepted; croniter's seconds and year extensions are rejected.
    """
    expr = schedule.strip()
    if not expr:
        raise ScheduleParseError("Unparseable schedule '': empty expression")
    if not expr.startswith("@") and len(expr.split()) != 5:
        raise ScheduleParseError(
            f"Unparseable schedule {schedule!r}: expected 5 fields, "
            f"got {len(expr.split())}"
        )
    try:
        return croniter(expr, start)
    except (ValueError, KeyError) as e:
        raise ScheduleParseError(f"Unparseable schedule {schedule!r}: {e}") from e


def _next(cron: croniter, schedule: str) -> datetime:
    # Expressions like "0 0 30 2 *" parse but never fire
    try:
        return cron.get_next(datetime)
    except ValueError as e:
        raise ScheduleParseError(f"Unparseable schedule {schedule!r}: {e}") from e


def validate_cron_expression(expr: str) -> bool:
    """Validate a cron expression.

    Args:
        expr: The cron expression to validate.

    Returns:
        True if the expression is valid.
    """
    try:
        _next(_parse(expr, datetime.now(timezone.utc)), expr)
        return True
    except ScheduleParseError:
        return False


def next_occurrence(schedule: str, after: datetime) -> datetime:
    """Get the first occurrence of schedule strictly after a time."""
    return _next(_parse(schedule, _as_utc(after)), schedule)


def get_next_schedule(
    schedule: str,
    earliest_bound: datetime,
    now: datetime,
    starting_deadline_seconds: int | None = None,
    max_missed_starts: int = DEFAULT_MAX_MISSED_STARTS,
) -> ScheduleResult:
    """Compute the last missed run and the next run of a schedule.

    The search window starts at earliest_bound (the last schedule time, or
    the object's creation time) and is narrowed to the starting deadline
    when one is set, since nothing before that point may be started anyway.

    Args:
        schedule: Cron expression.
        earliest_bound: Lower bound of the search window.
        now: Current time.
        starting_deadline_seconds: Optional deadline for late starts.
        max_missed_starts: Give up after this many missed occurrences.

    Returns:
        The missed run (if any) and the next run.

    Raises:
        ScheduleParseError: If the expression is malformed.
        TooManyMissedRunsError: If more than max_missed_starts occurrences
            fall inside the window.
    """
    now = _as_utc(now)
    earliest = _as_utc(earliest_bound)

    if starting_deadline_seconds is not None:
        scheduling_deadline = now - timedelta(seconds=starting_deadline_seconds)
        if scheduling_deadline > earliest:
            earliest = scheduling_deadline

    if earliest > now:
        return ScheduleResult(missed_run=None, next_run=next_occurrence(schedule, now))

    cron = _parse(schedule, earliest)
    missed_run = None
    starts = 0
    occurrence = _next(cron, schedule)
    while occurrence <= now:
        missed_run = occurrence
        # A wedged controller or a skewed clock can leave a huge backlog;
        # refuse to walk it.
        starts += 1
        if starts > max_missed_starts:
            raise TooManyMissedRunsError(max_missed_starts)
        occurrence = _next(cron, schedule)

    return ScheduleResult(missed_run=missed_run, next_run=next_occurrence(schedule, now))


def format_scheduled_time(value: datetime) -> str:
    """Format a nominal run time for the scheduled-time annotation."""
    return _as_utc(value).strftime(SCHEDULED_TIME_FORMAT)


def parse_scheduled_time(text: str) -> datetime:
    """Parse a scheduled-time annotation.

    Accepts any RFC 3339 timestamp with an offset and returns it in UTC.

    Raises:
        ValueError: If the text is not a timestamp with a UTC offset.
    """
    text = text.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        raise ValueError(f"timestamp {text!r} has no UTC offset")
    return value.astimezone(timezone.utc)
