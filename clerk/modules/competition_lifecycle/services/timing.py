# clerk/modules/competition_lifecycle/services/timing.py

import logging
import os
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo
from clerk.modules.competition_lifecycle.models import Competition, CompetitionStatus

logger = logging.getLogger(__name__)

COMPETITION_DURATION = timedelta(days=7)
REMINDER_OFFSET = timedelta(days=1)
NOTICE_OFFSET = timedelta(minutes=30)
DEFAULT_STARTING_HOUR = "12:00pm"

_HOUR_FORMATS = ("%I:%M%p", "%I%p", "%H:%M", "%H")


def competition_timezone() -> ZoneInfo:
    return ZoneInfo(os.getenv('COMPETITION_TIMEZONE', 'America/New_York'))


class JobKind(str, Enum):
    REMINDER = "24h-reminder"
    PRE_START = "pre-start-reminder"
    PRE_END = "pre-end-reminder"
    START = "start"
    END = "end"


def job_name(competition_id: int, kind: JobKind) -> str:
    return f"{kind.value}-{competition_id}"


def all_job_names(competition_id: int) -> list[str]:
    return [job_name(competition_id, kind) for kind in JobKind]


@dataclass(frozen=True)
class PlannedJob:
    kind: JobKind
    name: str
    when: datetime


def parse_starting_hour(value: Optional[str]) -> Optional[time]:
    """Parse '12:00pm', '3pm', '15:00' or '15'. Returns None when unparseable."""
    if not value:
        return None
    cleaned = value.strip().replace(" ", "").lower()
    for fmt in _HOUR_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).time()
        except ValueError:
            continue
    return None


def compute_competition_window(
    resolved_at: datetime,
    starting_hour: Optional[str],
    days_after_poll: int,
    tz: Optional[ZoneInfo] = None,
) -> tuple[datetime, datetime]:
    """
    Start = the poll's resolution day at the competition's starting hour (local
    to the competition timezone) plus `days_after_poll` days; end = start + one week.
    Both are returned in UTC.
    """
    tz = tz or competition_timezone()
    hour = parse_starting_hour(starting_hour)
    if hour is None:
        logger.warning(
            "Invalid starting hour, falling back to the default",
            extra={'starting_hour': starting_hour, 'default': DEFAULT_STARTING_HOUR}
        )
        hour = parse_starting_hour(DEFAULT_STARTING_HOUR)

    local_day = resolved_at.astimezone(tz).date()
    # add calendar days on the naive wall clock so DST shifts keep the hour
    local_start = datetime.combine(local_day, hour) + timedelta(days=days_after_poll)
    local_end = local_start + COMPETITION_DURATION
    starts_at = local_start.replace(tzinfo=tz).astimezone(timezone.utc)
    ends_at = local_end.replace(tzinfo=tz).astimezone(timezone.utc)
    return starts_at, ends_at


def derive_status(starts_at: datetime, ends_at: datetime, now: datetime) -> CompetitionStatus:
    """The status a resolved competition should have at `now`, judged by its times alone."""
    if now >= ends_at:
        return CompetitionStatus.COMPETITION_FINISHED
    if now >= starts_at:
        return CompetitionStatus.COMPETITION_STARTED
    if now >= starts_at - REMINDER_OFFSET:
        return CompetitionStatus.SENT_REMINDER
    return CompetitionStatus.POLL_FINISHED


def job_due_at(competition: Competition, kind: JobKind) -> Optional[datetime]:
    """When the `kind` timer is due for the competition's current times."""
    if competition.starts_at is None or competition.ends_at is None:
        return None
    return {
        JobKind.REMINDER: competition.starts_at - REMINDER_OFFSET,
        JobKind.PRE_START: competition.starts_at - NOTICE_OFFSET,
        JobKind.START: competition.starts_at,
        JobKind.PRE_END: competition.ends_at - NOTICE_OFFSET,
        JobKind.END: competition.ends_at,
    }[kind]


def plan_jobs(competition: Competition, now: datetime) -> list[PlannedJob]:
    """The timers that should be armed for `competition` at `now`."""
    if not competition.is_resolved or competition.starts_at is None or competition.ends_at is None:
        return []

    status = competition.status
    allowed = {
        JobKind.REMINDER: status == CompetitionStatus.POLL_FINISHED,
        JobKind.PRE_START: status in (CompetitionStatus.POLL_FINISHED, CompetitionStatus.SENT_REMINDER),
        JobKind.PRE_END: True,
        JobKind.START: status != CompetitionStatus.COMPETITION_STARTED,
        JobKind.END: True,
    }
    planned = []
    for kind in (JobKind.REMINDER, JobKind.PRE_START, JobKind.PRE_END, JobKind.START, JobKind.END):
        when = job_due_at(competition, kind)
        if allowed[kind] and when > now:
            planned.append(PlannedJob(kind, job_name(competition.competition_id, kind), when))
    return planned
