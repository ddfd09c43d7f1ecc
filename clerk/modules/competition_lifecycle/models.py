# clerk/modules/competition_lifecycle/models.py

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Optional


class CompetitionStatus(IntEnum):
    POLL_STARTED = 1
    TIEBREAKER_POLL_STARTED = 2
    POLL_FINISHED = 3
    SENT_REMINDER = 4
    COMPETITION_STARTED = 5
    COMPETITION_FINISHED = 6


class CompetitionType(str, Enum):
    SKILL = "Skill of the Week"
    BOSS = "Boss of the Week"

    @property
    def metric_category(self) -> str:
        return "skill" if self is CompetitionType.SKILL else "boss"


def _to_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_db_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def _split_csv(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(',') if item.strip()]


@dataclass
class Competition:
    """
    A competition tracked from poll to results.
    Maps onto the 'competitions' table.

    `competition_id` stays None until the Wise Old Man competition exists; from
    then on `starts_at` and `ends_at` are set too.
    """
    guild_id: int
    type: CompetitionType
    status: CompetitionStatus = CompetitionStatus.POLL_STARTED
    id: Optional[int] = None
    competition_id: Optional[int] = None
    title: Optional[str] = None
    metric: Optional[str] = None
    verification_code: Optional[str] = None
    starts_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    message_link: Optional[str] = None
    emoji: Optional[str] = None
    starting_hour: Optional[str] = None
    poll_message_id: Optional[int] = None
    tiebreaker_poll_message_id: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def is_resolved(self) -> bool:
        return self.competition_id is not None

    @property
    def active_poll_message_id(self) -> Optional[int]:
        """The poll whose result currently decides the winner."""
        return self.tiebreaker_poll_message_id or self.poll_message_id

    @classmethod
    def from_row(cls, row: dict) -> "Competition":
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in row.items() if k in known}
        data['type'] = CompetitionType(data['type'])
        data['status'] = CompetitionStatus(data['status'])
        for key in ('starts_at', 'ends_at', 'created_at'):
            data[key] = _to_datetime(data.get(key))
        return cls(**data)

    def to_row(self) -> dict:
        return {
            'guild_id': self.guild_id,
            'competition_id': self.competition_id,
            'type': self.type.value,
            'title': self.title,
            'metric': self.metric,
            'verification_code': self.verification_code,
            'starts_at': _to_db_datetime(self.starts_at),
            'ends_at': _to_db_datetime(self.ends_at),
            'message_link': self.message_link,
            'emoji': self.emoji,
            'status': int(self.status),
            'starting_hour': self.starting_hour,
            'poll_message_id': self.poll_message_id,
            'tiebreaker_poll_message_id': self.tiebreaker_poll_message_id,
        }


@dataclass
class CompetitionSettings:
    """Per-guild configuration, 'competition_settings' table."""
    guild_id: int
    clan_events_role_id: Optional[int] = None
    skill_blacklist: list[str] = field(default_factory=list)
    boss_blacklist: list[str] = field(default_factory=list)
    last_chosen_metrics: list[str] = field(default_factory=list)
    days_after_poll: int = 7
    tiebreaker_poll_duration: int = 3
    default_starting_hour: str = "12:00pm"

    @classmethod
    def from_row(cls, row: dict) -> "CompetitionSettings":
        return cls(
            guild_id=row['guild_id'],
            clan_events_role_id=row.get('clan_events_role_id'),
            skill_blacklist=_split_csv(row.get('skill_blacklist')),
            boss_blacklist=_split_csv(row.get('boss_blacklist')),
            last_chosen_metrics=_split_csv(row.get('last_chosen_metrics')),
            days_after_poll=row.get('days_after_poll') if row.get('days_after_poll') is not None else 7,
            tiebreaker_poll_duration=row.get('tiebreaker_poll_duration') or 3,
            default_starting_hour=row.get('default_starting_hour') or "12:00pm",
        )

    def blacklist_for(self, competition_type: CompetitionType) -> list[str]:
        if competition_type is CompetitionType.SKILL:
            return self.skill_blacklist
        return self.boss_blacklist


@dataclass
class ChannelSettings:
    guild_id: int
    announcements_channel_id: Optional[int] = None
    event_planning_channel_id: Optional[int] = None


@dataclass
class PollOption:
    """One answer of a poll. `emoji` is whatever the vote provider hands back."""
    label: str
    votes: int = 0
    emoji: Optional[object] = None
    key: Optional[str] = None


@dataclass
class VoteSnapshot:
    vote_id: int
    is_finalized: bool
    options: list[PollOption]

    @property
    def tally(self) -> list[tuple[str, int]]:
        return [(option.label, option.votes) for option in self.options]
