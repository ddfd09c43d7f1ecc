"""pytest configuration and fixtures."""

import os
import random
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

# Set environment before any clerk imports read it
os.environ.setdefault("WISE_OLD_MAN_API_KEY", "test-key")
os.environ["COMPETITION_TIMEZONE"] = "America/New_York"
os.environ["COMPETITION_DEFAULT_PARTICIPANTS"] = ""

from clerk.core.database import Database  # noqa: E402
from clerk.modules.competition_lifecycle.models import PollOption, VoteSnapshot  # noqa: E402
from clerk.modules.competition_lifecycle.services.announcement_service import AnnouncementService  # noqa: E402
from clerk.modules.competition_lifecycle.services.job_scheduler import JobScheduler  # noqa: E402
from clerk.modules.competition_lifecycle.services.lifecycle_service import CompetitionLifecycleService  # noqa: E402
from clerk.modules.competition_lifecycle.services.state_store import CompetitionStore  # noqa: E402
from clerk.modules.competition_lifecycle.services.wom_client import CreatedCompetition, WiseOldManClient  # noqa: E402

GUILD_ID = 4242
ANNOUNCEMENTS_CHANNEL_ID = 10
EVENT_PLANNING_CHANNEL_ID = 20
ROLE_ID = 99
ANNOUNCEMENT_LINK = f"https://discord.com/channels/{GUILD_ID}/{ANNOUNCEMENTS_CHANNEL_ID}/777"

# Monday 2025-03-03 12:00 in New York (EST), the week before DST begins
MONDAY_NOON = datetime(2025, 3, 3, 17, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta):
        self.now += delta

    def set(self, now: datetime):
        self.now = now


class FakeVotes:
    """In-memory stand-in for the Discord poll provider."""

    def __init__(self):
        self.polls: dict[int, VoteSnapshot] = {}
        self.opened: list[dict] = []
        self.ended: list[int] = []
        self._next_id = 1000

    def add_poll(self, labels: list[str], emojis: Optional[list] = None) -> int:
        self._next_id += 1
        emojis = emojis or [None] * len(labels)
        options = [PollOption(label, emoji=emoji) for label, emoji in zip(labels, emojis)]
        self.polls[self._next_id] = VoteSnapshot(self._next_id, False, options)
        return self._next_id

    def finalize(self, vote_id: int, votes: dict[str, int]):
        snapshot = self.polls[vote_id]
        for option in snapshot.options:
            option.votes = votes.get(option.label, 0)
        snapshot.is_finalized = True

    async def open_vote(self, channel_id, question, options, duration_hours, allow_multiselect=False):
        vote_id = self.add_poll([option.label for option in options], [option.emoji for option in options])
        self.opened.append({
            'vote_id': vote_id,
            'channel_id': channel_id,
            'question': question,
            'labels': [option.label for option in options],
            'emojis': [option.emoji for option in options],
            'duration_hours': duration_hours,
            'allow_multiselect': allow_multiselect,
        })
        return vote_id

    async def fetch_vote(self, channel_id, vote_id):
        return self.polls.get(vote_id)

    async def end_vote(self, channel_id, vote_id):
        snapshot = self.polls.get(vote_id)
        if snapshot is None or snapshot.is_finalized:
            return False
        snapshot.is_finalized = True
        self.ended.append(vote_id)
        return True


def competition_details(starts_at: datetime, ends_at: datetime, metric: str = "fishing", participations=None) -> dict:
    return {
        "id": 555,
        "title": "Skill of the Week: Fishing",
        "metric": metric,
        "startsAt": starts_at.isoformat().replace("+00:00", "Z"),
        "endsAt": ends_at.isoformat().replace("+00:00", "Z"),
        "participations": participations or [],
    }


@pytest.fixture
def clock():
    return FakeClock(MONDAY_NOON)


@pytest_asyncio.fixture
async def db():
    database = Database(":memory:")
    await database.connect()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def store(db):
    competition_store = CompetitionStore(db)
    await competition_store.set_channels(
        GUILD_ID,
        announcements_channel_id=ANNOUNCEMENTS_CHANNEL_ID,
        event_planning_channel_id=EVENT_PLANNING_CHANNEL_ID,
    )
    await competition_store.update_settings(GUILD_ID, clan_events_role_id=ROLE_ID)
    return competition_store


@pytest.fixture
def votes():
    return FakeVotes()


@pytest.fixture
def wom():
    client = AsyncMock(spec=WiseOldManClient)
    client.create_competition.return_value = CreatedCompetition(
        competition_id=555, title="Skill of the Week: Fishing", verification_code="123-456-789"
    )
    client.edit_competition.return_value = {}
    client.add_participants.return_value = {}
    return client


@pytest.fixture
def announcer():
    service = AsyncMock(spec=AnnouncementService)
    service.find_emoji.return_value = None
    service.announce_competition.return_value = (ANNOUNCEMENT_LINK, "✅")
    service.send_reminder.return_value = True
    service.send_notice.return_value = True
    service.announce_start.return_value = True
    service.announce_results.return_value = True
    return service


@pytest_asyncio.fixture
async def scheduler(clock):
    job_scheduler = JobScheduler(clock=clock)
    yield job_scheduler
    await job_scheduler.shutdown()


@pytest.fixture
def service(store, wom, votes, announcer, scheduler, clock):
    return CompetitionLifecycleService(
        store=store,
        wom=wom,
        votes=votes,
        announcer=announcer,
        scheduler=scheduler,
        clock=clock,
        rng=random.Random(7),
        default_participants=[],
    )
