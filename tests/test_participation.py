"""Tests for reaction opt-in to competitions."""

from datetime import timedelta

import pytest

from clerk.modules.competition_lifecycle.models import Competition, CompetitionStatus, CompetitionType
from clerk.modules.competition_lifecycle.services.participation_service import (
    JoinResult,
    ParticipationService,
    format_player_name,
)
from clerk.modules.competition_lifecycle.services.wom_client import WiseOldManServerError

from conftest import ANNOUNCEMENT_LINK, GUILD_ID, MONDAY_NOON


@pytest.fixture
def participation(store, wom, clock):
    return ParticipationService(store, wom, clock)


async def linked(store, ends_at=MONDAY_NOON + timedelta(days=7), **overrides):
    values = dict(
        guild_id=GUILD_ID,
        type=CompetitionType.SKILL,
        status=CompetitionStatus.POLL_FINISHED,
        competition_id=555,
        title="Skill of the Week: Fishing",
        metric="fishing",
        verification_code="123-456-789",
        starts_at=ends_at - timedelta(days=7),
        ends_at=ends_at,
        message_link=ANNOUNCEMENT_LINK,
        emoji="✅",
    )
    values.update(overrides)
    return await store.upsert(Competition(**values))


@pytest.mark.parametrize("display_name,expected", [
    ("Lynx_Titan", "lynx titan"),
    ("Iron-Man-Btw", "iron man btw"),
    ("Zezima", "zezima"),
])
def test_format_player_name(display_name, expected):
    assert format_player_name(display_name) == expected


class TestJoin:

    @pytest.mark.asyncio
    async def test_joins_with_matching_emoji(self, participation, store, wom):
        await linked(store)

        result, competition = await participation.join(ANNOUNCEMENT_LINK, "✅", "Lynx_Titan")

        assert result is JoinResult.JOINED
        assert competition.competition_id == 555
        wom.add_participants.assert_awaited_once_with(555, ["lynx titan"], "123-456-789")

    @pytest.mark.asyncio
    async def test_unknown_message(self, participation, wom):
        result, competition = await participation.join(ANNOUNCEMENT_LINK, "✅", "Zezima")

        assert result is JoinResult.NOT_A_COMPETITION
        assert competition is None
        wom.add_participants.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_other_emoji_is_ignored(self, participation, store, wom):
        await linked(store)

        result, _ = await participation.join(ANNOUNCEMENT_LINK, "👍", "Zezima")

        assert result is JoinResult.WRONG_EMOJI
        wom.add_participants.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_finished_competition_is_closed(self, participation, store, wom):
        await linked(store, ends_at=MONDAY_NOON - timedelta(hours=1))

        result, _ = await participation.join(ANNOUNCEMENT_LINK, "✅", "Zezima")

        assert result is JoinResult.CLOSED
        wom.add_participants.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_code(self, participation, store):
        await linked(store, verification_code=None)

        result, _ = await participation.join(ANNOUNCEMENT_LINK, "✅", "Zezima")

        assert result is JoinResult.MISSING_CODE

    @pytest.mark.asyncio
    async def test_api_failure(self, participation, store, wom):
        await linked(store)
        wom.add_participants.side_effect = WiseOldManServerError(503, "down")

        result, _ = await participation.join(ANNOUNCEMENT_LINK, "✅", "Zezima")

        assert result is JoinResult.FAILED
