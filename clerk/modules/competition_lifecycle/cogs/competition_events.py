# clerk/modules/competition_lifecycle/cogs/competition_events.py

import discord
from discord.ext import commands
import logging
from clerk.modules.competition_lifecycle.services.lifecycle_service import CompetitionLifecycleService
from clerk.modules.competition_lifecycle.services.participation_service import JoinResult, ParticipationService

logger = logging.getLogger(__name__)


def is_finalized_poll_update(data: dict) -> bool:
    """A message update that carries the final results of a poll."""
    results = (data.get('poll') or {}).get('results') or {}
    return bool(results.get('is_finalized'))


def message_link(guild_id: int, channel_id: int, message_id: int) -> str:
    return f"https://discord.com/channels/{guild_id}/{channel_id}/{message_id}"


class CompetitionEvents(commands.Cog):
    """Gateway listeners: poll results and reaction opt-ins."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.lifecycle: CompetitionLifecycleService = bot.lifecycle_service
        self.participation: ParticipationService = bot.participation_service

    @commands.Cog.listener()
    async def on_raw_message_update(self, payload: discord.RawMessageUpdateEvent):
        if not is_finalized_poll_update(payload.data):
            return

        log_context = {'message_id': payload.message_id, 'channel_id': payload.channel_id}
        try:
            outcome = await self.lifecycle.on_vote_finalized(payload.message_id)
            if outcome is not None:
                logger.info("Poll result handled", extra={**log_context, 'outcome': outcome.kind.name})
        except Exception:
            logger.error("Failed to handle finalized poll", extra=log_context, exc_info=True)

    @commands.Cog.listener()
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent):
        if payload.guild_id is None or payload.member is None or payload.member.bot:
            return

        link = message_link(payload.guild_id, payload.channel_id, payload.message_id)
        log_context = {'user_id': payload.user_id, 'guild_id': payload.guild_id, 'message_id': payload.message_id}
        try:
            result, competition = await self.participation.join(link, str(payload.emoji), payload.member.display_name)
        except Exception:
            logger.error("Failed to process competition reaction", extra=log_context, exc_info=True)
            return

        if result in (JoinResult.NOT_A_COMPETITION, JoinResult.WRONG_EMOJI):
            return
        if result in (JoinResult.CLOSED, JoinResult.MISSING_CODE):
            logger.info("Reaction did not add participant", extra={**log_context, 'result': result.name})
            return

        await self.lifecycle.announcer.notify_participant(payload.member, competition, joined=result is JoinResult.JOINED)


async def setup(bot: commands.Bot):
    await bot.add_cog(CompetitionEvents(bot))
