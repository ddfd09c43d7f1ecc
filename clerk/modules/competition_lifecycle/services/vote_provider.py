# clerk/modules/competition_lifecycle/services/vote_provider.py

import discord
import logging
from datetime import timedelta
from typing import Optional
from clerk.core.utils import retry_on_transient_error
from clerk.modules.competition_lifecycle.models import PollOption, VoteSnapshot

logger = logging.getLogger(__name__)

# Discord caps native polls at 32 days
MAX_POLL_HOURS = 32 * 24


class DiscordPollProvider:
    """Opens Discord native polls and reads their results."""

    def __init__(self, bot: discord.Client):
        self.bot = bot

    async def _get_channel(self, channel_id: int):
        return self.bot.get_channel(channel_id) or await self.bot.fetch_channel(channel_id)

    async def open_vote(
        self,
        channel_id: int,
        question: str,
        options: list[PollOption],
        duration_hours: int,
        allow_multiselect: bool = False,
    ) -> int:
        """Post a poll and return its message ID, which doubles as the vote ID."""
        channel = await self._get_channel(channel_id)
        hours = min(MAX_POLL_HOURS, max(1, int(duration_hours)))
        poll = discord.Poll(question=question, duration=timedelta(hours=hours), multiple=allow_multiselect)
        for option in options:
            poll.add_answer(text=option.label, emoji=option.emoji)

        message = await retry_on_transient_error(
            lambda: channel.send(poll=poll),
            f"Open poll in channel {channel_id}"
        )
        logger.info(
            "Opened poll",
            extra={'channel_id': channel_id, 'message_id': message.id, 'options': len(options), 'hours': hours}
        )
        return message.id

    async def fetch_vote(self, channel_id: int, vote_id: int) -> Optional[VoteSnapshot]:
        """
        Current state of a poll, or None if the message or its poll cannot be read.
        Callers treat None as "not finalized yet".
        """
        log_context = {'channel_id': channel_id, 'message_id': vote_id}
        try:
            channel = await self._get_channel(channel_id)
            message = await retry_on_transient_error(
                lambda: channel.fetch_message(vote_id),
                f"Fetch poll message {vote_id}"
            )
        except discord.NotFound:
            logger.warning("Poll message not found", extra=log_context)
            return None
        except discord.Forbidden:
            logger.warning("Missing permissions to read poll message", extra=log_context)
            return None
        except discord.HTTPException:
            logger.warning("Failed to fetch poll message", extra=log_context, exc_info=True)
            return None

        poll = message.poll
        if poll is None:
            logger.warning("Message carries no poll", extra=log_context)
            return None

        options = [
            PollOption(label=answer.text, votes=answer.vote_count, emoji=answer.emoji)
            for answer in poll.answers
        ]
        return VoteSnapshot(vote_id=vote_id, is_finalized=poll.is_finalized(), options=options)

    async def is_finalized(self, channel_id: int, vote_id: int) -> bool:
        snapshot = await self.fetch_vote(channel_id, vote_id)
        return bool(snapshot and snapshot.is_finalized)

    async def tally(self, channel_id: int, vote_id: int) -> list[tuple[str, int]]:
        snapshot = await self.fetch_vote(channel_id, vote_id)
        return snapshot.tally if snapshot else []

    async def end_vote(self, channel_id: int, vote_id: int) -> bool:
        """Close a running poll early. Returns False if it cannot be found or is already closed."""
        try:
            channel = await self._get_channel(channel_id)
            message = await channel.fetch_message(vote_id)
        except (discord.NotFound, discord.Forbidden):
            logger.warning("Cannot end poll, message unavailable", extra={'channel_id': channel_id, 'message_id': vote_id})
            return False

        if message.poll is None or message.poll.is_finalized():
            return False
        await message.end_poll()
        logger.info("Poll ended early", extra={'channel_id': channel_id, 'message_id': vote_id})
        return True
