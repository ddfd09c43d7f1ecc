# clerk/modules/competition_lifecycle/services/announcement_service.py

import discord
import logging
from typing import Optional
from clerk.core.utils import retry_on_transient_error
from clerk.modules.competition_lifecycle.models import Competition, CompetitionType
from clerk.modules.competition_lifecycle.services.wom_client import competition_url

logger = logging.getLogger(__name__)

MAIN_COLOR = 0x4860ff
FALLBACK_REACTION = "✅"
MEDALS = ("🥇", "🥈", "🥉")


def rank_winners(details: dict, limit: int = 3) -> list[tuple[str, int]]:
    """Top participants by gained progress, ignoring anyone who gained nothing."""
    participations = details.get('participations') or []
    gained = [
        (p['player']['displayName'], p['progress']['gained'])
        for p in participations
        if p.get('progress') and p['progress'].get('gained', 0) > 0
    ]
    gained.sort(key=lambda item: item[1], reverse=True)
    return gained[:limit]


def format_winners(competition_type: CompetitionType, winners: list[tuple[str, int]]) -> str:
    if not winners:
        return "No participants gained progress during this competition."

    lines = []
    for medal, (name, gained) in zip(MEDALS, winners):
        if competition_type is CompetitionType.SKILL:
            lines.append(f"{medal} {name} - {gained:,} XP")
        else:
            label = "kill" if gained == 1 else "kills"
            lines.append(f"{medal} {name} - {gained:,} {label}")
    return "\n".join(lines)


class AnnouncementService:
    """
    Sends every public lifecycle message. Channel and role IDs come from the
    caller; a missing channel is reported by returning None/False, never raised.
    """

    def __init__(self, bot: discord.Client):
        self.bot = bot
        self._emoji_cache: Optional[dict[str, discord.Emoji]] = None

    async def find_emoji(self, name: str) -> Optional[discord.Emoji]:
        """Look up one of the bot's application emojis by name."""
        if self._emoji_cache is None:
            try:
                emojis = await self.bot.fetch_application_emojis()
            except discord.HTTPException:
                logger.warning("Could not fetch application emojis", exc_info=True)
                return None
            self._emoji_cache = {emoji.name: emoji for emoji in emojis}
        return self._emoji_cache.get(name)

    async def _get_channel(self, channel_id: Optional[int]):
        if not channel_id:
            return None
        try:
            return self.bot.get_channel(channel_id) or await self.bot.fetch_channel(channel_id)
        except (discord.NotFound, discord.Forbidden):
            logger.warning("Announcement channel unavailable", extra={'channel_id': channel_id})
            return None

    async def _send(self, channel_id: Optional[int], operation: str, **kwargs) -> Optional[discord.Message]:
        channel = await self._get_channel(channel_id)
        if channel is None:
            logger.warning("No channel to announce in, skipping", extra={'operation': operation, 'channel_id': channel_id})
            return None
        return await retry_on_transient_error(lambda: channel.send(**kwargs), operation)

    @staticmethod
    def _ping(role_id: Optional[int]) -> str:
        return f"<@&{role_id}>\n" if role_id else ""

    @staticmethod
    def _linked_title(competition: Competition) -> str:
        emoji = competition.emoji or ""
        return f"{emoji} [**{competition.title}**]({competition_url(competition.competition_id)}) {emoji}".strip()

    async def announce_poll(self, channel_id: int, role_id: Optional[int], competition_type: CompetitionType, tiebreaker: bool = False):
        if not role_id:
            logger.warning("No events role configured, skipping poll ping", extra={'channel_id': channel_id})
            return None
        emoji = await self.find_emoji("skills" if competition_type is CompetitionType.SKILL else "combat")
        emoji_str = str(emoji) if emoji else "📊"
        kind = "A tiebreaker poll" if tiebreaker else "A new competition poll"
        content = (
            f"{self._ping(role_id)}{emoji_str} {kind} has started! {emoji_str}\n"
            f"Vote now for the next **{competition_type.value}**!"
        )
        return await self._send(channel_id, "Announce competition poll", content=content)

    async def announce_competition(
        self,
        channel_id: Optional[int],
        role_id: Optional[int],
        competition: Competition,
        emoji_name: str,
    ) -> tuple[Optional[str], Optional[str]]:
        """
        Publish the new competition and react with its opt-in emoji.
        Returns (message link, emoji) or (None, None) when nothing was sent.
        """
        emoji = await self.find_emoji(emoji_name)
        reaction = str(emoji) if emoji else FALLBACK_REACTION
        start_ts = int(competition.starts_at.timestamp())
        content = (
            f"{self._ping(role_id)}{reaction} The next competition will be "
            f"[**{competition.title}**]({competition_url(competition.competition_id)})! {reaction}\n"
            f"It will begin <t:{start_ts}:F>.\n"
            f"React to this message to be added into the competition!"
        )
        message = await self._send(channel_id, "Announce new competition", content=content)
        if message is None:
            return None, None

        await retry_on_transient_error(lambda: message.add_reaction(reaction), "React to competition announcement")
        return message.jump_url, reaction

    async def send_reminder(self, channel_id: Optional[int], role_id: Optional[int], competition: Competition) -> bool:
        content = f"{self._ping(role_id)}⏰ Reminder: The competition {self._linked_title(competition)} starts in 24 hours!"
        return await self._send(channel_id, "Send 24h reminder", content=content) is not None

    async def send_notice(self, channel_id: Optional[int], role_id: Optional[int], competition: Competition, starting: bool) -> bool:
        verb = "start" if starting else "end"
        when = "before the competition begins" if starting else "before the competition ends"
        content = (
            f"{self._ping(role_id)}The competition {self._linked_title(competition)} will {verb} in **30 minutes**!\n"
            f"Please make sure to log out and update your Wise Old Man profile {when}."
        )
        return await self._send(channel_id, f"Send pre-{verb} notice", content=content) is not None

    async def announce_start(self, channel_id: Optional[int], role_id: Optional[int], competition: Competition) -> bool:
        content = (
            f"{self._ping(role_id)}{self._linked_title(competition)} has officially started!\n\n"
            f"Good luck to everyone competing!"
        )
        return await self._send(channel_id, "Announce competition start", content=content) is not None

    async def announce_results(
        self,
        channel_id: Optional[int],
        role_id: Optional[int],
        competition: Competition,
        winners: list[tuple[str, int]],
    ) -> bool:
        emoji = competition.emoji or ""
        embed = discord.Embed(
            title=f"🏆 Winners of {competition.title}",
            url=competition_url(competition.competition_id),
            description=format_winners(competition.type, winners),
            color=MAIN_COLOR,
        )
        content = f"{self._ping(role_id)}{emoji} **{competition.title}** {emoji} has finished!"
        return await self._send(channel_id, "Announce competition results", content=content, embed=embed) is not None

    async def notify_participant(self, user: discord.abc.User, competition: Competition, joined: bool):
        if joined:
            content = (
                f"You've been added to the competition \"{competition.title}\".\n"
                f"View it here: {competition_url(competition.competition_id)}"
            )
        else:
            content = f"There was an error adding you to \"{competition.title}\". Please try again later."
        try:
            await user.send(content)
        except discord.Forbidden:
            logger.warning("Cannot DM participant, DMs are closed", extra={'user_id': user.id})
