# clerk/modules/competition_lifecycle/cogs/competition_commands.py

import discord
from discord.ext import commands
from discord import app_commands
import logging
from datetime import datetime, timezone
from typing import Optional
from clerk.modules.competition_lifecycle.errors import CompetitionError
from clerk.modules.competition_lifecycle.models import CompetitionStatus, CompetitionType
from clerk.modules.competition_lifecycle.services.lifecycle_service import CompetitionLifecycleService
from clerk.modules.competition_lifecycle.services.timing import competition_timezone, parse_starting_hour
from clerk.modules.competition_lifecycle.services.wom_client import WiseOldManError, competition_url

logger = logging.getLogger(__name__)

TYPE_CHOICES = [
    app_commands.Choice(name=CompetitionType.SKILL.value, value="SKILL"),
    app_commands.Choice(name=CompetitionType.BOSS.value, value="BOSS"),
]
STATUS_LABELS = {
    CompetitionStatus.POLL_STARTED: "📊 Poll running",
    CompetitionStatus.TIEBREAKER_POLL_STARTED: "⚖️ Tiebreaker running",
    CompetitionStatus.POLL_FINISHED: "🗓️ Scheduled",
    CompetitionStatus.SENT_REMINDER: "⏰ Starting soon",
    CompetitionStatus.COMPETITION_STARTED: "🏃 In progress",
    CompetitionStatus.COMPETITION_FINISHED: "🏁 Finished",
}


def parse_local_datetime(value: str) -> Optional[datetime]:
    """'YYYY-MM-DD HH:MM' in the competition timezone, returned in UTC."""
    try:
        naive = datetime.strptime(value.strip(), "%Y-%m-%d %H:%M")
    except ValueError:
        return None
    return naive.replace(tzinfo=competition_timezone()).astimezone(timezone.utc)


def parse_csv(value: Optional[str]) -> Optional[list[str]]:
    if value is None:
        return None
    return [item.strip().lower() for item in value.split(",") if item.strip()]


@app_commands.default_permissions(manage_guild=True)
@app_commands.guild_only()
class CompetitionCommands(commands.GroupCog, group_name="competition", group_description="Manage clan competitions"):
    """Administrative commands for the competition lifecycle."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.lifecycle: CompetitionLifecycleService = bot.lifecycle_service
        super().__init__()

    async def _run(self, interaction: discord.Interaction, command: str, action):
        """Run `action`, turning domain and API errors into an ephemeral reply."""
        log_context = {'user_id': interaction.user.id, 'guild_id': interaction.guild_id, 'command': command}
        try:
            return await action()
        except CompetitionError as e:
            logger.info("Competition command rejected", extra={**log_context, 'reason': str(e)})
            await interaction.followup.send(f"❌ {e}", ephemeral=True)
        except WiseOldManError as e:
            logger.warning("Wise Old Man rejected a command", extra={**log_context, 'status_code': e.status_code})
            await interaction.followup.send(f"❌ Wise Old Man error: {e.message}", ephemeral=True)
        except Exception:
            logger.error("Competition command failed", extra=log_context, exc_info=True)
            await interaction.followup.send("⚙️ An unexpected error occurred, please try again later.", ephemeral=True)
        return None

    # ----------------------------------------------------------------
    # Polls
    # ----------------------------------------------------------------

    @app_commands.command(name="host", description="Start a poll for the next Skill or Boss of the Week")
    @app_commands.describe(
        competition_type="Skill of the Week or Boss of the Week",
        starting_hour="Start hour of the competition, e.g. 12:00pm (defaults to the guild setting)",
        poll_days="How many days the poll stays open",
    )
    @app_commands.choices(competition_type=TYPE_CHOICES)
    async def host(
        self,
        interaction: discord.Interaction,
        competition_type: app_commands.Choice[str],
        starting_hour: Optional[str] = None,
        poll_days: app_commands.Range[int, 1, 32] = 7,
    ):
        await interaction.response.defer(ephemeral=True)
        if starting_hour and parse_starting_hour(starting_hour) is None:
            await interaction.followup.send("❌ Invalid starting hour. Use a format like `12:00pm` or `15:00`.", ephemeral=True)
            return

        competition = await self._run(interaction, "host", lambda: self.lifecycle.host_competition(
            interaction.guild_id, CompetitionType[competition_type.value], starting_hour, poll_days
        ))
        if competition:
            await interaction.followup.send(f"✅ {competition.type.value} poll started.", ephemeral=True)

    @app_commands.command(name="end-poll", description="Close a running competition poll early")
    @app_commands.describe(message_id="Message ID of the poll")
    async def end_poll(self, interaction: discord.Interaction, message_id: str):
        await interaction.response.defer(ephemeral=True)
        if not message_id.isdigit():
            await interaction.followup.send("❌ The message ID must be a number.", ephemeral=True)
            return

        ended = await self._run(interaction, "end-poll", lambda: self.lifecycle.end_poll(interaction.guild_id, int(message_id)))
        if ended:
            await interaction.followup.send("✅ Poll ended. The result will be processed shortly.", ephemeral=True)
        elif ended is False:
            await interaction.followup.send("🤔 That poll is already closed or could not be found.", ephemeral=True)

    # ----------------------------------------------------------------
    # Competitions
    # ----------------------------------------------------------------

    @app_commands.command(name="edit-time", description="Change the start and end time of a competition")
    @app_commands.describe(
        competition_id="Wise Old Man competition ID",
        starts_at="New start, YYYY-MM-DD HH:MM (competition timezone)",
        ends_at="New end, YYYY-MM-DD HH:MM (competition timezone)",
    )
    async def edit_time(self, interaction: discord.Interaction, competition_id: int, starts_at: str, ends_at: str):
        await interaction.response.defer(ephemeral=True)
        new_starts_at, new_ends_at = parse_local_datetime(starts_at), parse_local_datetime(ends_at)
        if new_starts_at is None or new_ends_at is None:
            await interaction.followup.send("❌ Use the format `YYYY-MM-DD HH:MM` for both times.", ephemeral=True)
            return

        competition = await self._run(interaction, "edit-time", lambda: self.lifecycle.cancel_and_reschedule(
            competition_id, new_starts_at, new_ends_at, guild_id=interaction.guild_id
        ))
        if competition:
            await interaction.followup.send(
                f"✅ **{competition.title}** now runs from <t:{int(new_starts_at.timestamp())}:F> "
                f"to <t:{int(new_ends_at.timestamp())}:F>.",
                ephemeral=True
            )

    @app_commands.command(name="link", description="Link an existing Wise Old Man competition to an announcement")
    @app_commands.describe(
        competition_id="Wise Old Man competition ID",
        message_link="Link to the announcement message",
        emoji="Reaction players use to join",
        verification_code="Verification code, required unless the competition is already known",
    )
    async def link(
        self,
        interaction: discord.Interaction,
        competition_id: int,
        message_link: str,
        emoji: str,
        verification_code: Optional[str] = None,
    ):
        await interaction.response.defer(ephemeral=True)
        competition = await self._run(interaction, "link", lambda: self.lifecycle.link_competition(
            interaction.guild_id, competition_id, message_link, emoji.strip(), verification_code
        ))
        if competition:
            await interaction.followup.send(
                f"✅ Linked [**{competition.title}**]({competition_url(competition_id)}) to {message_link}.",
                ephemeral=True
            )

    @app_commands.command(name="unlink", description="Stop tracking a competition")
    @app_commands.describe(competition_id="Wise Old Man competition ID")
    async def unlink(self, interaction: discord.Interaction, competition_id: int):
        await interaction.response.defer(ephemeral=True)
        competition = await self._run(interaction, "unlink", lambda: self.lifecycle.unlink_competition(
            interaction.guild_id, competition_id
        ))
        if competition:
            await interaction.followup.send(f"✅ **{competition.title}** is no longer tracked.", ephemeral=True)

    @app_commands.command(name="list", description="Show the competitions tracked in this server")
    async def list_competitions(self, interaction: discord.Interaction):
        await interaction.response.defer(ephemeral=True)
        competitions = await self._run(interaction, "list", lambda: self.lifecycle.list_competitions(interaction.guild_id))
        if competitions is None:
            return
        if not competitions:
            await interaction.followup.send("No competitions are being tracked.", ephemeral=True)
            return

        embed = discord.Embed(title="Tracked competitions", color=0x4860ff)
        for competition in competitions[:25]:
            if competition.is_resolved:
                name = f"{competition.title} (#{competition.competition_id})"
                value = (f"{STATUS_LABELS[competition.status]}\n"
                         f"<t:{int(competition.starts_at.timestamp())}:f> → <t:{int(competition.ends_at.timestamp())}:f>")
            else:
                name = f"{competition.type.value} poll"
                value = f"{STATUS_LABELS[competition.status]} (message {competition.active_poll_message_id})"
            embed.add_field(name=name, value=value, inline=False)
        await interaction.followup.send(embed=embed, ephemeral=True)

    # ----------------------------------------------------------------
    # Settings
    # ----------------------------------------------------------------

    @app_commands.command(name="settings", description="Update the competition settings of this server")
    @app_commands.describe(
        events_role="Role pinged for polls and announcements",
        skill_blacklist="Comma-separated skill keys never offered in polls",
        boss_blacklist="Comma-separated boss keys never offered in polls",
        days_after_poll="Days between the poll result and the competition start",
        tiebreaker_days="How many days a tiebreaker poll stays open",
        starting_hour="Default start hour, e.g. 12:00pm",
    )
    async def settings(
        self,
        interaction: discord.Interaction,
        events_role: Optional[discord.Role] = None,
        skill_blacklist: Optional[str] = None,
        boss_blacklist: Optional[str] = None,
        days_after_poll: Optional[app_commands.Range[int, 0, 30]] = None,
        tiebreaker_days: Optional[app_commands.Range[int, 1, 7]] = None,
        starting_hour: Optional[str] = None,
    ):
        await interaction.response.defer(ephemeral=True)
        if starting_hour and parse_starting_hour(starting_hour) is None:
            await interaction.followup.send("❌ Invalid starting hour. Use a format like `12:00pm` or `15:00`.", ephemeral=True)
            return

        values = {
            'clan_events_role_id': events_role.id if events_role else None,
            'skill_blacklist': parse_csv(skill_blacklist),
            'boss_blacklist': parse_csv(boss_blacklist),
            'days_after_poll': days_after_poll,
            'tiebreaker_poll_duration': tiebreaker_days,
            'default_starting_hour': starting_hour,
        }
        values = {key: value for key, value in values.items() if value is not None}

        current = await self._run(interaction, "settings", lambda: self.lifecycle.update_settings(interaction.guild_id, **values))
        if current is None:
            return

        embed = discord.Embed(title="Competition settings", color=0x4860ff)
        embed.add_field(name="Events role", value=f"<@&{current.clan_events_role_id}>" if current.clan_events_role_id else "not set")
        embed.add_field(name="Days after poll", value=str(current.days_after_poll))
        embed.add_field(name="Tiebreaker days", value=str(current.tiebreaker_poll_duration))
        embed.add_field(name="Starting hour", value=current.default_starting_hour)
        embed.add_field(name="Skill blacklist", value=", ".join(current.skill_blacklist) or "none", inline=False)
        embed.add_field(name="Boss blacklist", value=", ".join(current.boss_blacklist) or "none", inline=False)
        embed.add_field(name="Recently chosen", value=", ".join(current.last_chosen_metrics) or "none", inline=False)
        await interaction.followup.send(embed=embed, ephemeral=True)

    @app_commands.command(name="channels", description="Set the channels used for polls and announcements")
    @app_commands.describe(
        announcements="Channel for competition announcements",
        event_planning="Channel for competition polls",
    )
    async def channels(
        self,
        interaction: discord.Interaction,
        announcements: Optional[discord.TextChannel] = None,
        event_planning: Optional[discord.TextChannel] = None,
    ):
        await interaction.response.defer(ephemeral=True)
        current = await self._run(interaction, "channels", lambda: self.lifecycle.set_channels(
            interaction.guild_id,
            announcements_channel_id=announcements.id if announcements else None,
            event_planning_channel_id=event_planning.id if event_planning else None,
        ))
        if current is None:
            return

        def mention(channel_id):
            return f"<#{channel_id}>" if channel_id else "not set"

        await interaction.followup.send(
            f"✅ Announcements: {mention(current.announcements_channel_id)}\n"
            f"✅ Event planning: {mention(current.event_planning_channel_id)}",
            ephemeral=True
        )


async def setup(bot: commands.Bot):
    await bot.add_cog(CompetitionCommands(bot))
