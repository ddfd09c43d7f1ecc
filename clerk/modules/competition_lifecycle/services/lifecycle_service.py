# clerk/modules/competition_lifecycle/services/lifecycle_service.py

import functools
import logging
import os
import random
from datetime import datetime
from typing import Callable, Optional
import discord
import httpx
from clerk.core.utils import KeyedLocks
from clerk.modules.competition_lifecycle.errors import (
    CompetitionError, CompetitionNotFound, MissingChannelConfiguration,
    MissingVerificationCode, NotEnoughPollOptions, UnknownMetric,
)
from clerk.modules.competition_lifecycle.models import (
    ChannelSettings, Competition, CompetitionSettings, CompetitionStatus, CompetitionType, PollOption,
)
from clerk.modules.competition_lifecycle.services.announcement_service import AnnouncementService, rank_winners
from clerk.modules.competition_lifecycle.services.job_scheduler import JobScheduler
from clerk.modules.competition_lifecycle.services.metrics import (
    ALL_METRICS, SKILL_METRICS, build_poll_options, emoji_name_for, resolve_metric_key,
)
from clerk.modules.competition_lifecycle.services.poll_evaluator import PollOutcome, PollOutcomeKind, evaluate_poll
from clerk.modules.competition_lifecycle.services.state_store import CompetitionStore
from clerk.modules.competition_lifecycle.services.timing import (
    JobKind, all_job_names, compute_competition_window, derive_status, job_due_at, plan_jobs,
)
from clerk.modules.competition_lifecycle.services.vote_provider import DiscordPollProvider
from clerk.modules.competition_lifecycle.services.wom_client import WiseOldManClient, WiseOldManError

logger = logging.getLogger(__name__)

POLL_OPTION_COUNT = 10
RESOLVED_OPEN_STATUSES = (
    CompetitionStatus.POLL_FINISHED,
    CompetitionStatus.SENT_REMINDER,
    CompetitionStatus.COMPETITION_STARTED,
)
# failures of the external service that leave the row as it was, to be retried later
EXTERNAL_ERRORS = (WiseOldManError, httpx.HTTPError)


def _default_participants() -> list[str]:
    raw = os.getenv('COMPETITION_DEFAULT_PARTICIPANTS', '')
    return [name.strip() for name in raw.split(',') if name.strip()]


class CompetitionLifecycleService:
    """
    Drives a competition from poll to results.

    Every mutation of a competition happens under that competition's lock and
    on a freshly read row, so a firing timer, a poll result and an admin edit
    never interleave on the same competition.
    """

    def __init__(
        self,
        store: CompetitionStore,
        wom: WiseOldManClient,
        votes: DiscordPollProvider,
        announcer: AnnouncementService,
        scheduler: JobScheduler,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[random.Random] = None,
        default_participants: Optional[list[str]] = None,
    ):
        self.store = store
        self.wom = wom
        self.votes = votes
        self.announcer = announcer
        self.scheduler = scheduler
        self.clock = clock or scheduler.clock
        self.rng = rng or random.Random()
        self.default_participants = default_participants if default_participants is not None else _default_participants()
        self.locks = KeyedLocks()
        self._handlers = {
            JobKind.REMINDER: self._send_reminder,
            JobKind.PRE_START: self._send_pre_start_notice,
            JobKind.PRE_END: self._send_pre_end_notice,
            JobKind.START: self._start_competition,
            JobKind.END: self._finish_competition,
        }

    async def _context(self, guild_id: int) -> tuple[CompetitionSettings, ChannelSettings]:
        return await self.store.get_settings(guild_id), await self.store.get_channels(guild_id)

    # ----------------------------------------------------------------
    # Poll launch
    # ----------------------------------------------------------------

    async def host_competition(
        self,
        guild_id: int,
        competition_type: CompetitionType,
        starting_hour: Optional[str] = None,
        poll_days: int = 7,
    ) -> Competition:
        """Open a new metric poll in the event-planning channel and start tracking it."""
        settings, channels = await self._context(guild_id)
        if not channels.event_planning_channel_id:
            raise MissingChannelConfiguration(guild_id, "event planning")

        options = build_poll_options(competition_type, settings, POLL_OPTION_COUNT, self.rng)
        if len(options) < 2:
            raise NotEnoughPollOptions(len(options))

        for option in options:
            option.emoji = await self.announcer.find_emoji(emoji_name_for(competition_type, option.key))

        poll_message_id = await self.votes.open_vote(
            channels.event_planning_channel_id,
            f"Vote for the next {competition_type.value}!",
            options,
            duration_hours=max(1, int(poll_days * 24)),
            allow_multiselect=True,
        )

        try:
            await self.announcer.announce_poll(channels.event_planning_channel_id, settings.clan_events_role_id, competition_type)
        except discord.HTTPException:
            logger.error("Failed to announce the new poll", extra={'guild_id': guild_id}, exc_info=True)

        return await self.store.insert_poll(
            guild_id, competition_type, starting_hour or settings.default_starting_hour, poll_message_id
        )

    async def end_poll(self, guild_id: int, poll_message_id: int) -> bool:
        """Close a running poll early; the finalized update then arrives through on_vote_finalized."""
        competition = await self.store.get_by_poll_message_id(poll_message_id)
        if competition is None or competition.guild_id != guild_id:
            raise CompetitionNotFound(poll_message_id)
        channels = await self.store.get_channels(guild_id)
        if not channels.event_planning_channel_id:
            raise MissingChannelConfiguration(guild_id, "event planning")
        return await self.votes.end_vote(channels.event_planning_channel_id, poll_message_id)

    # ----------------------------------------------------------------
    # Poll resolution
    # ----------------------------------------------------------------

    async def on_vote_finalized(self, poll_message_id: int) -> Optional[PollOutcome]:
        """Entry point for a finalized poll (original or tiebreaker)."""
        competition = await self.store.get_by_poll_message_id(poll_message_id)
        if competition is None:
            logger.debug("Finalized poll is not a competition poll", extra={'message_id': poll_message_id})
            return None

        row_id = competition.id
        async with self.locks(row_id):
            competition = await self.store.get_by_row_id(row_id)
            if competition is None or competition.is_resolved:
                return None
            if competition.active_poll_message_id != poll_message_id:
                logger.info(
                    "Ignoring result of a superseded poll",
                    extra={'row_id': competition.id, 'message_id': poll_message_id}
                )
                return None
            outcome = await self._process_poll(competition)
        if outcome is not None and outcome.kind is PollOutcomeKind.ABSTAINED:
            self.locks.discard(row_id)
        return outcome

    async def _process_poll(self, competition: Competition) -> Optional[PollOutcome]:
        settings, channels = await self._context(competition.guild_id)
        log_context = {'row_id': competition.id, 'guild_id': competition.guild_id,
                       'message_id': competition.active_poll_message_id, 'status': competition.status.name}

        if not channels.event_planning_channel_id:
            logger.warning("No event planning channel configured, cannot read poll", extra=log_context)
            return None

        snapshot = await self.votes.fetch_vote(channels.event_planning_channel_id, competition.active_poll_message_id)
        if snapshot is None:
            logger.warning("Poll unavailable, leaving competition as is", extra=log_context)
            return None
        if not snapshot.is_finalized:
            return None

        logger.info("Processing finalized poll", extra=log_context)
        outcome = evaluate_poll(snapshot.options, competition.status, self.rng)

        if outcome.kind is PollOutcomeKind.ABSTAINED:
            await self.store.delete_row(competition)
            logger.info("Nobody voted, competition removed", extra=log_context)
        elif outcome.kind is PollOutcomeKind.TIE:
            await self._open_tiebreaker(competition, outcome, settings, channels)
        else:
            if outcome.kind is PollOutcomeKind.DRAWN:
                logger.info(
                    "Tiebreaker tied again, winner drawn at random",
                    extra={**log_context, 'tied': [o.label for o in outcome.tied], 'winner': outcome.winner.label}
                )
            await self._create_competition(competition, outcome.winner, settings, channels)
        return outcome

    async def _open_tiebreaker(
        self,
        competition: Competition,
        outcome: PollOutcome,
        settings: CompetitionSettings,
        channels: ChannelSettings,
    ):
        options = [PollOption(label=option.label, emoji=option.emoji) for option in outcome.tied]
        tiebreaker_id = await self.votes.open_vote(
            channels.event_planning_channel_id,
            f"Tiebreaker: Vote for the next {competition.type.value}!",
            options,
            duration_hours=settings.tiebreaker_poll_duration * 24,
            allow_multiselect=False,
        )
        competition.tiebreaker_poll_message_id = tiebreaker_id
        competition.status = CompetitionStatus.TIEBREAKER_POLL_STARTED
        await self.store.upsert(competition)
        logger.info(
            "Poll tied, tiebreaker opened",
            extra={'row_id': competition.id, 'tiebreaker_message_id': tiebreaker_id, 'tied': [o.label for o in options]}
        )

        try:
            await self.announcer.announce_poll(
                channels.event_planning_channel_id, settings.clan_events_role_id, competition.type, tiebreaker=True
            )
        except discord.HTTPException:
            logger.error("Failed to announce the tiebreaker poll", extra={'row_id': competition.id}, exc_info=True)

    async def _create_competition(
        self,
        competition: Competition,
        winner: PollOption,
        settings: CompetitionSettings,
        channels: ChannelSettings,
    ) -> Optional[Competition]:
        """Create the Wise Old Man competition for a poll winner, announce it and arm its timers."""
        if competition.is_resolved:
            return competition

        log_context = {'row_id': competition.id, 'guild_id': competition.guild_id, 'winner': winner.label}
        metric = winner.key or resolve_metric_key(winner.label)
        if metric is None:
            logger.error("Winning option does not match any metric, leaving competition stale", extra=log_context)
            return None

        starts_at, ends_at = compute_competition_window(
            self.clock(), competition.starting_hour or settings.default_starting_hour, settings.days_after_poll
        )
        try:
            created = await self.wom.create_competition(
                title=f"{competition.type.value}: {winner.label}",
                metric=metric,
                starts_at=starts_at,
                ends_at=ends_at,
                participants=self.default_participants,
            )
        except EXTERNAL_ERRORS:
            logger.error("Creating the Wise Old Man competition failed, will retry on the next pass",
                         extra=log_context, exc_info=True)
            return None

        competition.competition_id = created.competition_id
        competition.title = created.title
        competition.metric = metric
        competition.verification_code = created.verification_code
        competition.starts_at = starts_at
        competition.ends_at = ends_at
        competition.status = CompetitionStatus.POLL_FINISHED
        await self.store.upsert(competition)
        logger.info(
            "Competition created",
            extra={**log_context, 'competition_id': created.competition_id,
                   'starts_at': starts_at.isoformat(), 'ends_at': ends_at.isoformat()}
        )

        if not channels.announcements_channel_id:
            logger.warning("No announcements channel configured, competition not announced", extra=log_context)
        else:
            try:
                message_link, emoji = await self.announcer.announce_competition(
                    channels.announcements_channel_id,
                    settings.clan_events_role_id,
                    competition,
                    emoji_name_for(competition.type, metric),
                )
                if message_link:
                    competition.message_link = message_link
                    competition.emoji = emoji
                    await self.store.upsert(competition)
            except discord.HTTPException:
                logger.error("Failed to announce the new competition", extra=log_context, exc_info=True)

        # a new competition resets the rolling exclusion list
        await self.store.clear_chosen_metrics(competition.guild_id)
        await self._reconcile_and_arm(competition, allow_rewind=False)
        return competition

    # ----------------------------------------------------------------
    # Timers
    # ----------------------------------------------------------------

    def _arm(self, competition: Competition, now: datetime) -> list[str]:
        armed = []
        for job in plan_jobs(competition, now):
            callback = functools.partial(self.run_job, competition.id, job.kind)
            if self.scheduler.schedule(job.name, job.when, callback):
                armed.append(job.name)
        return armed

    async def _reconcile_and_arm(self, competition: Competition, allow_rewind: bool):
        """
        Bring the status in line with the competition's times, then arm whatever
        timers are still ahead. An end time already in the past runs the end
        handler right away. Caller holds the competition's lock.
        """
        now = self.clock()
        target = derive_status(competition.starts_at, competition.ends_at, now)

        if target is CompetitionStatus.COMPETITION_FINISHED:
            if competition.status is not CompetitionStatus.COMPETITION_FINISHED:
                logger.info("Competition end is overdue, finishing now", extra={'competition_id': competition.competition_id})
                await self._finish_competition(competition)
        elif target != competition.status and (allow_rewind or target > competition.status):
            await self.store.update_status(competition, target)

        self._arm(competition, now)

    async def run_job(self, row_id: int, kind: JobKind):
        """Timer callback: re-read the competition and run the handler for `kind`."""
        async with self.locks(row_id):
            competition = await self.store.get_by_row_id(row_id)
            if competition is None:
                logger.warning("Timer fired for a competition that no longer exists", extra={'row_id': row_id, 'job': kind.value})
                return
            # the times may have moved while this callback waited for the lock
            now = self.clock()
            due_at = job_due_at(competition, kind)
            if due_at is not None and now < due_at:
                logger.info("Timer fired before its competition time, re-arming", extra={
                    'competition_id': competition.competition_id, 'job': kind.value, 'due_at': due_at.isoformat(),
                })
                self._arm(competition, now)
                return
            await self._handlers[kind](competition)

    async def _send_reminder(self, competition: Competition):
        if competition.status is not CompetitionStatus.POLL_FINISHED:
            logger.debug("Reminder not due for current status", extra={'competition_id': competition.competition_id})
            return
        settings, channels = await self._context(competition.guild_id)
        await self.announcer.send_reminder(channels.announcements_channel_id, settings.clan_events_role_id, competition)
        await self.store.update_status(competition, CompetitionStatus.SENT_REMINDER)

    async def _send_pre_start_notice(self, competition: Competition):
        if competition.status not in (CompetitionStatus.POLL_FINISHED, CompetitionStatus.SENT_REMINDER):
            return
        settings, channels = await self._context(competition.guild_id)
        await self.announcer.send_notice(channels.announcements_channel_id, settings.clan_events_role_id, competition, starting=True)

    async def _send_pre_end_notice(self, competition: Competition):
        if competition.status is CompetitionStatus.COMPETITION_FINISHED:
            logger.info("Competition already finished, pre-end notice suppressed",
                        extra={'competition_id': competition.competition_id})
            return
        settings, channels = await self._context(competition.guild_id)
        await self.announcer.send_notice(channels.announcements_channel_id, settings.clan_events_role_id, competition, starting=False)

    async def _start_competition(self, competition: Competition):
        if competition.status >= CompetitionStatus.COMPETITION_STARTED:
            return
        settings, channels = await self._context(competition.guild_id)
        await self.announcer.announce_start(channels.announcements_channel_id, settings.clan_events_role_id, competition)
        await self.store.update_status(competition, CompetitionStatus.COMPETITION_STARTED)

    async def _finish_competition(self, competition: Competition):
        if competition.status is CompetitionStatus.COMPETITION_FINISHED:
            return
        log_context = {'competition_id': competition.competition_id, 'guild_id': competition.guild_id}
        try:
            details = await self.wom.get_competition_details(competition.competition_id)
        except EXTERNAL_ERRORS:
            logger.error("Could not fetch competition results, will retry on the next pass",
                         extra=log_context, exc_info=True)
            return

        winners = rank_winners(details)
        settings, channels = await self._context(competition.guild_id)
        await self.announcer.announce_results(channels.announcements_channel_id, settings.clan_events_role_id, competition, winners)
        await self.store.update_status(competition, CompetitionStatus.COMPETITION_FINISHED)
        if competition.metric:
            await self.store.remember_chosen_metric(competition.guild_id, competition.metric)
        logger.info("Competition finished", extra={**log_context, 'winners': [name for name, _ in winners]})

    # ----------------------------------------------------------------
    # Administrative operations
    # ----------------------------------------------------------------

    async def cancel_and_reschedule(
        self,
        competition_id: int,
        new_starts_at: datetime,
        new_ends_at: datetime,
        guild_id: Optional[int] = None,
    ) -> Competition:
        """Move a competition to new times: external edit first, then local times, status and timers."""
        if new_ends_at <= new_starts_at:
            raise CompetitionError("The end time must be after the start time.")

        competition = await self.store.get(competition_id)
        if competition is None or (guild_id is not None and competition.guild_id != guild_id):
            raise CompetitionNotFound(competition_id)

        async with self.locks(competition.id):
            competition = await self.store.get_by_row_id(competition.id)
            if competition is None:
                raise CompetitionNotFound(competition_id)
            if not competition.verification_code:
                raise MissingVerificationCode(competition_id)

            await self.wom.edit_competition(
                competition_id, {"startsAt": new_starts_at, "endsAt": new_ends_at}, competition.verification_code
            )
            competition.starts_at = new_starts_at
            competition.ends_at = new_ends_at
            await self.store.upsert(competition)

            cancelled = self.scheduler.cancel_many(all_job_names(competition_id))
            logger.info("Competition times edited", extra={
                'competition_id': competition_id, 'cancelled_jobs': cancelled,
                'starts_at': new_starts_at.isoformat(), 'ends_at': new_ends_at.isoformat(),
            })
            await self._reconcile_and_arm(competition, allow_rewind=True)
            return competition

    async def link_competition(
        self,
        guild_id: int,
        competition_id: int,
        message_link: str,
        emoji: str,
        verification_code: Optional[str] = None,
    ) -> Competition:
        """
        Attach an existing Wise Old Man competition to an announcement message.
        A known competition keeps its stored verification code; a new one needs one.
        """
        existing = await self.store.get(competition_id)
        if existing is None and not verification_code:
            raise MissingVerificationCode(competition_id)
        if existing is not None and existing.guild_id != guild_id:
            raise CompetitionNotFound(competition_id)

        details = await self.wom.get_competition_details(competition_id)
        starts_at = datetime.fromisoformat(details['startsAt'].replace("Z", "+00:00"))
        ends_at = datetime.fromisoformat(details['endsAt'].replace("Z", "+00:00"))

        if existing is None:
            metric = details.get('metric')
            competition = Competition(
                guild_id=guild_id,
                type=CompetitionType.SKILL if metric in SKILL_METRICS else CompetitionType.BOSS,
                status=derive_status(starts_at, ends_at, self.clock()),
                competition_id=competition_id,
                title=details.get('title'),
                metric=metric,
                verification_code=verification_code,
                starts_at=starts_at,
                ends_at=ends_at,
                message_link=message_link,
                emoji=emoji,
            )
            await self.store.upsert(competition)
            async with self.locks(competition.id):
                self._arm(competition, self.clock())
            logger.info("Competition linked", extra={'competition_id': competition_id, 'guild_id': guild_id})
            return competition

        async with self.locks(existing.id):
            competition = await self.store.get_by_row_id(existing.id)
            competition.message_link = message_link
            competition.emoji = emoji
            competition.verification_code = verification_code or competition.verification_code
            times_changed = (competition.starts_at, competition.ends_at) != (starts_at, ends_at)
            competition.starts_at = starts_at
            competition.ends_at = ends_at
            await self.store.upsert(competition)
            if times_changed:
                self.scheduler.cancel_many(all_job_names(competition_id))
                await self._reconcile_and_arm(competition, allow_rewind=True)
            else:
                self._arm(competition, self.clock())
        logger.info("Competition link updated", extra={'competition_id': competition_id, 'guild_id': guild_id})
        return competition

    async def unlink_competition(self, guild_id: int, competition_id: int) -> Competition:
        competition = await self.store.get(competition_id)
        if competition is None or competition.guild_id != guild_id:
            raise CompetitionNotFound(competition_id)

        async with self.locks(competition.id):
            self.scheduler.cancel_many(all_job_names(competition_id))
            await self.store.delete_row(competition)
        self.locks.discard(competition.id)
        logger.info("Competition unlinked", extra={'competition_id': competition_id, 'guild_id': guild_id})
        return competition

    async def list_competitions(self, guild_id: int) -> list[Competition]:
        return await self.store.list_for_guild(guild_id)

    async def update_settings(self, guild_id: int, **values) -> CompetitionSettings:
        """Partially update a guild's settings; blacklists must name known metrics."""
        for key in ('skill_blacklist', 'boss_blacklist'):
            for metric in values.get(key) or []:
                if metric not in ALL_METRICS:
                    raise UnknownMetric(metric)
        if values:
            await self.store.update_settings(guild_id, **values)
            logger.info("Competition settings updated", extra={'guild_id': guild_id, 'fields': sorted(values)})
        return await self.store.get_settings(guild_id)

    async def set_channels(
        self,
        guild_id: int,
        announcements_channel_id: Optional[int] = None,
        event_planning_channel_id: Optional[int] = None,
    ) -> ChannelSettings:
        await self.store.set_channels(
            guild_id,
            announcements_channel_id=announcements_channel_id,
            event_planning_channel_id=event_planning_channel_id,
        )
        channels = await self.store.get_channels(guild_id)
        logger.info("Competition channels updated", extra={
            'guild_id': guild_id,
            'announcements_channel_id': channels.announcements_channel_id,
            'event_planning_channel_id': channels.event_planning_channel_id,
        })
        return channels

    # ----------------------------------------------------------------
    # Recovery
    # ----------------------------------------------------------------

    async def reschedule_all(self) -> dict[str, int]:
        """
        Catch-up pass, run at startup and after bulk edits:
        re-derive status and re-arm timers for every open competition with
        known times, then finish processing any poll that closed while we were away.
        """
        logger.info("--- Competition catch-up pass started ---")
        summary = {'rescheduled': 0, 'polls_checked': 0, 'failed': 0}

        for competition in await self.store.list_by_status(RESOLVED_OPEN_STATUSES):
            try:
                async with self.locks(competition.id):
                    competition = await self.store.get_by_row_id(competition.id)
                    if competition is None or not competition.is_resolved:
                        continue
                    await self._reconcile_and_arm(competition, allow_rewind=False)
                summary['rescheduled'] += 1
            except Exception:
                summary['failed'] += 1
                logger.error("Failed to reschedule competition",
                             extra={'row_id': competition.id, 'competition_id': competition.competition_id}, exc_info=True)

        for competition in await self.store.list_unresolved():
            try:
                async with self.locks(competition.id):
                    competition = await self.store.get_by_row_id(competition.id)
                    if competition is None or competition.is_resolved:
                        continue
                    outcome = await self._process_poll(competition)
                if outcome is not None and outcome.kind is PollOutcomeKind.ABSTAINED:
                    self.locks.discard(competition.id)
                summary['polls_checked'] += 1
            except Exception:
                summary['failed'] += 1
                logger.error("Failed to process pending poll",
                             extra={'row_id': competition.id, 'guild_id': competition.guild_id}, exc_info=True)

        logger.info("--- Competition catch-up pass finished ---", extra=summary)
        return summary
