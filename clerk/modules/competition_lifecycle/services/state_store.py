# clerk/modules/competition_lifecycle/services/state_store.py

import logging
from typing import Iterable, Optional
from clerk.core.database import Database
from clerk.modules.competition_lifecycle.models import (
    ChannelSettings, Competition, CompetitionSettings, CompetitionStatus, CompetitionType,
)

logger = logging.getLogger(__name__)


class CompetitionStore:
    """
    Durable competition state. Turns database rows into Competition objects
    and back; everything else goes through Database.
    """

    def __init__(self, db: Database):
        self.db = db

    async def get(self, competition_id: int) -> Optional[Competition]:
        """Look up by the external (Wise Old Man) competition ID."""
        row = await self.db.get_competition_by_external_id(competition_id)
        return Competition.from_row(row) if row else None

    async def get_by_row_id(self, row_id: int) -> Optional[Competition]:
        row = await self.db.get_competition_row(row_id)
        return Competition.from_row(row) if row else None

    async def get_by_poll_message_id(self, message_id: int) -> Optional[Competition]:
        """Matches both the original poll and the tiebreaker poll."""
        row = await self.db.get_competition_by_poll_message(message_id)
        return Competition.from_row(row) if row else None

    async def get_by_message_link(self, message_link: str) -> Optional[Competition]:
        row = await self.db.get_competition_by_message_link(message_link)
        return Competition.from_row(row) if row else None

    async def list_by_status(self, statuses: Iterable[CompetitionStatus]) -> list[Competition]:
        rows = await self.db.get_competitions_by_status(int(s) for s in statuses)
        return [Competition.from_row(row) for row in rows]

    async def list_unresolved(self) -> list[Competition]:
        rows = await self.db.get_unresolved_competitions()
        return [Competition.from_row(row) for row in rows]

    async def list_for_guild(self, guild_id: int) -> list[Competition]:
        rows = await self.db.get_guild_competitions(guild_id)
        return [Competition.from_row(row) for row in rows]

    async def insert_poll(
        self,
        guild_id: int,
        competition_type: CompetitionType,
        starting_hour: str,
        poll_message_id: int,
    ) -> Competition:
        """Record a freshly opened poll as a POLL_STARTED competition."""
        competition = Competition(
            guild_id=guild_id,
            type=competition_type,
            status=CompetitionStatus.POLL_STARTED,
            starting_hour=starting_hour,
            poll_message_id=poll_message_id,
        )
        competition.id = await self.db.insert_competition(competition.to_row())
        logger.info(
            "Competition poll recorded",
            extra={'guild_id': guild_id, 'type': competition_type.value, 'poll_message_id': poll_message_id}
        )
        return competition

    async def upsert(self, competition: Competition) -> Competition:
        """Insert a new row or overwrite the existing one (matched by local id)."""
        if competition.id is None:
            competition.id = await self.db.insert_competition(competition.to_row())
        else:
            await self.db.update_competition(competition.id, competition.to_row())
        return competition

    async def update_status(self, competition: Competition, status: CompetitionStatus):
        await self.db.update_competition(competition.id, {'status': int(status)})
        logger.info(
            "Competition status updated",
            extra={'row_id': competition.id, 'competition_id': competition.competition_id,
                   'from_status': competition.status.name, 'to_status': status.name}
        )
        competition.status = status

    async def delete(self, competition_id: int) -> bool:
        return await self.db.delete_competition_by_external_id(competition_id)

    async def delete_row(self, competition: Competition) -> bool:
        return await self.db.delete_competition_row(competition.id)

    # --- Settings ---

    async def get_settings(self, guild_id: int) -> CompetitionSettings:
        row = await self.db.get_competition_settings(guild_id)
        return CompetitionSettings.from_row(row) if row else CompetitionSettings(guild_id=guild_id)

    async def update_settings(self, guild_id: int, **values):
        """Partial update; list values are stored comma-separated."""
        columns = {}
        for key, value in values.items():
            if isinstance(value, (list, tuple, set)):
                value = ",".join(value) if value else None
            columns[key] = value
        await self.db.upsert_competition_settings(guild_id, columns)

    async def get_channels(self, guild_id: int) -> ChannelSettings:
        row = await self.db.get_channel_settings(guild_id)
        if not row:
            return ChannelSettings(guild_id=guild_id)
        return ChannelSettings(
            guild_id=guild_id,
            announcements_channel_id=row.get('announcements_channel_id'),
            event_planning_channel_id=row.get('event_planning_channel_id'),
        )

    async def set_channels(self, guild_id: int, **channel_ids):
        values = {k: v for k, v in channel_ids.items() if v is not None}
        await self.db.upsert_channel_settings(guild_id, values)

    async def remember_chosen_metric(self, guild_id: int, metric: str):
        """Append `metric` to the guild's rolling list of recently chosen metrics."""
        settings = await self.get_settings(guild_id)
        if metric in settings.last_chosen_metrics:
            return
        await self.update_settings(guild_id, last_chosen_metrics=settings.last_chosen_metrics + [metric])

    async def clear_chosen_metrics(self, guild_id: int):
        await self.update_settings(guild_id, last_chosen_metrics=[])
