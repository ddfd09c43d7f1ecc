# clerk/modules/competition_lifecycle/services/participation_service.py

import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional
import httpx
from clerk.modules.competition_lifecycle.models import Competition, CompetitionStatus
from clerk.modules.competition_lifecycle.services.state_store import CompetitionStore
from clerk.modules.competition_lifecycle.services.wom_client import WiseOldManClient, WiseOldManError

logger = logging.getLogger(__name__)


class JoinResult(Enum):
    JOINED = 1
    NOT_A_COMPETITION = 2
    WRONG_EMOJI = 3
    CLOSED = 4
    MISSING_CODE = 5
    FAILED = 6


def format_player_name(display_name: str) -> str:
    """Discord display name to the form Wise Old Man expects."""
    return display_name.replace("_", " ").replace("-", " ").strip().lower()


class ParticipationService:
    """Adds players to a competition when they react to its announcement."""

    def __init__(self, store: CompetitionStore, wom: WiseOldManClient, clock: Callable[[], datetime]):
        self.store = store
        self.wom = wom
        self.clock = clock

    async def join(self, message_link: str, emoji: str, display_name: str) -> tuple[JoinResult, Optional[Competition]]:
        competition = await self.store.get_by_message_link(message_link)
        if competition is None:
            return JoinResult.NOT_A_COMPETITION, None
        if competition.emoji and emoji != competition.emoji:
            return JoinResult.WRONG_EMOJI, competition
        if competition.status is CompetitionStatus.COMPETITION_FINISHED or (
            competition.ends_at is not None and self.clock() >= competition.ends_at
        ):
            return JoinResult.CLOSED, competition
        if not competition.verification_code:
            logger.warning("Competition has no verification code, cannot add participants",
                           extra={'competition_id': competition.competition_id})
            return JoinResult.MISSING_CODE, competition

        player_name = format_player_name(display_name)
        log_context = {'competition_id': competition.competition_id, 'player': player_name}
        try:
            await self.wom.add_participants(competition.competition_id, [player_name], competition.verification_code)
        except (WiseOldManError, httpx.HTTPError):
            logger.error("Failed to add participant", extra=log_context, exc_info=True)
            return JoinResult.FAILED, competition

        logger.info("Participant added", extra=log_context)
        return JoinResult.JOINED, competition
