# clerk/modules/competition_lifecycle/services/poll_evaluator.py

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Union
from clerk.modules.competition_lifecycle.models import CompetitionStatus, PollOption


class PollOutcomeKind(Enum):
    ABSTAINED = 1
    WINNER = 2
    TIE = 3
    # a tiebreaker tied again and the winner was drawn among the tied options
    DRAWN = 4


@dataclass
class PollOutcome:
    kind: PollOutcomeKind
    total_votes: int
    winner: Optional[PollOption] = None
    tied: list[PollOption] = field(default_factory=list)

    @property
    def has_winner(self) -> bool:
        return self.winner is not None

    @property
    def next_status(self) -> Optional[CompetitionStatus]:
        if self.kind is PollOutcomeKind.TIE:
            return CompetitionStatus.TIEBREAKER_POLL_STARTED
        if self.has_winner:
            return CompetitionStatus.POLL_FINISHED
        return None


def _normalize(tally: Sequence[Union[PollOption, tuple]]) -> list[PollOption]:
    options = []
    for entry in tally:
        if isinstance(entry, PollOption):
            options.append(entry)
        else:
            label, votes = entry
            options.append(PollOption(label=label, votes=votes))
    return options


def evaluate_poll(
    tally: Sequence[Union[PollOption, tuple]],
    status: CompetitionStatus,
    rng: Optional[random.Random] = None,
) -> PollOutcome:
    """
    Decide what a finalized poll means for its competition.

    - nobody voted in the first poll: ABSTAINED, the row should be removed
    - one option has the most votes: WINNER
    - several options share the most votes in the first poll: TIE, a tiebreaker
      poll with exactly those options should be opened
    - the tiebreaker ties again (a zero-vote tiebreaker ties on every option):
      DRAWN, one of the tied options is picked at random
    """
    options = _normalize(tally)
    total_votes = sum(option.votes for option in options)

    if not options:
        return PollOutcome(PollOutcomeKind.ABSTAINED, total_votes)

    if total_votes == 0 and status is not CompetitionStatus.TIEBREAKER_POLL_STARTED:
        return PollOutcome(PollOutcomeKind.ABSTAINED, total_votes)

    max_votes = max(option.votes for option in options)
    top_choices = [option for option in options if option.votes == max_votes]

    if len(top_choices) == 1:
        return PollOutcome(PollOutcomeKind.WINNER, total_votes, winner=top_choices[0], tied=top_choices)

    if status is CompetitionStatus.TIEBREAKER_POLL_STARTED:
        winner = (rng or random).choice(top_choices)
        return PollOutcome(PollOutcomeKind.DRAWN, total_votes, winner=winner, tied=top_choices)

    return PollOutcome(PollOutcomeKind.TIE, total_votes, tied=top_choices)
