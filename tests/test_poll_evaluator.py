"""Tests for poll result evaluation."""

import random

from clerk.modules.competition_lifecycle.models import CompetitionStatus, PollOption
from clerk.modules.competition_lifecycle.services.poll_evaluator import PollOutcomeKind, evaluate_poll


class TestFirstPoll:

    def test_single_winner(self):
        outcome = evaluate_poll([("Attack", 4), ("Fishing", 2), ("Ranged", 0)], CompetitionStatus.POLL_STARTED)

        assert outcome.kind is PollOutcomeKind.WINNER
        assert outcome.winner.label == "Attack"
        assert outcome.total_votes == 6
        assert outcome.next_status is CompetitionStatus.POLL_FINISHED

    def test_tie_lists_only_top_options(self):
        outcome = evaluate_poll([("Attack", 3), ("Fishing", 3), ("Ranged", 1)], CompetitionStatus.POLL_STARTED)

        assert outcome.kind is PollOutcomeKind.TIE
        assert [option.label for option in outcome.tied] == ["Attack", "Fishing"]
        assert outcome.winner is None
        assert outcome.next_status is CompetitionStatus.TIEBREAKER_POLL_STARTED

    def test_zero_votes_is_abstention(self):
        outcome = evaluate_poll([("Attack", 0), ("Fishing", 0)], CompetitionStatus.POLL_STARTED)

        assert outcome.kind is PollOutcomeKind.ABSTAINED
        assert outcome.next_status is None

    def test_empty_tally_is_abstention(self):
        assert evaluate_poll([], CompetitionStatus.POLL_STARTED).kind is PollOutcomeKind.ABSTAINED

    def test_accepts_poll_options(self):
        options = [PollOption("Zulrah", votes=1, key="zulrah"), PollOption("Vorkath", votes=0, key="vorkath")]

        outcome = evaluate_poll(options, CompetitionStatus.POLL_STARTED)

        assert outcome.winner is options[0]


class TestTiebreaker:

    def test_single_winner(self):
        outcome = evaluate_poll([("Attack", 1), ("Fishing", 2)], CompetitionStatus.TIEBREAKER_POLL_STARTED)

        assert outcome.kind is PollOutcomeKind.WINNER
        assert outcome.winner.label == "Fishing"

    def test_second_tie_is_drawn_among_tied(self):
        tally = [("Attack", 2), ("Fishing", 2), ("Ranged", 1)]

        outcome = evaluate_poll(tally, CompetitionStatus.TIEBREAKER_POLL_STARTED, random.Random(1))

        assert outcome.kind is PollOutcomeKind.DRAWN
        assert outcome.winner.label in ("Attack", "Fishing")
        assert outcome.next_status is CompetitionStatus.POLL_FINISHED

    def test_zero_vote_tiebreaker_is_drawn(self):
        outcome = evaluate_poll([("Attack", 0), ("Fishing", 0)], CompetitionStatus.TIEBREAKER_POLL_STARTED)

        assert outcome.kind is PollOutcomeKind.DRAWN
        assert outcome.has_winner

    def test_draw_is_reproducible_with_seeded_rng(self):
        tally = [("A", 1), ("B", 1), ("C", 1)]

        first = evaluate_poll(tally, CompetitionStatus.TIEBREAKER_POLL_STARTED, random.Random(42))
        second = evaluate_poll(tally, CompetitionStatus.TIEBREAKER_POLL_STARTED, random.Random(42))

        assert first.winner.label == second.winner.label
