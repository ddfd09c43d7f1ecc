"""Tests for competition timing: windows, status derivation and timer planning."""

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from clerk.modules.competition_lifecycle.models import Competition, CompetitionStatus, CompetitionType
from clerk.modules.competition_lifecycle.services.timing import (
    JobKind,
    all_job_names,
    compute_competition_window,
    derive_status,
    job_due_at,
    job_name,
    parse_starting_hour,
    plan_jobs,
)

NEW_YORK = ZoneInfo("America/New_York")
NOW = datetime(2025, 6, 2, 12, 0, tzinfo=timezone.utc)


def competition(status, starts_at, ends_at=None, competition_id=77):
    return Competition(
        guild_id=1,
        type=CompetitionType.SKILL,
        status=status,
        competition_id=competition_id,
        starts_at=starts_at,
        ends_at=ends_at or starts_at + timedelta(days=7),
    )


def kinds(jobs):
    return {job.kind for job in jobs}


class TestJobNames:

    def test_name_format(self):
        assert job_name(123, JobKind.REMINDER) == "24h-reminder-123"
        assert job_name(123, JobKind.PRE_START) == "pre-start-reminder-123"
        assert job_name(123, JobKind.PRE_END) == "pre-end-reminder-123"
        assert job_name(123, JobKind.START) == "start-123"
        assert job_name(123, JobKind.END) == "end-123"

    def test_all_job_names(self):
        assert len(set(all_job_names(5))) == 5


class TestParseStartingHour:

    @pytest.mark.parametrize("value,expected", [
        ("12:00pm", time(12, 0)),
        ("12:00 PM", time(12, 0)),
        ("3pm", time(15, 0)),
        ("9:30am", time(9, 30)),
        ("15:00", time(15, 0)),
        ("7", time(7, 0)),
    ])
    def test_valid(self, value, expected):
        assert parse_starting_hour(value) == expected

    @pytest.mark.parametrize("value", [None, "", "noon", "25:00"])
    def test_invalid(self, value):
        assert parse_starting_hour(value) is None


class TestCompetitionWindow:

    def test_start_on_local_day_plus_offset(self):
        resolved_at = datetime(2025, 6, 2, 18, 0, tzinfo=timezone.utc)  # 14:00 EDT

        starts_at, ends_at = compute_competition_window(resolved_at, "12:00pm", 7, NEW_YORK)

        assert starts_at == datetime(2025, 6, 9, 16, 0, tzinfo=timezone.utc)
        assert ends_at - starts_at == timedelta(days=7)

    def test_uses_local_date_not_utc_date(self):
        # 01:00 UTC on the 3rd is still the evening of the 2nd in New York
        resolved_at = datetime(2025, 6, 3, 1, 0, tzinfo=timezone.utc)

        starts_at, _ = compute_competition_window(resolved_at, "12:00pm", 1, NEW_YORK)

        assert starts_at == datetime(2025, 6, 3, 16, 0, tzinfo=timezone.utc)

    def test_keeps_wall_clock_hour_across_dst(self):
        resolved_at = datetime(2025, 3, 3, 17, 0, tzinfo=timezone.utc)

        starts_at, ends_at = compute_competition_window(resolved_at, "12:00pm", 7, NEW_YORK)

        assert starts_at.astimezone(NEW_YORK).hour == 12
        assert ends_at.astimezone(NEW_YORK).hour == 12
        assert starts_at == datetime(2025, 3, 10, 16, 0, tzinfo=timezone.utc)

    def test_invalid_hour_falls_back_to_noon(self):
        resolved_at = datetime(2025, 6, 2, 18, 0, tzinfo=timezone.utc)

        starts_at, _ = compute_competition_window(resolved_at, "whenever", 0, NEW_YORK)

        assert starts_at.astimezone(NEW_YORK).time() == time(12, 0)


class TestDeriveStatus:
    starts_at = NOW + timedelta(days=3)
    ends_at = NOW + timedelta(days=10)

    @pytest.mark.parametrize("offset,expected", [
        (timedelta(0), CompetitionStatus.POLL_FINISHED),
        (timedelta(days=2) - timedelta(seconds=1), CompetitionStatus.POLL_FINISHED),
        (timedelta(days=2), CompetitionStatus.SENT_REMINDER),
        (timedelta(days=3), CompetitionStatus.COMPETITION_STARTED),
        (timedelta(days=10) - timedelta(seconds=1), CompetitionStatus.COMPETITION_STARTED),
        (timedelta(days=10), CompetitionStatus.COMPETITION_FINISHED),
    ])
    def test_boundaries(self, offset, expected):
        assert derive_status(self.starts_at, self.ends_at, NOW + offset) is expected


class TestPlanJobs:

    def test_fresh_competition_arms_everything(self):
        jobs = plan_jobs(competition(CompetitionStatus.POLL_FINISHED, NOW + timedelta(days=5)), NOW)

        assert kinds(jobs) == set(JobKind)

    def test_two_hours_before_start(self):
        starts_at = NOW + timedelta(hours=2)
        status = derive_status(starts_at, starts_at + timedelta(days=7), NOW)

        jobs = plan_jobs(competition(status, starts_at), NOW)

        assert status is CompetitionStatus.SENT_REMINDER
        assert kinds(jobs) == {JobKind.PRE_START, JobKind.START, JobKind.PRE_END, JobKind.END}

    def test_started_competition_only_arms_end_jobs(self):
        jobs = plan_jobs(competition(CompetitionStatus.COMPETITION_STARTED, NOW - timedelta(days=1)), NOW)

        assert kinds(jobs) == {JobKind.PRE_END, JobKind.END}

    def test_past_instants_are_never_armed(self):
        starts_at = NOW - timedelta(days=8)

        assert plan_jobs(competition(CompetitionStatus.COMPETITION_STARTED, starts_at), NOW) == []

    def test_unresolved_competition_has_no_jobs(self):
        pending = Competition(guild_id=1, type=CompetitionType.BOSS)

        assert plan_jobs(pending, NOW) == []

    def test_jobs_carry_names_and_instants(self):
        starts_at = NOW + timedelta(days=5)

        jobs = {job.kind: job for job in plan_jobs(competition(CompetitionStatus.POLL_FINISHED, starts_at), NOW)}

        assert jobs[JobKind.REMINDER].name == "24h-reminder-77"
        assert jobs[JobKind.REMINDER].when == starts_at - timedelta(days=1)
        assert jobs[JobKind.PRE_START].when == starts_at - timedelta(minutes=30)
        assert jobs[JobKind.END].when == starts_at + timedelta(days=7)

    def test_due_instant_follows_current_times(self):
        starts_at = NOW + timedelta(days=5)
        moved = competition(CompetitionStatus.POLL_FINISHED, starts_at, starts_at + timedelta(days=9))

        assert job_due_at(moved, JobKind.START) == starts_at
        assert job_due_at(moved, JobKind.PRE_END) == starts_at + timedelta(days=9, minutes=-30)
        assert job_due_at(moved, JobKind.END) == starts_at + timedelta(days=9)
        assert job_due_at(Competition(guild_id=1, type=CompetitionType.BOSS), JobKind.END) is None
