"""Tests for the named one-shot job scheduler."""

import asyncio
from datetime import timedelta

import pytest

from clerk.modules.competition_lifecycle.services.job_scheduler import JobScheduler, utc_now


async def settle():
    for _ in range(5):
        await asyncio.sleep(0.01)


class TestSchedule:

    @pytest.mark.asyncio
    async def test_same_name_is_armed_once(self):
        scheduler = JobScheduler()
        first = utc_now() + timedelta(hours=1)
        try:
            assert scheduler.schedule("start-1", first, lambda: asyncio.sleep(0)) is True
            assert scheduler.schedule("start-1", first + timedelta(hours=1), lambda: asyncio.sleep(0)) is False
            assert scheduler.fires_at("start-1") == first
            assert scheduler.job_names() == {"start-1"}
        finally:
            await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_past_instant_fires_promptly(self):
        scheduler = JobScheduler()
        fired = []

        async def callback():
            fired.append("end-1")

        try:
            scheduler.schedule("end-1", utc_now() - timedelta(hours=1), callback)
            await settle()

            assert fired == ["end-1"]
            assert not scheduler.is_scheduled("end-1")
        finally:
            await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_name_can_be_reused_after_firing(self):
        scheduler = JobScheduler()
        fired = []

        async def callback():
            fired.append(True)

        try:
            scheduler.schedule("start-1", utc_now(), callback)
            await settle()
            assert scheduler.schedule("start-1", utc_now(), callback) is True
            await settle()

            assert fired == [True, True]
        finally:
            await scheduler.shutdown()


class TestCancel:

    @pytest.mark.asyncio
    async def test_cancelled_job_never_fires(self):
        scheduler = JobScheduler()
        fired = []

        async def callback():
            fired.append(True)

        try:
            scheduler.schedule("start-1", utc_now() + timedelta(milliseconds=20), callback)
            assert scheduler.cancel("start-1") is True
            await asyncio.sleep(0.05)

            assert fired == []
            assert scheduler.cancel("start-1") is False
        finally:
            await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_cancel_many_counts_armed_jobs(self):
        scheduler = JobScheduler()
        later = utc_now() + timedelta(hours=1)
        try:
            scheduler.schedule("start-1", later, lambda: asyncio.sleep(0))
            scheduler.schedule("end-1", later, lambda: asyncio.sleep(0))

            assert scheduler.cancel_many(["start-1", "end-1", "pre-end-reminder-1"]) == 2
            assert scheduler.job_names() == set()
        finally:
            await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_running_callback_is_not_interrupted(self):
        scheduler = JobScheduler()
        started = asyncio.Event()
        release = asyncio.Event()
        finished = []

        async def callback():
            started.set()
            await release.wait()
            finished.append(True)

        try:
            scheduler.schedule("end-1", utc_now(), callback)
            await asyncio.wait_for(started.wait(), timeout=1)

            assert scheduler.cancel("end-1") is False
            release.set()
            await settle()

            assert finished == [True]
        finally:
            await scheduler.shutdown()


class TestFailures:

    @pytest.mark.asyncio
    async def test_failing_job_does_not_affect_others(self, caplog):
        scheduler = JobScheduler()
        fired = []

        async def broken():
            raise RuntimeError("boom")

        async def healthy():
            fired.append(True)

        try:
            scheduler.schedule("start-1", utc_now(), broken)
            scheduler.schedule("start-2", utc_now(), healthy)
            await settle()

            assert fired == [True]
            assert any(record.message == "Job failed" for record in caplog.records)
        finally:
            await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_clears_everything(self):
        scheduler = JobScheduler()
        scheduler.schedule("start-1", utc_now() + timedelta(hours=1), lambda: asyncio.sleep(0))

        await scheduler.shutdown()

        assert scheduler.job_names() == set()
