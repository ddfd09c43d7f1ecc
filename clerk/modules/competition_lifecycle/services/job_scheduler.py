# clerk/modules/competition_lifecycle/services/job_scheduler.py

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

JobCallback = Callable[[], Awaitable[Any]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ScheduledJob:
    name: str
    when: datetime
    task: asyncio.Task


class JobScheduler:
    """
    Named one-shot timers on the running event loop.

    The table of armed jobs lives here and only here; it is rebuilt from the
    database after a restart. A job leaves the table as soon as it fires, so
    cancelling a name never interrupts a callback that is already running.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self.clock = clock
        self._jobs: dict[str, ScheduledJob] = {}
        self._tasks: set[asyncio.Task] = set()

    def schedule(self, name: str, when: datetime, callback: JobCallback) -> bool:
        """
        Arm `callback` to run at `when`. Returns False, without touching the
        existing timer, when a job with the same name is already armed.
        An instant in the past fires on the next loop iteration.
        """
        if name in self._jobs:
            logger.debug("Job already armed, skipping", extra={'job_name': name})
            return False

        delay = max(0.0, (when - self.clock()).total_seconds())
        task = asyncio.get_running_loop().create_task(self._run(name, delay, callback), name=f"job:{name}")
        self._jobs[name] = ScheduledJob(name=name, when=when, task=task)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.info("Job armed", extra={'job_name': name, 'fires_at': when.isoformat()})
        return True

    def cancel(self, name: str) -> bool:
        job = self._jobs.pop(name, None)
        if job is None:
            return False
        job.task.cancel()
        logger.info("Job cancelled", extra={'job_name': name})
        return True

    def cancel_many(self, names: Iterable[str]) -> int:
        return sum(1 for name in names if self.cancel(name))

    def is_scheduled(self, name: str) -> bool:
        return name in self._jobs

    def fires_at(self, name: str) -> Optional[datetime]:
        job = self._jobs.get(name)
        return job.when if job else None

    def job_names(self) -> set[str]:
        return set(self._jobs)

    async def _run(self, name: str, delay: float, callback: JobCallback):
        await asyncio.sleep(delay)

        job = self._jobs.get(name)
        if job is not None and job.task is asyncio.current_task():
            del self._jobs[name]

        logger.info("Executing job", extra={'job_name': name})
        try:
            await callback()
        except Exception:
            logger.error("Job failed", extra={'job_name': name}, exc_info=True)

    async def shutdown(self):
        """Cancel every armed job and every callback still in flight."""
        self._jobs.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Job scheduler stopped", extra={'cancelled_tasks': len(tasks)})
