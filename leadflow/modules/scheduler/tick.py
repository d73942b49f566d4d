"""
The once-a-minute tick.

Every sweep implements ``Job``: it gets the tick instant and returns a
``JobSummary``. ``Ticker`` runs its jobs one after the other and isolates
them, so a crash in one job still lets the others run. The same ticker is
driven by the in-process APScheduler job and by the ``/jobs`` endpoints for
deployments that prefer an external cron.
"""
import logging
from datetime import datetime
from typing import Protocol, Sequence, runtime_checkable

from pydantic import BaseModel

from leadflow.core.base import utcnow

log = logging.getLogger("jobs.tick")


class JobSummary(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    error: str | None = None


@runtime_checkable
class Job(Protocol):
    name: str

    async def run(self, now: datetime) -> JobSummary: ...


class Ticker:
    def __init__(self, jobs: Sequence[Job]):
        self.jobs = list(jobs)

    def job(self, name: str) -> Job | None:
        return next((j for j in self.jobs if j.name == name), None)

    async def run_job(self, job: Job, now: datetime | None = None) -> JobSummary:
        now = now or utcnow()
        try:
            summary = await job.run(now)
        except Exception as e:
            log.exception("Job %s crashed", job.name)
            return JobSummary(error=str(e))
        log.info("Job %s: processed=%d succeeded=%d failed=%d skipped=%d", job.name, summary.processed, summary.succeeded, summary.failed, summary.skipped)
        return summary

    async def tick(self, now: datetime | None = None) -> dict[str, JobSummary]:
        now = now or utcnow()
        return {job.name: await self.run_job(job, now) for job in self.jobs}
