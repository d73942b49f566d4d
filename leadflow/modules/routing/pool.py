import uuid
import logging
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadflow.core.base import as_utc
from leadflow.core.config import settings
from leadflow.modules.leads.models import Pipeline
from leadflow.modules.leads.repository import LeadRepository, PipelineRepository
from leadflow.modules.routing.logger import AssignmentLogger
from leadflow.modules.routing.repository import PoolRepository
from leadflow.modules.routing.selector import RoundRobinSelector
from leadflow.modules.scheduler.tick import JobSummary

log = logging.getLogger("routing.pool")


def pool_settings(pipeline: Pipeline) -> tuple[int, int, uuid.UUID | None]:
    timeout = pipeline.pool_timeout_minutes if pipeline.pool_timeout_minutes is not None else settings.POOL_DEFAULT_TIMEOUT_MINUTES
    max_r = pipeline.pool_max_redistributions if pipeline.pool_max_redistributions is not None else settings.POOL_DEFAULT_MAX_REDISTRIBUTIONS
    return timeout, max_r, pipeline.pool_queue_id or pipeline.default_queue_id


class PoolMonitor:
    """Reclaims leads nobody answered in time and hands them to the next agent in the pool queue."""

    name = "pool_monitor"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def run(self, now: datetime) -> JobSummary:
        summary = JobSummary()
        async with self.session_factory() as session:
            pipelines = list(await PipelineRepository(session).list_pool_enabled())
            work: list[tuple[uuid.UUID, uuid.UUID, uuid.UUID, datetime]] = []
            for p in pipelines:
                timeout, max_r, queue_id = pool_settings(p)
                if queue_id is None:
                    log.warning("Pipeline %s has pool enabled but no pool or default queue", p.id)
                    continue
                cutoff = now - timedelta(minutes=timeout)
                leads = await PoolRepository(session).stale_leads(p.id, cutoff=cutoff, max_redistributions=max_r)
                work.extend((l.organization_id, l.id, queue_id, cutoff) for l in leads)

        for organization_id, lead_id, queue_id, cutoff in work:
            summary.processed += 1
            async with self.session_factory() as session:
                try:
                    outcome = await self.redistribute(session, organization_id, lead_id, queue_id, cutoff=cutoff, now=now)
                except Exception:
                    log.exception("Pool redistribution failed for lead %s", lead_id)
                    await session.rollback()
                    summary.failed += 1
                    continue
            if outcome == "redistributed":
                summary.succeeded += 1
            else:
                summary.skipped += 1
        return summary

    async def redistribute(self, session: AsyncSession, organization_id: uuid.UUID, lead_id: uuid.UUID, queue_id: uuid.UUID, *, cutoff: datetime, now: datetime) -> str:
        lead = await LeadRepository(session).get(organization_id, lead_id, fresh=True)
        # the row may have moved on since the candidate scan
        if not lead or lead.assigned_user_id is None or lead.first_response_at is not None:
            return "skipped"
        if as_utc(lead.assigned_at) is None or as_utc(lead.assigned_at) >= cutoff:
            return "skipped"

        selection = await RoundRobinSelector(session).select(organization_id, queue_id, exclude_agent_id=lead.assigned_user_id)
        if selection is None:
            await session.rollback()
            log.info("No eligible member to take over lead %s", lead_id)
            return "no_eligible_member"

        entry = await AssignmentLogger(session).record(lead, selection, "pool_timeout", now=now)
        if entry is None:
            await session.rollback()
            return "skipped"
        await session.commit()
        return "redistributed"
