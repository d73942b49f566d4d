import uuid
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leadflow.modules.leads.changes import LeadChanges
from leadflow.modules.leads.models import Lead, Pipeline
from leadflow.modules.leads.repository import LeadRepository, LeadActivityRepository, PipelineRepository
from leadflow.modules.notifications.service import NotificationService
from leadflow.modules.scheduler.tick import JobSummary

log = logging.getLogger("leads.sla")


def classify(elapsed_seconds: int, warn_after: int | None, overdue_after: int) -> str:
    if elapsed_seconds >= overdue_after:
        return "overdue"
    if warn_after is not None and elapsed_seconds >= warn_after:
        return "warning"
    return "ok"


@dataclass
class _Thresholds:
    pipeline_id: uuid.UUID
    organization_id: uuid.UUID
    warn_after: int | None
    overdue_after: int
    notify_assignee: bool

    @classmethod
    def of(cls, p: Pipeline) -> "_Thresholds":
        return cls(
            pipeline_id=p.id,
            organization_id=p.organization_id,
            warn_after=p.sla_warn_after_seconds,
            overdue_after=p.sla_overdue_after_seconds,
            notify_assignee=p.sla_notify_assignee,
        )


class SlaChecker:
    """
    Tracks how long unanswered leads have waited for a first response.

    Each pending lead is classified ``ok``, ``warning`` or ``overdue`` against
    its pipeline thresholds. Entering warning or overdue writes a timeline
    entry and notifies the assignee, once per level. Leads stop being checked
    once answered or once the overdue alert went out.
    """

    name = "sla_checker"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def run(self, now: datetime) -> JobSummary:
        summary = JobSummary()
        async with self.session_factory() as session:
            pipelines = [_Thresholds.of(p) for p in await PipelineRepository(session).list_sla_enabled()]
            work: list[tuple[_Thresholds, uuid.UUID]] = []
            for t in pipelines:
                work.extend((t, l.id) for l in await LeadRepository(session).sla_pending(t.pipeline_id))

        for thresholds, lead_id in work:
            summary.processed += 1
            async with self.session_factory() as session:
                try:
                    escalated = await self.check(session, thresholds, lead_id, now=now)
                except Exception:
                    log.exception("SLA check failed for lead %s", lead_id)
                    await session.rollback()
                    summary.failed += 1
                    continue
            if escalated:
                summary.succeeded += 1
            else:
                summary.skipped += 1
        return summary

    async def check(self, session: AsyncSession, t: _Thresholds, lead_id: uuid.UUID, *, now: datetime) -> bool:
        """Refreshes the lead's SLA state. Returns True when it crossed into a level not alerted before."""
        lead = await LeadRepository(session).get(t.organization_id, lead_id, fresh=True)
        if not lead or lead.first_response_at is not None or lead.pipeline_id != t.pipeline_id:
            return False
        pipeline = await PipelineRepository(session).get(t.organization_id, t.pipeline_id)
        start = await LeadChanges(session).response_clock_start(lead, pipeline)
        elapsed = max(int((now - start).total_seconds()), 0) if start else 0
        status = classify(elapsed, t.warn_after, t.overdue_after)

        escalated = False
        if status == "warning" and lead.sla_notified_warning_at is None:
            lead.sla_notified_warning_at = now
            await self._alert(session, lead, t, "sla_warning", elapsed, now)
            escalated = True
        elif status == "overdue" and lead.sla_notified_overdue_at is None:
            lead.sla_notified_overdue_at = now
            await self._alert(session, lead, t, "sla_overdue", elapsed, now)
            escalated = True

        lead.sla_status = status
        lead.sla_seconds_elapsed = elapsed
        lead.sla_last_checked_at = now
        await session.commit()
        if escalated:
            log.info("Lead %s SLA is %s after %ss without response", lead.id, status, elapsed)
        return escalated

    async def _alert(self, session: AsyncSession, lead: Lead, t: _Thresholds, kind: str, elapsed: int, now: datetime) -> None:
        minutes = elapsed // 60
        label = "at risk" if kind == "sla_warning" else "overdue"
        await LeadActivityRepository(session).add(
            lead.organization_id, lead.id, kind, f"First response SLA {label}: {minutes} minutes without response",
            meta={"elapsed_seconds": elapsed, "warn_threshold": t.warn_after, "overdue_threshold": t.overdue_after},
            at=now,
        )
        if t.notify_assignee and lead.assigned_user_id is not None:
            await NotificationService(session).create(
                lead.organization_id,
                user_id=lead.assigned_user_id,
                title=f"First response SLA {label}",
                content=f"{lead.name or 'A lead'} has waited {minutes} minutes for a first response.",
                type=kind,
                lead_id=lead.id,
            )
