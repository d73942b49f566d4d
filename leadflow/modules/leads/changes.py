import uuid
import logging
from datetime import datetime
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from leadflow.core.base import utcnow, as_utc
from leadflow.modules.events.outbox import OutboxService, LEAD_STAGE_CHANGED
from leadflow.modules.leads.models import Lead, Pipeline, Stage
from leadflow.modules.leads.repository import LeadRepository, LeadActivityRepository, PipelineRepository, StageRepository
from leadflow.modules.routing.models import AssignmentLog

log = logging.getLogger("leads.changes")

class LeadChanges:
    """
    Field-level lead edits shared by the API, automation actions and the stage sweep.
    Each one writes its timeline entry. None of them commits or fires automations.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.leads = LeadRepository(session)
        self.activities = LeadActivityRepository(session)
        self.pipelines = PipelineRepository(session)
        self.stages = StageRepository(session)

    async def add_tag(self, lead: Lead, tag: str, *, actor_user_id: uuid.UUID | None = None) -> bool:
        tags = list(lead.tags or [])
        if tag in tags:
            return False
        lead.tags = [*tags, tag]
        await self.activities.add(lead.organization_id, lead.id, "tag_added", tag, actor_user_id=actor_user_id, meta={"tag": tag})
        return True

    async def remove_tag(self, lead: Lead, tag: str, *, actor_user_id: uuid.UUID | None = None) -> bool:
        tags = list(lead.tags or [])
        if tag not in tags:
            return False
        lead.tags = [t for t in tags if t != tag]
        await self.activities.add(lead.organization_id, lead.id, "tag_removed", tag, actor_user_id=actor_user_id, meta={"tag": tag})
        return True

    async def move_stage(self, lead: Lead, stage: Stage, *, actor_user_id: uuid.UUID | None = None, reason: str | None = None, now: datetime | None = None) -> uuid.UUID | None:
        """Moves the lead and returns the previous stage id. Moving onto the current stage is a no-op returning None."""
        if lead.stage_id == stage.id:
            return None
        now = now or utcnow()
        previous = lead.stage_id
        lead.stage_id = stage.id
        lead.pipeline_id = stage.pipeline_id
        lead.stage_entered_at = now
        meta = {"from_stage_id": str(previous) if previous else None, "to_stage_id": str(stage.id)}
        if reason:
            meta["reason"] = reason
        await self.activities.add(lead.organization_id, lead.id, "stage_change", f"Moved to {stage.name}", actor_user_id=actor_user_id, meta=meta, at=now)
        await OutboxService(self.session).enqueue(lead.organization_id, LEAD_STAGE_CHANGED, "lead", lead.id, meta, occurred_at=now)
        await self.session.flush()
        return previous

    async def record_first_response(self, lead: Lead, *, channel: str, is_automation: bool, at: datetime | None = None) -> bool:
        """
        Stamps the first outbound touch. Returns False when the lead already has one,
        or when automated touches do not count for the lead's pipeline.
        With ``first_response_start = lead_assigned`` the clock starts at the first
        assignment, or at creation when the lead was never assigned.
        """
        if lead.first_response_at is not None:
            return False
        at = at or utcnow()
        pipeline = await self.pipelines.get(lead.organization_id, lead.pipeline_id) if lead.pipeline_id else None
        if is_automation and pipeline is not None and not pipeline.include_automation_in_first_response:
            return False

        start = await self.response_clock_start(lead, pipeline)
        seconds = max(int((at - start).total_seconds()), 0) if start else 0

        ok = await self.leads.set_first_response(lead.id, at=at, seconds=seconds, channel=channel, is_automation=is_automation)
        if not ok:
            return False
        await self.activities.add(
            lead.organization_id, lead.id, "first_response", f"First response via {channel}",
            meta={"channel": channel, "seconds": seconds, "is_automation": is_automation}, at=at,
        )
        log.info("First response for lead %s after %ss via %s", lead.id, seconds, channel)
        return True

    async def response_clock_start(self, lead: Lead, pipeline: Pipeline | None) -> datetime | None:
        """Start of the first response clock for ``lead``."""
        start = as_utc(lead.created_at)
        if pipeline is not None and pipeline.first_response_start == "lead_assigned":
            # a lead touched before anyone owns it is measured from creation
            start = await self._first_assigned_at(lead.id) or start
        return start

    async def _first_assigned_at(self, lead_id: uuid.UUID) -> datetime | None:
        res = await self.session.execute(select(func.min(AssignmentLog.created_at)).where(AssignmentLog.lead_id == lead_id))
        first = res.scalar_one_or_none()
        if first is not None:
            return as_utc(first)
        lead = await self.session.get(Lead, lead_id)
        return as_utc(lead.assigned_at) if lead else None
