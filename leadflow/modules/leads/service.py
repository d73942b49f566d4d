import uuid
import logging
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from leadflow.core.base import utcnow
from leadflow.modules.automations.triggers import AutomationTriggerService
from leadflow.modules.events.outbox import OutboxService, LEAD_CREATED
from leadflow.modules.leads.changes import LeadChanges
from leadflow.modules.leads.models import Pipeline, Stage
from leadflow.modules.leads.repository import PipelineRepository, StageRepository, LeadRepository, LeadActivityRepository
from leadflow.modules.leads.schemas import PipelineCreate, PipelineUpdate, StageCreate, LeadCreate, LeadIntakeOut, LeadOut, FirstResponseOut
from leadflow.modules.routing.service import RoutingService

log = logging.getLogger("leads.service")

class LeadService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.pipelines = PipelineRepository(session)
        self.stages = StageRepository(session)
        self.leads = LeadRepository(session)
        self.activities = LeadActivityRepository(session)
        self.changes = LeadChanges(session)
        self.triggers = AutomationTriggerService(session)

    # ---- Pipelines ----
    async def create_pipeline(self, organization_id: uuid.UUID, payload: PipelineCreate) -> Pipeline:
        obj = Pipeline(organization_id=organization_id, **payload.model_dump())
        self.session.add(obj)
        await self.session.commit()
        return obj

    async def update_pipeline(self, organization_id: uuid.UUID, pipeline_id: uuid.UUID, payload: PipelineUpdate) -> Pipeline | None:
        obj = await self.pipelines.get(organization_id, pipeline_id)
        if not obj:
            return None
        for k, v in payload.model_dump(exclude_unset=True).items():
            setattr(obj, k, v)
        await self.session.commit()
        return obj

    async def add_stage(self, organization_id: uuid.UUID, pipeline_id: uuid.UUID, payload: StageCreate) -> Stage | None:
        if not await self.pipelines.get(organization_id, pipeline_id):
            return None
        obj = Stage(organization_id=organization_id, pipeline_id=pipeline_id, **payload.model_dump())
        self.session.add(obj)
        await self.session.commit()
        return obj

    # ---- Intake ----
    async def create_lead(self, organization_id: uuid.UUID, payload: LeadCreate, *, now: datetime | None = None) -> LeadIntakeOut:
        """
        Persists the lead unassigned, routes it, then fires lead_created automations.
        The lead is committed before routing so a routing rollback never loses it.
        """
        now = now or utcnow()
        data = payload.model_dump()
        pipeline_id, stage_id = data.pop("pipeline_id"), data.pop("stage_id")

        if pipeline_id is not None:
            pipeline = await self.pipelines.get(organization_id, pipeline_id)
            if not pipeline:
                raise ValueError("pipeline_not_found")
        else:
            pipeline = await self.pipelines.get_default(organization_id)

        stage = None
        if stage_id is not None:
            stage = await self.stages.get(organization_id, stage_id)
            if not stage or (pipeline and stage.pipeline_id != pipeline.id):
                raise ValueError("stage_not_found")
            if pipeline is None:
                pipeline = await self.pipelines.get(organization_id, stage.pipeline_id)
        elif pipeline is not None:
            stage = await self.stages.first_of_pipeline(organization_id, pipeline.id)

        lead = await self.leads.create(
            organization_id,
            pipeline_id=pipeline.id if pipeline else None,
            stage_id=stage.id if stage else None,
            stage_entered_at=now if stage else None,
            assigned_user_id=None,
            created_at=now,
            **data,
        )
        await self.activities.add(organization_id, lead.id, "lead_created", f"Lead created from {lead.source}", meta={"source": lead.source}, at=now)
        await OutboxService(self.session).enqueue(
            organization_id, LEAD_CREATED, "lead", lead.id,
            {"pipeline_id": str(lead.pipeline_id) if lead.pipeline_id else None, "source": lead.source},
            occurred_at=now,
        )
        await self.session.commit()
        lead_id = lead.id

        routing = await RoutingService(self.session).route_lead(organization_id, lead_id, now=now)
        started = await self.triggers.fire(
            organization_id, "lead_created", lead_id,
            {"pipeline_id": pipeline.id if pipeline else None, "source": payload.source},
            now=now,
        )
        lead = await self.leads.get(organization_id, lead_id, fresh=True)
        return LeadIntakeOut(lead=LeadOut.model_validate(lead), routing=routing, automations_started=len(started))

    # ---- Reads ----
    async def get_lead(self, organization_id: uuid.UUID, lead_id: uuid.UUID):
        return await self.leads.get(organization_id, lead_id)

    async def list_leads(self, organization_id: uuid.UUID, **filters):
        return await self.leads.list(organization_id, **filters)

    async def list_activities(self, organization_id: uuid.UUID, lead_id: uuid.UUID):
        return await self.activities.list_for_lead(organization_id, lead_id)

    # ---- Changes ----
    async def move_stage(self, organization_id: uuid.UUID, lead_id: uuid.UUID, stage_id: uuid.UUID, *, actor_user_id: uuid.UUID | None = None):
        lead = await self.leads.get(organization_id, lead_id)
        if not lead:
            return None
        stage = await self.stages.get(organization_id, stage_id)
        if not stage:
            raise ValueError("stage_not_found")
        if lead.stage_id == stage.id:
            return lead
        previous = await self.changes.move_stage(lead, stage, actor_user_id=actor_user_id)
        await self.session.commit()
        await self.triggers.fire(organization_id, "stage_change", lead.id, {"from_stage_id": previous, "to_stage_id": stage.id})
        return await self.leads.get(organization_id, lead_id, fresh=True)

    async def add_tag(self, organization_id: uuid.UUID, lead_id: uuid.UUID, tag: str, *, actor_user_id: uuid.UUID | None = None):
        lead = await self.leads.get(organization_id, lead_id)
        if not lead:
            return None
        changed = await self.changes.add_tag(lead, tag, actor_user_id=actor_user_id)
        await self.session.commit()
        if changed:
            await self.triggers.fire(organization_id, "tag_added", lead.id, {"tag": tag})
        return await self.leads.get(organization_id, lead_id, fresh=True)

    async def remove_tag(self, organization_id: uuid.UUID, lead_id: uuid.UUID, tag: str, *, actor_user_id: uuid.UUID | None = None):
        lead = await self.leads.get(organization_id, lead_id)
        if not lead:
            return None
        changed = await self.changes.remove_tag(lead, tag, actor_user_id=actor_user_id)
        await self.session.commit()
        if changed:
            await self.triggers.fire(organization_id, "tag_removed", lead.id, {"tag": tag})
        return await self.leads.get(organization_id, lead_id, fresh=True)

    async def record_first_response(self, organization_id: uuid.UUID, lead_id: uuid.UUID, *, channel: str, is_automation: bool = False, at: datetime | None = None) -> FirstResponseOut | None:
        lead = await self.leads.get(organization_id, lead_id)
        if not lead:
            return None
        recorded = await self.changes.record_first_response(lead, channel=channel, is_automation=is_automation, at=at)
        await self.session.commit()
        lead = await self.leads.get(organization_id, lead_id, fresh=True)
        return FirstResponseOut(recorded=recorded, lead=LeadOut.model_validate(lead))

    async def message_received(self, organization_id: uuid.UUID, lead_id: uuid.UUID, *, instance: str | None, text: str) -> int | None:
        lead = await self.leads.get(organization_id, lead_id)
        if not lead:
            return None
        await self.activities.add(organization_id, lead.id, "message_received", text, meta={"instance": instance})
        await self.session.commit()
        started = await self.triggers.fire(organization_id, "message_received", lead.id, {"instance": instance, "text": text})
        return len(started)
