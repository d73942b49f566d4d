import uuid
from typing import Sequence
from datetime import datetime
from sqlalchemy import select, and_, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from leadflow.modules.leads.models import Pipeline, Stage, Lead, LeadActivity

class PipelineRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, organization_id: uuid.UUID, pipeline_id: uuid.UUID) -> Pipeline | None:
        q = select(Pipeline).where(
            Pipeline.id == pipeline_id,
            Pipeline.organization_id == organization_id,
            Pipeline.deleted_at.is_(None),
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def get_default(self, organization_id: uuid.UUID) -> Pipeline | None:
        q = select(Pipeline).where(
            Pipeline.organization_id == organization_id,
            Pipeline.is_default.is_(True),
            Pipeline.deleted_at.is_(None),
        ).order_by(Pipeline.created_at.asc()).limit(1)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_pool_enabled(self) -> Sequence[Pipeline]:
        # cross-tenant on purpose: the pool sweep serves every organization
        q = select(Pipeline).where(Pipeline.pool_enabled.is_(True), Pipeline.deleted_at.is_(None))
        res = await self.session.execute(q)
        return res.scalars().all()

    async def list_sla_enabled(self) -> Sequence[Pipeline]:
        q = select(Pipeline).where(Pipeline.sla_overdue_after_seconds.is_not(None), Pipeline.deleted_at.is_(None))
        res = await self.session.execute(q)
        return res.scalars().all()

class StageRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, organization_id: uuid.UUID, stage_id: uuid.UUID) -> Stage | None:
        q = select(Stage).where(
            Stage.id == stage_id,
            Stage.organization_id == organization_id,
            Stage.deleted_at.is_(None),
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def first_of_pipeline(self, organization_id: uuid.UUID, pipeline_id: uuid.UUID) -> Stage | None:
        q = select(Stage).where(
            Stage.organization_id == organization_id,
            Stage.pipeline_id == pipeline_id,
            Stage.deleted_at.is_(None),
        ).order_by(Stage.position.asc()).limit(1)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

class LeadRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, organization_id: uuid.UUID, **data) -> Lead:
        obj = Lead(organization_id=organization_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, organization_id: uuid.UUID, lead_id: uuid.UUID, *, fresh: bool = False) -> Lead | None:
        q = select(Lead).where(
            Lead.id == lead_id,
            Lead.organization_id == organization_id,
            Lead.deleted_at.is_(None),
        )
        if fresh:
            # bypass the identity map so guarded writes compare against the current row
            q = q.execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list(self, organization_id: uuid.UUID, *, pipeline_id: uuid.UUID | None = None, stage_id: uuid.UUID | None = None, assigned_user_id: uuid.UUID | None = None, unassigned: bool = False, limit: int = 50, offset: int = 0) -> Sequence[Lead]:
        conditions = [Lead.organization_id == organization_id, Lead.deleted_at.is_(None)]
        if pipeline_id:      conditions.append(Lead.pipeline_id == pipeline_id)
        if stage_id:         conditions.append(Lead.stage_id == stage_id)
        if assigned_user_id: conditions.append(Lead.assigned_user_id == assigned_user_id)
        if unassigned:       conditions.append(Lead.assigned_user_id.is_(None))
        q = select(Lead).where(and_(*conditions)).order_by(Lead.created_at.desc()).limit(limit).offset(offset)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def oldest_unassigned(self, organization_id: uuid.UUID, pipeline_id: uuid.UUID | None = None) -> Lead | None:
        conditions = [Lead.organization_id == organization_id, Lead.deleted_at.is_(None), Lead.assigned_user_id.is_(None)]
        if pipeline_id: conditions.append(Lead.pipeline_id == pipeline_id)
        q = select(Lead).where(and_(*conditions)).order_by(Lead.created_at.asc()).limit(1)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list_in_stage(self, organization_id: uuid.UUID, stage_id: uuid.UUID) -> Sequence[Lead]:
        q = select(Lead).where(
            Lead.organization_id == organization_id,
            Lead.stage_id == stage_id,
            Lead.deleted_at.is_(None),
        )
        res = await self.session.execute(q)
        return res.scalars().all()

    async def sla_pending(self, pipeline_id: uuid.UUID) -> Sequence[Lead]:
        # unanswered leads whose overdue alert has not gone out yet
        q = select(Lead).where(
            Lead.pipeline_id == pipeline_id,
            Lead.deleted_at.is_(None),
            Lead.first_response_at.is_(None),
            Lead.sla_notified_overdue_at.is_(None),
        ).order_by(Lead.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def set_first_response(self, lead_id: uuid.UUID, *, at: datetime, seconds: int, channel: str, is_automation: bool) -> bool:
        # only the first writer wins; first_response_at is immutable once set
        q = (
            update(Lead)
            .where(Lead.id == lead_id, Lead.first_response_at.is_(None))
            .values(
                first_response_at=at,
                first_response_seconds=seconds,
                first_response_channel=channel,
                first_response_is_automation=is_automation,
            )
        )
        res = await self.session.execute(q)
        return res.rowcount == 1

class LeadActivityRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, organization_id: uuid.UUID, lead_id: uuid.UUID, type: str, content: str | None = None, *, actor_user_id: uuid.UUID | None = None, meta: dict | None = None, at: datetime | None = None) -> LeadActivity:
        obj = LeadActivity(
            organization_id=organization_id,
            lead_id=lead_id,
            type=type,
            content=content,
            actor_user_id=actor_user_id,
            meta=meta,
        )
        if at is not None:
            obj.created_at = at
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def list_for_lead(self, organization_id: uuid.UUID, lead_id: uuid.UUID) -> Sequence[LeadActivity]:
        q = select(LeadActivity).where(
            LeadActivity.organization_id == organization_id,
            LeadActivity.lead_id == lead_id,
            LeadActivity.deleted_at.is_(None),
        ).order_by(LeadActivity.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def last_activity_at(self, lead_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, datetime]:
        if not lead_ids:
            return {}
        q = (
            select(LeadActivity.lead_id, func.max(LeadActivity.created_at))
            .where(LeadActivity.lead_id.in_(lead_ids), LeadActivity.deleted_at.is_(None))
            .group_by(LeadActivity.lead_id)
        )
        res = await self.session.execute(q)
        return {lead_id: last for lead_id, last in res.all()}
