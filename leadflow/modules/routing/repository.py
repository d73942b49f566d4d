import uuid
from datetime import datetime
from typing import Sequence
from sqlalchemy import select, update, and_, or_, exists
from sqlalchemy.orm import aliased
from sqlalchemy.ext.asyncio import AsyncSession
from leadflow.modules.agents.models import Agent
from leadflow.modules.leads.models import Lead
from leadflow.modules.routing.models import Queue, QueueMember, RoutingRule, AssignmentLog

class QueueRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, organization_id: uuid.UUID, **data) -> Queue:
        obj = Queue(organization_id=organization_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, organization_id: uuid.UUID, queue_id: uuid.UUID, *, fresh: bool = False) -> Queue | None:
        q = select(Queue).where(
            Queue.id == queue_id,
            Queue.organization_id == organization_id,
            Queue.deleted_at.is_(None),
        )
        if fresh:
            q = q.execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list(self, organization_id: uuid.UUID) -> Sequence[Queue]:
        q = select(Queue).where(Queue.organization_id == organization_id, Queue.deleted_at.is_(None)).order_by(Queue.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def for_pipeline(self, organization_id: uuid.UUID, pipeline_id: uuid.UUID | None, fallback_queue_id: uuid.UUID | None) -> Sequence[Queue]:
        scope = [Queue.target_pipeline_id.is_(None)]
        if pipeline_id is not None:
            scope.append(Queue.target_pipeline_id == pipeline_id)
        if fallback_queue_id is not None:
            scope.append(Queue.id == fallback_queue_id)
        q = select(Queue).where(
            Queue.organization_id == organization_id,
            Queue.deleted_at.is_(None),
            or_(*scope),
        )
        res = await self.session.execute(q)
        return res.scalars().all()

    async def add_member(self, organization_id: uuid.UUID, queue_id: uuid.UUID, **data) -> QueueMember:
        obj = QueueMember(organization_id=organization_id, queue_id=queue_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def members(self, organization_id: uuid.UUID, queue_id: uuid.UUID) -> Sequence[QueueMember]:
        q = select(QueueMember).where(
            QueueMember.organization_id == organization_id,
            QueueMember.queue_id == queue_id,
            QueueMember.deleted_at.is_(None),
        ).order_by(QueueMember.position.asc(), QueueMember.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def active_members(self, organization_id: uuid.UUID, queue_id: uuid.UUID) -> Sequence[QueueMember]:
        # an agent member is eligible while its agent is active, a team member while the team has one
        team_agent = aliased(Agent)
        team_staffed = exists().where(
            team_agent.organization_id == QueueMember.organization_id,
            team_agent.team_id == QueueMember.team_id,
            team_agent.is_active.is_(True),
            team_agent.deleted_at.is_(None),
        )
        q = (
            select(QueueMember)
            .outerjoin(Agent, Agent.id == QueueMember.agent_id)
            .where(
                QueueMember.organization_id == organization_id,
                QueueMember.queue_id == queue_id,
                QueueMember.deleted_at.is_(None),
                or_(
                    and_(QueueMember.agent_id.is_not(None), Agent.is_active.is_(True), Agent.deleted_at.is_(None)),
                    and_(QueueMember.agent_id.is_(None), team_staffed),
                ),
            )
            .order_by(QueueMember.position.asc(), QueueMember.created_at.asc())
            .execution_options(populate_existing=True)
        )
        res = await self.session.execute(q)
        return res.scalars().all()

    async def advance_cursor(self, queue_id: uuid.UUID, *, expected_index: int, new_index: int, distributed: int) -> bool:
        # compare-and-set on the cursor; a concurrent advance makes this a zero-row update
        q = (
            update(Queue)
            .where(Queue.id == queue_id, Queue.last_assigned_index == expected_index)
            .values(last_assigned_index=new_index, leads_distributed=distributed)
        )
        res = await self.session.execute(q)
        return res.rowcount == 1

    async def bump_member_count(self, member_id: uuid.UUID) -> None:
        q = (
            update(QueueMember)
            .where(QueueMember.id == member_id)
            .values(leads_count=QueueMember.leads_count + 1)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(q)

    async def set_team_cursor(self, member_id: uuid.UUID, index: int) -> None:
        q = (
            update(QueueMember)
            .where(QueueMember.id == member_id)
            .values(team_cursor=index)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(q)

class RuleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, organization_id: uuid.UUID, **data) -> RoutingRule:
        obj = RoutingRule(organization_id=organization_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def active_for_queues(self, organization_id: uuid.UUID, queue_ids: Sequence[uuid.UUID]) -> Sequence[RoutingRule]:
        if not queue_ids:
            return []
        q = select(RoutingRule).where(
            RoutingRule.organization_id == organization_id,
            RoutingRule.queue_id.in_(queue_ids),
            RoutingRule.is_active.is_(True),
            RoutingRule.deleted_at.is_(None),
        ).order_by(RoutingRule.priority.asc(), RoutingRule.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def list(self, organization_id: uuid.UUID, queue_id: uuid.UUID | None = None) -> Sequence[RoutingRule]:
        conditions = [RoutingRule.organization_id == organization_id, RoutingRule.deleted_at.is_(None)]
        if queue_id:
            conditions.append(RoutingRule.queue_id == queue_id)
        q = select(RoutingRule).where(and_(*conditions)).order_by(RoutingRule.priority.asc(), RoutingRule.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

class AssignmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, organization_id: uuid.UUID, **data) -> AssignmentLog:
        obj = AssignmentLog(organization_id=organization_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def list_for_lead(self, organization_id: uuid.UUID, lead_id: uuid.UUID) -> Sequence[AssignmentLog]:
        q = select(AssignmentLog).where(
            AssignmentLog.organization_id == organization_id,
            AssignmentLog.lead_id == lead_id,
        ).order_by(AssignmentLog.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def assign_unassigned(self, lead_id: uuid.UUID, *, agent_id: uuid.UUID, at: datetime) -> bool:
        q = (
            update(Lead)
            .where(Lead.id == lead_id, Lead.assigned_user_id.is_(None))
            .values(assigned_user_id=agent_id, assigned_at=at)
        )
        res = await self.session.execute(q)
        return res.rowcount == 1

    async def reassign(self, lead_id: uuid.UUID, *, agent_id: uuid.UUID, at: datetime, previous_agent_id: uuid.UUID | None) -> bool:
        if previous_agent_id is None:
            guard = Lead.assigned_user_id.is_(None)
        else:
            guard = Lead.assigned_user_id == previous_agent_id
        q = update(Lead).where(Lead.id == lead_id, guard).values(assigned_user_id=agent_id, assigned_at=at)
        res = await self.session.execute(q)
        return res.rowcount == 1

    async def redistribute(self, lead_id: uuid.UUID, *, agent_id: uuid.UUID, at: datetime, expected_count: int) -> bool:
        # the sweep may run twice; the counter guard keeps a lead from being moved twice per round
        q = (
            update(Lead)
            .where(
                Lead.id == lead_id,
                Lead.redistribution_count == expected_count,
                Lead.first_response_at.is_(None),
            )
            .values(assigned_user_id=agent_id, assigned_at=at, redistribution_count=expected_count + 1)
        )
        res = await self.session.execute(q)
        return res.rowcount == 1

class PoolRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def stale_leads(self, pipeline_id: uuid.UUID, *, cutoff: datetime, max_redistributions: int) -> Sequence[Lead]:
        q = select(Lead).where(
            Lead.pipeline_id == pipeline_id,
            Lead.deleted_at.is_(None),
            Lead.assigned_user_id.is_not(None),
            Lead.assigned_at < cutoff,
            Lead.first_response_at.is_(None),
            Lead.redistribution_count < max_redistributions,
        ).order_by(Lead.assigned_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()
