import uuid
from typing import Sequence
from datetime import datetime
from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession
from leadflow.modules.automations.models import AutomationDefinition, AutomationExecution

class DefinitionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, organization_id: uuid.UUID, **data) -> AutomationDefinition:
        obj = AutomationDefinition(organization_id=organization_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, organization_id: uuid.UUID, automation_id: uuid.UUID) -> AutomationDefinition | None:
        q = select(AutomationDefinition).where(
            AutomationDefinition.id == automation_id,
            AutomationDefinition.organization_id == organization_id,
            AutomationDefinition.deleted_at.is_(None),
        ).execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list(self, organization_id: uuid.UUID, *, trigger_type: str | None = None, active_only: bool = False) -> Sequence[AutomationDefinition]:
        conditions = [AutomationDefinition.organization_id == organization_id, AutomationDefinition.deleted_at.is_(None)]
        if trigger_type: conditions.append(AutomationDefinition.trigger_type == trigger_type)
        if active_only:  conditions.append(AutomationDefinition.is_active.is_(True))
        q = select(AutomationDefinition).where(and_(*conditions)).order_by(AutomationDefinition.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

class ExecutionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, organization_id: uuid.UUID, **data) -> AutomationExecution:
        obj = AutomationExecution(organization_id=organization_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, execution_id: uuid.UUID, organization_id: uuid.UUID | None = None) -> AutomationExecution | None:
        conditions = [AutomationExecution.id == execution_id, AutomationExecution.deleted_at.is_(None)]
        if organization_id is not None:
            conditions.append(AutomationExecution.organization_id == organization_id)
        q = select(AutomationExecution).where(and_(*conditions)).execution_options(populate_existing=True)
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list(self, organization_id: uuid.UUID, *, status: str | None = None, automation_id: uuid.UUID | None = None, lead_id: uuid.UUID | None = None, limit: int = 50, offset: int = 0) -> Sequence[AutomationExecution]:
        conditions = [AutomationExecution.organization_id == organization_id, AutomationExecution.deleted_at.is_(None)]
        if status:        conditions.append(AutomationExecution.status == status)
        if automation_id: conditions.append(AutomationExecution.automation_id == automation_id)
        if lead_id:       conditions.append(AutomationExecution.lead_id == lead_id)
        q = select(AutomationExecution).where(and_(*conditions)).order_by(AutomationExecution.created_at.desc()).limit(limit).offset(offset)
        res = await self.session.execute(q)
        return res.scalars().all()

    async def due(self, now: datetime, limit: int) -> Sequence[uuid.UUID]:
        # every organization; oldest first so nothing starves
        q = (
            select(AutomationExecution.id)
            .where(
                AutomationExecution.status == "waiting",
                AutomationExecution.next_execution_at <= now,
                AutomationExecution.deleted_at.is_(None),
            )
            .order_by(AutomationExecution.next_execution_at.asc())
            .limit(limit)
        )
        res = await self.session.execute(q)
        return res.scalars().all()

    async def claim(self, execution_id: uuid.UUID, *, now: datetime | None) -> bool:
        """waiting -> running. Passing ``now`` also requires the wait to be over."""
        conditions = [AutomationExecution.id == execution_id, AutomationExecution.status == "waiting"]
        if now is not None:
            conditions.append(AutomationExecution.next_execution_at <= now)
        # callers re-read the row afterwards
        q = (
            update(AutomationExecution)
            .where(*conditions)
            .values(status="running", next_execution_at=None)
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(q)
        return res.rowcount == 1
