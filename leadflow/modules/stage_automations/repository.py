import uuid
from typing import Sequence
from datetime import datetime
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession
from leadflow.modules.stage_automations.models import StageAutomation, StageAutomationLog

class StageAutomationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, organization_id: uuid.UUID, **data) -> StageAutomation:
        obj = StageAutomation(organization_id=organization_id, **data)
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def get(self, organization_id: uuid.UUID, automation_id: uuid.UUID) -> StageAutomation | None:
        q = select(StageAutomation).where(
            StageAutomation.id == automation_id,
            StageAutomation.organization_id == organization_id,
            StageAutomation.deleted_at.is_(None),
        )
        res = await self.session.execute(q)
        return res.scalar_one_or_none()

    async def list(self, organization_id: uuid.UUID, stage_id: uuid.UUID | None = None) -> Sequence[StageAutomation]:
        conditions = [StageAutomation.organization_id == organization_id, StageAutomation.deleted_at.is_(None)]
        if stage_id: conditions.append(StageAutomation.stage_id == stage_id)
        q = select(StageAutomation).where(and_(*conditions)).order_by(StageAutomation.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

    async def list_active(self) -> Sequence[StageAutomation]:
        # the sweep covers every organization
        q = select(StageAutomation).where(
            StageAutomation.is_active.is_(True),
            StageAutomation.deleted_at.is_(None),
        ).order_by(StageAutomation.created_at.asc())
        res = await self.session.execute(q)
        return res.scalars().all()

class StageAutomationLogRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, organization_id: uuid.UUID, stage_automation_id: uuid.UUID, lead_id: uuid.UUID, action_taken: str, details: dict | None = None, at: datetime | None = None) -> StageAutomationLog:
        obj = StageAutomationLog(
            organization_id=organization_id,
            stage_automation_id=stage_automation_id,
            lead_id=lead_id,
            action_taken=action_taken,
            details=details,
        )
        if at is not None:
            obj.created_at = at
        self.session.add(obj)
        await self.session.flush()
        return obj

    async def exists_since(self, stage_automation_id: uuid.UUID, lead_id: uuid.UUID, since: datetime) -> bool:
        q = select(StageAutomationLog.id).where(
            StageAutomationLog.stage_automation_id == stage_automation_id,
            StageAutomationLog.lead_id == lead_id,
            StageAutomationLog.created_at >= since,
        ).limit(1)
        res = await self.session.execute(q)
        return res.scalar_one_or_none() is not None

    async def list(self, organization_id: uuid.UUID, stage_automation_id: uuid.UUID, limit: int = 100) -> Sequence[StageAutomationLog]:
        q = select(StageAutomationLog).where(
            StageAutomationLog.organization_id == organization_id,
            StageAutomationLog.stage_automation_id == stage_automation_id,
        ).order_by(StageAutomationLog.created_at.desc()).limit(limit)
        res = await self.session.execute(q)
        return res.scalars().all()
