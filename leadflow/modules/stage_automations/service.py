import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from leadflow.modules.leads.repository import StageRepository
from leadflow.modules.stage_automations.repository import StageAutomationRepository, StageAutomationLogRepository
from leadflow.modules.stage_automations.schemas import StageAutomationCreate, StageAutomationUpdate

class StageAutomationService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.automations = StageAutomationRepository(session)
        self.logs = StageAutomationLogRepository(session)
        self.stages = StageRepository(session)

    async def create(self, organization_id: uuid.UUID, payload: StageAutomationCreate):
        if not await self.stages.get(organization_id, payload.stage_id):
            raise ValueError("stage_not_found")
        if payload.target_stage_id and not await self.stages.get(organization_id, payload.target_stage_id):
            raise ValueError("target_stage_not_found")
        obj = await self.automations.create(organization_id, **payload.model_dump())
        await self.session.commit()
        return obj

    async def update(self, organization_id: uuid.UUID, automation_id: uuid.UUID, payload: StageAutomationUpdate):
        obj = await self.automations.get(organization_id, automation_id)
        if not obj:
            return None
        for k, v in payload.model_dump(exclude_unset=True).items():
            setattr(obj, k, v)
        await self.session.commit()
        return obj

    async def list(self, organization_id: uuid.UUID, stage_id: uuid.UUID | None = None):
        return await self.automations.list(organization_id, stage_id)

    async def list_logs(self, organization_id: uuid.UUID, automation_id: uuid.UUID):
        return await self.logs.list(organization_id, automation_id)
