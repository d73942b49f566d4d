import uuid
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from leadflow.modules.automations.executor import AutomationExecutor
from leadflow.modules.automations.repository import DefinitionRepository, ExecutionRepository
from leadflow.modules.automations.schemas import AutomationCreate, AutomationUpdate, ResumeResult
from leadflow.modules.automations.triggers import validate_trigger_config
from leadflow.modules.leads.repository import LeadRepository

class AutomationService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.definitions = DefinitionRepository(session)
        self.executions = ExecutionRepository(session)
        self.leads = LeadRepository(session)

    # ---- Definitions ----
    async def create_definition(self, organization_id: uuid.UUID, payload: AutomationCreate):
        trigger_config = validate_trigger_config(payload.trigger_type, payload.trigger_config)
        obj = await self.definitions.create(
            organization_id,
            name=payload.name,
            description=payload.description,
            is_active=payload.is_active,
            trigger_type=payload.trigger_type,
            trigger_config=trigger_config,
            graph=payload.graph.model_dump(mode="json"),
        )
        await self.session.commit()
        return obj

    async def update_definition(self, organization_id: uuid.UUID, automation_id: uuid.UUID, payload: AutomationUpdate):
        obj = await self.definitions.get(organization_id, automation_id)
        if not obj:
            return None
        data = payload.model_dump(exclude_unset=True, exclude={"graph"})
        if "trigger_config" in data:
            data["trigger_config"] = validate_trigger_config(obj.trigger_type, data["trigger_config"])
        if payload.graph is not None:
            data["graph"] = payload.graph.model_dump(mode="json")
        for k, v in data.items():
            # an explicit null clears description; name and is_active cannot be cleared
            if v is None and k in ("name", "is_active"):
                continue
            setattr(obj, k, v)
        await self.session.commit()
        return obj

    async def get_definition(self, organization_id: uuid.UUID, automation_id: uuid.UUID):
        return await self.definitions.get(organization_id, automation_id)

    async def list_definitions(self, organization_id: uuid.UUID, trigger_type: str | None = None):
        return await self.definitions.list(organization_id, trigger_type=trigger_type)

    # ---- Executions ----
    async def start(self, organization_id: uuid.UUID, automation_id: uuid.UUID, lead_id: uuid.UUID | None, *, now: datetime | None = None):
        definition = await self.definitions.get(organization_id, automation_id)
        if not definition:
            return None
        if not definition.is_active:
            raise ValueError("automation_inactive")
        if lead_id is not None and not await self.leads.get(organization_id, lead_id):
            raise ValueError("lead_not_found")
        return await AutomationExecutor(self.session).start(definition, lead_id, trigger_data={"type": "manual"}, now=now)

    async def get_execution(self, organization_id: uuid.UUID, execution_id: uuid.UUID):
        return await self.executions.get(execution_id, organization_id)

    async def list_executions(self, organization_id: uuid.UUID, **filters):
        return await self.executions.list(organization_id, **filters)

    async def resume(self, organization_id: uuid.UUID, execution_id: uuid.UUID, *, force: bool = False, now: datetime | None = None) -> ResumeResult | None:
        outcome = await AutomationExecutor(self.session).resume(execution_id, organization_id=organization_id, now=now, require_due=not force)
        if outcome == "not_found":
            return None
        execution = await self.executions.get(execution_id, organization_id)
        return ResumeResult(execution_id=execution_id, outcome=outcome, status=execution.status)
