import uuid
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from leadflow.core.db import get_session
from leadflow.core.security import get_principal, require_scopes, Principal
from leadflow.modules.stage_automations.schemas import (
    StageAutomationCreate, StageAutomationUpdate, StageAutomationOut, StageAutomationLogOut
)
from leadflow.modules.stage_automations.service import StageAutomationService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> StageAutomationService:
    return StageAutomationService(session)

@router.post("/stage-automations", response_model=StageAutomationOut, dependencies=[Depends(require_scopes("automations:write"))])
async def create_stage_automation(
    payload: StageAutomationCreate,
    principal: Principal = Depends(get_principal),
    service: StageAutomationService = Depends(svc),
):
    try:
        return await service.create(principal.organization_id, payload)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))

@router.get("/stage-automations", response_model=list[StageAutomationOut], dependencies=[Depends(require_scopes("automations:read"))])
async def list_stage_automations(
    stage_id: uuid.UUID | None = None,
    principal: Principal = Depends(get_principal),
    service: StageAutomationService = Depends(svc),
):
    return await service.list(principal.organization_id, stage_id)

@router.patch("/stage-automations/{automation_id}", response_model=StageAutomationOut, dependencies=[Depends(require_scopes("automations:write"))])
async def update_stage_automation(
    automation_id: uuid.UUID,
    payload: StageAutomationUpdate,
    principal: Principal = Depends(get_principal),
    service: StageAutomationService = Depends(svc),
):
    obj = await service.update(principal.organization_id, automation_id, payload)
    if not obj:
        raise HTTPException(status_code=404, detail="Stage automation not found")
    return obj

@router.get("/stage-automations/{automation_id}/logs", response_model=list[StageAutomationLogOut], dependencies=[Depends(require_scopes("automations:read"))])
async def list_stage_automation_logs(
    automation_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: StageAutomationService = Depends(svc),
):
    return await service.list_logs(principal.organization_id, automation_id)
