import uuid
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from leadflow.core.db import get_session
from leadflow.core.security import get_principal, require_scopes, Principal
from leadflow.modules.automations.schemas import (
    AutomationCreate, AutomationUpdate, AutomationOut,
    ExecutionStart, ExecutionOut, ResumeResult,
)
from leadflow.modules.automations.service import AutomationService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> AutomationService:
    return AutomationService(session)

def _bad_request(e: ValueError):
    code = str(e)
    if code == "lead_not_found":
        raise HTTPException(status_code=404, detail="Lead not found")
    raise HTTPException(status_code=400, detail=code)

# ---- Definitions ----

@router.post("/automations", response_model=AutomationOut, dependencies=[Depends(require_scopes("automations:write"))])
async def create_automation(
    payload: AutomationCreate,
    principal: Principal = Depends(get_principal),
    service: AutomationService = Depends(svc),
):
    try:
        return await service.create_definition(principal.organization_id, payload)
    except ValueError as e:
        _bad_request(e)

@router.get("/automations", response_model=list[AutomationOut], dependencies=[Depends(require_scopes("automations:read"))])
async def list_automations(
    trigger_type: str | None = None,
    principal: Principal = Depends(get_principal),
    service: AutomationService = Depends(svc),
):
    return await service.list_definitions(principal.organization_id, trigger_type)

# ---- Executions ----

@router.get("/automations/executions", response_model=list[ExecutionOut], dependencies=[Depends(require_scopes("automations:read"))])
async def list_executions(
    status: str | None = Query(default=None, pattern="^(running|waiting|completed|failed)$"),
    automation_id: uuid.UUID | None = None,
    lead_id: uuid.UUID | None = None,
    limit: int = 50, offset: int = 0,
    principal: Principal = Depends(get_principal),
    service: AutomationService = Depends(svc),
):
    return await service.list_executions(principal.organization_id, status=status, automation_id=automation_id, lead_id=lead_id, limit=limit, offset=offset)

@router.get("/automations/executions/{execution_id}", response_model=ExecutionOut, dependencies=[Depends(require_scopes("automations:read"))])
async def get_execution(
    execution_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: AutomationService = Depends(svc),
):
    obj = await service.get_execution(principal.organization_id, execution_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Execution not found")
    return obj

@router.get("/automations/{automation_id}", response_model=AutomationOut, dependencies=[Depends(require_scopes("automations:read"))])
async def get_automation(
    automation_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: AutomationService = Depends(svc),
):
    obj = await service.get_definition(principal.organization_id, automation_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Automation not found")
    return obj

@router.patch("/automations/{automation_id}", response_model=AutomationOut, dependencies=[Depends(require_scopes("automations:write"))])
async def update_automation(
    automation_id: uuid.UUID,
    payload: AutomationUpdate,
    principal: Principal = Depends(get_principal),
    service: AutomationService = Depends(svc),
):
    try:
        obj = await service.update_definition(principal.organization_id, automation_id, payload)
    except ValueError as e:
        _bad_request(e)
    if not obj:
        raise HTTPException(status_code=404, detail="Automation not found")
    return obj

@router.post("/automations/{automation_id}/executions", response_model=ExecutionOut, dependencies=[Depends(require_scopes("automations:write"))])
async def start_execution(
    automation_id: uuid.UUID,
    payload: ExecutionStart,
    principal: Principal = Depends(get_principal),
    service: AutomationService = Depends(svc),
):
    try:
        obj = await service.start(principal.organization_id, automation_id, payload.lead_id)
    except ValueError as e:
        _bad_request(e)
    if not obj:
        raise HTTPException(status_code=404, detail="Automation not found")
    return obj

@router.post("/automations/executions/{execution_id}/resume", response_model=ResumeResult, dependencies=[Depends(require_scopes("automations:write"))])
async def resume_execution(
    execution_id: uuid.UUID,
    force: bool = False,
    principal: Principal = Depends(get_principal),
    service: AutomationService = Depends(svc),
):
    res = await service.resume(principal.organization_id, execution_id, force=force)
    if not res:
        raise HTTPException(status_code=404, detail="Execution not found")
    return res
