import uuid
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from leadflow.core.db import get_session
from leadflow.core.security import get_principal, require_scopes, Principal
from leadflow.modules.leads.schemas import (
    PipelineCreate, PipelineUpdate, PipelineOut, StageCreate, StageOut,
    LeadCreate, LeadOut, LeadIntakeOut, LeadActivityOut,
    StageMove, TagChange, FirstResponseCreate, FirstResponseOut, InboundMessage,
)
from leadflow.modules.leads.service import LeadService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> LeadService:
    return LeadService(session)

# ---- Pipelines ----

@router.post("/pipelines", response_model=PipelineOut, dependencies=[Depends(require_scopes("pipelines:write"))])
async def create_pipeline(
    payload: PipelineCreate,
    principal: Principal = Depends(get_principal),
    service: LeadService = Depends(svc),
):
    return await service.create_pipeline(principal.organization_id, payload)

@router.patch("/pipelines/{pipeline_id}", response_model=PipelineOut, dependencies=[Depends(require_scopes("pipelines:write"))])
async def update_pipeline(
    pipeline_id: uuid.UUID,
    payload: PipelineUpdate,
    principal: Principal = Depends(get_principal),
    service: LeadService = Depends(svc),
):
    obj = await service.update_pipeline(principal.organization_id, pipeline_id, payload)
    if not obj:
        raise HTTPException(status_code=404, detail="Pipeline not found")
    return obj

@router.post("/pipelines/{pipeline_id}/stages", response_model=StageOut, dependencies=[Depends(require_scopes("pipelines:write"))])
async def add_stage(
    pipeline_id: uuid.UUID,
    payload: StageCreate,
    principal: Principal = Depends(get_principal),
    service: LeadService = Depends(svc),
):
    obj = await service.add_stage(principal.organization_id, pipeline_id, payload)
    if not obj:
        raise HTTPException(status_code=404, detail="Pipeline not found")
    return obj

# ---- Leads ----

@router.post("/leads", response_model=LeadIntakeOut, status_code=201, dependencies=[Depends(require_scopes("leads:write"))])
async def create_lead(
    payload: LeadCreate,
    principal: Principal = Depends(get_principal),
    service: LeadService = Depends(svc),
):
    try:
        return await service.create_lead(principal.organization_id, payload)
    except ValueError as e:
        code = str(e)
        if code == "pipeline_not_found":
            raise HTTPException(status_code=404, detail="Pipeline not found")
        if code == "stage_not_found":
            raise HTTPException(status_code=404, detail="Stage not found")
        raise HTTPException(status_code=400, detail=code)

@router.get("/leads", response_model=list[LeadOut], dependencies=[Depends(require_scopes("leads:read"))])
async def list_leads(
    pipeline_id: uuid.UUID | None = None,
    stage_id: uuid.UUID | None = None,
    assigned_user_id: uuid.UUID | None = None,
    unassigned: bool = Query(default=False, description="Only leads nobody owns"),
    limit: int = 50, offset: int = 0,
    principal: Principal = Depends(get_principal),
    service: LeadService = Depends(svc),
):
    return await service.list_leads(
        principal.organization_id, pipeline_id=pipeline_id, stage_id=stage_id,
        assigned_user_id=assigned_user_id, unassigned=unassigned, limit=limit, offset=offset,
    )

@router.get("/leads/{lead_id}", response_model=LeadOut, dependencies=[Depends(require_scopes("leads:read"))])
async def get_lead(
    lead_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: LeadService = Depends(svc),
):
    obj = await service.get_lead(principal.organization_id, lead_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Lead not found")
    return obj

@router.get("/leads/{lead_id}/activities", response_model=list[LeadActivityOut], dependencies=[Depends(require_scopes("leads:read"))])
async def list_activities(
    lead_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: LeadService = Depends(svc),
):
    return await service.list_activities(principal.organization_id, lead_id)

@router.post("/leads/{lead_id}/stage", response_model=LeadOut, dependencies=[Depends(require_scopes("leads:write"))])
async def move_stage(
    lead_id: uuid.UUID,
    payload: StageMove,
    principal: Principal = Depends(get_principal),
    service: LeadService = Depends(svc),
):
    try:
        obj = await service.move_stage(principal.organization_id, lead_id, payload.stage_id, actor_user_id=principal.user_id)
    except ValueError:
        raise HTTPException(status_code=404, detail="Stage not found")
    if not obj:
        raise HTTPException(status_code=404, detail="Lead not found")
    return obj

@router.post("/leads/{lead_id}/tags", response_model=LeadOut, dependencies=[Depends(require_scopes("leads:write"))])
async def add_tag(
    lead_id: uuid.UUID,
    payload: TagChange,
    principal: Principal = Depends(get_principal),
    service: LeadService = Depends(svc),
):
    obj = await service.add_tag(principal.organization_id, lead_id, payload.tag, actor_user_id=principal.user_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Lead not found")
    return obj

@router.delete("/leads/{lead_id}/tags/{tag}", response_model=LeadOut, dependencies=[Depends(require_scopes("leads:write"))])
async def remove_tag(
    lead_id: uuid.UUID,
    tag: str,
    principal: Principal = Depends(get_principal),
    service: LeadService = Depends(svc),
):
    obj = await service.remove_tag(principal.organization_id, lead_id, tag, actor_user_id=principal.user_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Lead not found")
    return obj

@router.post("/leads/{lead_id}/first-response", response_model=FirstResponseOut, dependencies=[Depends(require_scopes("leads:write"))])
async def record_first_response(
    lead_id: uuid.UUID,
    payload: FirstResponseCreate,
    principal: Principal = Depends(get_principal),
    service: LeadService = Depends(svc),
):
    res = await service.record_first_response(principal.organization_id, lead_id, channel=payload.channel, is_automation=payload.is_automation)
    if not res:
        raise HTTPException(status_code=404, detail="Lead not found")
    return res

@router.post("/leads/{lead_id}/messages", dependencies=[Depends(require_scopes("leads:write"))])
async def inbound_message(
    lead_id: uuid.UUID,
    payload: InboundMessage,
    principal: Principal = Depends(get_principal),
    service: LeadService = Depends(svc),
):
    started = await service.message_received(principal.organization_id, lead_id, instance=payload.instance, text=payload.text)
    if started is None:
        raise HTTPException(status_code=404, detail="Lead not found")
    return {"automations_started": started}
