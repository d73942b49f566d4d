import uuid
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from leadflow.core.db import get_session
from leadflow.core.security import get_principal, require_scopes, Principal
from leadflow.modules.routing.schemas import (
    QueueCreate, QueueUpdate, QueueOut,
    MemberCreate, MemberOut,
    RuleCreate, RuleOut,
    ManualAssign, AssignmentLogOut, RoutingResult,
)
from leadflow.modules.routing.service import RoutingService

router = APIRouter()

def svc(session: AsyncSession = Depends(get_session)) -> RoutingService:
    return RoutingService(session)

# ---- Queues ----

@router.post("/routing/queues", response_model=QueueOut, dependencies=[Depends(require_scopes("routing:write"))])
async def create_queue(
    payload: QueueCreate,
    principal: Principal = Depends(get_principal),
    service: RoutingService = Depends(svc),
):
    return await service.create_queue(principal.organization_id, payload)

@router.get("/routing/queues", response_model=list[QueueOut], dependencies=[Depends(require_scopes("routing:read"))])
async def list_queues(
    principal: Principal = Depends(get_principal),
    service: RoutingService = Depends(svc),
):
    return await service.list_queues(principal.organization_id)

@router.patch("/routing/queues/{queue_id}", response_model=QueueOut, dependencies=[Depends(require_scopes("routing:write"))])
async def update_queue(
    queue_id: uuid.UUID,
    payload: QueueUpdate,
    principal: Principal = Depends(get_principal),
    service: RoutingService = Depends(svc),
):
    obj = await service.update_queue(principal.organization_id, queue_id, payload)
    if not obj:
        raise HTTPException(status_code=404, detail="Queue not found")
    return obj

@router.post("/routing/queues/{queue_id}/members", response_model=MemberOut, dependencies=[Depends(require_scopes("routing:write"))])
async def add_member(
    queue_id: uuid.UUID,
    payload: MemberCreate,
    principal: Principal = Depends(get_principal),
    service: RoutingService = Depends(svc),
):
    obj = await service.add_member(principal.organization_id, queue_id, payload)
    if not obj:
        raise HTTPException(status_code=404, detail="Queue not found")
    return obj

@router.get("/routing/queues/{queue_id}/members", response_model=list[MemberOut], dependencies=[Depends(require_scopes("routing:read"))])
async def list_members(
    queue_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: RoutingService = Depends(svc),
):
    return await service.list_members(principal.organization_id, queue_id)

# ---- Manual assignment ----

@router.post("/routing/queues/{queue_id}/assign", response_model=RoutingResult, dependencies=[Depends(require_scopes("routing:assign"))])
async def assign_next(
    queue_id: uuid.UUID,
    payload: ManualAssign | None = None,
    principal: Principal = Depends(get_principal),
    service: RoutingService = Depends(svc),
):
    try:
        result = await service.assign_manual(principal.organization_id, queue_id, payload.lead_id if payload else None)
    except ValueError as e:
        code = str(e)
        if code == "lead_not_found":
            raise HTTPException(status_code=404, detail="Lead not found")
        if code == "no_unassigned_lead":
            raise HTTPException(status_code=404, detail="No unassigned lead to assign")
        raise HTTPException(status_code=400, detail=code)
    if not result:
        raise HTTPException(status_code=404, detail="Queue not found")
    return result

# ---- Rules ----

@router.post("/routing/rules", response_model=RuleOut, dependencies=[Depends(require_scopes("routing:write"))])
async def create_rule(
    payload: RuleCreate,
    principal: Principal = Depends(get_principal),
    service: RoutingService = Depends(svc),
):
    try:
        return await service.create_rule(principal.organization_id, payload)
    except ValueError as e:
        if str(e) == "queue_not_found":
            raise HTTPException(status_code=404, detail="Queue not found")
        raise

@router.get("/routing/rules", response_model=list[RuleOut], dependencies=[Depends(require_scopes("routing:read"))])
async def list_rules(
    queue_id: uuid.UUID | None = None,
    principal: Principal = Depends(get_principal),
    service: RoutingService = Depends(svc),
):
    return await service.list_rules(principal.organization_id, queue_id)

# ---- Audit ----

@router.get("/routing/leads/{lead_id}/assignments", response_model=list[AssignmentLogOut], dependencies=[Depends(require_scopes("routing:read"))])
async def list_assignments(
    lead_id: uuid.UUID,
    principal: Principal = Depends(get_principal),
    service: RoutingService = Depends(svc),
):
    return await service.list_assignments(principal.organization_id, lead_id)
