import uuid
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from leadflow.core.db import get_session
from leadflow.core.security import get_principal, require_scopes, Principal
from leadflow.modules.notifications.schemas import NotificationOut
from leadflow.modules.notifications.service import NotificationService

router = APIRouter()
def svc(s: AsyncSession = Depends(get_session)) -> NotificationService: return NotificationService(s)

@router.get("/notifications", response_model=list[NotificationOut], dependencies=[Depends(require_scopes("notify:read"))])
async def list_notifications(user_id: uuid.UUID | None = None, unread_only: bool = False, limit: int = 50, principal: Principal = Depends(get_principal), service: NotificationService = Depends(svc)):
    return await service.list_for_user(principal.organization_id, user_id or principal.user_id, unread_only=unread_only, limit=limit)

@router.post("/notifications/{notification_id}/read", response_model=NotificationOut, dependencies=[Depends(require_scopes("notify:write"))])
async def mark_read(notification_id: uuid.UUID, principal: Principal = Depends(get_principal), service: NotificationService = Depends(svc)):
    n = await service.mark_read(principal.organization_id, notification_id)
    if not n:
        raise HTTPException(404, "Notification not found")
    return n
