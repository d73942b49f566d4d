import uuid
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from leadflow.core.base import utcnow
from leadflow.modules.notifications.models import Notification

class NotificationService:
    """Notification sink. ``create`` only flushes; the caller owns the transaction."""
    def __init__(self, s: AsyncSession): self.s = s

    async def create(self, organization_id: uuid.UUID, *, user_id: uuid.UUID, title: str, content: str, type: str, lead_id: uuid.UUID | None = None) -> uuid.UUID:
        n = Notification(organization_id=organization_id, user_id=user_id, title=title, content=content, type=type, lead_id=lead_id)
        self.s.add(n); await self.s.flush()
        return n.id

    async def list_for_user(self, organization_id: uuid.UUID, user_id: uuid.UUID, *, unread_only: bool = False, limit: int = 50):
        q = select(Notification).where(Notification.organization_id == organization_id, Notification.user_id == user_id, Notification.deleted_at.is_(None))
        if unread_only:
            q = q.where(Notification.read_at.is_(None))
        res = await self.s.execute(q.order_by(Notification.created_at.desc()).limit(limit))
        return res.scalars().all()

    async def mark_read(self, organization_id: uuid.UUID, notification_id: uuid.UUID) -> Notification | None:
        res = await self.s.execute(select(Notification).where(Notification.id == notification_id, Notification.organization_id == organization_id))
        n = res.scalar_one_or_none()
        if not n: return None
        if n.read_at is None:
            n.read_at = utcnow()
        await self.s.commit()
        return n
