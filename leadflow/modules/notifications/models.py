import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, TIMESTAMP, ForeignKey
from leadflow.core.base import Base, TimestampedTenantMixin

class Notification(Base, TimestampedTenantMixin):
    user_id: Mapped[uuid.UUID] = mapped_column(index=True)
    title: Mapped[str] = mapped_column(String(200))
    content: Mapped[str] = mapped_column(Text)
    type: Mapped[str] = mapped_column(String(32))  # automation | inactivity_alert | assignment | sla_warning | sla_overdue
    lead_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("lead.id"), nullable=True)
    read_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
