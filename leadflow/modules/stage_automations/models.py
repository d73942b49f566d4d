import uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, Integer, ForeignKey, JSON
from leadflow.core.base import Base, TimestampedTenantMixin

class StageAutomation(Base, TimestampedTenantMixin):
    __tablename__ = "stage_automation"

    stage_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("stage.id"), index=True)
    automation_type: Mapped[str] = mapped_column(String(32))  # move_after_inactivity | alert_on_inactivity
    trigger_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    target_stage_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("stage.id"), nullable=True)
    alert_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True)

class StageAutomationLog(Base, TimestampedTenantMixin):
    __tablename__ = "stage_automation_log"

    stage_automation_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("stage_automation.id"), index=True)
    lead_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("lead.id"), index=True)
    action_taken: Mapped[str] = mapped_column(String(32))  # moved | alerted
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
