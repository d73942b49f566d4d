import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, ForeignKey, TIMESTAMP, JSON
from leadflow.core.base import Base, TimestampedTenantMixin

class AutomationDefinition(Base, TimestampedTenantMixin):
    __tablename__ = "automation_definition"

    name: Mapped[str] = mapped_column(String(120))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True)
    trigger_type: Mapped[str] = mapped_column(String(32), default="manual")  # lead_created | stage_change | tag_added | tag_removed | message_received | manual
    trigger_config: Mapped[dict] = mapped_column(JSON, default=dict)
    graph: Mapped[dict] = mapped_column(JSON)  # {entry_node_id, nodes: [...]}

class AutomationExecution(Base, TimestampedTenantMixin):
    __tablename__ = "automation_execution"

    automation_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("automation_definition.id"), index=True)
    lead_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("lead.id"), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(16), default="running", index=True)  # running | waiting | completed | failed
    current_node_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # set only while status == waiting
    next_execution_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True, index=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    execution_data: Mapped[dict] = mapped_column(JSON, default=dict)
    started_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
