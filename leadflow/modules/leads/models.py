import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Text, ForeignKey, Integer, TIMESTAMP, JSON
from leadflow.core.base import Base, TimestampedTenantMixin

# ---- Pipelines ----

class Pipeline(Base, TimestampedTenantMixin):
    name: Mapped[str] = mapped_column(String(120))
    is_default: Mapped[bool] = mapped_column(default=False)
    # fallback queue when no routing rule matches
    default_queue_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)

    # pool redistribution
    pool_enabled: Mapped[bool] = mapped_column(default=False)
    pool_timeout_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pool_max_redistributions: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pool_queue_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)  # falls back to default_queue_id

    # first response accounting
    first_response_start: Mapped[str] = mapped_column(String(16), default="lead_created")  # lead_created | lead_assigned
    include_automation_in_first_response: Mapped[bool] = mapped_column(default=True)

    # first response SLA; the checker runs only where an overdue threshold is set
    sla_warn_after_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sla_overdue_after_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sla_notify_assignee: Mapped[bool] = mapped_column(default=True)

class Stage(Base, TimestampedTenantMixin):
    pipeline_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("pipeline.id"))
    name: Mapped[str] = mapped_column(String(120))
    position: Mapped[int] = mapped_column(Integer, default=0)

# ---- Leads ----

class Lead(Base, TimestampedTenantMixin):
    pipeline_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("pipeline.id"), nullable=True)
    stage_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("stage.id"), nullable=True)
    stage_entered_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    email: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # routing attributes
    source: Mapped[str] = mapped_column(String(64))  # site, meta, whatsapp, import, ...
    campaign_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    origin_form_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    tags: Mapped[list] = mapped_column(JSON, default=list)
    city: Mapped[str | None] = mapped_column(String(120), nullable=True)

    # assignment
    assigned_user_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    assigned_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    redistribution_count: Mapped[int] = mapped_column(Integer, default=0)

    # first outbound touch, written once
    first_response_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    first_response_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    first_response_channel: Mapped[str | None] = mapped_column(String(16), nullable=True)  # whatsapp | phone | email | manual
    first_response_is_automation: Mapped[bool | None] = mapped_column(nullable=True)

    # first response SLA state, maintained by the SLA checker
    sla_status: Mapped[str] = mapped_column(String(16), default="ok")  # ok | warning | overdue
    sla_seconds_elapsed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sla_last_checked_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    sla_notified_warning_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    sla_notified_overdue_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

class LeadActivity(Base, TimestampedTenantMixin):
    lead_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("lead.id"), index=True)
    type: Mapped[str] = mapped_column(String(32))  # lead_created, lead_assigned, stage_change, first_response, tag_added, tag_removed, sla_warning, sla_overdue
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    actor_user_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    meta: Mapped[dict | None] = mapped_column(JSON, nullable=True)
