import uuid
from datetime import datetime
from pydantic import BaseModel, Field, model_validator
from leadflow.modules.routing.schemas import RoutingResult

# ---- Pipelines ----

class PipelineCreate(BaseModel):
    name: str
    is_default: bool = False
    default_queue_id: uuid.UUID | None = None
    pool_enabled: bool = False
    pool_timeout_minutes: int | None = Field(default=None, ge=1)
    pool_max_redistributions: int | None = Field(default=None, ge=0)
    pool_queue_id: uuid.UUID | None = None
    first_response_start: str = Field(default="lead_created", pattern="^(lead_created|lead_assigned)$")
    include_automation_in_first_response: bool = True
    sla_warn_after_seconds: int | None = Field(default=None, ge=1)
    sla_overdue_after_seconds: int | None = Field(default=None, ge=1)
    sla_notify_assignee: bool = True

    @model_validator(mode="after")
    def _sla_order(self):
        warn, overdue = self.sla_warn_after_seconds, self.sla_overdue_after_seconds
        if warn is not None and overdue is not None and warn >= overdue:
            raise ValueError("sla_warn_after_seconds must be below sla_overdue_after_seconds")
        return self

class PipelineUpdate(BaseModel):
    name: str | None = None
    is_default: bool | None = None
    default_queue_id: uuid.UUID | None = None
    pool_enabled: bool | None = None
    pool_timeout_minutes: int | None = Field(default=None, ge=1)
    pool_max_redistributions: int | None = Field(default=None, ge=0)
    pool_queue_id: uuid.UUID | None = None
    first_response_start: str | None = Field(default=None, pattern="^(lead_created|lead_assigned)$")
    include_automation_in_first_response: bool | None = None
    sla_warn_after_seconds: int | None = Field(default=None, ge=1)
    sla_overdue_after_seconds: int | None = Field(default=None, ge=1)
    sla_notify_assignee: bool | None = None

class PipelineOut(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    is_default: bool
    default_queue_id: uuid.UUID | None
    pool_enabled: bool
    pool_timeout_minutes: int | None
    pool_max_redistributions: int | None
    pool_queue_id: uuid.UUID | None
    first_response_start: str
    include_automation_in_first_response: bool
    sla_warn_after_seconds: int | None
    sla_overdue_after_seconds: int | None
    sla_notify_assignee: bool

    class Config:
        from_attributes = True

class StageCreate(BaseModel):
    name: str
    position: int = 0

class StageOut(BaseModel):
    id: uuid.UUID
    pipeline_id: uuid.UUID
    name: str
    position: int

    class Config:
        from_attributes = True

# ---- Leads ----

class LeadCreate(BaseModel):
    pipeline_id: uuid.UUID | None = None
    stage_id: uuid.UUID | None = None
    name: str | None = None
    phone: str | None = None
    email: str | None = None
    source: str = Field(..., min_length=1)
    campaign_name: str | None = None
    origin_form_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    city: str | None = None

class LeadOut(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    pipeline_id: uuid.UUID | None
    stage_id: uuid.UUID | None
    stage_entered_at: datetime | None
    name: str | None
    phone: str | None
    email: str | None
    source: str
    campaign_name: str | None
    origin_form_id: str | None
    tags: list[str]
    city: str | None
    assigned_user_id: uuid.UUID | None
    assigned_at: datetime | None
    redistribution_count: int
    first_response_at: datetime | None
    first_response_seconds: int | None
    first_response_channel: str | None
    first_response_is_automation: bool | None
    sla_status: str
    sla_seconds_elapsed: int | None
    created_at: datetime

    class Config:
        from_attributes = True

class LeadIntakeOut(BaseModel):
    lead: LeadOut
    routing: RoutingResult | None
    automations_started: int = 0

class StageMove(BaseModel):
    stage_id: uuid.UUID

class TagChange(BaseModel):
    tag: str = Field(..., min_length=1)

class FirstResponseCreate(BaseModel):
    channel: str = Field(default="manual", pattern="^(whatsapp|phone|email|manual)$")
    is_automation: bool = False

class FirstResponseOut(BaseModel):
    recorded: bool
    lead: LeadOut

class InboundMessage(BaseModel):
    instance: str | None = None
    text: str = ""

class LeadActivityOut(BaseModel):
    id: uuid.UUID
    lead_id: uuid.UUID
    type: str
    content: str | None
    actor_user_id: uuid.UUID | None
    meta: dict | None
    created_at: datetime

    class Config:
        from_attributes = True
