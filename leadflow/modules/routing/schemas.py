import uuid
from datetime import datetime
from pydantic import BaseModel, Field, model_validator
from leadflow.modules.routing.matcher import RuleMatch

# ---- Queues ----

class QueueCreate(BaseModel):
    name: str
    strategy: str = Field(default="simple", pattern="^(simple|weighted)$")
    is_active: bool = True
    target_pipeline_id: uuid.UUID | None = None

class QueueUpdate(BaseModel):
    name: str | None = None
    strategy: str | None = Field(default=None, pattern="^(simple|weighted)$")
    is_active: bool | None = None
    target_pipeline_id: uuid.UUID | None = None

class QueueOut(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    strategy: str
    is_active: bool
    last_assigned_index: int
    target_pipeline_id: uuid.UUID | None
    leads_distributed: int
    created_at: datetime

    class Config:
        from_attributes = True

# ---- Members ----

class MemberCreate(BaseModel):
    """
    A single agent, or a team whose active agents take turns on this slot.
    With both set the member is the agent and the team is only a label.
    """
    agent_id: uuid.UUID | None = None
    team_id: uuid.UUID | None = None
    position: int = 0
    weight: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _has_target(self):
        if self.agent_id is None and self.team_id is None:
            raise ValueError("agent_id or team_id is required")
        return self

class MemberOut(BaseModel):
    id: uuid.UUID
    queue_id: uuid.UUID
    agent_id: uuid.UUID | None
    team_id: uuid.UUID | None
    position: int
    weight: int
    leads_count: int

    class Config:
        from_attributes = True

# ---- Rules ----

class RuleCreate(BaseModel):
    queue_id: uuid.UUID
    name: str
    priority: int = 100
    is_active: bool = True
    match: RuleMatch = Field(default_factory=RuleMatch)

class RuleOut(BaseModel):
    id: uuid.UUID
    queue_id: uuid.UUID
    name: str
    priority: int
    is_active: bool
    match: dict
    created_at: datetime

    class Config:
        from_attributes = True

# ---- Assignment ----

class ManualAssign(BaseModel):
    lead_id: uuid.UUID | None = None  # defaults to the oldest unassigned lead

class AssignmentLogOut(BaseModel):
    id: uuid.UUID
    queue_id: uuid.UUID | None
    lead_id: uuid.UUID
    member_id: uuid.UUID | None
    agent_id: uuid.UUID
    previous_agent_id: uuid.UUID | None
    reason: str
    rule_id: uuid.UUID | None
    created_at: datetime

    class Config:
        from_attributes = True

class RoutingResult(BaseModel):
    lead_id: uuid.UUID
    status: str  # assigned | no_route | no_eligible_member | already_assigned | skipped
    queue_id: uuid.UUID | None = None
    rule_id: uuid.UUID | None = None
    agent_id: uuid.UUID | None = None
    reason: str | None = None
