import uuid
from datetime import datetime
from pydantic import BaseModel, Field
from leadflow.modules.automations.graph import AutomationGraph

# ---- Definitions ----

class AutomationCreate(BaseModel):
    name: str
    description: str | None = None
    is_active: bool = True
    trigger_type: str = Field(default="manual", pattern="^(lead_created|stage_change|tag_added|tag_removed|message_received|manual)$")
    trigger_config: dict = Field(default_factory=dict)
    graph: AutomationGraph

class AutomationUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    is_active: bool | None = None
    trigger_config: dict | None = None
    graph: AutomationGraph | None = None

class AutomationOut(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    description: str | None
    is_active: bool
    trigger_type: str
    trigger_config: dict
    graph: dict
    created_at: datetime

    class Config:
        from_attributes = True

# ---- Executions ----

class ExecutionStart(BaseModel):
    lead_id: uuid.UUID | None = None

class ExecutionOut(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    automation_id: uuid.UUID
    lead_id: uuid.UUID | None
    status: str
    current_node_id: str | None
    next_execution_at: datetime | None
    error_message: str | None
    execution_data: dict
    started_at: datetime | None
    completed_at: datetime | None

    class Config:
        from_attributes = True

class ResumeResult(BaseModel):
    execution_id: uuid.UUID
    outcome: str  # resumed | skipped
    status: str
