import uuid
from datetime import datetime
from pydantic import BaseModel, Field, model_validator

class StageAutomationCreate(BaseModel):
    stage_id: uuid.UUID
    automation_type: str = Field(..., pattern="^(move_after_inactivity|alert_on_inactivity)$")
    trigger_days: int = Field(default=7, ge=1)
    target_stage_id: uuid.UUID | None = None
    alert_message: str | None = None
    is_active: bool = True

    @model_validator(mode="after")
    def _target_for_moves(self):
        if self.automation_type == "move_after_inactivity" and self.target_stage_id is None:
            raise ValueError("move_after_inactivity needs target_stage_id")
        return self

class StageAutomationUpdate(BaseModel):
    trigger_days: int | None = Field(default=None, ge=1)
    target_stage_id: uuid.UUID | None = None
    alert_message: str | None = None
    is_active: bool | None = None

class StageAutomationOut(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    stage_id: uuid.UUID
    automation_type: str
    trigger_days: int | None
    target_stage_id: uuid.UUID | None
    alert_message: str | None
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True

class StageAutomationLogOut(BaseModel):
    id: uuid.UUID
    stage_automation_id: uuid.UUID
    lead_id: uuid.UUID
    action_taken: str
    details: dict | None
    created_at: datetime

    class Config:
        from_attributes = True
