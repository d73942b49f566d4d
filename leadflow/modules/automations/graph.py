"""
Automation graph model.

A graph is ``{"entry_node_id": ..., "nodes": [...]}``. Each node is one of four
kinds, told apart by ``type``; action nodes carry a config that is itself
told apart by ``action_type``. Pydantic does the dispatch, so a node only ever
has the fields that make sense for its kind.
"""
import uuid
from datetime import timedelta
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, model_validator


# ---- Action configs ----

class SendMessageConfig(BaseModel):
    action_type: Literal["send_message"]
    instance: str  # messaging gateway instance (connected number)
    message: str  # string.Template text, e.g. "Hi ${lead_name}"


class AddTagConfig(BaseModel):
    action_type: Literal["add_tag"]
    tag: str


class RemoveTagConfig(BaseModel):
    action_type: Literal["remove_tag"]
    tag: str


class MoveStageConfig(BaseModel):
    action_type: Literal["move_stage"]
    stage_id: uuid.UUID


class AssignUserConfig(BaseModel):
    action_type: Literal["assign_user"]
    user_id: uuid.UUID


class SendNotificationConfig(BaseModel):
    action_type: Literal["send_notification"]
    user_id: uuid.UUID | None = None  # defaults to the lead's assignee
    title: str = "Automation notification"
    content: str = ""


ActionConfig = Annotated[
    Union[SendMessageConfig, AddTagConfig, RemoveTagConfig, MoveStageConfig, AssignUserConfig, SendNotificationConfig],
    Field(discriminator="action_type"),
]


# ---- Condition configs ----

# lead attributes a field_equals condition may look at
COMPARABLE_FIELDS = {
    "name", "phone", "email", "source", "campaign_name", "origin_form_id", "city",
    "pipeline_id", "stage_id", "assigned_user_id", "redistribution_count",
}

class ConditionConfig(BaseModel):
    condition_type: Literal["has_tag", "in_stage", "is_assigned", "has_first_response", "field_equals", "always"]
    tag: str | None = None
    stage_id: uuid.UUID | None = None
    field: str | None = None
    value: str | int | float | bool | None = None

    @model_validator(mode="after")
    def _required_operands(self):
        if self.condition_type == "has_tag" and not self.tag:
            raise ValueError("has_tag condition needs 'tag'")
        if self.condition_type == "in_stage" and self.stage_id is None:
            raise ValueError("in_stage condition needs 'stage_id'")
        if self.condition_type == "field_equals" and not self.field:
            raise ValueError("field_equals condition needs 'field'")
        if self.condition_type == "field_equals" and self.field not in COMPARABLE_FIELDS:
            raise ValueError(f"field_equals cannot compare field '{self.field}'")
        return self


# ---- Nodes ----

class ActionNode(BaseModel):
    type: Literal["action"]
    id: str
    config: ActionConfig
    next: str | None = None  # None completes the execution


class WaitNode(BaseModel):
    type: Literal["wait"]
    id: str
    duration_value: int = Field(ge=0)
    duration_unit: Literal["minutes", "hours", "days"] = "minutes"
    next: str | None = None

    @property
    def duration(self) -> timedelta:
        return timedelta(**{self.duration_unit: self.duration_value})


class ConditionNode(BaseModel):
    type: Literal["condition"]
    id: str
    condition: ConditionConfig
    edges: dict[str, str]  # "true" | "false" | "default" -> node id

    @model_validator(mode="after")
    def _default_edge(self):
        if "default" not in self.edges:
            raise ValueError(f"condition node '{self.id}' has no default edge")
        unknown = set(self.edges) - {"true", "false", "default"}
        if unknown:
            raise ValueError(f"condition node '{self.id}' has unknown edge labels {sorted(unknown)}")
        return self

    def branch(self, result: bool) -> str:
        return self.edges.get("true" if result else "false") or self.edges["default"]


class EndNode(BaseModel):
    type: Literal["end"]
    id: str


Node = Annotated[Union[ActionNode, WaitNode, ConditionNode, EndNode], Field(discriminator="type")]


class AutomationGraph(BaseModel):
    entry_node_id: str
    nodes: list[Node]

    @model_validator(mode="after")
    def _references(self):
        ids = [n.id for n in self.nodes]
        if len(ids) != len(set(ids)):
            raise ValueError("duplicate node ids")
        known = set(ids)
        if self.entry_node_id not in known:
            raise ValueError(f"entry node '{self.entry_node_id}' does not exist")
        for n in self.nodes:
            for target in _targets(n):
                if target not in known:
                    raise ValueError(f"node '{n.id}' points to unknown node '{target}'")
        return self

    def node(self, node_id: str):
        for n in self.nodes:
            if n.id == node_id:
                return n
        raise KeyError(node_id)


def _targets(node) -> list[str]:
    if isinstance(node, (ActionNode, WaitNode)):
        return [node.next] if node.next else []
    if isinstance(node, ConditionNode):
        return list(node.edges.values())
    return []
